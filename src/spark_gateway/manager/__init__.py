"""Cluster-local Manager: SparkApplication CRUD backed by a watch cache."""
