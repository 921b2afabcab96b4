"""Registered cluster table for the Gateway.

Built once from config and never mutated. Provides lookup by cluster id
(used when resolving a gateway id) and by display name.
"""

from __future__ import annotations

from collections.abc import Iterable

from spark_gateway.errors import NotFound
from spark_gateway.models import KubeCluster, KubeNamespace


class ClusterRepository:
    """In-memory cluster table keyed by cluster id, in configuration order."""

    def __init__(self, clusters: Iterable[KubeCluster]) -> None:
        self._by_id: dict[str, KubeCluster] = {}
        self._by_name: dict[str, KubeCluster] = {}
        for cluster in clusters:
            if cluster.cluster_id in self._by_id:
                raise ValueError(f"duplicate cluster id: {cluster.cluster_id}")
            if cluster.name in self._by_name:
                raise ValueError(f"duplicate cluster name: {cluster.name}")
            self._by_id[cluster.cluster_id] = cluster
            self._by_name[cluster.name] = cluster

    def __len__(self) -> int:
        return len(self._by_id)

    def get_all(self) -> list[KubeCluster]:
        return list(self._by_id.values())

    def get_by_id(self, cluster_id: str) -> KubeCluster:
        cluster = self._by_id.get(cluster_id)
        if cluster is None:
            raise NotFound(f"cluster with id '{cluster_id}' not found")
        return cluster

    def get_by_name(self, name: str) -> KubeCluster:
        cluster = self._by_name.get(name)
        if cluster is None:
            raise NotFound(f"cluster '{name}' not found")
        return cluster

    def get_all_with_namespace(self, namespace: str) -> list[KubeCluster]:
        """Clusters that configure *namespace* (by name), in config order."""
        return [c for c in self._by_id.values() if c.get_namespace_by_name(namespace)]

    def resolve(self, cluster_id: str, namespace_id: str) -> tuple[KubeCluster, KubeNamespace]:
        """Map the two id segments of a gateway id back to config objects."""
        cluster = self.get_by_id(cluster_id)
        namespace = cluster.get_namespace_by_id(namespace_id)
        if namespace is None:
            raise NotFound(
                f"namespace with id '{namespace_id}' not found in cluster '{cluster.name}'"
            )
        return cluster, namespace
