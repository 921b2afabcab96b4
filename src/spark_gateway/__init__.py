"""Spark-Gateway: one API for Spark applications across many Kubernetes clusters."""

__version__ = "0.4.0"

from spark_gateway.config import ConfigError, SparkGatewayConfig, find_config, load_config
from spark_gateway.errors import (
    AlreadyExists,
    BadRequest,
    Forbidden,
    GatewayError,
    Internal,
    NotFound,
    Unauthorized,
)
from spark_gateway.models import (
    ApplicationSummary,
    GatewayApplication,
    KubeCluster,
    KubeNamespace,
    SparkApplication,
)
from spark_gateway.naming import GatewayIdError, new_gateway_id, parse_gateway_id

__all__ = [
    "AlreadyExists",
    "ApplicationSummary",
    "BadRequest",
    "ConfigError",
    "Forbidden",
    "GatewayApplication",
    "GatewayError",
    "GatewayIdError",
    "Internal",
    "KubeCluster",
    "KubeNamespace",
    "NotFound",
    "SparkApplication",
    "SparkGatewayConfig",
    "Unauthorized",
    "find_config",
    "load_config",
    "new_gateway_id",
    "parse_gateway_id",
    "__version__",
]
