"""Config file loading and auto-discovery for Spark-Gateway.

Looks for the config file named by ``--config``, then by the
``SPARK_GATEWAY_CONFIG`` environment variable, then searches for
``spark-gateway.yaml`` in the current directory and parent directories.
The YAML is validated with pydantic and relative paths are resolved
against the config file's location.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from spark_gateway.models import KubeCluster

CONFIG_FILENAME = "spark-gateway.yaml"
CONFIG_ENV_VAR = "SPARK_GATEWAY_CONFIG"

DEFAULT_SERVICE_TOKEN_MAP_FILE = "/conf/service-auth-config.yaml"

# certificateAuthorityFile values that are modes rather than paths (any case)
CA_FILE_SENTINELS = ("incluster", "insecure")
CA_FILE_KEYS = ("certificateAuthorityFile", "certificateAuthorityB64File")


class ConfigError(Exception):
    """Raised when the config file is missing, unparsable, or invalid.

    ``errors`` holds every validation problem found, not just the first.
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        if self.errors:
            message = message + "\n" + "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(message)


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class MiddlewareDefinition(_Section):
    """One ``{type, conf}`` entry of ``gateway.middleware``."""

    type: str = Field(min_length=1)
    conf: dict[str, Any] = Field(default_factory=dict)


class ClusterRouterConfig(_Section):
    type: Literal["random", "weightBased", "weightBasedRandom"] = "weightBased"
    fallback_type: Literal["random", "weightBased", "weightBasedRandom"] | None = Field(
        default=None, alias="fallbackType"
    )
    dimension: Literal["cluster", "namespace"] = "cluster"


class StatusUrlTemplates(_Section):
    spark_ui: str = Field(default="", alias="sparkUI")
    spark_history_ui: str = Field(default="", alias="sparkHistoryUI")
    logs_ui: str = Field(default="", alias="logsUI")


class DatabaseConfig(_Section):
    enable: bool = True
    path: str = "spark-gateway.db"


class GatewayConfig(_Section):
    host: str = "0.0.0.0"
    port: int = Field(default=8080, gt=0, lt=65536)
    middleware: tuple[MiddlewareDefinition, ...] = ()
    status_url_templates: StatusUrlTemplates = Field(
        default_factory=StatusUrlTemplates, alias="statusUrlTemplates"
    )
    manager_hostname_template: str = Field(
        default="spark-manager-{clusterName}", alias="managerHostnameTemplate"
    )
    manager_port: int = Field(default=8081, alias="managerPort", gt=0, lt=65536)
    manager_scheme: Literal["http", "https"] = Field(default="http", alias="managerScheme")
    request_timeout: float = Field(default=30.0, alias="requestTimeout", gt=0)
    idempotent_delete: bool = Field(default=False, alias="idempotentDelete")
    shutdown_grace_period: int = Field(default=30, alias="shutdownGracePeriod", ge=0)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    def manager_url_for(self, cluster: KubeCluster) -> str:
        """Base URL of *cluster*'s Manager, honouring a per-cluster override."""
        if cluster.manager_url:
            return cluster.manager_url.rstrip("/")
        host = self.manager_hostname_template.format(
            clusterName=cluster.name, clusterId=cluster.cluster_id
        )
        return f"{self.manager_scheme}://{host}:{self.manager_port}"


class LivyConfig(_Section):
    """Livy-compatible batch API served by the Gateway under ``/api/livy``."""

    enable: bool = False
    namespace: str | None = None


class ManagerConfig(_Section):
    host: str = "0.0.0.0"
    port: int = Field(default=8081, gt=0, lt=65536)
    cluster_auth_type: Literal["kubeconfig", "serviceaccount"] = Field(
        default="serviceaccount", alias="clusterAuthType"
    )
    kubeconfig: str | None = None
    kube_context: str | None = Field(default=None, alias="kubeContext")
    remote_auth_type: Literal["eks", "token"] = Field(default="eks", alias="remoteAuthType")
    aws_region: str | None = Field(default=None, alias="awsRegion")
    aws_profile: str | None = Field(default=None, alias="awsProfile")
    request_timeout: float = Field(default=30.0, alias="requestTimeout", gt=0)
    resync_period: float = Field(default=30.0, alias="resyncPeriod", gt=0)
    stall_threshold: float = Field(default=300.0, alias="stallThreshold", gt=0)
    create_confirm_attempts: int = Field(default=5, alias="createConfirmAttempts", ge=1)
    create_confirm_interval: float = Field(default=1.0, alias="createConfirmInterval", ge=0)
    sync_timeout: float = Field(default=60.0, alias="syncTimeout", gt=0)
    shutdown_grace_period: int = Field(default=30, alias="shutdownGracePeriod", ge=0)


class SparkGatewayConfig(_Section):
    """Parsed Spark-Gateway configuration shared by Gateway and Manager."""

    config_path: Path | None = None
    clusters: tuple[KubeCluster, ...] = ()
    cluster_router: ClusterRouterConfig = Field(
        default_factory=ClusterRouterConfig, alias="clusterRouter"
    )
    default_log_lines: int = Field(default=100, alias="defaultLogLines", gt=0)
    selector_key: str | None = Field(default=None, alias="selectorKey")
    selector_value: str | None = Field(default=None, alias="selectorValue")
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    manager: ManagerConfig = Field(default_factory=ManagerConfig)
    livy: LivyConfig = Field(default_factory=LivyConfig)

    @model_validator(mode="after")
    def _unique_clusters(self) -> SparkGatewayConfig:
        ids: set[str] = set()
        names: set[str] = set()
        for cluster in self.clusters:
            if cluster.cluster_id in ids:
                raise ValueError(f"duplicate cluster id: '{cluster.cluster_id}'")
            if cluster.name in names:
                raise ValueError(f"duplicate cluster name: '{cluster.name}'")
            ids.add(cluster.cluster_id)
            names.add(cluster.name)
        return self

    @model_validator(mode="after")
    def _livy_needs_ledger(self) -> SparkGatewayConfig:
        if self.livy.enable and not self.gateway.database.enable:
            raise ValueError("livy.enable requires gateway.database.enable")
        return self

    @property
    def selector(self) -> tuple[str, str] | None:
        """The ``(key, value)`` label selector, only when both halves are set."""
        if self.selector_key and self.selector_value:
            return self.selector_key, self.selector_value
        return None

    def get_cluster(self, name: str) -> KubeCluster | None:
        for cluster in self.clusters:
            if cluster.name == name:
                return cluster
        return None


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``spark-gateway.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> SparkGatewayConfig:
    """Load a Spark-Gateway config file.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. The ``SPARK_GATEWAY_CONFIG`` environment variable (same rule).
    3. Auto-discover by walking parent directories.
    4. Return an empty ``SparkGatewayConfig`` (all defaults).
    """
    config_path: Path | None = None

    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")
    elif auto_discover:
        config_path = find_config()

    if config_path is None:
        return SparkGatewayConfig()

    return _parse_config(config_path)


def _parse_config(config_path: Path) -> SparkGatewayConfig:
    """Read, resolve relative paths, and validate a YAML config file."""
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        )

    data = _resolve_paths(data, config_path.parent)
    data["config_path"] = config_path

    try:
        return SparkGatewayConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {config_path}:", _format_errors(e)) from e


def _format_errors(exc: ValidationError) -> list[str]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "<root>"
        errors.append(f"{loc}: {err['msg']}")
    return errors


def _resolve_paths(data: dict[str, Any], base: Path) -> dict[str, Any]:
    """Return a copy of *data* with relative file paths made absolute."""

    def _resolve(val: Any) -> Any:
        if not isinstance(val, str) or not val:
            return val
        return str((base / val).resolve())

    data = dict(data)

    gateway = data.get("gateway")
    if isinstance(gateway, dict):
        gateway = dict(gateway)
        database = gateway.get("database")
        if isinstance(database, dict) and "path" in database:
            gateway["database"] = {**database, "path": _resolve(database["path"])}
        middleware = gateway.get("middleware")
        if isinstance(middleware, list):
            resolved = []
            for entry in middleware:
                conf = entry.get("conf") if isinstance(entry, dict) else None
                if isinstance(conf, dict) and "serviceTokenMapFile" in conf:
                    entry = {
                        **entry,
                        "conf": {
                            **conf,
                            "serviceTokenMapFile": _resolve(conf["serviceTokenMapFile"]),
                        },
                    }
                resolved.append(entry)
            gateway["middleware"] = resolved
        data["gateway"] = gateway

    manager = data.get("manager")
    if isinstance(manager, dict) and manager.get("kubeconfig"):
        data["manager"] = {**manager, "kubeconfig": _resolve(manager["kubeconfig"])}

    clusters = data.get("clusters")
    if isinstance(clusters, list):
        data["clusters"] = [_resolve_ca_file(c, _resolve) for c in clusters]

    return data


def _resolve_ca_file(cluster: Any, resolve: Callable[[Any], Any]) -> Any:
    if not isinstance(cluster, dict):
        return cluster
    for key in CA_FILE_KEYS:
        value = cluster.get(key)
        if isinstance(value, str) and value.strip().lower() not in ("", *CA_FILE_SENTINELS):
            cluster = {**cluster, key: resolve(value)}
    return cluster
