"""Core data models for Spark-Gateway.

Defines the schemas for:
- Cluster registrations (which clusters and namespaces exist)
- SparkApplication documents (what clients submit)
- Gateway responses (application plus cluster/user metadata)
- Manager list summaries
- Submission ledger records
- Livy batch requests and responses
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

GATEWAY_USER_LABEL = "spark-gateway/user"
APPLICATION_NAME_ANNOTATION = "applicationName"

SPARK_GROUP = "sparkoperator.k8s.io"
SPARK_VERSION = "v1beta2"
SPARK_PLURAL = "sparkapplications"
SPARK_API_VERSION = f"{SPARK_GROUP}/{SPARK_VERSION}"

# Cluster and namespace ids are embedded in generated names
_ID_PATTERN = r"^[a-z0-9]{1,12}$"


# --- Cluster Registration ---


class KubeNamespace(BaseModel):
    """A namespace the gateway may submit into on a given cluster."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    namespace_id: str = Field(alias="id", pattern=_ID_PATTERN)
    routing_weight: float = Field(default=1.0, alias="routingWeight", ge=0)


class KubeCluster(BaseModel):
    """A managed Kubernetes cluster.

    ``id`` and each namespace ``id`` are stable identifiers embedded in
    generated application names. Renaming them without a migration breaks
    name parsing for applications that already exist.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    cluster_id: str = Field(alias="id", pattern=_ID_PATTERN)
    master_url: str = Field(alias="masterURL", min_length=1)
    routing_weight: float = Field(default=1.0, alias="routingWeight", ge=0)
    manager_url: str | None = Field(default=None, alias="managerURL")
    certificate_authority_file: str | None = Field(
        default=None,
        alias="certificateAuthorityFile",
        validation_alias=AliasChoices(
            "certificateAuthorityFile", "certificateAuthorityB64File", "certificate_authority_file"
        ),
    )
    namespaces: tuple[KubeNamespace, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_namespace_ids(self) -> KubeCluster:
        seen: set[str] = set()
        for ns in self.namespaces:
            if ns.namespace_id in seen:
                raise ValueError(
                    f"duplicate namespace id found in namespaces configuration: "
                    f"'{ns.namespace_id}'"
                )
            seen.add(ns.namespace_id)
        return self

    def get_namespace_by_name(self, name: str) -> KubeNamespace | None:
        for ns in self.namespaces:
            if ns.name == name:
                return ns
        return None

    def get_namespace_by_id(self, namespace_id: str) -> KubeNamespace | None:
        for ns in self.namespaces:
            if ns.namespace_id == namespace_id:
                return ns
        return None


# --- SparkApplication documents ---


class ObjectMeta(BaseModel):
    """Subset of Kubernetes ObjectMeta the gateway reads or writes.

    Unknown keys (managedFields, generation, ...) are preserved.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    uid: str | None = None
    resource_version: str | None = Field(default=None, alias="resourceVersion")
    creation_timestamp: str | None = Field(default=None, alias="creationTimestamp")

    @model_validator(mode="before")
    @classmethod
    def _null_maps(cls, data: Any) -> Any:
        # Kubernetes serializes empty label/annotation maps as null
        if isinstance(data, dict):
            for key in ("labels", "annotations"):
                if key in data and data[key] is None:
                    data = {**data, key: {}}
        return data


class SparkApplication(BaseModel):
    """A SparkApplication custom resource. ``spec`` and ``status`` are opaque."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: str = Field(default=SPARK_API_VERSION, alias="apiVersion")
    kind: str = "SparkApplication"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: dict[str, Any] = Field(default_factory=dict)
    status: dict[str, Any] = Field(default_factory=dict)

    def to_k8s(self) -> dict[str, Any]:
        """Serialize for the Kubernetes API or the Manager wire format."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def app_state(self) -> str:
        return (self.status.get("applicationState") or {}).get("state", "")

    @property
    def driver_pod(self) -> str:
        return (self.status.get("driverInfo") or {}).get("podName", "")


class SparkLogURLs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    spark_ui: str = Field(default="", alias="sparkUI")
    spark_history_ui: str = Field(default="", alias="sparkHistoryUI")
    logs_ui: str = Field(default="", alias="logsUI")


class GatewayApplication(SparkApplication):
    """A SparkApplication as returned by the Gateway."""

    gateway_id: str = Field(alias="gatewayId")
    cluster: str
    user: str
    spark_log_urls: SparkLogURLs = Field(default_factory=SparkLogURLs, alias="sparkLogURLs")


class ApplicationSummary(BaseModel):
    """Lightweight listing entry returned by a Manager."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    namespace: str
    uid: str | None = None
    creation_timestamp: str | None = Field(default=None, alias="creationTimestamp")
    state: str = ""
    user: str | None = None
    cluster: str | None = None

    @classmethod
    def from_application(cls, app: SparkApplication) -> ApplicationSummary:
        return cls(
            name=app.metadata.name,
            namespace=app.metadata.namespace,
            uid=app.metadata.uid,
            creation_timestamp=app.metadata.creation_timestamp,
            state=app.app_state,
            user=app.metadata.labels.get(GATEWAY_USER_LABEL),
        )


# --- Ledger ---


class LedgerRecord(BaseModel):
    """One row of the Gateway-owned submission ledger."""

    uid: str
    gateway_id: str
    name: str = ""
    namespace: str
    cluster: str
    username: str
    creation_time: datetime
    submitted: dict[str, Any] = Field(default_factory=dict)


# --- Livy batches ---

LIVY_NAMESPACE_HEADER = "X-Spark-Gateway-Livy-Namespace"
LIVY_DEFAULT_SPARK_VERSION = "3"

# SparkApplication applicationState.state -> Livy batch state
LIVY_STATES: dict[str, str] = {
    "": "not_started",
    "NEW": "not_started",
    "SUBMITTED": "starting",
    "RUNNING": "running",
    "COMPLETED": "success",
    "FAILED": "error",
    "SUBMISSION_FAILED": "dead",
    "PENDING_RERUN": "dead",
    "INVALIDATING": "shutting_down",
    "SUCCEEDING": "shutting_down",
    "FAILING": "shutting_down",
    "UNKNOWN": "dead",
}


def livy_state(app_state: str) -> str:
    return LIVY_STATES.get(app_state, "not_started")


def _conf_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class LivyCreateBatchRequest(BaseModel):
    """Body of ``POST /api/livy/batches``, as Livy clients send it."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    file: str = Field(min_length=1)
    proxy_user: str = Field(default="", alias="proxyUser")
    class_name: str = Field(default="", alias="className")
    args: list[str] = Field(default_factory=list)
    jars: list[str] = Field(default_factory=list)
    py_files: list[str] = Field(default_factory=list, alias="pyFiles")
    files: list[str] = Field(default_factory=list)
    archives: list[str] = Field(default_factory=list)
    driver_memory: str = Field(default="", alias="driverMemory")
    driver_cores: int = Field(default=0, alias="driverCores", ge=0)
    executor_memory: str = Field(default="", alias="executorMemory")
    executor_cores: int = Field(default=0, alias="executorCores", ge=0)
    num_executors: int = Field(default=0, alias="numExecutors", ge=0)
    queue: str = ""
    name: str = ""
    conf: dict[str, Any] = Field(default_factory=dict)

    def to_spark_application(self, namespace: str) -> SparkApplication:
        """Translate the batch into a cluster-mode SparkApplication.

        Unset sizes are left out so the operator's defaults apply.
        """
        spec: dict[str, Any] = {
            "type": "Python" if self.file.endswith(".py") else "Java",
            "mode": "cluster",
            "mainApplicationFile": self.file,
            "sparkVersion": LIVY_DEFAULT_SPARK_VERSION,
        }
        if self.class_name:
            spec["mainClass"] = self.class_name
        if self.args:
            spec["arguments"] = list(self.args)
        if self.conf:
            spec["sparkConf"] = {str(k): _conf_value(v) for k, v in self.conf.items()}
        if self.proxy_user:
            spec["proxyUser"] = self.proxy_user

        driver: dict[str, Any] = {}
        if self.driver_cores:
            driver["cores"] = self.driver_cores
            driver["coreLimit"] = str(self.driver_cores)
        if self.driver_memory:
            driver["memory"] = self.driver_memory
        executor: dict[str, Any] = {}
        if self.executor_cores:
            executor["cores"] = self.executor_cores
            executor["coreLimit"] = str(self.executor_cores)
        if self.executor_memory:
            executor["memory"] = self.executor_memory
        if self.num_executors:
            executor["instances"] = self.num_executors
        spec["driver"] = driver
        spec["executor"] = executor

        deps = {
            key: list(values)
            for key, values in (
                ("jars", self.jars),
                ("files", self.files),
                ("pyFiles", self.py_files),
                ("archives", self.archives),
            )
            if values
        }
        if deps:
            spec["deps"] = deps

        return SparkApplication(
            metadata=ObjectMeta(name=self.name, namespace=namespace),
            spec=spec,
        )


class LivyBatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    app_id: str | None = Field(default=None, alias="appId")
    app_info: dict[str, str | None] = Field(default_factory=dict, alias="appInfo")
    ttl: str | None = None
    log: list[str] = Field(default_factory=list)
    state: str

    @classmethod
    def from_application(cls, batch_id: int, app: GatewayApplication) -> LivyBatch:
        urls = app.spark_log_urls
        return cls(
            id=batch_id,
            app_id=app.status.get("sparkApplicationId") or None,
            app_info={
                "driverLogUrl": urls.logs_ui or None,
                "sparkUiUrl": urls.spark_ui or None,
            },
            state=livy_state(app.app_state),
        )
