"""Manager-side application operations for one cluster."""

from __future__ import annotations

from typing import Any, Protocol

from spark_gateway.errors import BadRequest
from spark_gateway.models import ApplicationSummary, KubeCluster, SparkApplication


class ApplicationRepository(Protocol):
    def get(self, namespace: str, name: str) -> SparkApplication: ...
    def list(self, namespace: str) -> list[ApplicationSummary]: ...
    def create(self, app: SparkApplication) -> SparkApplication: ...
    def delete(self, namespace: str, name: str) -> None: ...
    def get_logs(self, namespace: str, name: str, tail_lines: int) -> str: ...


class SparkApplicationService:
    """Thin layer over the repository that enforces path/body agreement."""

    def __init__(self, repository: ApplicationRepository, cluster: KubeCluster) -> None:
        self.repository = repository
        self.cluster = cluster

    def get(self, namespace: str, name: str) -> SparkApplication:
        return self.repository.get(namespace, name)

    def list(self, namespace: str) -> list[ApplicationSummary]:
        return self.repository.list(namespace)

    def status(self, namespace: str, name: str) -> dict[str, Any]:
        return self.repository.get(namespace, name).status

    def logs(self, namespace: str, name: str, tail_lines: int) -> str:
        return self.repository.get_logs(namespace, name, tail_lines)

    def create(self, namespace: str, name: str, app: SparkApplication) -> SparkApplication:
        meta = app.metadata
        if meta.namespace and meta.namespace != namespace:
            raise BadRequest(
                f"metadata.namespace '{meta.namespace}' does not match path namespace '{namespace}'"
            )
        if meta.name and meta.name != name:
            raise BadRequest(f"metadata.name '{meta.name}' does not match path name '{name}'")
        app = app.model_copy(
            update={"metadata": meta.model_copy(update={"namespace": namespace, "name": name})}
        )
        return self.repository.create(app)

    def delete(self, namespace: str, name: str) -> None:
        self.repository.delete(namespace, name)
