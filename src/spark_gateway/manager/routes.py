"""Manager HTTP routes: ``/api/v1beta2/{namespace}[/{name}[/status|/logs]]``."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Query

from spark_gateway.manager.service import SparkApplicationService
from spark_gateway.models import SparkApplication


def build_router(service: SparkApplicationService, default_log_lines: int) -> APIRouter:
    router = APIRouter(prefix="/api/v1beta2", tags=["sparkapplications"])

    @router.get("/{namespace}")
    def list_applications(namespace: str) -> list[dict[str, Any]]:
        return [
            s.model_dump(by_alias=True, exclude_none=True) for s in service.list(namespace)
        ]

    @router.post("/{namespace}/{name}", status_code=201)
    def create_application(namespace: str, name: str, app: SparkApplication) -> dict[str, Any]:
        return service.create(namespace, name, app).to_k8s()

    @router.get("/{namespace}/{name}")
    def get_application(namespace: str, name: str) -> dict[str, Any]:
        return service.get(namespace, name).to_k8s()

    @router.delete("/{namespace}/{name}")
    def delete_application(namespace: str, name: str) -> dict[str, str]:
        service.delete(namespace, name)
        return {"status": "success"}

    @router.get("/{namespace}/{name}/status")
    def get_status(namespace: str, name: str) -> dict[str, Any]:
        return service.status(namespace, name)

    @router.get("/{namespace}/{name}/logs")
    def get_logs(
        namespace: str,
        name: str,
        lines: Annotated[int | None, Query(ge=1)] = None,
    ) -> str:
        return service.logs(namespace, name, lines or default_log_lines)

    return router
