"""Gateway HTTP routes under ``/v1/applications`` and ``/api/livy``.

Every route runs the middleware chain first; an aborting filter ends the
request before the handler is reached.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Path, Query, Request

from spark_gateway.gateway.livy import LivyService
from spark_gateway.gateway.service import ApplicationService
from spark_gateway.middleware import MiddlewareChain
from spark_gateway.models import LIVY_NAMESPACE_HEADER, LivyCreateBatchRequest

BatchId = Annotated[int, Path(ge=0)]


def build_router(service: ApplicationService, chain: MiddlewareChain) -> APIRouter:
    router = APIRouter(
        prefix="/v1/applications",
        tags=["applications"],
        dependencies=[Depends(chain)],
    )

    @router.post("", status_code=201)
    def create_application(
        request: Request,
        body: Annotated[Any, Body()],
        cluster: Annotated[str | None, Query()] = None,
    ) -> dict[str, Any]:
        app = service.create(body, request.state.identity, cluster_name=cluster)
        return app.model_dump(by_alias=True, exclude_none=True)

    @router.get("")
    def list_applications(
        cluster: Annotated[str | None, Query()] = None,
        namespace: Annotated[str | None, Query()] = None,
    ) -> list[dict[str, Any]]:
        return [
            s.model_dump(by_alias=True, exclude_none=True)
            for s in service.list(cluster, namespace)
        ]

    @router.get("/{gateway_id}")
    def get_application(gateway_id: str) -> dict[str, Any]:
        return service.get(gateway_id).model_dump(by_alias=True, exclude_none=True)

    @router.get("/{gateway_id}/status")
    def get_status(gateway_id: str) -> dict[str, Any]:
        return service.status(gateway_id)

    @router.get("/{gateway_id}/logs")
    def get_logs(
        gateway_id: str,
        lines: Annotated[int | None, Query(ge=1)] = None,
    ) -> str:
        return service.logs(gateway_id, lines)

    @router.delete("/{gateway_id}")
    def delete_application(gateway_id: str) -> dict[str, str]:
        service.delete(gateway_id)
        return {"status": "success"}

    return router


def build_livy_router(livy: LivyService, chain: MiddlewareChain) -> APIRouter:
    """Livy's batch endpoints. Error bodies here use ``msg`` like Livy's own."""
    router = APIRouter(
        prefix="/api/livy",
        tags=["livy"],
        dependencies=[Depends(chain)],
    )

    @router.post("/batches", status_code=201)
    def create_batch(
        request: Request,
        body: LivyCreateBatchRequest,
        do_as: Annotated[str | None, Query(alias="doAs")] = None,
    ) -> dict[str, Any]:
        batch = livy.create(
            body,
            request.state.identity,
            do_as=do_as,
            namespace=request.headers.get(LIVY_NAMESPACE_HEADER),
        )
        return batch.model_dump(by_alias=True)

    @router.get("/batches")
    def list_batches(
        start: Annotated[int, Query(alias="from", ge=0)] = 0,
        size: Annotated[int, Query(ge=0)] = 0,
    ) -> dict[str, Any]:
        batches = livy.list(start, size)
        return {
            "from": start,
            "total": len(batches),
            "sessions": [b.model_dump(by_alias=True) for b in batches],
        }

    @router.get("/batches/{batch_id}")
    def get_batch(batch_id: BatchId) -> dict[str, Any]:
        return livy.get(batch_id).model_dump(by_alias=True)

    @router.get("/batches/{batch_id}/state")
    def get_batch_state(batch_id: BatchId) -> dict[str, Any]:
        return {"id": batch_id, "state": livy.state(batch_id)}

    @router.get("/batches/{batch_id}/log")
    def get_batch_log(
        batch_id: BatchId,
        size: Annotated[int, Query(ge=0)] = 0,
    ) -> dict[str, Any]:
        lines = livy.logs(batch_id, size)
        return {"id": batch_id, "from": -1, "size": size, "log": lines}

    @router.delete("/batches/{batch_id}")
    def delete_batch(batch_id: BatchId) -> dict[str, str]:
        livy.delete(batch_id)
        return {"msg": "deleted"}

    return router
