"""FastAPI application factory for a cluster Manager."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool

from spark_gateway import __version__
from spark_gateway.config import SparkGatewayConfig
from spark_gateway.manager.controller import SparkApplicationController
from spark_gateway.manager.repository import SparkApplicationRepository
from spark_gateway.manager.routes import build_router
from spark_gateway.manager.service import ApplicationRepository, SparkApplicationService
from spark_gateway.models import KubeCluster
from spark_gateway.web import health_router, install_error_handling

logger = logging.getLogger(__name__)


class ManagerStartupError(Exception):
    """Raised when the Manager cannot sync its cache at start-up."""


def build_kube_backend(
    config: SparkGatewayConfig, cluster: KubeCluster
) -> tuple[SparkApplicationRepository, SparkApplicationController]:
    """Wire the Kubernetes client, watch controller and repository for *cluster*."""
    from kubernetes import client

    from spark_gateway.manager.kube import build_api_client

    mgr = config.manager
    api_client = build_api_client(mgr, cluster)
    custom_api = client.CustomObjectsApi(api_client)
    core_api = client.CoreV1Api(api_client)

    selector = config.selector
    controller = SparkApplicationController(
        custom_api,
        label_selector=f"{selector[0]}={selector[1]}" if selector else None,
        resync_period=mgr.resync_period,
        stall_threshold=mgr.stall_threshold,
        request_timeout=mgr.request_timeout,
    )
    repository = SparkApplicationRepository(
        custom_api,
        core_api,
        controller.cache,
        request_timeout=mgr.request_timeout,
        confirm_attempts=mgr.create_confirm_attempts,
        confirm_interval=mgr.create_confirm_interval,
    )
    return repository, controller


def create_manager_app(
    config: SparkGatewayConfig,
    cluster: KubeCluster,
    repository: ApplicationRepository | None = None,
    controller: SparkApplicationController | None = None,
) -> FastAPI:
    """Build the Manager for *cluster*.

    Without an explicit *repository* the Kubernetes backend is built from
    config. The controller is started on app start-up and must complete
    its first sync within ``manager.syncTimeout``; it is stopped on
    shutdown.
    """
    if repository is None:
        repository, controller = build_kube_backend(config, cluster)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if controller is not None:
            controller.start()
            synced = await run_in_threadpool(controller.wait_for_sync, config.manager.sync_timeout)
            if not synced:
                controller.stop()
                raise ManagerStartupError(
                    f"SparkApplication cache for cluster {cluster.name} did not sync "
                    f"within {config.manager.sync_timeout}s"
                )
            logger.info("SparkApplication cache synced for cluster %s", cluster.name)
        try:
            yield
        finally:
            if controller is not None:
                controller.stop()

    app = FastAPI(
        title=f"Spark-Gateway Manager ({cluster.name})",
        version=__version__,
        lifespan=lifespan,
    )
    install_error_handling(app)

    def _ready() -> str | None:
        if controller is not None and not controller.is_healthy():
            return f"SparkApplication cache for cluster {cluster.name} is not in sync"
        return None

    service = SparkApplicationService(repository, cluster)
    app.include_router(health_router(_ready))
    app.include_router(build_router(service, config.default_log_lines))
    app.state.cluster = cluster
    return app
