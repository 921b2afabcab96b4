"""FastAPI application factory for the Gateway."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from spark_gateway import __version__
from spark_gateway.config import SparkGatewayConfig
from spark_gateway.gateway.clusters import ClusterRepository
from spark_gateway.gateway.ledger import SubmissionLedger
from spark_gateway.gateway.livy import LivyService
from spark_gateway.gateway.manager_client import HttpManagerClient
from spark_gateway.gateway.routes import build_livy_router, build_router
from spark_gateway.gateway.service import ApplicationService, ManagerClient
from spark_gateway.middleware import MiddlewareChain, build_chain
from spark_gateway.web import health_router, install_error_handling

logger = logging.getLogger(__name__)

LIVY_PREFIX = "/api/livy"


def create_gateway_app(
    config: SparkGatewayConfig,
    manager_client: ManagerClient | None = None,
    ledger: SubmissionLedger | None = None,
    chain: MiddlewareChain | None = None,
) -> FastAPI:
    """Build and return the Gateway application.

    The middleware chain is built from ``gateway.middleware`` before
    anything else, so an invalid chain stops start-up with
    ``MiddlewareConfigError``. The ledger is opened from
    ``gateway.database`` unless one is passed in or it is disabled. With
    ``livy.enable`` the Livy batch API is mounted under ``/api/livy``.
    """
    if chain is None:
        chain = build_chain(config.gateway.middleware)

    clusters = ClusterRepository(config.clusters)
    if manager_client is None:
        manager_client = HttpManagerClient(config.gateway, clusters.get_all())

    owns_ledger = False
    if ledger is None and config.gateway.database.enable:
        ledger = SubmissionLedger.open(config.gateway.database.path)
        owns_ledger = True
        logger.info("Submission ledger at %s", config.gateway.database.path)
    elif ledger is None:
        logger.warning("Submission ledger disabled; submissions will not be recorded")

    service = ApplicationService(config, manager_client, clusters=clusters, ledger=ledger)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if owns_ledger and ledger is not None:
                ledger.close()

    app = FastAPI(title="Spark-Gateway", version=__version__, lifespan=lifespan)
    install_error_handling(app, body_keys={LIVY_PREFIX: "msg"})
    app.include_router(health_router())
    app.include_router(build_router(service, chain))
    app.state.service = service

    if config.livy.enable:
        assert ledger is not None, "livy.enable requires the submission ledger"
        livy = LivyService(service, ledger, namespace=config.livy.namespace)
        app.include_router(build_livy_router(livy, chain))
        app.state.livy = livy
        logger.info("Livy batch API enabled under %s", LIVY_PREFIX)
    return app
