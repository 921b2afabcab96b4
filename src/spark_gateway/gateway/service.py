"""Submission orchestrator: the Gateway's application service.

CREATE is a fixed sequence: validate, route, name and label, forward to
the chosen cluster's Manager, record in the ledger, respond. Every other
operation parses the gateway id to find the owning cluster and forwards.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from spark_gateway.config import SparkGatewayConfig, StatusUrlTemplates
from spark_gateway.errors import BadRequest, Internal, NotFound, Unauthorized
from spark_gateway.gateway.clusters import ClusterRepository
from spark_gateway.gateway.ledger import SubmissionLedger
from spark_gateway.gateway.routing import ClusterRouter, get_cluster_router
from spark_gateway.models import (
    APPLICATION_NAME_ANNOTATION,
    GATEWAY_USER_LABEL,
    ApplicationSummary,
    GatewayApplication,
    KubeCluster,
    SparkApplication,
    SparkLogURLs,
)
from spark_gateway.naming import GatewayIdError, new_gateway_id, parse_gateway_id

logger = logging.getLogger(__name__)


class ManagerClient(Protocol):
    def get(self, cluster: KubeCluster, namespace: str, name: str) -> SparkApplication: ...
    def list(self, cluster: KubeCluster, namespace: str) -> list[ApplicationSummary]: ...
    def status(self, cluster: KubeCluster, namespace: str, name: str) -> dict[str, Any]: ...
    def logs(self, cluster: KubeCluster, namespace: str, name: str, tail_lines: int) -> str: ...
    def create(self, cluster: KubeCluster, app: SparkApplication) -> SparkApplication: ...
    def delete(self, cluster: KubeCluster, namespace: str, name: str) -> None: ...


def validate_submission(body: Any) -> SparkApplication:
    """Check the submitted document and parse it.

    Raises:
        BadRequest: Listing every problem found.
    """
    if not isinstance(body, dict):
        raise BadRequest("submitted SparkApplication is invalid: body must be a JSON object")
    errors: list[str] = []
    metadata = body.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        errors.append("metadata must be an object")
    elif not (metadata or {}).get("namespace"):
        errors.append("namespace should not be empty")
    if "spec" in body and not isinstance(body["spec"], dict):
        errors.append("spec must be an object")
    if errors:
        raise BadRequest(f"submitted SparkApplication is invalid: {errors}")
    try:
        return SparkApplication.model_validate(body)
    except ValueError as e:
        raise BadRequest(f"submitted SparkApplication is invalid: {e}") from e


def render_log_urls(
    templates: StatusUrlTemplates, app: SparkApplication, cluster: str
) -> SparkLogURLs:
    """Render the configured UI links; a template that fails renders as ``""``."""
    values = {
        "name": app.metadata.name,
        "namespace": app.metadata.namespace,
        "cluster": cluster,
        "sparkApplicationId": app.status.get("sparkApplicationId", ""),
        "driverPod": app.driver_pod,
    }

    def _render(field: str, template: str) -> str:
        if not template:
            return ""
        try:
            return template.format(**values)
        except (KeyError, IndexError, ValueError) as e:
            logger.error("unable to render %s template %r: %s", field, template, e)
            return ""

    return SparkLogURLs(
        spark_ui=_render("sparkUI", templates.spark_ui),
        spark_history_ui=_render("sparkHistoryUI", templates.spark_history_ui),
        logs_ui=_render("logsUI", templates.logs_ui),
    )


class ApplicationService:
    """Gateway operations over every registered cluster."""

    def __init__(
        self,
        config: SparkGatewayConfig,
        manager: ManagerClient,
        clusters: ClusterRepository | None = None,
        router: ClusterRouter | None = None,
        ledger: SubmissionLedger | None = None,
    ) -> None:
        self.config = config
        self.manager = manager
        self.clusters = clusters or ClusterRepository(config.clusters)
        self.router = router or get_cluster_router(self.clusters, config.cluster_router)
        self.ledger = ledger

    # --- Helpers ---

    def resolve(self, gateway_id: str) -> tuple[KubeCluster, str]:
        """Map a gateway id to its cluster and namespace name."""
        try:
            parsed = parse_gateway_id(gateway_id)
        except GatewayIdError as e:
            raise BadRequest(str(e)) from e
        cluster, namespace = self.clusters.resolve(parsed.cluster_id, parsed.namespace_id)
        return cluster, namespace.name

    def select_cluster(self, namespace: str, pinned: str | None = None) -> KubeCluster:
        if not pinned:
            return self.router.get_cluster(namespace)
        try:
            cluster = self.clusters.get_by_name(pinned)
        except NotFound as e:
            raise BadRequest(str(e)) from e
        if cluster.get_namespace_by_name(namespace) is None:
            raise BadRequest(f"cluster '{pinned}' does not configure namespace {namespace}")
        return cluster

    def apply_overrides(
        self, app: SparkApplication, user: str, gateway_id: str
    ) -> SparkApplication:
        """Stamp the generated name, ownership labels and proxy user onto *app*."""
        meta = app.metadata
        annotations = dict(meta.annotations)
        if meta.name:
            annotations[APPLICATION_NAME_ANNOTATION] = meta.name

        labels = {**meta.labels, GATEWAY_USER_LABEL: user}
        if self.config.selector:
            key, value = self.config.selector
            labels[key] = value

        spec = {**app.spec, "proxyUser": user}
        return app.model_copy(
            update={
                "metadata": meta.model_copy(
                    update={"name": gateway_id, "labels": labels, "annotations": annotations}
                ),
                "spec": spec,
            }
        )

    def _wrap(self, app: SparkApplication, cluster: KubeCluster, user: str) -> GatewayApplication:
        data = app.model_dump(by_alias=True)
        data.update(
            {
                "gatewayId": app.metadata.name,
                "cluster": cluster.name,
                "user": user,
                "sparkLogURLs": render_log_urls(
                    self.config.gateway.status_url_templates, app, cluster.name
                ),
            }
        )
        return GatewayApplication.model_validate(data)

    # --- Operations ---

    def create(
        self, body: Any, user: str | None, cluster_name: str | None = None
    ) -> GatewayApplication:
        if not user:
            raise Unauthorized("user is unauthorized")

        app = validate_submission(body)
        namespace = app.metadata.namespace
        cluster = self.select_cluster(namespace, cluster_name)
        ns = cluster.get_namespace_by_name(namespace)
        if ns is None:
            raise Internal(f"cluster '{cluster.name}' was routed but has no namespace {namespace}")

        gateway_id = new_gateway_id(cluster.cluster_id, ns.namespace_id)
        app = self.apply_overrides(app, user, gateway_id)

        created = self.manager.create(cluster, app)
        logger.info(
            "Created SparkApplication %s (%s) on cluster %s for user %s",
            gateway_id,
            app.metadata.annotations.get(APPLICATION_NAME_ANNOTATION, ""),
            cluster.name,
            user,
        )

        if self.ledger is not None:
            try:
                self.ledger.record_submission(app, cluster.name, user)
            except Exception as e:
                logger.error(
                    "ledger-write-failed gatewayId=%s cluster=%s user=%s: %s",
                    gateway_id,
                    cluster.name,
                    user,
                    e,
                )
                raise Internal(
                    f"SparkApplication {gateway_id} was created but could not be recorded: {e}"
                ) from e

        return self._wrap(created, cluster, user)

    def get(self, gateway_id: str) -> GatewayApplication:
        cluster, namespace = self.resolve(gateway_id)
        app = self.manager.get(cluster, namespace, gateway_id)
        user = app.metadata.labels.get(GATEWAY_USER_LABEL)
        if not user:
            raise Internal(
                "no gateway user associated with this application, "
                "possibly not created through spark-gateway?"
            )
        return self._wrap(app, cluster, user)

    def list(
        self, cluster_name: str | None, namespace: str | None = None
    ) -> list[ApplicationSummary]:
        if not cluster_name:
            raise BadRequest("query parameter 'cluster' is required")
        cluster = self.clusters.get_by_name(cluster_name)
        if namespace:
            if cluster.get_namespace_by_name(namespace) is None:
                raise NotFound(f"namespace {namespace} not found in cluster '{cluster.name}'")
            namespaces = [namespace]
        else:
            namespaces = [ns.name for ns in cluster.namespaces]

        summaries: list[ApplicationSummary] = []
        for ns_name in namespaces:
            for summary in self.manager.list(cluster, ns_name):
                summaries.append(summary.model_copy(update={"cluster": cluster.name}))
        return summaries

    def status(self, gateway_id: str) -> dict[str, Any]:
        cluster, namespace = self.resolve(gateway_id)
        return self.manager.status(cluster, namespace, gateway_id)

    def logs(self, gateway_id: str, tail_lines: int | None = None) -> str:
        cluster, namespace = self.resolve(gateway_id)
        lines = tail_lines or self.config.default_log_lines
        return self.manager.logs(cluster, namespace, gateway_id, lines)

    def delete(self, gateway_id: str) -> None:
        cluster, namespace = self.resolve(gateway_id)
        try:
            self.manager.delete(cluster, namespace, gateway_id)
        except NotFound:
            if not self.config.gateway.idempotent_delete:
                raise
            logger.info("Delete of %s: already gone", gateway_id)
        else:
            logger.info("Deleted SparkApplication %s on cluster %s", gateway_id, cluster.name)
