"""SparkApplication CRUD and driver logs against one cluster.

Reads are served from the watch cache; writes go to the Kubernetes API.
Every Kubernetes failure is classified with ``from_api_exception`` here,
at first contact.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from spark_gateway.errors import Internal, NotFound, from_api_exception
from spark_gateway.manager.controller import SparkApplicationCache
from spark_gateway.models import (
    SPARK_GROUP,
    SPARK_PLURAL,
    SPARK_VERSION,
    ApplicationSummary,
    SparkApplication,
)

logger = logging.getLogger(__name__)


def sanitize(obj: dict[str, Any]) -> dict[str, Any]:
    """Drop fields that are noise to API clients."""
    meta = obj.get("metadata")
    if isinstance(meta, dict):
        meta.pop("managedFields", None)
    status = obj.get("status")
    if isinstance(status, dict):
        status.pop("executorState", None)
    return obj


class SparkApplicationRepository:
    """Cluster-local store for SparkApplications."""

    def __init__(
        self,
        custom_api: Any,
        core_api: Any,
        cache: SparkApplicationCache,
        *,
        request_timeout: float = 30.0,
        confirm_attempts: int = 5,
        confirm_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.custom_api = custom_api
        self.core_api = core_api
        self.cache = cache
        self.request_timeout = request_timeout
        self.confirm_attempts = confirm_attempts
        self.confirm_interval = confirm_interval
        self._sleep = sleep

    def get(self, namespace: str, name: str) -> SparkApplication:
        obj = self.cache.get(namespace, name)
        if obj is None:
            raise NotFound(f"SparkApplication {namespace}/{name} not found")
        return SparkApplication.model_validate(sanitize(obj))

    def list(self, namespace: str) -> list[ApplicationSummary]:
        return [
            ApplicationSummary.from_application(SparkApplication.model_validate(obj))
            for obj in self.cache.list(namespace)
        ]

    def create(self, app: SparkApplication) -> SparkApplication:
        """Create *app* and wait until the watch cache shows it with a UID."""
        namespace = app.metadata.namespace
        name = app.metadata.name
        try:
            self.custom_api.create_namespaced_custom_object(
                SPARK_GROUP,
                SPARK_VERSION,
                namespace,
                SPARK_PLURAL,
                app.to_k8s(),
                _request_timeout=self.request_timeout,
            )
        except Exception as exc:
            raise from_api_exception(
                exc, f"error creating SparkApplication {namespace}/{name}"
            ) from exc

        for attempt in range(1, self.confirm_attempts + 1):
            obj = self.cache.get(namespace, name)
            if obj is not None and (obj.get("metadata") or {}).get("uid"):
                logger.info("Created SparkApplication %s/%s", namespace, name)
                return SparkApplication.model_validate(sanitize(obj))
            if attempt < self.confirm_attempts:
                self._sleep(self.confirm_interval * attempt)

        raise Internal(
            f"SparkApplication {namespace}/{name} was created but did not appear in the "
            f"cache after {self.confirm_attempts} attempts"
        )

    def delete(self, namespace: str, name: str) -> None:
        try:
            self.custom_api.delete_namespaced_custom_object(
                SPARK_GROUP,
                SPARK_VERSION,
                namespace,
                SPARK_PLURAL,
                name,
                _request_timeout=self.request_timeout,
            )
        except Exception as exc:
            raise from_api_exception(
                exc, f"error deleting SparkApplication {namespace}/{name}"
            ) from exc
        logger.info("Deleted SparkApplication %s/%s", namespace, name)

    def get_logs(self, namespace: str, name: str, tail_lines: int) -> str:
        """Return the last *tail_lines* lines of the driver pod's log."""
        app = self.get(namespace, name)
        pod = app.driver_pod
        if not pod:
            raise NotFound(f"driver pod for SparkApplication {namespace}/{name} not found")
        try:
            return self.core_api.read_namespaced_pod_log(
                pod,
                namespace,
                tail_lines=tail_lines,
                _request_timeout=self.request_timeout,
            )
        except Exception as exc:
            raise from_api_exception(exc, f"error reading logs for pod {namespace}/{pod}") from exc
