"""HTTP client from the Gateway to each cluster's Manager.

Uses stdlib ``urllib.request`` with a per-request timeout. A non-2xx
Manager response is rebuilt into the same error kind with
``from_status``, so the Manager's classification reaches the caller
unchanged. Transport failures are ``Internal``.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Iterable
from typing import Any

from spark_gateway.config import GatewayConfig
from spark_gateway.errors import Internal, from_status
from spark_gateway.models import ApplicationSummary, KubeCluster, SparkApplication

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1beta2"


class HttpManagerClient:
    """Talks to the Manager of every registered cluster."""

    def __init__(self, gateway: GatewayConfig, clusters: Iterable[KubeCluster]) -> None:
        self._timeout = gateway.request_timeout
        self._endpoints: dict[str, str] = {}
        for cluster in clusters:
            endpoint = gateway.manager_url_for(cluster) + API_PREFIX
            self._endpoints[cluster.name] = endpoint
            logger.info("Cluster %s configured with endpoint: %s", cluster.name, endpoint)

    def endpoint(self, cluster: KubeCluster) -> str:
        try:
            return self._endpoints[cluster.name]
        except KeyError:
            raise Internal(
                f"no SparkManager endpoint configured for cluster {cluster.name}"
            ) from None

    # --- Operations ---

    def get(self, cluster: KubeCluster, namespace: str, name: str) -> SparkApplication:
        data = self._request("GET", self._url(cluster, namespace, name))
        return SparkApplication.model_validate(data)

    def list(self, cluster: KubeCluster, namespace: str) -> list[ApplicationSummary]:
        data = self._request("GET", self._url(cluster, namespace))
        return [ApplicationSummary.model_validate(item) for item in data or []]

    def status(self, cluster: KubeCluster, namespace: str, name: str) -> dict[str, Any]:
        return self._request("GET", self._url(cluster, namespace, name, "status")) or {}

    def logs(self, cluster: KubeCluster, namespace: str, name: str, tail_lines: int) -> str:
        url = self._url(cluster, namespace, name, "logs") + f"?lines={tail_lines}"
        return self._request("GET", url) or ""

    def create(self, cluster: KubeCluster, app: SparkApplication) -> SparkApplication:
        url = self._url(cluster, app.metadata.namespace, app.metadata.name)
        data = self._request("POST", url, app.to_k8s())
        return SparkApplication.model_validate(data)

    def delete(self, cluster: KubeCluster, namespace: str, name: str) -> None:
        self._request("DELETE", self._url(cluster, namespace, name))

    # --- Private ---

    def _url(self, cluster: KubeCluster, *segments: str) -> str:
        path = "/".join(urllib.parse.quote(s, safe="") for s in segments)
        return f"{self.endpoint(cluster)}/{path}"

    def _request(self, method: str, url: str, body: Any = None) -> Any:
        data = None
        headers = {"Accept": "application/json"}
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise from_status(e.code, _error_message(e)) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise Internal(f"error calling SparkManager {method} {url}: {e}") from e

        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise Internal(f"invalid JSON from SparkManager {method} {url}: {e}") from e


def _error_message(err: urllib.error.HTTPError) -> str:
    """Pull ``{"error": ...}`` out of a Manager error response."""
    try:
        raw = err.read()
    except OSError:
        raw = b""
    try:
        payload = json.loads(raw) if raw else None
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    text = raw.decode("utf-8", errors="replace").strip() if raw else ""
    return text or f"SparkManager returned HTTP {err.code}"
