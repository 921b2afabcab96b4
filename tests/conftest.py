"""Shared fixtures: a two-cluster config and an in-memory Manager client."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

import pytest

from spark_gateway.config import CONFIG_ENV_VAR, SparkGatewayConfig
from spark_gateway.errors import AlreadyExists, NotFound
from spark_gateway.models import ApplicationSummary, KubeCluster, SparkApplication

CLUSTERS: list[dict[str, Any]] = [
    {
        "name": "alpha",
        "id": "c1",
        "masterURL": "https://alpha.example.com",
        "routingWeight": 1.0,
        "namespaces": [
            {"name": "spark", "id": "ns1", "routingWeight": 3.0},
            {"name": "batch", "id": "ns2"},
        ],
    },
    {
        "name": "beta",
        "id": "c2",
        "masterURL": "https://beta.example.com",
        "routingWeight": 2.0,
        "namespaces": [{"name": "spark", "id": "ns1", "routingWeight": 0.5}],
    },
]


@pytest.fixture(autouse=True)
def _no_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)


@pytest.fixture
def make_config() -> Callable[..., SparkGatewayConfig]:
    def _make(**overrides: Any) -> SparkGatewayConfig:
        data: dict[str, Any] = {"clusters": CLUSTERS}
        data.update(overrides)
        return SparkGatewayConfig.model_validate(data)

    return _make


class FakeManagerClient:
    """Behaves like every cluster's Manager, backed by a dict."""

    def __init__(self) -> None:
        self.apps: dict[tuple[str, str, str], SparkApplication] = {}
        self.created: list[tuple[str, SparkApplication]] = []
        self.deleted: list[tuple[str, str, str]] = []

    def add(self, cluster: str, app: SparkApplication) -> None:
        self.apps[(cluster, app.metadata.namespace, app.metadata.name)] = app

    def get(self, cluster: KubeCluster, namespace: str, name: str) -> SparkApplication:
        try:
            return self.apps[(cluster.name, namespace, name)]
        except KeyError:
            raise NotFound(f"SparkApplication {namespace}/{name} not found") from None

    def list(self, cluster: KubeCluster, namespace: str) -> list[ApplicationSummary]:
        return [
            ApplicationSummary.from_application(app)
            for (c, ns, _), app in sorted(self.apps.items())
            if c == cluster.name and ns == namespace
        ]

    def status(self, cluster: KubeCluster, namespace: str, name: str) -> dict[str, Any]:
        return self.get(cluster, namespace, name).status

    def logs(self, cluster: KubeCluster, namespace: str, name: str, tail_lines: int) -> str:
        self.get(cluster, namespace, name)
        return "".join(f"line {i}\n" for i in range(tail_lines))

    def create(self, cluster: KubeCluster, app: SparkApplication) -> SparkApplication:
        key = (cluster.name, app.metadata.namespace, app.metadata.name)
        if key in self.apps:
            raise AlreadyExists(f"SparkApplication {key[1]}/{key[2]} already exists")
        stored = app.model_copy(
            update={
                "metadata": app.metadata.model_copy(
                    update={
                        "uid": str(uuid.uuid4()),
                        "creation_timestamp": "2025-06-01T12:00:00Z",
                    }
                ),
                "status": {"applicationState": {"state": "SUBMITTED"}},
            }
        )
        self.apps[key] = stored
        self.created.append((cluster.name, stored))
        return stored

    def delete(self, cluster: KubeCluster, namespace: str, name: str) -> None:
        key = (cluster.name, namespace, name)
        if key not in self.apps:
            raise NotFound(f"SparkApplication {namespace}/{name} not found")
        del self.apps[key]
        self.deleted.append(key)


@pytest.fixture
def fake_manager() -> FakeManagerClient:
    return FakeManagerClient()
