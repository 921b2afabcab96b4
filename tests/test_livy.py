"""Tests for the Livy batch API: request translation, service and routes."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

import pytest

fastapi = pytest.importorskip("fastapi", reason="fastapi not installed")

from fastapi.testclient import TestClient  # noqa: E402

from spark_gateway.errors import BadRequest, Internal, NotFound, Unauthorized  # noqa: E402
from spark_gateway.gateway.app import create_gateway_app  # noqa: E402
from spark_gateway.gateway.ledger import SubmissionLedger  # noqa: E402
from spark_gateway.gateway.livy import LivyService  # noqa: E402
from spark_gateway.gateway.service import ApplicationService  # noqa: E402
from spark_gateway.models import (  # noqa: E402
    LIVY_NAMESPACE_HEADER,
    GatewayApplication,
    LivyBatch,
    LivyCreateBatchRequest,
    livy_state,
)

ALLOWED_USERS = [
    {"type": "RegexBasicAuthAllowMiddleware", "conf": {"allow": ["^alice$", "^bob$"]}}
]


def _basic(user: str) -> dict[str, str]:
    token = base64.b64encode(f"{user}:pw".encode()).decode()
    return {"Authorization": f"Basic {token}"}


def _batch_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"file": "s3a://jobs/etl.py", "name": "nightly-etl"}
    body.update(overrides)
    return body


@pytest.fixture
def ledger(tmp_path: Path) -> SubmissionLedger:
    led = SubmissionLedger.open(str(tmp_path / "ledger.db"))
    yield led
    led.close()


@pytest.fixture
def livy(make_config, fake_manager, ledger: SubmissionLedger) -> LivyService:
    config = make_config(livy={"enable": True, "namespace": "batch"})
    applications = ApplicationService(config, fake_manager, ledger=ledger)
    return LivyService(applications, ledger, namespace="batch")


@pytest.fixture
def client(make_config, fake_manager, tmp_path: Path) -> TestClient:
    config = make_config(
        gateway={
            "middleware": ALLOWED_USERS,
            "database": {"path": str(tmp_path / "ledger.db")},
            "statusUrlTemplates": {"sparkUI": "https://{cluster}.spark/{name}"},
        },
        livy={"enable": True, "namespace": "batch"},
    )
    app = create_gateway_app(config, manager_client=fake_manager)
    with TestClient(app) as c:
        yield c


# --- Request translation ---


class TestCreateBatchRequest:
    def test_python_file(self) -> None:
        req = LivyCreateBatchRequest.model_validate(
            {
                "file": "local:///opt/job.py",
                "args": ["--day", "2025-06-01"],
                "pyFiles": ["local:///opt/lib.zip"],
                "driverCores": 2,
                "driverMemory": "2g",
                "numExecutors": 4,
                "conf": {"spark.dynamicAllocation.enabled": False, "spark.executor.cores": 3},
            }
        )
        app = req.to_spark_application("batch")

        assert app.metadata.namespace == "batch"
        assert app.spec["type"] == "Python"
        assert app.spec["mode"] == "cluster"
        assert app.spec["mainApplicationFile"] == "local:///opt/job.py"
        assert app.spec["arguments"] == ["--day", "2025-06-01"]
        assert app.spec["deps"] == {"pyFiles": ["local:///opt/lib.zip"]}
        assert app.spec["driver"] == {"cores": 2, "coreLimit": "2", "memory": "2g"}
        assert app.spec["executor"] == {"instances": 4}
        assert app.spec["sparkConf"] == {
            "spark.dynamicAllocation.enabled": "false",
            "spark.executor.cores": "3",
        }

    def test_jar_with_main_class(self) -> None:
        req = LivyCreateBatchRequest(file="s3a://jars/app.jar", className="org.example.Main")
        app = req.to_spark_application("spark")
        assert app.spec["type"] == "Java"
        assert app.spec["mainClass"] == "org.example.Main"
        assert "deps" not in app.spec
        assert "sparkConf" not in app.spec

    def test_file_required(self) -> None:
        with pytest.raises(ValueError):
            LivyCreateBatchRequest.model_validate({"name": "no-file"})

    def test_negative_sizes_rejected(self) -> None:
        with pytest.raises(ValueError):
            LivyCreateBatchRequest.model_validate({"file": "a.py", "numExecutors": -1})


class TestLivyState:
    @pytest.mark.parametrize(
        ("app_state", "expected"),
        [
            ("", "not_started"),
            ("SUBMITTED", "starting"),
            ("RUNNING", "running"),
            ("COMPLETED", "success"),
            ("FAILED", "error"),
            ("SUBMISSION_FAILED", "dead"),
            ("SUCCEEDING", "shutting_down"),
            ("SOMETHING_NEW", "not_started"),
        ],
    )
    def test_mapping(self, app_state: str, expected: str) -> None:
        assert livy_state(app_state) == expected

    def test_batch_from_application(self) -> None:
        app = GatewayApplication.model_validate(
            {
                "metadata": {"name": "c1-ns2-x", "namespace": "batch"},
                "status": {
                    "applicationState": {"state": "RUNNING"},
                    "sparkApplicationId": "spark-123",
                },
                "gatewayId": "c1-ns2-x",
                "cluster": "alpha",
                "user": "alice",
                "sparkLogURLs": {"sparkUI": "https://ui/x"},
            }
        )
        batch = LivyBatch.from_application(3, app)
        assert batch.model_dump(by_alias=True) == {
            "id": 3,
            "appId": "spark-123",
            "appInfo": {"driverLogUrl": None, "sparkUiUrl": "https://ui/x"},
            "ttl": None,
            "log": [],
            "state": "running",
        }


# --- Service ---


class TestLivyService:
    def test_create_assigns_batch_id(
        self, livy: LivyService, fake_manager, ledger: SubmissionLedger
    ) -> None:
        first = livy.create(LivyCreateBatchRequest(file="a.py"), "alice")
        second = livy.create(LivyCreateBatchRequest(file="b.py"), "alice")
        assert (first.id, second.id) == (1, 2)
        assert first.state == "starting"

        cluster, created = fake_manager.created[0]
        assert cluster == "alpha"
        assert created.metadata.namespace == "batch"
        assert ledger.livy_gateway_id(1) == created.metadata.name

    def test_requires_identity(self, livy: LivyService, fake_manager) -> None:
        with pytest.raises(Unauthorized):
            livy.create(LivyCreateBatchRequest(file="a.py"), None)
        assert fake_manager.created == []

    @pytest.mark.parametrize(
        ("do_as", "proxy_user", "expected"),
        [
            ("carol", "dave", "carol"),
            (None, "dave", "dave"),
            (None, "", "alice"),
        ],
    )
    def test_proxy_user_precedence(
        self, livy: LivyService, fake_manager, do_as: str | None, proxy_user: str, expected: str
    ) -> None:
        req = LivyCreateBatchRequest(file="a.py", proxyUser=proxy_user)
        livy.create(req, "alice", do_as=do_as)
        created = fake_manager.created[0][1]
        assert created.spec["proxyUser"] == expected
        assert created.metadata.labels["spark-gateway/user"] == expected

    def test_namespace_argument_wins(self, livy: LivyService, fake_manager) -> None:
        livy.create(LivyCreateBatchRequest(file="a.py"), "alice", namespace="spark")
        assert fake_manager.created[0][1].metadata.namespace == "spark"

    def test_no_namespace_is_bad_request(
        self, livy: LivyService, fake_manager
    ) -> None:
        livy.namespace = None
        with pytest.raises(BadRequest, match=LIVY_NAMESPACE_HEADER):
            livy.create(LivyCreateBatchRequest(file="a.py"), "alice")
        assert fake_manager.created == []

    def test_unknown_namespace_keeps_kind(self, livy: LivyService) -> None:
        with pytest.raises(BadRequest, match="^error creating Livy batch: "):
            livy.create(LivyCreateBatchRequest(file="a.py"), "alice", namespace="nowhere")

    def test_untracked_application_is_deleted(
        self, livy: LivyService, fake_manager, ledger: SubmissionLedger
    ) -> None:
        ledger.db.write_script("DROP TABLE livy_batches;")
        with pytest.raises(Internal, match="error tracking Livy batch"):
            livy.create(LivyCreateBatchRequest(file="a.py"), "alice")
        assert len(fake_manager.deleted) == 1
        assert fake_manager.apps == {}

    def test_get_list_state_logs(self, livy: LivyService) -> None:
        for name in ("a.py", "b.py", "c.py"):
            livy.create(LivyCreateBatchRequest(file=name), "alice")

        assert livy.get(2).id == 2
        assert livy.state(2) == "starting"
        assert [b.id for b in livy.list()] == [1, 2, 3]
        assert [b.id for b in livy.list(start=2, size=1)] == [2]
        assert livy.logs(1, size=2) == ["line 0", "line 1"]
        assert len(livy.logs(1)) == 100

    def test_unknown_batch(self, livy: LivyService) -> None:
        with pytest.raises(NotFound, match="Livy batch 5 not found"):
            livy.get(5)

    def test_delete(self, livy: LivyService, fake_manager) -> None:
        livy.create(LivyCreateBatchRequest(file="a.py"), "alice")
        livy.delete(1)
        assert len(fake_manager.deleted) == 1
        with pytest.raises(NotFound, match="^error getting Livy batch 1: "):
            livy.get(1)


# --- HTTP ---


class TestLivyApi:
    def test_create(self, client: TestClient, fake_manager) -> None:
        resp = client.post("/api/livy/batches", json=_batch_body(), headers=_basic("alice"))
        assert resp.status_code == 201
        data = resp.json()
        gateway_id = fake_manager.created[0][1].metadata.name
        assert data["id"] == 1
        assert data["state"] == "starting"
        assert data["appInfo"]["sparkUiUrl"] == f"https://alpha.spark/{gateway_id}"
        assert fake_manager.created[0][1].metadata.annotations == {
            "applicationName": "nightly-etl"
        }

    def test_do_as_and_namespace_header(self, client: TestClient, fake_manager) -> None:
        resp = client.post(
            "/api/livy/batches",
            params={"doAs": "carol"},
            json=_batch_body(),
            headers={**_basic("bob"), LIVY_NAMESPACE_HEADER: "spark"},
        )
        assert resp.status_code == 201
        created = fake_manager.created[0][1]
        assert created.spec["proxyUser"] == "carol"
        assert created.metadata.namespace == "spark"

    def test_anonymous_create_rejected(self, client: TestClient, fake_manager) -> None:
        resp = client.post("/api/livy/batches", json=_batch_body())
        assert resp.status_code == 401
        assert resp.json() == {"msg": "user is unauthorized"}
        assert fake_manager.created == []

    def test_forbidden_user(self, client: TestClient) -> None:
        resp = client.get("/api/livy/batches", headers=_basic("mallory"))
        assert resp.status_code == 403
        assert resp.json() == {"msg": "user is unauthorized"}

    def test_missing_file_is_bad_request(self, client: TestClient) -> None:
        resp = client.post(
            "/api/livy/batches", json={"name": "no-file"}, headers=_basic("alice")
        )
        assert resp.status_code == 400
        assert "file" in resp.json()["msg"]

    def test_negative_batch_id(self, client: TestClient) -> None:
        resp = client.get("/api/livy/batches/-1", headers=_basic("alice"))
        assert resp.status_code == 400
        assert "msg" in resp.json()

    def test_unknown_batch(self, client: TestClient) -> None:
        resp = client.get("/api/livy/batches/42", headers=_basic("alice"))
        assert resp.status_code == 404
        assert resp.json() == {"msg": "Livy batch 42 not found"}

    def test_list_from(self, client: TestClient) -> None:
        for _ in range(3):
            client.post("/api/livy/batches", json=_batch_body(), headers=_basic("alice"))
        resp = client.get("/api/livy/batches", params={"from": 2}, headers=_basic("alice"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["from"] == 2
        assert data["total"] == 2
        assert [s["id"] for s in data["sessions"]] == [2, 3]

    def test_state_log_delete(self, client: TestClient, fake_manager) -> None:
        client.post("/api/livy/batches", json=_batch_body(), headers=_basic("alice"))

        state = client.get("/api/livy/batches/1/state", headers=_basic("alice"))
        assert state.json() == {"id": 1, "state": "starting"}

        log = client.get("/api/livy/batches/1/log", params={"size": 2}, headers=_basic("alice"))
        assert log.json() == {"id": 1, "from": -1, "size": 2, "log": ["line 0", "line 1"]}

        deleted = client.delete("/api/livy/batches/1", headers=_basic("alice"))
        assert deleted.json() == {"msg": "deleted"}
        assert len(fake_manager.deleted) == 1

    def test_application_routes_keep_error_key(self, client: TestClient) -> None:
        resp = client.get("/v1/applications/not-an-id", headers=_basic("alice"))
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_disabled_by_default(self, make_config, fake_manager, tmp_path: Path) -> None:
        config = make_config(gateway={"database": {"path": str(tmp_path / "ledger.db")}})
        app = create_gateway_app(config, manager_client=fake_manager)
        with TestClient(app) as c:
            assert c.get("/api/livy/batches").status_code == 404
