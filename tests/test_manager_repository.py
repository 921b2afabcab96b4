"""Tests for the Manager's SparkApplication repository and service."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from spark_gateway.errors import AlreadyExists, BadRequest, Internal, NotFound
from spark_gateway.manager.controller import SparkApplicationCache
from spark_gateway.manager.repository import SparkApplicationRepository, sanitize
from spark_gateway.manager.service import SparkApplicationService
from spark_gateway.models import SparkApplication


class ApiException(Exception):
    """Shape of kubernetes.client.exceptions.ApiException."""

    def __init__(self, status: int, reason: str) -> None:
        super().__init__(f"({status}) {reason}")
        self.status = status
        self.reason = reason


def _obj(name: str, namespace: str = "spark", **extra: Any) -> dict[str, Any]:
    obj: dict[str, Any] = {
        "apiVersion": "sparkoperator.k8s.io/v1beta2",
        "kind": "SparkApplication",
        "metadata": {"name": name, "namespace": namespace, "uid": f"uid-{name}"},
        "spec": {"type": "Scala"},
    }
    obj.update(extra)
    return obj


@pytest.fixture
def cache() -> SparkApplicationCache:
    return SparkApplicationCache()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def repo(cache: SparkApplicationCache, sleeps: list[float]) -> SparkApplicationRepository:
    return SparkApplicationRepository(
        MagicMock(),
        MagicMock(),
        cache,
        request_timeout=12,
        confirm_attempts=3,
        confirm_interval=0.5,
        sleep=sleeps.append,
    )


class TestSanitize:
    def test_drops_noise(self) -> None:
        obj = _obj(
            "a",
            status={"applicationState": {"state": "RUNNING"}, "executorState": {"e1": "RUNNING"}},
        )
        obj["metadata"]["managedFields"] = [{"manager": "kubectl"}]
        clean = sanitize(obj)
        assert "managedFields" not in clean["metadata"]
        assert clean["status"] == {"applicationState": {"state": "RUNNING"}}


# --- Reads ---


class TestReads:
    def test_get_from_cache(self, repo: SparkApplicationRepository, cache) -> None:
        cache.replace([_obj("a")])
        app = repo.get("spark", "a")
        assert app.metadata.uid == "uid-a"
        repo.custom_api.get_namespaced_custom_object.assert_not_called()

    def test_get_missing(self, repo: SparkApplicationRepository) -> None:
        with pytest.raises(NotFound, match="SparkApplication spark/a not found"):
            repo.get("spark", "a")

    def test_list_namespace(self, repo: SparkApplicationRepository, cache) -> None:
        cache.replace(
            [
                _obj("b", status={"applicationState": {"state": "COMPLETED"}}),
                _obj("a"),
                _obj("z", namespace="batch"),
            ]
        )
        summaries = repo.list("spark")
        assert [s.name for s in summaries] == ["a", "b"]
        assert summaries[1].state == "COMPLETED"


# --- create ---


class TestCreate:
    def test_waits_for_cache(
        self, repo: SparkApplicationRepository, cache, sleeps: list[float]
    ) -> None:
        def appear_on_second_poll(_: float) -> None:
            sleeps.append(_)
            cache.apply("ADDED", _obj("a"))

        repo._sleep = appear_on_second_poll
        app = SparkApplication.model_validate(_obj("a"))
        created = repo.create(app)

        assert created.metadata.uid == "uid-a"
        args, kwargs = repo.custom_api.create_namespaced_custom_object.call_args
        assert args[:4] == ("sparkoperator.k8s.io", "v1beta2", "spark", "sparkapplications")
        assert args[4]["metadata"]["name"] == "a"
        assert kwargs == {"_request_timeout": 12}
        assert sleeps == [0.5]

    def test_ignores_cached_object_without_uid(
        self, repo: SparkApplicationRepository, cache, sleeps: list[float]
    ) -> None:
        pending = _obj("a")
        del pending["metadata"]["uid"]
        cache.replace([pending])
        with pytest.raises(Internal, match="did not appear in the cache after 3 attempts"):
            repo.create(SparkApplication.model_validate(_obj("a")))
        assert sleeps == [0.5, 1.0]

    def test_conflict(self, repo: SparkApplicationRepository) -> None:
        repo.custom_api.create_namespaced_custom_object.side_effect = ApiException(409, "Conflict")
        with pytest.raises(AlreadyExists, match="error creating SparkApplication spark/a"):
            repo.create(SparkApplication.model_validate(_obj("a")))

    def test_other_api_failure_internal(self, repo: SparkApplicationRepository) -> None:
        repo.custom_api.create_namespaced_custom_object.side_effect = ApiException(
            422, "Unprocessable Entity"
        )
        with pytest.raises(Internal):
            repo.create(SparkApplication.model_validate(_obj("a")))


# --- delete ---


class TestDelete:
    def test_delete(self, repo: SparkApplicationRepository) -> None:
        repo.delete("spark", "a")
        repo.custom_api.delete_namespaced_custom_object.assert_called_once_with(
            "sparkoperator.k8s.io",
            "v1beta2",
            "spark",
            "sparkapplications",
            "a",
            _request_timeout=12,
        )

    def test_not_found(self, repo: SparkApplicationRepository) -> None:
        repo.custom_api.delete_namespaced_custom_object.side_effect = ApiException(404, "Not Found")
        with pytest.raises(NotFound):
            repo.delete("spark", "a")


# --- logs ---


class TestLogs:
    def test_reads_driver_log(self, repo: SparkApplicationRepository, cache) -> None:
        cache.replace([_obj("a", status={"driverInfo": {"podName": "a-driver"}})])
        repo.core_api.read_namespaced_pod_log.return_value = "hello\n"
        assert repo.get_logs("spark", "a", 50) == "hello\n"
        repo.core_api.read_namespaced_pod_log.assert_called_once_with(
            "a-driver", "spark", tail_lines=50, _request_timeout=12
        )

    def test_no_driver_pod(self, repo: SparkApplicationRepository, cache) -> None:
        cache.replace([_obj("a")])
        with pytest.raises(NotFound, match="driver pod"):
            repo.get_logs("spark", "a", 10)

    def test_pod_gone(self, repo: SparkApplicationRepository, cache) -> None:
        cache.replace([_obj("a", status={"driverInfo": {"podName": "a-driver"}})])
        repo.core_api.read_namespaced_pod_log.side_effect = ApiException(404, "Not Found")
        with pytest.raises(NotFound, match="spark/a-driver"):
            repo.get_logs("spark", "a", 10)


# --- Service ---


class TestSparkApplicationService:
    @pytest.fixture
    def repository(self) -> MagicMock:
        repository = MagicMock()
        repository.create.side_effect = lambda app: app
        return repository

    @pytest.fixture
    def service(self, repository: MagicMock, make_config) -> SparkApplicationService:
        return SparkApplicationService(repository, make_config().clusters[0])

    def test_create_fills_path_values(self, service: SparkApplicationService) -> None:
        created = service.create("spark", "a", SparkApplication.model_validate({"spec": {}}))
        assert created.metadata.namespace == "spark"
        assert created.metadata.name == "a"

    def test_create_namespace_mismatch(
        self, service: SparkApplicationService, repository: MagicMock
    ) -> None:
        app = SparkApplication.model_validate({"metadata": {"namespace": "other"}})
        with pytest.raises(BadRequest, match="does not match path namespace"):
            service.create("spark", "a", app)
        repository.create.assert_not_called()

    def test_create_name_mismatch(self, service: SparkApplicationService) -> None:
        app = SparkApplication.model_validate({"metadata": {"name": "b"}})
        with pytest.raises(BadRequest, match="does not match path name"):
            service.create("spark", "a", app)

    def test_status(self, service: SparkApplicationService, repository: MagicMock) -> None:
        repository.get.return_value = SparkApplication.model_validate(
            {"status": {"applicationState": {"state": "RUNNING"}}}
        )
        assert service.status("spark", "a") == {"applicationState": {"state": "RUNNING"}}
