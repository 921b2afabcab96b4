"""Tests for Kubernetes client construction."""

from __future__ import annotations

import base64
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

kubernetes = pytest.importorskip("kubernetes", reason="kubernetes not installed")

from kubernetes import config as kube_config  # noqa: E402
from kubernetes.config.config_exception import ConfigException  # noqa: E402

from spark_gateway.config import ManagerConfig  # noqa: E402
from spark_gateway.manager.kube import (  # noqa: E402
    EksTokenProvider,
    KubeClientError,
    build_api_client,
    ca_cert_file,
)
from spark_gateway.models import KubeCluster  # noqa: E402

TOKEN_AUTH = ManagerConfig.model_validate({"remoteAuthType": "token"})


def _cluster(ca: str | None = None) -> KubeCluster:
    data: dict[str, Any] = {
        "name": "alpha",
        "id": "c1",
        "masterURL": "https://alpha.example.com:6443",
        "namespaces": [{"name": "spark", "id": "ns1"}],
    }
    if ca is not None:
        data["certificateAuthorityFile"] = ca
    return KubeCluster.model_validate(data)


@pytest.fixture
def token_file(tmp_path: Path) -> str:
    path = tmp_path / "token"
    path.write_text("sa-token\n", encoding="utf-8")
    return str(path)


class TestKubeconfig:
    def test_context_defaults_to_cluster_name(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: dict[str, Any] = {}
        monkeypatch.setattr(kube_config, "load_kube_config", lambda **kw: seen.update(kw))
        mgr = ManagerConfig.model_validate({"clusterAuthType": "kubeconfig"})
        build_api_client(mgr, _cluster())
        assert seen == {"context": "alpha"}

    def test_explicit_file_and_context(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: dict[str, Any] = {}
        monkeypatch.setattr(kube_config, "load_kube_config", lambda **kw: seen.update(kw))
        mgr = ManagerConfig.model_validate(
            {"clusterAuthType": "kubeconfig", "kubeconfig": "/k/config", "kubeContext": "dev"}
        )
        build_api_client(mgr, _cluster())
        assert seen == {"context": "dev", "config_file": "/k/config"}

    def test_config_exception_wrapped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail(**kw: Any) -> None:
            raise ConfigException("context alpha not found")

        monkeypatch.setattr(kube_config, "load_kube_config", fail)
        mgr = ManagerConfig.model_validate({"clusterAuthType": "kubeconfig"})
        with pytest.raises(KubeClientError, match="context alpha not found"):
            build_api_client(mgr, _cluster())




class FakeSts:
    """Stands in for a boto3 STS client: runs before-sign handlers and presigns."""

    def __init__(self, fail: bool = False) -> None:
        self.meta = SimpleNamespace(events=self)
        self.handlers: dict[str, Any] = {}
        self.calls: list[dict[str, Any]] = []
        self.fail = fail

    def register(self, event: str, handler: Any) -> None:
        self.handlers[event] = handler

    def generate_presigned_url(self, operation: str, **kwargs: Any) -> str:
        if self.fail:
            raise RuntimeError("Unable to locate credentials")
        request = SimpleNamespace(headers={})
        self.handlers["before-sign.sts.GetCallerIdentity"](request=request)
        self.calls.append({"operation": operation, **kwargs})
        cluster = request.headers["x-k8s-aws-id"]
        n = len(self.calls)
        return f"https://sts.amazonaws.com/?Action=GetCallerIdentity&c={cluster}&n={n}"


class FakeSession:
    def __init__(self, sts: FakeSts | None = None) -> None:
        self.sts = sts or FakeSts()

    def client(self, service: str) -> FakeSts:
        assert service == "sts"
        return self.sts


def _decode_token(token: str) -> str:
    assert token.startswith("k8s-aws-v1.")
    encoded = token[len("k8s-aws-v1."):]
    return base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode()


PEM = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"


class TestEksTokenProvider:
    def test_token_is_presigned_caller_identity(self) -> None:
        session = FakeSession()
        provider = EksTokenProvider("alpha", session=session)
        url = _decode_token(provider.token())
        assert "Action=GetCallerIdentity" in url
        assert "c=alpha" in url
        [call] = session.sts.calls
        assert call["operation"] == "get_caller_identity"
        assert call["ExpiresIn"] == 60
        assert call["HttpMethod"] == "GET"

    def test_cached_until_close_to_expiry(self) -> None:
        now = [1000.0]
        session = FakeSession()
        provider = EksTokenProvider("alpha", session=session, clock=lambda: now[0])
        first = provider.token()
        now[0] += 12 * 60
        assert provider.token() == first
        now[0] += 60
        assert provider.token() != first
        assert len(session.sts.calls) == 2

    def test_mint_failure_wrapped(self) -> None:
        provider = EksTokenProvider("alpha", session=FakeSession(FakeSts(fail=True)))
        with pytest.raises(KubeClientError, match="cluster alpha: Unable to locate credentials"):
            provider.token()

    def test_refresh_hook_sets_authorization(self) -> None:
        provider = EksTokenProvider("alpha", session=FakeSession())
        configuration = SimpleNamespace(api_key={})
        provider.refresh_api_key(configuration)
        assert configuration.api_key["authorization"] == provider.token()

    def test_real_boto3_signs_cluster_header(self) -> None:
        boto3 = pytest.importorskip("boto3")
        session = boto3.Session(
            aws_access_key_id="AKIDEXAMPLE",
            aws_secret_access_key="secret",
            region_name="us-east-1",
        )
        url = _decode_token(EksTokenProvider("alpha", session=session).token())
        assert "Action=GetCallerIdentity" in url
        assert "x-k8s-aws-id" in url
        assert "X-Amz-Signature=" in url


class TestCaCertFile:
    def test_pem_used_as_is(self, tmp_path: Path) -> None:
        path = tmp_path / "ca.pem"
        path.write_text(PEM, encoding="utf-8")
        assert ca_cert_file(str(path)) == str(path)

    def test_base64_decoded_to_temp_file(self, tmp_path: Path) -> None:
        path = tmp_path / "ca.b64"
        path.write_text(base64.b64encode(PEM.encode()).decode() + "\n", encoding="utf-8")
        decoded = ca_cert_file(str(path))
        assert decoded != str(path)
        assert Path(decoded).read_text(encoding="utf-8") == PEM

    def test_not_base64(self, tmp_path: Path) -> None:
        path = tmp_path / "ca.b64"
        path.write_text("not*base64", encoding="utf-8")
        with pytest.raises(KubeClientError, match="failed to decode base64-encoded CA"):
            ca_cert_file(str(path))

    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(KubeClientError, match="certificateAuthorityFile not found"):
            ca_cert_file(str(tmp_path / "nope.pem"))


class TestServiceAccount:
    @pytest.mark.parametrize("ca", [None, "", "incluster", "InCluster"])
    def test_incluster(self, monkeypatch: pytest.MonkeyPatch, ca: str | None) -> None:
        called: list[bool] = []
        monkeypatch.setattr(kube_config, "load_incluster_config", lambda: called.append(True))
        build_api_client(ManagerConfig(), _cluster(ca))
        assert called == [True]

    def test_eks_with_base64_ca(self, tmp_path: Path) -> None:
        ca = tmp_path / "ca.b64"
        ca.write_text(base64.b64encode(PEM.encode()).decode(), encoding="utf-8")
        api = build_api_client(ManagerConfig(), _cluster(str(ca)), aws_session=FakeSession())
        cfg = api.configuration
        assert cfg.host == "https://alpha.example.com:6443"
        assert cfg.api_key["authorization"].startswith("k8s-aws-v1.")
        assert cfg.api_key_prefix["authorization"] == "Bearer"
        assert cfg.refresh_api_key_hook is not None
        assert Path(cfg.ssl_ca_cert).read_text(encoding="utf-8") == PEM

    def test_eks_insecure(self) -> None:
        api = build_api_client(
            ManagerConfig(), _cluster("Insecure"), aws_session=FakeSession()
        )
        assert api.configuration.verify_ssl is False
        assert api.configuration.api_key["authorization"].startswith("k8s-aws-v1.")

    def test_eks_login_failure(self) -> None:
        with pytest.raises(KubeClientError, match="failed to get cluster access token"):
            build_api_client(
                ManagerConfig(), _cluster("insecure"), aws_session=FakeSession(FakeSts(fail=True))
            )

    def test_mounted_token_with_pem_ca(self, tmp_path: Path, token_file: str) -> None:
        ca = tmp_path / "ca.pem"
        ca.write_text(PEM, encoding="utf-8")
        api = build_api_client(TOKEN_AUTH, _cluster(str(ca)), token_file=token_file)
        cfg = api.configuration
        assert cfg.api_key["authorization"] == "sa-token"
        assert cfg.api_key_prefix["authorization"] == "Bearer"
        assert cfg.ssl_ca_cert == str(ca)

    def test_mounted_token_insecure(self, token_file: str) -> None:
        api = build_api_client(TOKEN_AUTH, _cluster("insecure"), token_file=token_file)
        assert api.configuration.verify_ssl is False

    def test_missing_ca_file(self, tmp_path: Path, token_file: str) -> None:
        with pytest.raises(KubeClientError, match="certificateAuthorityFile not found"):
            build_api_client(
                TOKEN_AUTH, _cluster(str(tmp_path / "nope.pem")), token_file=token_file
            )

    def test_missing_token(self, tmp_path: Path) -> None:
        with pytest.raises(KubeClientError, match="service account token"):
            build_api_client(
                TOKEN_AUTH, _cluster("insecure"), token_file=str(tmp_path / "none")
            )
