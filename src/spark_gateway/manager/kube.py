"""Kubernetes client construction for a Manager.

Supports a kubeconfig file (local development) or a service account.
With a service account the Manager either uses the in-cluster config, or
talks to a remote cluster's master URL, authenticating with EKS IAM
tokens (the default) or with the pod's own mounted token.

Requires the ``kubernetes`` package; EKS login also needs ``boto3``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import tempfile
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from spark_gateway.config import ManagerConfig
from spark_gateway.models import KubeCluster

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_TOKEN_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/token"

EKS_TOKEN_PREFIX = "k8s-aws-v1."
EKS_CLUSTER_ID_HEADER = "x-k8s-aws-id"
# EKS accepts a presigned token for 15 minutes; treat it as good for 14
EKS_TOKEN_LIFETIME = 14 * 60
EKS_REFRESH_MARGIN = 60
EKS_PRESIGN_EXPIRY = 60


class KubeClientError(Exception):
    """Raised when no usable Kubernetes client can be built. Fatal at start-up."""


def _check_kubernetes_available() -> None:
    """Raise ImportError with helpful message if kubernetes is not installed."""
    try:
        import kubernetes  # noqa: F401
    except ImportError:
        raise ImportError(
            "The 'kubernetes' package is required to run a Manager. "
            "Install it with: pip install spark-gateway"
        ) from None


def _check_boto3_available() -> None:
    """Raise ImportError with helpful message if boto3 is not installed."""
    try:
        import boto3  # noqa: F401
    except ImportError:
        raise ImportError(
            "The 'boto3' package is required for EKS cluster login. "
            "Install it with: pip install spark-gateway"
        ) from None


class EksTokenProvider:
    """Mints EKS bearer tokens for one cluster and caches them.

    A token is a presigned STS ``GetCallerIdentity`` URL, bound to the
    cluster by the signed ``x-k8s-aws-id`` header. A cached token is
    reused until less than a minute of its lifetime is left.
    """

    def __init__(
        self,
        cluster_name: str,
        *,
        region: str | None = None,
        profile: str | None = None,
        session: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cluster_name = cluster_name
        self.region = region
        self.profile = profile
        self._session = session
        self._clock = clock
        self._lock = threading.Lock()
        self._sts: Any = None
        self._token: str | None = None
        self._expires_at = 0.0

    def _get_boto3_session(self) -> Any:
        if self._session is not None:
            return self._session
        _check_boto3_available()
        import boto3

        kwargs: dict[str, Any] = {}
        if self.region:
            kwargs["region_name"] = self.region
        if self.profile:
            kwargs["profile_name"] = self.profile
        return boto3.Session(**kwargs)

    def _client(self) -> Any:
        if self._sts is None:
            sts = self._get_boto3_session().client("sts")
            sts.meta.events.register(
                "before-sign.sts.GetCallerIdentity", self._add_cluster_header
            )
            self._sts = sts
        return self._sts

    def _add_cluster_header(self, request: Any, **kwargs: Any) -> None:
        request.headers[EKS_CLUSTER_ID_HEADER] = self.cluster_name

    def _mint(self) -> str:
        try:
            url = self._client().generate_presigned_url(
                "get_caller_identity",
                Params={},
                ExpiresIn=EKS_PRESIGN_EXPIRY,
                HttpMethod="GET",
            )
        except Exception as e:
            raise KubeClientError(
                f"failed to get cluster access token for cluster {self.cluster_name}: {e}"
            ) from e
        encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")
        return EKS_TOKEN_PREFIX + encoded.rstrip("=")

    def token(self) -> str:
        with self._lock:
            now = self._clock()
            if self._token is None or self._expires_at - now <= EKS_REFRESH_MARGIN:
                logger.debug(
                    "Access token is missing or expiring; minting one for cluster %s",
                    self.cluster_name,
                )
                self._token = self._mint()
                self._expires_at = now + EKS_TOKEN_LIFETIME
            return self._token

    def refresh_api_key(self, configuration: Any) -> None:
        """``Configuration.refresh_api_key_hook``: runs before every request."""
        configuration.api_key["authorization"] = self.token()


def ca_cert_file(path: str) -> str:
    """Return a PEM file usable as ``ssl_ca_cert`` for the CA stored at *path*.

    A PEM file is used as is. Anything else is read as base64-encoded CA
    data (the form EKS reports it in), decoded into a temporary file.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise KubeClientError(f"certificateAuthorityFile not found: {path}") from None
    except OSError as e:
        raise KubeClientError(f"unable to read certificateAuthorityFile: {e}") from e

    if "-----BEGIN" in raw:
        return path

    try:
        data = base64.b64decode("".join(raw.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise KubeClientError(f"failed to decode base64-encoded CA in {path}: {e}") from e
    if not data:
        raise KubeClientError(f"certificateAuthorityFile is empty: {path}")

    with tempfile.NamedTemporaryFile(
        "wb", prefix="spark-gateway-ca-", suffix=".crt", delete=False
    ) as f:
        f.write(data)
    logger.info("Decoded base64 cluster CA from %s", path)
    return f.name


def build_api_client(
    manager: ManagerConfig,
    cluster: KubeCluster,
    *,
    token_file: str = SERVICE_ACCOUNT_TOKEN_FILE,
    aws_session: Any = None,
) -> Any:
    """Build a kubernetes ``ApiClient`` for *cluster*.

    ``clusterAuthType: kubeconfig`` loads ``manager.kubeconfig`` (or the
    default kubeconfig) using ``manager.kubeContext``, falling back to a
    context named after the cluster.

    ``clusterAuthType: serviceaccount`` uses the in-cluster config when the
    cluster has no ``certificateAuthorityFile`` (or it is ``incluster``).
    Otherwise requests go to ``masterURL``, verified with that CA file, or
    unverified when it is ``insecure``. They carry an EKS IAM token
    (``remoteAuthType: eks``) or the mounted service account token
    (``remoteAuthType: token``).
    """
    _check_kubernetes_available()
    from kubernetes import client, config
    from kubernetes.config.config_exception import ConfigException

    logger.info("Using cluster auth type: %s", manager.cluster_auth_type)
    try:
        if manager.cluster_auth_type == "kubeconfig":
            kwargs: dict[str, Any] = {"context": manager.kube_context or cluster.name}
            if manager.kubeconfig:
                kwargs["config_file"] = manager.kubeconfig
            config.load_kube_config(**kwargs)
            return client.ApiClient()

        ca_file = (cluster.certificate_authority_file or "").strip()
        ca_mode = ca_file.lower()
        if ca_mode in ("", "incluster"):
            logger.info("Using service account mounted token and certificate")
            config.load_incluster_config()
            return client.ApiClient()

        configuration = client.Configuration()
        configuration.host = cluster.master_url
        configuration.api_key_prefix["authorization"] = "Bearer"

        if manager.remote_auth_type == "eks":
            logger.info("Using EKS IAM tokens for cluster %s", cluster.name)
            provider = EksTokenProvider(
                cluster.name,
                region=manager.aws_region,
                profile=manager.aws_profile,
                session=aws_session,
            )
            configuration.api_key["authorization"] = provider.token()
            configuration.refresh_api_key_hook = provider.refresh_api_key
        else:
            try:
                token = Path(token_file).read_text(encoding="utf-8").strip()
            except OSError as e:
                raise KubeClientError(f"unable to read service account token: {e}") from e
            configuration.api_key["authorization"] = token

        if ca_mode == "insecure":
            logger.warning(
                "certificateAuthorityFile is 'insecure' for cluster %s; "
                "TLS verification is disabled",
                cluster.name,
            )
            configuration.verify_ssl = False
        else:
            configuration.ssl_ca_cert = ca_cert_file(ca_file)
        return client.ApiClient(configuration)
    except ConfigException as e:
        raise KubeClientError(f"unable to generate kube config: {e}") from e
