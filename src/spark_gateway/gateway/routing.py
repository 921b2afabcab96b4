"""Cluster selection for new submissions.

Each router picks one of the clusters that configure the submission's
namespace. Weights come from the cluster (``dimension: cluster``) or
from the namespace entry within the cluster (``dimension: namespace``).
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod

from spark_gateway.config import ClusterRouterConfig
from spark_gateway.errors import BadRequest, GatewayError
from spark_gateway.gateway.clusters import ClusterRepository
from spark_gateway.models import KubeCluster

logger = logging.getLogger(__name__)


class ClusterRouter(ABC):
    def __init__(self, clusters: ClusterRepository, dimension: str = "cluster") -> None:
        self.clusters = clusters
        self.dimension = dimension

    @abstractmethod
    def get_cluster(self, namespace: str) -> KubeCluster: ...

    def candidates(self, namespace: str) -> list[KubeCluster]:
        found = self.clusters.get_all_with_namespace(namespace)
        if not found:
            raise BadRequest(f"no clusters found with namespace {namespace} in Gateway configs")
        return found

    def weight(self, cluster: KubeCluster, namespace: str) -> float:
        if self.dimension == "namespace":
            ns = cluster.get_namespace_by_name(namespace)
            return ns.routing_weight if ns is not None else 0.0
        return cluster.routing_weight


class RandomRouter(ClusterRouter):
    """Uniform choice among candidate clusters."""

    def __init__(
        self,
        clusters: ClusterRepository,
        dimension: str = "cluster",
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(clusters, dimension)
        self._rng = rng or random.Random()

    def get_cluster(self, namespace: str) -> KubeCluster:
        return self._rng.choice(self.candidates(namespace))


class WeightBasedRouter(ClusterRouter):
    """Deterministic: the candidate with the highest weight wins.

    Ties go to the cluster listed first in config. Clusters whose weight
    is zero are never chosen.
    """

    def get_cluster(self, namespace: str) -> KubeCluster:
        best: KubeCluster | None = None
        best_weight = 0.0
        for cluster in self.candidates(namespace):
            w = self.weight(cluster, namespace)
            if w > best_weight:
                best, best_weight = cluster, w
        if best is None:
            raise BadRequest(
                f"unable to find any suitable cluster for routing namespace {namespace}"
            )
        return best


class WeightBasedRandomRouter(ClusterRouter):
    """Random choice with probability proportional to weight."""

    def __init__(
        self,
        clusters: ClusterRepository,
        dimension: str = "cluster",
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(clusters, dimension)
        self._rng = rng or random.Random()

    def get_cluster(self, namespace: str) -> KubeCluster:
        candidates = self.candidates(namespace)
        weights = [self.weight(c, namespace) for c in candidates]
        if sum(weights) <= 0:
            raise BadRequest(
                f"unable to find any suitable cluster for routing namespace {namespace}"
            )
        return self._rng.choices(candidates, weights=weights, k=1)[0]


class FallbackRouter(ClusterRouter):
    """Try *primary*; on failure log a warning and use *fallback*."""

    def __init__(self, primary: ClusterRouter, fallback: ClusterRouter) -> None:
        super().__init__(primary.clusters, primary.dimension)
        self.primary = primary
        self.fallback = fallback

    def get_cluster(self, namespace: str) -> KubeCluster:
        try:
            return self.primary.get_cluster(namespace)
        except GatewayError as e:
            logger.warning(
                "%s failed for namespace %s (%s); using fallback %s",
                type(self.primary).__name__,
                namespace,
                e,
                type(self.fallback).__name__,
            )
            return self.fallback.get_cluster(namespace)


ROUTER_TYPES: dict[str, type[ClusterRouter]] = {
    "random": RandomRouter,
    "weightBased": WeightBasedRouter,
    "weightBasedRandom": WeightBasedRandomRouter,
}


def get_cluster_router(
    clusters: ClusterRepository, router_config: ClusterRouterConfig
) -> ClusterRouter:
    """Build the configured router, wrapped with its fallback if one is set."""
    try:
        cls = ROUTER_TYPES[router_config.type]
    except KeyError:
        raise ValueError(f"unknown cluster router type: {router_config.type}") from None
    router = cls(clusters, router_config.dimension)
    if router_config.fallback_type and router_config.fallback_type != router_config.type:
        fallback = ROUTER_TYPES[router_config.fallback_type](clusters, router_config.dimension)
        router = FallbackRouter(router, fallback)
    return router
