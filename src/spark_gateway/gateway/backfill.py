"""Repair the ledger after CREATEs whose ledger write failed.

Such applications exist on their cluster (the Manager confirmed them)
but have no ledger row. Backfill walks every configured namespace of
every cluster and inserts the missing rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from spark_gateway.gateway.ledger import SubmissionLedger
from spark_gateway.gateway.service import ManagerClient
from spark_gateway.models import KubeCluster
from spark_gateway.naming import GatewayIdError, parse_gateway_id

logger = logging.getLogger(__name__)


def backfill_ledger(
    ledger: SubmissionLedger,
    manager: ManagerClient,
    clusters: Iterable[KubeCluster],
) -> dict[str, list[str]]:
    """Insert ledger rows for Manager-visible applications that lack one.

    Returns the inserted gateway ids per cluster name.
    """
    result: dict[str, list[str]] = {}
    for cluster in clusters:
        missing = []
        for ns in cluster.namespaces:
            for summary in manager.list(cluster, ns.name):
                try:
                    uid = str(parse_gateway_id(summary.name).uid)
                except GatewayIdError:
                    continue
                if ledger.get(uid) is None:
                    missing.append(manager.get(cluster, ns.name, summary.name))
        inserted = ledger.backfill(cluster.name, missing)
        if inserted:
            logger.info("Backfilled %d ledger row(s) for cluster %s", len(inserted), cluster.name)
        result[cluster.name] = inserted
    return result
