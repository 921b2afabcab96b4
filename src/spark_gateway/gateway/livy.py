"""Livy batch API compatibility layer.

Livy clients address batches by small integers. Each batch id is a row in
the ledger's ``livy_batches`` table pointing at the gateway id of the
SparkApplication it was submitted as; everything else goes through the
ordinary application service.
"""

from __future__ import annotations

import logging

from spark_gateway.errors import BadRequest, GatewayError, Unauthorized, classify
from spark_gateway.gateway.ledger import SubmissionLedger
from spark_gateway.gateway.service import ApplicationService
from spark_gateway.models import LIVY_NAMESPACE_HEADER, LivyBatch, LivyCreateBatchRequest

logger = logging.getLogger(__name__)


class LivyService:
    def __init__(
        self,
        applications: ApplicationService,
        ledger: SubmissionLedger,
        namespace: str | None = None,
    ) -> None:
        self.applications = applications
        self.ledger = ledger
        self.namespace = namespace

    def create(
        self,
        request: LivyCreateBatchRequest,
        user: str | None,
        do_as: str | None = None,
        namespace: str | None = None,
    ) -> LivyBatch:
        """Submit *request* as a SparkApplication and assign it a batch id.

        The application runs as ``doAs``, else the body's ``proxyUser``,
        else the authenticated caller. If the batch id cannot be recorded
        the application is deleted again.
        """
        if not user:
            raise Unauthorized("user is unauthorized")
        ns = namespace or self.namespace
        if not ns:
            raise BadRequest(
                f"no namespace for Livy batch: set the {LIVY_NAMESPACE_HEADER} header "
                "or livy.namespace"
            )
        proxy_user = do_as or request.proxy_user or user
        app = request.to_spark_application(ns)

        try:
            created = self.applications.create(app.to_k8s(), proxy_user)
        except GatewayError as e:
            raise classify(e, "error creating Livy batch") from e

        gateway_id = created.gateway_id
        try:
            batch_id = self.ledger.insert_livy_batch(gateway_id)
        except GatewayError as e:
            try:
                self.applications.delete(gateway_id)
            except GatewayError as cleanup:
                logger.error("Cleanup of untracked Livy batch %s failed: %s", gateway_id, cleanup)
                raise classify(
                    e, f"error tracking Livy batch {gateway_id}, and cleanup failed"
                ) from e
            raise classify(e, f"error tracking Livy batch {gateway_id}") from e

        logger.info(
            "Created Livy batch %d as %s for user %s (proxy user %s)",
            batch_id,
            gateway_id,
            user,
            proxy_user,
        )
        return LivyBatch.from_application(batch_id, created)

    def get(self, batch_id: int) -> LivyBatch:
        gateway_id = self.ledger.livy_gateway_id(batch_id)
        try:
            app = self.applications.get(gateway_id)
        except GatewayError as e:
            raise classify(e, f"error getting Livy batch {batch_id}") from e
        return LivyBatch.from_application(batch_id, app)

    def list(self, start: int = 0, size: int = 0) -> list[LivyBatch]:
        batches = []
        for batch_id, gateway_id in self.ledger.list_livy_batches(start, size):
            try:
                app = self.applications.get(gateway_id)
            except GatewayError as e:
                raise classify(e, f"error listing Livy batch {batch_id}") from e
            batches.append(LivyBatch.from_application(batch_id, app))
        return batches

    def state(self, batch_id: int) -> str:
        return self.get(batch_id).state

    def logs(self, batch_id: int, size: int = 0) -> list[str]:
        """Driver log lines; *size* 0 uses the configured default tail."""
        gateway_id = self.ledger.livy_gateway_id(batch_id)
        try:
            text = self.applications.logs(gateway_id, size or None)
        except GatewayError as e:
            raise classify(e, f"error getting logs of Livy batch {batch_id}") from e
        return text.splitlines()

    def delete(self, batch_id: int) -> None:
        gateway_id = self.ledger.livy_gateway_id(batch_id)
        try:
            self.applications.delete(gateway_id)
        except GatewayError as e:
            raise classify(e, f"error deleting Livy batch {batch_id}") from e
        logger.info("Deleted Livy batch %d (%s)", batch_id, gateway_id)
