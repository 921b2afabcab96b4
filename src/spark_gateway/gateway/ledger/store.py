"""Submission ledger: one durable row per application created via the Gateway."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime

from spark_gateway.errors import Internal, NotFound
from spark_gateway.gateway.ledger.connection import Database
from spark_gateway.gateway.ledger.migrations import run_migrations
from spark_gateway.models import (
    APPLICATION_NAME_ANNOTATION,
    GATEWAY_USER_LABEL,
    LedgerRecord,
    SparkApplication,
)
from spark_gateway.naming import GatewayIdError, parse_gateway_id

logger = logging.getLogger(__name__)

_COLUMNS = "uid, gateway_id, name, creation_time, username, namespace, cluster, submitted"


def ledger_uid(gateway_id: str) -> str:
    """The ledger key of an application: the UUID segment of its gateway id."""
    try:
        return str(parse_gateway_id(gateway_id).uid)
    except GatewayIdError as e:
        raise Internal(f"unable to derive ledger key: {e}") from e


class SubmissionLedger:
    """Gateway-owned record of submissions, keyed by gateway UUID."""

    def __init__(self, db: Database) -> None:
        self.db = db

    @classmethod
    def open(cls, path: str) -> SubmissionLedger:
        db = Database(path)
        run_migrations(db)
        return cls(db)

    def close(self) -> None:
        self.db.close()

    # --- Writes ---

    def insert(self, record: LedgerRecord) -> None:
        """Insert or overwrite the row for ``record.uid``."""
        try:
            self.db.write(
                f"""
                INSERT INTO spark_applications ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (uid) DO UPDATE SET
                    gateway_id = excluded.gateway_id,
                    name = excluded.name,
                    creation_time = excluded.creation_time,
                    username = excluded.username,
                    namespace = excluded.namespace,
                    cluster = excluded.cluster,
                    submitted = excluded.submitted
                """,
                (
                    record.uid,
                    record.gateway_id,
                    record.name,
                    record.creation_time.isoformat(),
                    record.username,
                    record.namespace,
                    record.cluster,
                    json.dumps(record.submitted, sort_keys=True),
                ),
            )
        except sqlite3.Error as e:
            raise Internal(f"error writing ledger row {record.gateway_id}: {e}") from e

    def record_submission(self, app: SparkApplication, cluster: str, user: str) -> LedgerRecord:
        """Build and insert the row for a just-created application."""
        gateway_id = app.metadata.name
        record = LedgerRecord(
            uid=ledger_uid(gateway_id),
            gateway_id=gateway_id,
            name=app.metadata.annotations.get(APPLICATION_NAME_ANNOTATION, ""),
            namespace=app.metadata.namespace,
            cluster=cluster,
            username=user,
            creation_time=datetime.now(tz=UTC),
            submitted=app.to_k8s(),
        )
        self.insert(record)
        return record

    def backfill(self, cluster: str, apps: Iterable[SparkApplication]) -> list[str]:
        """Insert rows for Manager-visible applications missing from the ledger.

        Applications whose name is not a gateway id (created outside the
        Gateway) are skipped. Returns the gateway ids that were inserted.
        """
        inserted: list[str] = []
        for app in apps:
            gateway_id = app.metadata.name
            try:
                uid = str(parse_gateway_id(gateway_id).uid)
            except GatewayIdError:
                logger.debug("Skipping non-gateway application %s", gateway_id)
                continue
            if self.get(uid) is not None:
                continue
            self.insert(
                LedgerRecord(
                    uid=uid,
                    gateway_id=gateway_id,
                    name=app.metadata.annotations.get(APPLICATION_NAME_ANNOTATION, ""),
                    namespace=app.metadata.namespace,
                    cluster=cluster,
                    username=app.metadata.labels.get(GATEWAY_USER_LABEL, ""),
                    creation_time=_parse_timestamp(app.metadata.creation_timestamp),
                    submitted=app.to_k8s(),
                )
            )
            logger.info("Backfilled ledger row for %s on cluster %s", gateway_id, cluster)
            inserted.append(gateway_id)
        return inserted

    # --- Reads ---

    def get(self, uid: str) -> LedgerRecord | None:
        try:
            row = self.db.fetchone(
                f"SELECT {_COLUMNS} FROM spark_applications WHERE uid = ?", (uid,)
            )
        except sqlite3.Error as e:
            raise Internal(f"error reading ledger row {uid}: {e}") from e
        return _row_to_record(row) if row else None

    def list(self, cluster: str | None = None, limit: int = 100) -> list[LedgerRecord]:
        sql = f"SELECT {_COLUMNS} FROM spark_applications"
        params: tuple = ()
        if cluster is not None:
            sql += " WHERE cluster = ?"
            params = (cluster,)
        sql += " ORDER BY creation_time DESC LIMIT ?"
        try:
            rows = self.db.fetchall(sql, (*params, limit))
        except sqlite3.Error as e:
            raise Internal(f"error listing ledger rows: {e}") from e
        return [_row_to_record(r) for r in rows]

    def count(self, cluster: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM spark_applications"
        params: tuple = ()
        if cluster is not None:
            sql += " WHERE cluster = ?"
            params = (cluster,)
        try:
            row = self.db.fetchone(sql, params)
        except sqlite3.Error as e:
            raise Internal(f"error counting ledger rows: {e}") from e
        return int(row["n"]) if row else 0

    # --- Livy batches ---

    def insert_livy_batch(self, gateway_id: str) -> int:
        """Assign the next Livy batch id to *gateway_id* and return it."""
        try:
            return self.db.insert(
                "INSERT INTO livy_batches (uid, gateway_id, created_at) VALUES (?, ?, ?)",
                (ledger_uid(gateway_id), gateway_id, datetime.now(tz=UTC).isoformat()),
            )
        except sqlite3.Error as e:
            raise Internal(f"error recording Livy batch for {gateway_id}: {e}") from e

    def livy_gateway_id(self, batch_id: int) -> str:
        try:
            row = self.db.fetchone(
                "SELECT gateway_id FROM livy_batches WHERE batch_id = ?", (batch_id,)
            )
        except sqlite3.Error as e:
            raise Internal(f"error reading Livy batch {batch_id}: {e}") from e
        if row is None:
            raise NotFound(f"Livy batch {batch_id} not found")
        return row["gateway_id"]

    def list_livy_batches(self, start: int = 0, size: int = 0) -> list[tuple[int, str]]:
        """``(batch_id, gateway_id)`` pairs with ids from *start*; *size* 0 means all."""
        sql = (
            "SELECT batch_id, gateway_id FROM livy_batches"
            " WHERE batch_id >= ? ORDER BY batch_id"
        )
        params: tuple = (start,)
        if size > 0:
            sql += " LIMIT ?"
            params = (start, size)
        try:
            rows = self.db.fetchall(sql, params)
        except sqlite3.Error as e:
            raise Internal(f"error listing Livy batches: {e}") from e
        return [(int(r["batch_id"]), r["gateway_id"]) for r in rows]


def _row_to_record(row: sqlite3.Row) -> LedgerRecord:
    return LedgerRecord(
        uid=row["uid"],
        gateway_id=row["gateway_id"],
        name=row["name"],
        creation_time=datetime.fromisoformat(row["creation_time"]),
        username=row["username"],
        namespace=row["namespace"],
        cluster=row["cluster"],
        submitted=json.loads(row["submitted"]),
    )


def _parse_timestamp(value: str | None) -> datetime:
    if value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(tz=UTC)
