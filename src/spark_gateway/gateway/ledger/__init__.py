"""SQLite-backed submission ledger."""

from spark_gateway.gateway.ledger.connection import Database
from spark_gateway.gateway.ledger.migrations import run_migrations
from spark_gateway.gateway.ledger.store import SubmissionLedger, ledger_uid

__all__ = ["Database", "SubmissionLedger", "ledger_uid", "run_migrations"]
