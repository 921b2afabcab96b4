"""Version-tracked schema for the submission ledger."""

from __future__ import annotations

import sqlite3

from spark_gateway.gateway.ledger.connection import Database

MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        );
        INSERT INTO schema_version (version) VALUES (0);

        CREATE TABLE IF NOT EXISTS spark_applications (
            uid           TEXT PRIMARY KEY,
            gateway_id    TEXT NOT NULL,
            name          TEXT NOT NULL DEFAULT '',
            creation_time TEXT NOT NULL,
            username      TEXT NOT NULL,
            namespace     TEXT NOT NULL,
            cluster       TEXT NOT NULL,
            submitted     TEXT NOT NULL DEFAULT '{}'
        );
        """,
    ),
    (
        2,
        """
        CREATE INDEX IF NOT EXISTS idx_spark_applications_cluster
            ON spark_applications(cluster);
        CREATE INDEX IF NOT EXISTS idx_spark_applications_username
            ON spark_applications(username);
        """,
    ),
    (
        3,
        """
        CREATE TABLE IF NOT EXISTS livy_batches (
            batch_id   INTEGER PRIMARY KEY AUTOINCREMENT,
            uid        TEXT NOT NULL UNIQUE,
            gateway_id TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
        """,
    ),
]


def get_schema_version(db: Database) -> int:
    """Return the current schema version, or 0 if uninitialized."""
    try:
        row = db.fetchone("SELECT version FROM schema_version")
    except sqlite3.OperationalError:
        return 0
    return int(row["version"]) if row else 0


def run_migrations(db: Database) -> int:
    """Apply pending migrations. Returns the final schema version."""
    current = get_schema_version(db)

    for version, sql in MIGRATIONS:
        if version <= current:
            continue
        db.write_script(sql)
        db.write("UPDATE schema_version SET version = ?", (version,))

    return get_schema_version(db)
