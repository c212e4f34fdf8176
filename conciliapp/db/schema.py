from __future__ import annotations

from typing import Any

from conciliapp.db.postgres import PostgresTxRunner

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS record_partitions (
      name TEXT PRIMARY KEY,
      header JSONB NOT NULL,
      created_seq BIGSERIAL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS partition_rows (
      row_id BIGSERIAL PRIMARY KEY,
      partition_name TEXT NOT NULL REFERENCES record_partitions(name),
      position INTEGER NOT NULL,
      cells JSONB NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_partition_rows_position
    ON partition_rows(partition_name, position)
    """,
    """
    CREATE TABLE IF NOT EXISTS review_audit_log (
      audit_id TEXT PRIMARY KEY,
      seq BIGSERIAL,
      record_id TEXT NOT NULL,
      occurred_at TEXT NOT NULL,
      payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deleted_records (
      deletion_id TEXT PRIMARY KEY,
      seq BIGSERIAL,
      record_id TEXT NOT NULL,
      deleted_at TEXT NOT NULL,
      payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assignment_overrides (
      vendor_code TEXT PRIMARY KEY,
      reviewer_identity TEXT NOT NULL,
      created_by TEXT NOT NULL,
      updated_at TEXT NOT NULL
    )
    """,
)


def ensure_schema(tx_runner: PostgresTxRunner) -> None:
    def _op(conn: Any) -> None:
        with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)

    tx_runner.run_in_tx(fn=_op)
