from __future__ import annotations

import json
from typing import Any

from conciliapp.db.postgres import PostgresTxRunner, validate_identifier


class InMemoryDeletedRecordsRepository:
    def __init__(self, deleted_records: list[dict[str, Any]]) -> None:
        self._deleted_records = deleted_records

    def append(self, *, entry: dict[str, Any]) -> dict[str, Any]:
        item = dict(entry)
        self._deleted_records.append(item)
        return item

    def list_all(self) -> list[dict[str, Any]]:
        return [dict(x) for x in self._deleted_records]


class PostgresDeletedRecordsRepository:
    """Append-only deletion log; rows are never updated."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "deleted_records") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def append(self, *, entry: dict[str, Any]) -> dict[str, Any]:
        item = dict(entry)
        sql = f"""
            INSERT INTO {self._table_name} (
                deletion_id, record_id, deleted_at, payload
            ) VALUES (%s, %s, %s, %s::jsonb)
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["deletion_id"],
                        item.get("record_id", ""),
                        item.get("deleted_at"),
                        json.dumps(item, ensure_ascii=True, sort_keys=True),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def list_all(self) -> list[dict[str, Any]]:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            ORDER BY seq ASC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql)
                rows = cur.fetchall() or []
            return [row[0] for row in rows if isinstance(row[0], dict)]

        return self._tx_runner.run_in_tx(fn=_op)
