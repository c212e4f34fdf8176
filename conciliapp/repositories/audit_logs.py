from __future__ import annotations

import json
from typing import Any

from conciliapp.db.postgres import PostgresTxRunner, validate_identifier


class InMemoryAuditLogsRepository:
    def __init__(self, audit_logs: list[dict[str, Any]]) -> None:
        self._audit_logs = audit_logs

    def append(self, *, log: dict[str, Any]) -> dict[str, Any]:
        item = dict(log)
        self._audit_logs.append(item)
        return item

    def last(self) -> dict[str, Any] | None:
        if not self._audit_logs:
            return None
        return dict(self._audit_logs[-1])

    def list_all(self) -> list[dict[str, Any]]:
        return [dict(x) for x in self._audit_logs]

    def list_for_record(self, *, record_id: str) -> list[dict[str, Any]]:
        return [dict(x) for x in self._audit_logs if x.get("record_id") == record_id]


class PostgresAuditLogsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "review_audit_log") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def append(self, *, log: dict[str, Any]) -> dict[str, Any]:
        item = dict(log)
        sql = f"""
            INSERT INTO {self._table_name} (
                audit_id, record_id, occurred_at, payload
            ) VALUES (%s, %s, %s, %s::jsonb)
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["audit_id"],
                        item.get("record_id", ""),
                        item.get("occurred_at"),
                        json.dumps(item, ensure_ascii=True, sort_keys=True),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def last(self) -> dict[str, Any] | None:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            ORDER BY seq DESC
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql)
                row = cur.fetchone()
            if row is None or not isinstance(row[0], dict):
                return None
            return row[0]

        return self._tx_runner.run_in_tx(fn=_op)

    def _select(self, *, where: str = "", params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            {where}
            ORDER BY seq ASC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall() or []
            return [row[0] for row in rows if isinstance(row[0], dict)]

        return self._tx_runner.run_in_tx(fn=_op)

    def list_all(self) -> list[dict[str, Any]]:
        return self._select()

    def list_for_record(self, *, record_id: str) -> list[dict[str, Any]]:
        return self._select(where="WHERE record_id = %s", params=(record_id,))
