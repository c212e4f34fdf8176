from __future__ import annotations

from typing import Any

from conciliapp.db.postgres import PostgresTxRunner, validate_identifier


class InMemoryOverridesRepository:
    def __init__(self, overrides: dict[str, dict[str, Any]]) -> None:
        self._overrides = overrides

    def upsert(self, *, rule: dict[str, Any]) -> dict[str, Any]:
        item = dict(rule)
        self._overrides[str(item["vendor_code"])] = item
        return dict(item)

    def get(self, *, vendor_code: str) -> dict[str, Any] | None:
        row = self._overrides.get(vendor_code)
        return None if row is None else dict(row)

    def list(self) -> list[dict[str, Any]]:
        return [dict(x) for x in self._overrides.values()]

    def delete(self, *, vendor_code: str) -> bool:
        if vendor_code not in self._overrides:
            return False
        del self._overrides[vendor_code]
        return True


class PostgresOverridesRepository:
    """One row per vendor code; upsert replaces the reviewer of an existing rule."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "assignment_overrides") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    @staticmethod
    def _row_to_rule(row: Any) -> dict[str, Any]:
        return {
            "vendor_code": row[0],
            "reviewer_identity": row[1],
            "created_by": row[2],
            "updated_at": row[3],
        }

    def upsert(self, *, rule: dict[str, Any]) -> dict[str, Any]:
        item = dict(rule)
        sql = f"""
            INSERT INTO {self._table_name} (
                vendor_code, reviewer_identity, created_by, updated_at
            ) VALUES (%s, %s, %s, %s)
            ON CONFLICT(vendor_code) DO UPDATE SET
                reviewer_identity = EXCLUDED.reviewer_identity,
                created_by = EXCLUDED.created_by,
                updated_at = EXCLUDED.updated_at
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["vendor_code"],
                        item["reviewer_identity"],
                        item.get("created_by", ""),
                        item.get("updated_at", ""),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, vendor_code: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT vendor_code, reviewer_identity, created_by, updated_at
            FROM {self._table_name}
            WHERE vendor_code = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (vendor_code,))
                row = cur.fetchone()
            return None if row is None else self._row_to_rule(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def list(self) -> list[dict[str, Any]]:
        sql = f"""
            SELECT vendor_code, reviewer_identity, created_by, updated_at
            FROM {self._table_name}
            ORDER BY vendor_code ASC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql)
                rows = cur.fetchall() or []
            return [self._row_to_rule(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def delete(self, *, vendor_code: str) -> bool:
        sql = f"""
            DELETE FROM {self._table_name}
            WHERE vendor_code = %s
        """

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (vendor_code,))
                return int(cur.rowcount or 0) > 0

        return self._tx_runner.run_in_tx(fn=_op)
