from __future__ import annotations

import json
import threading
from collections.abc import Sequence
from typing import Any

from conciliapp.db.postgres import PostgresTxRunner, validate_identifier


def _as_cells(row: Sequence[Any]) -> list[str]:
    return ["" if x is None else str(x) for x in row]


class InMemoryPartitionsRepository:
    """Partitions as ordered lists of positional rows behind a frozen header."""

    def __init__(self, partitions: dict[str, dict[str, Any]]) -> None:
        self._partitions = partitions
        self._lock = threading.RLock()

    def ensure(self, *, name: str, header: Sequence[str]) -> dict[str, Any]:
        with self._lock:
            existing = self._partitions.get(name)
            if existing is not None:
                return {"name": name, "header": list(existing["header"]), "created": False}
            self._partitions[name] = {"header": [str(x) for x in header], "rows": []}
            return {"name": name, "header": [str(x) for x in header], "created": True}

    def header(self, *, name: str) -> list[str] | None:
        with self._lock:
            item = self._partitions.get(name)
            return None if item is None else list(item["header"])

    def list_names(self) -> list[str]:
        with self._lock:
            return list(self._partitions.keys())

    def read_rows(self, *, name: str) -> list[list[str]]:
        with self._lock:
            item = self._partitions.get(name)
            if item is None:
                return []
            return [list(row) for row in item["rows"]]

    def read_column(self, *, name: str, column_index: int) -> list[str]:
        with self._lock:
            item = self._partitions.get(name)
            if item is None:
                return []
            return [row[column_index] if column_index < len(row) else "" for row in item["rows"]]

    def read_row(self, *, name: str, position: int) -> list[str] | None:
        with self._lock:
            item = self._partitions.get(name)
            if item is None or position < 0 or position >= len(item["rows"]):
                return None
            return list(item["rows"][position])

    def append(self, *, name: str, row: Sequence[Any]) -> int:
        with self._lock:
            item = self._partitions.get(name)
            if item is None:
                raise KeyError(f"partition not found: {name}")
            item["rows"].append(_as_cells(row))
            return len(item["rows"]) - 1

    def update_cells(self, *, name: str, updates: list[tuple[int, dict[int, str]]]) -> list[int]:
        with self._lock:
            item = self._partitions.get(name)
            if item is None:
                raise KeyError(f"partition not found: {name}")
            rows = item["rows"]
            touched: list[int] = []
            for position, cells in updates:
                if position < 0 or position >= len(rows):
                    continue
                row = rows[position]
                for column_index, value in cells.items():
                    if column_index >= len(row):
                        row.extend([""] * (column_index + 1 - len(row)))
                    row[column_index] = str(value)
                touched.append(position)
            return touched

    def delete_row(self, *, name: str, position: int) -> list[str] | None:
        with self._lock:
            item = self._partitions.get(name)
            if item is None or position < 0 or position >= len(item["rows"]):
                return None
            return item["rows"].pop(position)


class PostgresPartitionsRepository:
    """Partition rows in PostgreSQL; cells are stored as a JSON array per row."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        partitions_table: str = "record_partitions",
        rows_table: str = "partition_rows",
    ) -> None:
        self._tx_runner = tx_runner
        self._partitions_table = validate_identifier(partitions_table)
        self._rows_table = validate_identifier(rows_table)

    def ensure(self, *, name: str, header: Sequence[str]) -> dict[str, Any]:
        header_cells = [str(x) for x in header]
        insert_sql = f"""
            INSERT INTO {self._partitions_table} (name, header)
            VALUES (%s, %s::jsonb)
            ON CONFLICT(name) DO NOTHING
            RETURNING name
        """
        select_sql = f"""
            SELECT header
            FROM {self._partitions_table}
            WHERE name = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(insert_sql, (name, json.dumps(header_cells, ensure_ascii=True)))
                inserted = cur.fetchone()
                if inserted is not None:
                    return {"name": name, "header": header_cells, "created": True}
                cur.execute(select_sql, (name,))
                row = cur.fetchone()
            stored = row[0] if row is not None and isinstance(row[0], list) else header_cells
            return {"name": name, "header": [str(x) for x in stored], "created": False}

        return self._tx_runner.run_in_tx(fn=_op)

    def header(self, *, name: str) -> list[str] | None:
        sql = f"""
            SELECT header
            FROM {self._partitions_table}
            WHERE name = %s
            LIMIT 1
        """

        def _op(conn: Any) -> list[str] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (name,))
                row = cur.fetchone()
            if row is None or not isinstance(row[0], list):
                return None
            return [str(x) for x in row[0]]

        return self._tx_runner.run_in_tx(fn=_op)

    def list_names(self) -> list[str]:
        sql = f"""
            SELECT name
            FROM {self._partitions_table}
            ORDER BY created_seq ASC
        """

        def _op(conn: Any) -> list[str]:
            with conn.cursor() as cur:
                cur.execute(sql)
                rows = cur.fetchall() or []
            return [str(row[0]) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def read_rows(self, *, name: str) -> list[list[str]]:
        sql = f"""
            SELECT cells
            FROM {self._rows_table}
            WHERE partition_name = %s
            ORDER BY position ASC
        """

        def _op(conn: Any) -> list[list[str]]:
            with conn.cursor() as cur:
                cur.execute(sql, (name,))
                rows = cur.fetchall() or []
            return [_as_cells(row[0]) for row in rows if isinstance(row[0], list)]

        return self._tx_runner.run_in_tx(fn=_op)

    def read_column(self, *, name: str, column_index: int) -> list[str]:
        sql = f"""
            SELECT COALESCE(cells ->> %s::int, '')
            FROM {self._rows_table}
            WHERE partition_name = %s
            ORDER BY position ASC
        """

        def _op(conn: Any) -> list[str]:
            with conn.cursor() as cur:
                cur.execute(sql, (int(column_index), name))
                rows = cur.fetchall() or []
            return [str(row[0] or "") for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def read_row(self, *, name: str, position: int) -> list[str] | None:
        sql = f"""
            SELECT cells
            FROM {self._rows_table}
            WHERE partition_name = %s AND position = %s
            LIMIT 1
        """

        def _op(conn: Any) -> list[str] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (name, int(position)))
                row = cur.fetchone()
            if row is None or not isinstance(row[0], list):
                return None
            return _as_cells(row[0])

        return self._tx_runner.run_in_tx(fn=_op)

    def append(self, *, name: str, row: Sequence[Any]) -> int:
        lock_sql = f"""
            SELECT name
            FROM {self._partitions_table}
            WHERE name = %s
            FOR UPDATE
        """
        next_sql = f"""
            SELECT COALESCE(MAX(position) + 1, 0)
            FROM {self._rows_table}
            WHERE partition_name = %s
        """
        insert_sql = f"""
            INSERT INTO {self._rows_table} (partition_name, position, cells)
            VALUES (%s, %s, %s::jsonb)
        """
        cells = _as_cells(row)

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(lock_sql, (name,))
                if cur.fetchone() is None:
                    raise KeyError(f"partition not found: {name}")
                cur.execute(next_sql, (name,))
                next_row = cur.fetchone()
                position = int(next_row[0]) if next_row is not None else 0
                cur.execute(insert_sql, (name, position, json.dumps(cells, ensure_ascii=True)))
            return position

        return self._tx_runner.run_in_tx(fn=_op)

    def update_cells(self, *, name: str, updates: list[tuple[int, dict[int, str]]]) -> list[int]:
        select_sql = f"""
            SELECT cells
            FROM {self._rows_table}
            WHERE partition_name = %s AND position = %s
            FOR UPDATE
        """
        update_sql = f"""
            UPDATE {self._rows_table}
            SET cells = %s::jsonb
            WHERE partition_name = %s AND position = %s
        """

        def _op(conn: Any) -> list[int]:
            touched: list[int] = []
            with conn.cursor() as cur:
                for position, values in updates:
                    cur.execute(select_sql, (name, int(position)))
                    row = cur.fetchone()
                    if row is None or not isinstance(row[0], list):
                        continue
                    cells = _as_cells(row[0])
                    for column_index, value in values.items():
                        if column_index >= len(cells):
                            cells.extend([""] * (column_index + 1 - len(cells)))
                        cells[column_index] = str(value)
                    cur.execute(update_sql, (json.dumps(cells, ensure_ascii=True), name, int(position)))
                    touched.append(int(position))
            return touched

        return self._tx_runner.run_in_tx(fn=_op)

    def delete_row(self, *, name: str, position: int) -> list[str] | None:
        delete_sql = f"""
            DELETE FROM {self._rows_table}
            WHERE partition_name = %s AND position = %s
            RETURNING cells
        """
        shift_sql = f"""
            UPDATE {self._rows_table}
            SET position = position - 1
            WHERE partition_name = %s AND position > %s
        """

        def _op(conn: Any) -> list[str] | None:
            with conn.cursor() as cur:
                cur.execute(delete_sql, (name, int(position)))
                row = cur.fetchone()
                if row is None:
                    return None
                cur.execute(shift_sql, (name, int(position)))
            return _as_cells(row[0]) if isinstance(row[0], list) else []

        return self._tx_runner.run_in_tx(fn=_op)
