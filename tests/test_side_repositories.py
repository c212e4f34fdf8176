from __future__ import annotations

import json

from conciliapp.repositories.deleted_records import (
    InMemoryDeletedRecordsRepository,
    PostgresDeletedRecordsRepository,
)
from conciliapp.repositories.overrides import InMemoryOverridesRepository, PostgresOverridesRepository


class FakeCursor:
    def __init__(self, conn: "FakeConn"):
        self._conn = conn
        self.rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, query: str, params=None):
        self._conn.statements.append((" ".join(query.split()), params))
        self.rowcount = self._conn.rowcount

    def fetchone(self):
        return self._conn.rows[0] if self._conn.rows else None

    def fetchall(self):
        return list(self._conn.rows)


class FakeConn:
    def __init__(self):
        self.statements: list[tuple[str, tuple | None]] = []
        self.rows: list[tuple] = []
        self.rowcount = 0

    def cursor(self):
        return FakeCursor(self)


class FakeRunner:
    def __init__(self, conn: FakeConn):
        self.conn = conn

    def run_in_tx(self, *, fn):
        return fn(self.conn)


def test_in_memory_deleted_records_append_only():
    backing: list[dict] = []
    repo = InMemoryDeletedRecordsRepository(backing)
    repo.append(entry={"deletion_id": "del_1", "record_id": "r1"})
    listed = repo.list_all()
    listed[0]["record_id"] = "changed"
    assert backing[0]["record_id"] == "r1"


def test_postgres_deleted_records_store_full_payload():
    conn = FakeConn()
    repo = PostgresDeletedRecordsRepository(tx_runner=FakeRunner(conn))
    entry = {"deletion_id": "del_1", "record_id": "r1", "deleted_at": "2026-03-15T12:00:00+00:00", "record": {}}
    repo.append(entry=entry)
    sql, params = conn.statements[0]
    assert sql.startswith("INSERT INTO deleted_records")
    assert params[:3] == ("del_1", "r1", "2026-03-15T12:00:00+00:00")
    assert json.loads(params[3]) == entry

    conn.rows = [(entry,), ("not-a-dict",)]
    assert repo.list_all() == [entry]


def test_in_memory_overrides_upsert_and_delete():
    repo = InMemoryOverridesRepository({})
    repo.upsert(rule={"vendor_code": "V001", "reviewer_identity": "ana@example.com"})
    repo.upsert(rule={"vendor_code": "V001", "reviewer_identity": "luis@example.com"})
    assert repo.get(vendor_code="V001")["reviewer_identity"] == "luis@example.com"
    assert repo.delete(vendor_code="V001") is True
    assert repo.delete(vendor_code="V001") is False
    assert repo.list() == []


def test_postgres_overrides_upsert_get_and_delete():
    conn = FakeConn()
    repo = PostgresOverridesRepository(tx_runner=FakeRunner(conn))
    repo.upsert(
        rule={
            "vendor_code": "V001",
            "reviewer_identity": "ana@example.com",
            "created_by": "jefe@example.com",
            "updated_at": "2026-03-15T12:00:00+00:00",
        }
    )
    assert "ON CONFLICT(vendor_code) DO UPDATE" in conn.statements[0][0]

    conn.rows = [("V001", "ana@example.com", "jefe@example.com", "2026-03-15T12:00:00+00:00")]
    assert repo.get(vendor_code="V001") == {
        "vendor_code": "V001",
        "reviewer_identity": "ana@example.com",
        "created_by": "jefe@example.com",
        "updated_at": "2026-03-15T12:00:00+00:00",
    }
    assert [x["vendor_code"] for x in repo.list()] == ["V001"]

    conn.rowcount = 0
    assert repo.delete(vendor_code="V404") is False
    conn.rowcount = 1
    assert repo.delete(vendor_code="V001") is True
    assert conn.statements[-1][1] == ("V001",)
