from __future__ import annotations

from datetime import datetime, timezone

from conciliapp.audit import AuditTrail
from conciliapp.repositories.audit_logs import InMemoryAuditLogsRepository, PostgresAuditLogsRepository


def _trail(rows: list[dict]) -> AuditTrail:
    return AuditTrail(
        repository=InMemoryAuditLogsRepository(rows),
        now_fn=lambda: datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc),
    )


def test_entries_are_hash_chained():
    rows: list[dict] = []
    trail = _trail(rows)
    first = trail.record_transition(
        actor="ana@example.com",
        record_id="r1",
        previous_status="Pending",
        new_status="Processed",
        comment="",
    )
    second = trail.record_transition(
        actor="ana@example.com",
        record_id="r1",
        previous_status="Processed",
        new_status="Pending",
        comment="",
    )
    assert first["prev_hash"] == ""
    assert second["prev_hash"] == first["audit_hash"]
    assert [x["audit_id"] for x in trail.entries_for("r1")] == [first["audit_id"], second["audit_id"]]
    assert trail.entries_for("r2") == []
    result = trail.verify_integrity()
    assert result == {"valid": True, "checked_count": 2, "last_hash": second["audit_hash"]}


def test_tampered_entry_is_detected():
    rows: list[dict] = []
    trail = _trail(rows)
    trail.record_transition(
        actor="ana@example.com",
        record_id="r1",
        previous_status="Pending",
        new_status="Rejected",
        comment="monto errado",
    )
    rows[0]["comment"] = "todo bien"
    result = trail.verify_integrity()
    assert result["valid"] is False
    assert result["reason"] == "audit_hash_mismatch"


def test_postgres_audit_repository_append_and_list_for_record():
    statements: list[tuple[str, tuple | None]] = []
    rows: list[tuple] = []

    class FakeCursor:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, query: str, params=None):
            statements.append((query, params))
            if query.strip().lower().startswith("select"):
                self._rows = list(rows)
            else:
                self._rows = []

        def fetchall(self):
            return self._rows

        def fetchone(self):
            return self._rows[0] if self._rows else None

    class FakeConn:
        def cursor(self):
            return FakeCursor()

    class FakeRunner:
        def run_in_tx(self, *, fn):
            return fn(FakeConn())

    repo = PostgresAuditLogsRepository(tx_runner=FakeRunner())
    repo.append(log={"audit_id": "audit_1", "record_id": "r1", "occurred_at": "2026-03-15T12:00:00+00:00"})
    assert "INSERT INTO review_audit_log" in statements[0][0]

    rows.append(({"audit_id": "audit_1", "record_id": "r1"},))
    loaded = repo.list_for_record(record_id="r1")
    assert loaded[0]["audit_id"] == "audit_1"
