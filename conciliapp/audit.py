from __future__ import annotations

import hashlib
import json
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any


class AuditTrail:
    """Append-only, hash-chained log of review transitions."""

    def __init__(self, *, repository: Any, now_fn: Callable[[], datetime]) -> None:
        self.repository = repository
        self._now_fn = now_fn

    @staticmethod
    def _compute_audit_hash(*, log: dict[str, Any], prev_hash: str) -> str:
        material = {
            key: value
            for key, value in log.items()
            if key not in {"audit_hash", "prev_hash"}
        }
        material["prev_hash"] = prev_hash
        blob = json.dumps(material, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
        return hashlib.sha256(blob.encode("utf-8")).hexdigest()

    def record_transition(
        self,
        *,
        actor: str,
        record_id: str,
        previous_status: str,
        new_status: str,
        comment: str,
        locator: str = "",
    ) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "audit_id": f"audit_{uuid.uuid4().hex[:12]}",
            "occurred_at": self._now_fn().isoformat(),
            "actor": actor,
            "record_id": record_id,
            "previous_status": previous_status,
            "new_status": new_status,
            "comment": comment,
            "locator": locator,
        }
        last = self.repository.last()
        prev_hash = str((last or {}).get("audit_hash") or "")
        entry["prev_hash"] = prev_hash
        entry["audit_hash"] = self._compute_audit_hash(log=entry, prev_hash=prev_hash)
        return self.repository.append(log=entry)

    def entries_for(self, record_id: str) -> list[dict[str, Any]]:
        return self.repository.list_for_record(record_id=record_id)

    def verify_integrity(self) -> dict[str, Any]:
        rows = self.repository.list_all()
        prev_hash = ""
        for idx, row in enumerate(rows):
            stored_prev = str(row.get("prev_hash") or "")
            if stored_prev != prev_hash:
                return {
                    "valid": False,
                    "checked_count": idx + 1,
                    "reason": "prev_hash_mismatch",
                    "audit_id": row.get("audit_id"),
                }
            expected = self._compute_audit_hash(log=row, prev_hash=stored_prev)
            actual = str(row.get("audit_hash") or "")
            if actual != expected:
                return {
                    "valid": False,
                    "checked_count": idx + 1,
                    "reason": "audit_hash_mismatch",
                    "audit_id": row.get("audit_id"),
                }
            prev_hash = actual
        return {
            "valid": True,
            "checked_count": len(rows),
            "last_hash": prev_hash,
        }
