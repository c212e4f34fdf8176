from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from conciliapp.actors import Actor
from conciliapp.audit import AuditTrail
from conciliapp.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from conciliapp.record_store import RecordStore
from conciliapp.records import RecordLocator, ReviewStatus, normalize_identity

logger = logging.getLogger(__name__)

REJECTION_COMMENT_REQUIRED = "Se requiere un comentario para rechazar un registro."


@dataclass
class ReviewAck:
    record_id: str
    previous_status: str
    new_status: str
    comment: str
    audit_id: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "comment": self.comment,
            "audit_id": self.audit_id,
        }


class ReviewStateMachine:
    ALLOWED_TRANSITIONS: dict[ReviewStatus, set[ReviewStatus]] = {
        ReviewStatus.PENDING: {ReviewStatus.PROCESSED, ReviewStatus.REJECTED},
        ReviewStatus.PROCESSED: {ReviewStatus.PENDING},
        ReviewStatus.REJECTED: {ReviewStatus.PENDING},
    }

    def __init__(self, *, store: RecordStore, audit_trail: AuditTrail) -> None:
        self.store = store
        self.audit_trail = audit_trail

    def update_status(
        self,
        locator: str,
        new_status: str,
        comment: str | None,
        actor: Actor,
    ) -> ReviewAck:
        if not actor.can_review:
            logger.warning(
                "review_update_denied reason=role locator=%s actor=%s role=%s target=%s",
                locator,
                actor.identity,
                actor.role.value,
                new_status,
            )
            raise PermissionDeniedError("Solo analistas o administradores pueden actualizar estados.")
        target = ReviewStatus.parse(new_status)
        if target is None:
            raise ValidationError(f"Estado inválido: {new_status}", code="REVIEW_STATUS_INVALID")
        note = str(comment or "").strip()
        if target is ReviewStatus.REJECTED and not note:
            raise ValidationError(REJECTION_COMMENT_REQUIRED, code="REVIEW_COMMENT_REQUIRED")
        if target is ReviewStatus.PENDING:
            note = ""

        decoded = RecordLocator.decode(locator)
        located = self.store.get(decoded)
        record = located.record
        if not actor.is_admin and normalize_identity(record.assigned_reviewer) != actor.identity:
            logger.warning(
                "review_update_denied reason=not_assignee record_id=%s locator=%s actor=%s target=%s",
                record.record_id,
                locator,
                actor.identity,
                target.value,
            )
            raise PermissionDeniedError("No tienes permiso para modificar este registro.")

        current = record.effective_status
        # Same-state writes are accepted so a lost status write can be replayed.
        if target is not current and target not in self.ALLOWED_TRANSITIONS.get(current, set()):
            logger.warning(
                "review_update_denied reason=transition record_id=%s actor=%s from=%s to=%s",
                record.record_id,
                actor.identity,
                current.value,
                target.value,
            )
            raise ConflictError(
                f"invalid transition: {current.value} -> {target.value}",
                code="REVIEW_TRANSITION_INVALID",
            )

        entry = self.audit_trail.record_transition(
            actor=actor.identity,
            record_id=record.record_id,
            previous_status=current.value,
            new_status=target.value,
            comment=note,
            locator=locator,
        )
        written = self.store.update_fields(
            decoded.partition,
            [(decoded.position, {"review_status": target.value, "review_comment": note})],
            expected_record_ids={decoded.position: record.record_id},
        )
        if not written:
            logger.warning(
                "review_status_not_written reason=row_moved record_id=%s partition=%s audit_id=%s",
                record.record_id,
                decoded.partition,
                entry.get("audit_id"),
            )
            raise NotFoundError("record moved; locator is stale")
        logger.info(
            "review_status_updated record_id=%s actor=%s from=%s to=%s",
            record.record_id,
            actor.identity,
            current.value,
            target.value,
        )
        return ReviewAck(
            record_id=record.record_id,
            previous_status=current.value,
            new_status=target.value,
            comment=note,
            audit_id=str(entry.get("audit_id") or ""),
        )
