from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Any

from conciliapp.actors import Actor
from conciliapp.errors import PermissionDeniedError, ValidationError
from conciliapp.record_store import RecordStore
from conciliapp.records import (
    BRANCH_FILTER_ALL,
    STATUS_FILTER_ALL,
    UNASSIGNED_BRANCH,
    LocatedRecord,
    ReviewStatus,
    normalize_identity,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


@dataclass
class RecordPage:
    items: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    assignment: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "items": self.items,
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "assignment": self.assignment,
        }


class QueryService:
    def __init__(
        self,
        *,
        store: RecordStore,
        assignment_engine: Any,
        directory_source: Any,
        timezone: tzinfo,
    ) -> None:
        self.store = store
        self.assignment_engine = assignment_engine
        self.directory_source = directory_source
        self.timezone = timezone

    @staticmethod
    def _require_reviewer(actor: Actor) -> None:
        if not actor.can_review:
            logger.warning("review_query_denied actor=%s role=%s", actor.identity, actor.role.value)
            raise PermissionDeniedError("Acceso denegado.")

    def _visible(self, actor: Actor) -> list[LocatedRecord]:
        if actor.is_admin:
            return list(self.store.iter_records())
        return [
            x
            for x in self.store.iter_records()
            if normalize_identity(x.record.assigned_reviewer) == actor.identity
        ]

    def list_for_reviewer(
        self,
        actor: Actor,
        *,
        status: str | None = ReviewStatus.PENDING.value,
        branch: str | None = BRANCH_FILTER_ALL,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> RecordPage:
        self._require_reviewer(actor)
        status_value = str(status or ReviewStatus.PENDING.value).strip()
        status_filter: ReviewStatus | None = None
        if status_value.lower() != STATUS_FILTER_ALL.lower():
            status_filter = ReviewStatus.parse(status_value)
            if status_filter is None:
                raise ValidationError(f"Estado inválido: {status_value}", code="REVIEW_STATUS_INVALID")
        branch_value = str(branch or BRANCH_FILTER_ALL).strip()
        if page < 1:
            raise ValidationError("page must be >= 1")
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

        # Best effort: a busy lock means another caller is already assigning.
        pass_result = self.assignment_engine.run_pass(wait_s=0)

        items = self._visible(actor)
        if status_filter is not None:
            items = [x for x in items if x.record.effective_status is status_filter]
        if branch_value.upper() != BRANCH_FILTER_ALL:
            if branch_value == UNASSIGNED_BRANCH:
                items = [x for x in items if not x.record.branch.strip()]
            else:
                items = [x for x in items if x.record.branch == branch_value]
        items.sort(key=lambda x: x.record.created_timestamp(self.timezone), reverse=True)

        start = (page - 1) * page_size
        return RecordPage(
            items=[x.as_view() for x in items[start : start + page_size]],
            total=len(items),
            page=page,
            page_size=page_size,
            assignment=pass_result.as_dict(),
        )

    def available_branches(self, actor: Actor) -> list[str]:
        self._require_reviewer(actor)
        directory = self.directory_source.load()
        if actor.is_admin:
            return directory.branches()
        reviewer = directory.reviewer(actor.identity)
        if reviewer is None:
            return []
        if reviewer.all_branches:
            return directory.branches()
        return sorted(reviewer.branches)

    def facets(self, actor: Actor) -> dict[str, list[str]]:
        """Distinct values for the review screen's filter dropdowns."""
        self._require_reviewer(actor)
        vendors: set[str] = set()
        clients: set[str] = set()
        banks: set[str] = set()
        for located in self._visible(actor):
            record = located.record
            if record.vendor_name.strip():
                vendors.add(record.vendor_name.strip())
            if record.client_name.strip():
                clients.add(record.client_name.strip())
            if record.receiving_bank.strip():
                banks.add(record.receiving_bank.strip())
        return {
            "vendors": sorted(vendors),
            "clients": sorted(clients),
            "receiving_banks": sorted(banks),
        }
