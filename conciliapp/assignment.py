"""Assignment of newly submitted records to reviewers.

A pass runs under the global assignment lock and never raises: contention is
reported as ``skipped_busy`` and failures as ``ran_with_partial_failure``.

Stage A applies vendor override rules. Stage B spreads the remaining records
of each branch over that branch's eligible reviewers in round robin, resuming
from the branch cursor left by the previous pass.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from conciliapp.coordination import DEFAULT_CURSOR_TTL_SECONDS
from conciliapp.errors import UpstreamUnavailable
from conciliapp.record_store import RecordStore
from conciliapp.records import UNASSIGNED_BRANCH, LocatedRecord, ReviewStatus

logger = logging.getLogger(__name__)

DEFAULT_LOCK_WAIT_SECONDS = 30


class PassOutcome(str, Enum):
    RAN = "ran"
    SKIPPED_BUSY = "skipped_busy"
    RAN_WITH_PARTIAL_FAILURE = "ran_with_partial_failure"


@dataclass
class Assignment:
    partition: str
    position: int
    record_id: str
    reviewer: str
    via: str
    branch: str = ""
    landed: bool = False


@dataclass
class AssignmentPassResult:
    outcome: PassOutcome = PassOutcome.RAN
    scanned: int = 0
    override_assigned: int = 0
    round_robin_assigned: int = 0
    left_unassigned: int = 0
    partitions_written: int = 0
    assignments: list[Assignment] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "scanned": self.scanned,
            "override_assigned": self.override_assigned,
            "round_robin_assigned": self.round_robin_assigned,
            "left_unassigned": self.left_unassigned,
            "partitions_written": self.partitions_written,
            "errors": list(self.errors),
        }


class AssignmentEngine:
    def __init__(
        self,
        *,
        store: RecordStore,
        directory_source: Any,
        override_rules: Callable[[], dict[str, str]],
        lock: Any,
        cursors: Any,
        lock_wait_s: float = DEFAULT_LOCK_WAIT_SECONDS,
        cursor_ttl_s: int = DEFAULT_CURSOR_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.directory_source = directory_source
        self.override_rules = override_rules
        self.lock = lock
        self.cursors = cursors
        self.lock_wait_s = max(0.0, float(lock_wait_s))
        self.cursor_ttl_s = max(1, int(cursor_ttl_s))

    def run_pass(self, *, wait_s: float | None = None) -> AssignmentPassResult:
        """Assign every pending record. Never raises.

        ``wait_s`` overrides the configured lock wait; pass 0 to skip at once
        when another pass holds the lock.
        """
        wait = self.lock_wait_s if wait_s is None else max(0.0, float(wait_s))
        if not self.lock.acquire(timeout_s=wait):
            logger.info("assignment_pass_skipped reason=lock_busy wait_s=%s", wait)
            return AssignmentPassResult(outcome=PassOutcome.SKIPPED_BUSY)
        result = AssignmentPassResult()
        try:
            self._run_locked(result)
        except Exception as exc:
            # Background maintenance: report, never propagate.
            logger.exception("assignment_pass_failed error=%s", type(exc).__name__)
            result.errors.append(f"unexpected:{type(exc).__name__}")
            result.outcome = PassOutcome.RAN_WITH_PARTIAL_FAILURE
        finally:
            self.lock.release()
        logger.info(
            "assignment_pass_finished outcome=%s scanned=%s override=%s round_robin=%s unassigned=%s",
            result.outcome.value,
            result.scanned,
            result.override_assigned,
            result.round_robin_assigned,
            result.left_unassigned,
        )
        return result

    def _scan(self, directory: Any) -> list[tuple[LocatedRecord, str]]:
        pending: list[tuple[LocatedRecord, str]] = []
        for located in self.store.iter_records():
            if not located.record.awaiting_assignment:
                continue
            vendor_code = located.record.vendor_code or directory.vendor_code_for_name(located.record.vendor_name)
            pending.append((located, vendor_code))
        return pending

    def _run_locked(self, result: AssignmentPassResult) -> None:
        try:
            directory = self.directory_source.load()
            rules = dict(self.override_rules())
        except UpstreamUnavailable as exc:
            logger.warning("assignment_pass_aborted reason=upstream_unavailable detail=%s", exc.message)
            result.errors.append(f"upstream_unavailable:{exc.code}")
            result.outcome = PassOutcome.RAN_WITH_PARTIAL_FAILURE
            return

        pending = self._scan(directory)
        result.scanned = len(pending)
        if not pending:
            return

        by_branch: dict[str, list[LocatedRecord]] = {}
        for located, vendor_code in pending:
            reviewer = rules.get(vendor_code) if vendor_code else None
            if reviewer:
                self._assign(result, located, reviewer=reviewer, via="override", branch=located.record.branch)
                continue
            branch = located.record.branch.strip() or UNASSIGNED_BRANCH
            by_branch.setdefault(branch, []).append(located)

        cursor_updates: dict[str, int] = {}
        for branch, records in by_branch.items():
            eligible = directory.eligible_reviewers(branch)
            if not eligible:
                logger.warning(
                    "assignment_branch_skipped reason=no_eligible_reviewers branch=%s pending=%s",
                    branch,
                    len(records),
                )
                result.left_unassigned += len(records)
                continue
            cursor = self.cursors.get(branch)
            if cursor is None:
                cursor = -1
            for located in records:
                next_index = (cursor + 1) % len(eligible)
                self._assign(result, located, reviewer=eligible[next_index], via="round_robin", branch=branch)
                cursor = next_index
            cursor_updates[branch] = cursor

        self._write_back(result)
        # Counters and cursors reflect landed writes only.
        incomplete: set[str] = set()
        for item in result.assignments:
            if not item.landed:
                result.left_unassigned += 1
                if item.via == "round_robin":
                    incomplete.add(item.branch)
            elif item.via == "override":
                result.override_assigned += 1
            else:
                result.round_robin_assigned += 1
        for branch, cursor in cursor_updates.items():
            if branch in incomplete:
                logger.warning("assignment_cursor_held branch=%s reason=write_back_incomplete", branch)
                continue
            self.cursors.set(branch, cursor, ttl_s=self.cursor_ttl_s)

    @staticmethod
    def _assign(
        result: AssignmentPassResult,
        located: LocatedRecord,
        *,
        reviewer: str,
        via: str,
        branch: str,
    ) -> None:
        result.assignments.append(
            Assignment(
                partition=located.partition,
                position=located.position,
                record_id=located.record.record_id,
                reviewer=reviewer,
                via=via,
                branch=branch,
            )
        )

    def _write_back(self, result: AssignmentPassResult) -> None:
        by_partition: dict[str, list[tuple[int, dict[str, str]]]] = {}
        for item in result.assignments:
            by_partition.setdefault(item.partition, []).append(
                (
                    item.position,
                    {"assigned_reviewer": item.reviewer, "review_status": ReviewStatus.PENDING.value},
                )
            )
        for partition, updates in by_partition.items():
            expected = {
                item.position: item.record_id for item in result.assignments if item.partition == partition
            }
            try:
                applied = set(self.store.update_fields(partition, updates, expected_record_ids=expected))
            except Exception as exc:
                logger.warning(
                    "assignment_write_back_failed partition=%s records=%s error=%s",
                    partition,
                    len(updates),
                    type(exc).__name__,
                )
                result.errors.append(f"write_back:{partition}:{type(exc).__name__}")
                result.outcome = PassOutcome.RAN_WITH_PARTIAL_FAILURE
                continue
            for item in result.assignments:
                if item.partition == partition and item.position in applied:
                    item.landed = True
            result.partitions_written += 1
