from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from conciliapp.assignment import PassOutcome
from conciliapp.coordination import _env_int

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNER_INTERVAL_MS = 60000


@dataclass
class AssignerRunStats:
    passes: int = 0
    ran: int = 0
    skipped_busy: int = 0
    partial_failures: int = 0
    assigned: int = 0
    left_unassigned: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "passes": self.passes,
            "ran": self.ran,
            "skipped_busy": self.skipped_busy,
            "partial_failures": self.partial_failures,
            "assigned": self.assigned,
            "left_unassigned": self.left_unassigned,
        }


class AssignmentRuntime:
    """Resident loop that runs the assignment pass on a fixed period."""

    def __init__(
        self,
        *,
        engine: Any,
        interval_ms: int = DEFAULT_ASSIGNER_INTERVAL_MS,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self.interval_ms = max(1, int(interval_ms))
        self._sleep_fn = sleep_fn

    def run_once(self) -> dict[str, int]:
        stats = AssignerRunStats()
        self._accumulate(stats, self.engine.run_pass())
        return stats.as_dict()

    @staticmethod
    def _accumulate(stats: AssignerRunStats, result: Any) -> None:
        stats.passes += 1
        if result.outcome is PassOutcome.SKIPPED_BUSY:
            stats.skipped_busy += 1
            return
        if result.outcome is PassOutcome.RAN_WITH_PARTIAL_FAILURE:
            stats.partial_failures += 1
        else:
            stats.ran += 1
        stats.assigned += int(result.override_assigned) + int(result.round_robin_assigned)
        stats.left_unassigned += int(result.left_unassigned)

    def run_forever(self, *, stop_after_iterations: int | None = None) -> dict[str, int]:
        aggregate = AssignerRunStats()
        iterations = 0
        while True:
            self._accumulate(aggregate, self.engine.run_pass())
            iterations += 1
            if stop_after_iterations is not None and iterations >= max(1, stop_after_iterations):
                break
            self._sleep_fn(self.interval_ms / 1000.0)
        logger.info("assigner_stopped iterations=%s stats=%s", iterations, aggregate.as_dict())
        return aggregate.as_dict()


def create_assignment_runtime_from_env(
    *,
    engine: Any,
    environ: Mapping[str, str] | None = None,
) -> AssignmentRuntime:
    env = os.environ if environ is None else environ
    interval_ms = _env_int(env, "CONCILIA_ASSIGNER_INTERVAL_MS", default=DEFAULT_ASSIGNER_INTERVAL_MS, minimum=1)
    return AssignmentRuntime(engine=engine, interval_ms=interval_ms)
