from __future__ import annotations

from conftest import submission

from conciliapp.assignment import AssignmentPassResult, PassOutcome
from conciliapp.assignment_runtime import AssignmentRuntime, create_assignment_runtime_from_env


class ScriptedEngine:
    def __init__(self, results: list[AssignmentPassResult]):
        self._results = list(results)
        self.calls = 0

    def run_pass(self) -> AssignmentPassResult:
        self.calls += 1
        return self._results.pop(0)


def test_run_once_assigns_pending_records(services):
    services.ingestion.submit(submission(reference_number="RT-1"), "pedro@example.com")
    services.ingestion.submit(submission(reference_number="RT-2", vendor_code="V003"), "juan@example.com")
    rt = AssignmentRuntime(engine=services.assignment)
    result = rt.run_once()
    assert result["passes"] == 1
    assert result["ran"] == 1
    assert result["assigned"] == 2
    assert result["left_unassigned"] == 0


def test_run_forever_accumulates_outcomes_and_sleeps_between_passes():
    engine = ScriptedEngine(
        [
            AssignmentPassResult(outcome=PassOutcome.RAN, round_robin_assigned=2),
            AssignmentPassResult(outcome=PassOutcome.SKIPPED_BUSY),
            AssignmentPassResult(
                outcome=PassOutcome.RAN_WITH_PARTIAL_FAILURE,
                override_assigned=1,
                left_unassigned=3,
                errors=["general_2026_03: write failed"],
            ),
        ]
    )
    sleeps: list[float] = []
    rt = AssignmentRuntime(engine=engine, interval_ms=1500, sleep_fn=sleeps.append)
    result = rt.run_forever(stop_after_iterations=3)
    assert engine.calls == 3
    assert sleeps == [1.5, 1.5]
    assert result == {
        "passes": 3,
        "ran": 1,
        "skipped_busy": 1,
        "partial_failures": 1,
        "assigned": 3,
        "left_unassigned": 3,
    }


def test_runtime_interval_from_env():
    engine = ScriptedEngine([])
    assert create_assignment_runtime_from_env(engine=engine, environ={}).interval_ms == 60000
    configured = create_assignment_runtime_from_env(
        engine=engine,
        environ={"CONCILIA_ASSIGNER_INTERVAL_MS": "2500"},
    )
    assert configured.interval_ms == 2500
    invalid = create_assignment_runtime_from_env(
        engine=engine,
        environ={"CONCILIA_ASSIGNER_INTERVAL_MS": "soon"},
    )
    assert invalid.interval_ms == 60000
