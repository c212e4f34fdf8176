from __future__ import annotations

import pytest

from conftest import admin, analyst, seller, submission

from conciliapp.errors import PermissionDeniedError, ValidationError
from conciliapp.records import UNASSIGNED_BRANCH


def _seed(services, clock) -> None:
    for idx, vendor in enumerate(["V001", "V001", "V002", "V003"]):
        services.ingestion.submit(
            submission(
                vendor_code=vendor,
                reference_number=f"Q-{idx}",
                client_name=f"Cliente {idx}",
                receiving_bank="Banesco" if idx % 2 else "Mercantil",
            ),
            "pedro@example.com",
        )
        clock.advance(minutes=1)


def test_listing_runs_assignment_and_shows_only_own_records(services, clock):
    _seed(services, clock)
    page = services.queries.list_for_reviewer(analyst())
    assert page.assignment["outcome"] == "ran"
    assert page.total == 1
    assert page.items[0]["reference_number"] == "Q-0"
    assert page.items[0]["locator"]
    assert page.items[0]["assigned_reviewer"] == "ana@example.com"


def test_admin_sees_everything_newest_first(services, clock):
    _seed(services, clock)
    page = services.queries.list_for_reviewer(admin(), status="Todos")
    assert [x["reference_number"] for x in page.items] == ["Q-3", "Q-2", "Q-1", "Q-0"]


def test_status_and_branch_filters(services, clock):
    _seed(services, clock)
    services.assignment.run_pass()
    target = next(x for x in services.store.iter_records() if x.record.reference_number == "Q-1")
    services.review.update_status(target.locator.encode(), "Processed", "", admin())

    pending = services.queries.list_for_reviewer(admin())
    assert [x["reference_number"] for x in pending.items] == ["Q-3", "Q-2", "Q-0"]
    processed = services.queries.list_for_reviewer(admin(), status="Processed")
    assert [x["reference_number"] for x in processed.items] == ["Q-1"]
    caracas = services.queries.list_for_reviewer(admin(), status="Todos", branch="Caracas")
    assert [x["reference_number"] for x in caracas.items] == ["Q-1", "Q-0"]
    blank = services.queries.list_for_reviewer(admin(), status="Todos", branch=UNASSIGNED_BRANCH)
    assert [x["reference_number"] for x in blank.items] == ["Q-3"]


def test_pagination(services, clock):
    _seed(services, clock)
    page = services.queries.list_for_reviewer(admin(), status="Todos", page=2, page_size=3)
    assert page.total == 4
    assert [x["reference_number"] for x in page.items] == ["Q-0"]
    with pytest.raises(ValidationError):
        services.queries.list_for_reviewer(admin(), page_size=501)
    with pytest.raises(ValidationError):
        services.queries.list_for_reviewer(admin(), status="Archivado")


def test_listing_still_answers_when_assignment_is_busy(services, clock):
    _seed(services, clock)
    assert services.coordination.lock.acquire(timeout_s=0)
    try:
        page = services.queries.list_for_reviewer(admin(), status="Todos")
    finally:
        services.coordination.lock.release()
    assert page.assignment["outcome"] == "skipped_busy"
    assert page.total == 4
    assert all(x["assigned_reviewer"] is None for x in page.items)


def test_sellers_cannot_use_review_queries(services):
    with pytest.raises(PermissionDeniedError):
        services.queries.list_for_reviewer(seller())
    with pytest.raises(PermissionDeniedError):
        services.queries.facets(seller())


def test_available_branches(services):
    assert services.queries.available_branches(admin()) == ["Caracas", "Valencia"]
    assert services.queries.available_branches(analyst()) == ["Caracas"]
    assert services.queries.available_branches(analyst("luis@example.com")) == ["Caracas", "Valencia"]
    assert services.queries.available_branches(analyst("nadie@example.com")) == []


def test_facets_cover_visible_records(services, clock):
    _seed(services, clock)
    services.assignment.run_pass()
    facets = services.queries.facets(admin())
    assert facets["vendors"] == ["Juan Sin Sede", "Pedro Perez", "Rosa Diaz"]
    assert facets["receiving_banks"] == ["Banesco", "Mercantil"]
    own = services.queries.facets(analyst())
    assert own["clients"] == ["Cliente 0"]
