from __future__ import annotations

from fastapi import APIRouter, Query, Request

from conciliapp.queries import DEFAULT_PAGE_SIZE
from conciliapp.records import BRANCH_FILTER_ALL, ReviewStatus
from conciliapp.routes._deps import actor_from_request, services_from_request, trace_id_from_request
from conciliapp.schemas import ReviewStatusRequest, success_envelope

router = APIRouter(prefix="/api/v1/review", tags=["review"])


@router.get("/records")
def list_review_records(
    request: Request,
    status: str = Query(default=ReviewStatus.PENDING.value),
    branch: str = Query(default=BRANCH_FILTER_ALL),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=500),
):
    actor = actor_from_request(request)
    result = services_from_request(request).queries.list_for_reviewer(
        actor,
        status=status,
        branch=branch,
        page=page,
        page_size=page_size,
    )
    return success_envelope(result.as_dict(), trace_id_from_request(request))


@router.post("/records/{locator}/status")
def update_review_status(locator: str, payload: ReviewStatusRequest, request: Request):
    actor = actor_from_request(request)
    ack = services_from_request(request).review.update_status(locator, payload.status, payload.comment, actor)
    return success_envelope(ack.as_dict(), trace_id_from_request(request))


@router.get("/branches")
def list_review_branches(request: Request):
    actor = actor_from_request(request)
    branches = services_from_request(request).queries.available_branches(actor)
    return success_envelope({"branches": branches}, trace_id_from_request(request))


@router.get("/facets")
def list_review_facets(request: Request):
    actor = actor_from_request(request)
    return success_envelope(services_from_request(request).queries.facets(actor), trace_id_from_request(request))
