from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from conciliapp.routes._deps import actor_from_request, services_from_request, trace_id_from_request
from conciliapp.schemas import RecordBatchRequest, RecordSubmitRequest, success_envelope

router = APIRouter(prefix="/api/v1", tags=["records"])


@router.post("/records")
def submit_record(payload: RecordSubmitRequest, request: Request):
    actor = actor_from_request(request)
    record_id = services_from_request(request).ingestion.submit(payload.model_dump(), actor.identity)
    return JSONResponse(
        status_code=201,
        content=success_envelope({"record_id": record_id}, trace_id_from_request(request)),
    )


@router.post("/records/batch")
def submit_records_batch(payload: RecordBatchRequest, request: Request):
    actor = actor_from_request(request)
    outcomes = services_from_request(request).ingestion.submit_many(
        [item.model_dump() for item in payload.items],
        actor.identity,
    )
    data = {
        "items": [x.as_dict() for x in outcomes],
        "accepted": sum(1 for x in outcomes if x.ok),
        "rejected": sum(1 for x in outcomes if not x.ok),
    }
    return success_envelope(data, trace_id_from_request(request))


@router.get("/records/recent")
def list_recent_records(
    request: Request,
    vendor_code: str | None = Query(default=None),
    limit: int = Query(default=10, ge=1, le=100),
):
    actor = actor_from_request(request)
    items = services_from_request(request).ingestion.list_recent_submissions(
        actor,
        vendor_code=vendor_code,
        limit=limit,
    )
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.delete("/records/{locator}")
def delete_record(locator: str, request: Request):
    actor = actor_from_request(request)
    data = services_from_request(request).ingestion.delete_record(locator, actor)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/updates")
def check_for_updates(request: Request, since: str | None = Query(default=None)):
    data = services_from_request(request).ingestion.check_for_updates(since)
    return success_envelope(data, trace_id_from_request(request))
