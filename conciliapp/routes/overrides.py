from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from conciliapp.routes._deps import actor_from_request, services_from_request, trace_id_from_request
from conciliapp.schemas import OverrideUpsertRequest, success_envelope

router = APIRouter(prefix="/api/v1/overrides", tags=["overrides"])


@router.get("")
def list_overrides(request: Request):
    actor = actor_from_request(request)
    items = services_from_request(request).overrides.list_overrides(actor)
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/catalog")
def override_catalog(request: Request):
    actor = actor_from_request(request)
    return success_envelope(services_from_request(request).overrides.catalog(actor), trace_id_from_request(request))


@router.put("/{vendor_code}")
def upsert_override(vendor_code: str, payload: OverrideUpsertRequest, request: Request):
    actor = actor_from_request(request)
    data = services_from_request(request).overrides.add_override(vendor_code, payload.reviewer, actor)
    status_code = 201 if data.get("created") else 200
    return JSONResponse(status_code=status_code, content=success_envelope(data, trace_id_from_request(request)))


@router.delete("/{vendor_code}")
def delete_override(vendor_code: str, request: Request):
    actor = actor_from_request(request)
    data = services_from_request(request).overrides.remove_override(vendor_code, actor)
    return success_envelope(data, trace_id_from_request(request))
