from __future__ import annotations

from fastapi import APIRouter, Header, Request

from conciliapp.errors import ApiError
from conciliapp.routes._deps import require_internal, services_from_request, trace_id_from_request
from conciliapp.schemas import success_envelope

router = APIRouter(prefix="/api/v1/internal", tags=["internal"])


@router.post("/assignment/run")
def internal_run_assignment(
    request: Request,
    x_internal_debug: str | None = Header(default=None, alias="x-internal-debug"),
):
    require_internal(x_internal_debug)
    result = services_from_request(request).assignment.run_pass()
    return success_envelope(result.as_dict(), trace_id_from_request(request))


@router.post("/partitions/rotate")
def internal_rotate_partitions(
    request: Request,
    x_internal_debug: str | None = Header(default=None, alias="x-internal-debug"),
):
    require_internal(x_internal_debug)
    services = services_from_request(request)
    now = services.now_fn().astimezone(services.timezone)
    prepared = services.store.prepare_monthly_partitions(now)
    data = {
        "partitions": [x["name"] for x in prepared],
        "created": [x["name"] for x in prepared if x.get("created")],
    }
    return success_envelope(data, trace_id_from_request(request))


@router.get("/audit/integrity")
def internal_verify_audit_integrity(
    request: Request,
    x_internal_debug: str | None = Header(default=None, alias="x-internal-debug"),
):
    require_internal(x_internal_debug)
    result = services_from_request(request).audit_trail.verify_integrity()
    if not result.get("valid", False):
        raise ApiError(
            code="AUDIT_INTEGRITY_BROKEN",
            message="audit log integrity check failed",
            error_class="security_sensitive",
            retryable=False,
            http_status=409,
        )
    return success_envelope(result, trace_id_from_request(request))


@router.get("/audit/records/{record_id}")
def internal_list_record_audit(
    record_id: str,
    request: Request,
    x_internal_debug: str | None = Header(default=None, alias="x-internal-debug"),
):
    require_internal(x_internal_debug)
    items = services_from_request(request).audit_trail.entries_for(record_id)
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))
