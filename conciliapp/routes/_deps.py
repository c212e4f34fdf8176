from __future__ import annotations

import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from conciliapp.actors import Actor, Role, resolve_actor
from conciliapp.errors import ApiError, PermissionDeniedError
from conciliapp.schemas import error_envelope
from conciliapp.security import redact_sensitive
from conciliapp.services import Services

logger = logging.getLogger(__name__)


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def services_from_request(request: Request) -> Services:
    return request.app.state.services


def actor_from_request(request: Request) -> Actor:
    identity = str(getattr(request.state, "auth_subject", "") or "").strip()
    if not identity or identity == "anonymous":
        raise ApiError(
            code="AUTH_UNAUTHORIZED",
            message="caller identity required",
            error_class="security_sensitive",
            retryable=False,
            http_status=401,
        )
    claimed_role = str(getattr(request.state, "auth_role", "") or "").strip()
    if claimed_role and Role.parse(claimed_role) is not None:
        return resolve_actor(identity, claimed_role)
    directory = services_from_request(request).directory_source.load()
    return resolve_actor(identity, None, directory)


def require_internal(x_internal_debug: str | None) -> None:
    if x_internal_debug != "true":
        raise PermissionDeniedError("internal endpoint forbidden")


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
        ),
    )


def log_security_block(*, request: Request, code: str, detail: str) -> None:
    security_cfg = request.app.state.security_cfg
    headers_obj = dict(request.headers.items())
    headers_payload = redact_sensitive(headers_obj) if security_cfg.log_redaction_enabled else headers_obj
    logger.warning(
        "security_blocked code=%s path=%s subject=%s trace_id=%s detail=%s headers=%s",
        code,
        request.url.path,
        getattr(request.state, "auth_subject", "anonymous"),
        trace_id_from_request(request),
        detail,
        headers_payload,
    )
