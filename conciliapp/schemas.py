from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class RecordSubmitRequest(BaseModel):
    vendor_code: str = ""
    client_code: str = ""
    client_name: str = ""
    invoice_refs: str | list[str] | None = None
    document: str | list[str] | None = None
    amount: str | float | int | None = None
    payment_method: str = ""
    issuing_bank: str = ""
    receiving_bank: str = ""
    reference_number: str = ""
    collection_type: str = ""
    payment_date: str = ""
    observations: str = ""


class RecordBatchRequest(BaseModel):
    items: list[RecordSubmitRequest] = Field(min_length=1, max_length=200)


class ReviewStatusRequest(BaseModel):
    status: str = Field(min_length=1)
    comment: str = ""


class OverrideUpsertRequest(BaseModel):
    reviewer: str = Field(min_length=1)


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
