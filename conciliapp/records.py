from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Sequence
from dataclasses import dataclass, field, fields
from datetime import datetime, tzinfo
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from conciliapp.errors import NotFoundError

STATUS_FILTER_ALL = "Todos"
BRANCH_FILTER_ALL = "ALL"
UNASSIGNED_BRANCH = "SIN_SUCURSAL"


class ReviewStatus(str, Enum):
    PENDING = "Pending"
    PROCESSED = "Processed"
    REJECTED = "Rejected"

    @classmethod
    def parse(cls, raw: str | None) -> "ReviewStatus | None":
        """Read a status cell; the Spanish values written by legacy rows are accepted."""
        value = str(raw or "").strip().lower()
        aliases = {"pendiente": cls.PENDING, "procesado": cls.PROCESSED, "rechazado": cls.REJECTED}
        if value in aliases:
            return aliases[value]
        for status in cls:
            if status.value.lower() == value:
                return status
        return None


# Field name -> persisted column label. Columns are appended, never reordered,
# so rows written under an older header stay readable by label.
RECORD_COLUMNS: tuple[tuple[str, str], ...] = (
    ("created_at", "Timestamp"),
    ("vendor_name", "Vendedor"),
    ("client_code", "Codigo Cliente"),
    ("client_name", "Nombre Cliente"),
    ("invoice_refs", "Factura"),
    ("amount", "Monto Pagado"),
    ("payment_method", "Forma de Pago"),
    ("issuing_bank", "Banco Emisor"),
    ("receiving_bank", "Banco Receptor"),
    ("reference_number", "Nro. de Referencia"),
    ("collection_type", "Tipo de Cobro"),
    ("payment_date", "Fecha de la Transferencia o Pago"),
    ("observations", "Observaciones"),
    ("creator_identity", "Usuario Creador"),
    ("review_status", "EstadoAnalista"),
    ("review_comment", "ComentarioAnalista"),
    ("assigned_reviewer", "AnalistaAsignado"),
    ("branch", "Sucursal"),
    ("record_id", "id_registro"),
    ("reconciled_at", "FechaReconciliacion"),
    ("vendor_code", "Codigo Vendedor"),
)

COLUMN_BY_FIELD: dict[str, str] = dict(RECORD_COLUMNS)

LEGACY_RECORD_HEADER: tuple[str, ...] = tuple(label for _, label in RECORD_COLUMNS[:-1])
RECORD_HEADER: tuple[str, ...] = tuple(label for _, label in RECORD_COLUMNS)
HEADER_VERSIONS: dict[int, tuple[str, ...]] = {
    1: LEGACY_RECORD_HEADER,
    2: RECORD_HEADER,
}
CURRENT_HEADER_VERSION = 2


def header_version(header: Sequence[str]) -> int:
    labels = tuple(str(x) for x in header)
    for version in sorted(HEADER_VERSIONS, reverse=True):
        expected = HEADER_VERSIONS[version]
        if labels[: len(expected)] == expected:
            return version
    return 0


def normalize_invoice_refs(raw: Any) -> str:
    """Canonical comma-joined invoice list: trimmed tokens, blanks dropped."""
    if raw is None:
        return ""
    if isinstance(raw, (list, tuple)):
        tokens = [str(x) for x in raw]
    else:
        tokens = str(raw).split(",")
    return ",".join(token.strip() for token in tokens if token.strip())


def parse_amount(raw: Any) -> Decimal | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def normalize_identity(raw: Any) -> str:
    return str(raw or "").strip().lower()


@dataclass
class Record:
    record_id: str = ""
    vendor_code: str = ""
    vendor_name: str = ""
    client_code: str = ""
    client_name: str = ""
    invoice_refs: str = ""
    amount: Decimal = Decimal("0")
    payment_method: str = ""
    issuing_bank: str = ""
    receiving_bank: str = ""
    reference_number: str = ""
    collection_type: str = ""
    payment_date: str = ""
    observations: str = ""
    creator_identity: str = ""
    branch: str = ""
    created_at: datetime | None = None
    review_status: str = ""
    review_comment: str = ""
    assigned_reviewer: str = ""
    reconciled_at: str = ""

    @classmethod
    def from_row(cls, header: Sequence[str], row: Sequence[Any]) -> "Record":
        """Read a positional row by column label.

        Columns missing from the header or past the end of a short row read as
        empty; unknown columns are ignored.
        """
        index = {str(label): pos for pos, label in enumerate(header)}
        values: dict[str, Any] = {}
        for field_name, label in RECORD_COLUMNS:
            pos = index.get(label)
            cell = row[pos] if pos is not None and pos < len(row) else ""
            values[field_name] = "" if cell is None else str(cell)
        amount = parse_amount(values.pop("amount")) or Decimal("0")
        created_raw = values.pop("created_at")
        created_at: datetime | None = None
        if created_raw:
            try:
                created_at = datetime.fromisoformat(created_raw)
            except ValueError:
                created_at = None
        return cls(amount=amount, created_at=created_at, **values)

    def cell_values(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                out[item.name] = ""
            elif isinstance(value, datetime):
                out[item.name] = value.isoformat()
            else:
                out[item.name] = str(value)
        return out

    def to_row(self, header: Sequence[str]) -> list[str]:
        values = self.cell_values()
        label_to_field = {label: name for name, label in RECORD_COLUMNS}
        return [values.get(label_to_field.get(str(label), ""), "") for label in header]

    @property
    def effective_status(self) -> ReviewStatus:
        return ReviewStatus.parse(self.review_status) or ReviewStatus.PENDING

    @property
    def awaiting_assignment(self) -> bool:
        if self.assigned_reviewer.strip():
            return False
        return not self.review_status.strip() or ReviewStatus.parse(self.review_status) is ReviewStatus.PENDING

    def created_timestamp(self, default_tz: tzinfo) -> float:
        """Sort key for creation time; naive legacy values are read in the business timezone."""
        if self.created_at is None:
            return float("-inf")
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=default_tz)
        return created_at.timestamp()

    def as_view(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "vendor_code": self.vendor_code,
            "vendor_name": self.vendor_name,
            "client_code": self.client_code,
            "client_name": self.client_name,
            "invoice_refs": self.invoice_refs,
            "amount": str(self.amount),
            "payment_method": self.payment_method,
            "issuing_bank": self.issuing_bank,
            "receiving_bank": self.receiving_bank,
            "reference_number": self.reference_number,
            "collection_type": self.collection_type,
            "payment_date": self.payment_date,
            "observations": self.observations,
            "creator_identity": self.creator_identity,
            "branch": self.branch,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "review_status": self.effective_status.value,
            "review_comment": self.review_comment,
            "assigned_reviewer": self.assigned_reviewer or None,
            "reconciled_at": self.reconciled_at or None,
        }


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(raw: str) -> bytes:
    padded = raw + "=" * ((4 - len(raw) % 4) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


@dataclass(frozen=True)
class RecordLocator:
    """Opaque handle to a record's physical position.

    The record id travels with the position so a row that shifted after a
    deletion is detected as stale instead of silently addressing a neighbour.
    """

    partition: str
    position: int
    record_id: str = field(default="")

    def encode(self) -> str:
        payload = {"partition": self.partition, "position": self.position, "record_id": self.record_id}
        blob = json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
        return _b64url_encode(blob.encode("utf-8"))

    @classmethod
    def decode(cls, token: str) -> "RecordLocator":
        try:
            data = json.loads(_b64url_decode(str(token).strip()))
        except (binascii.Error, json.JSONDecodeError, UnicodeDecodeError, ValueError):
            raise NotFoundError("malformed record locator") from None
        if not isinstance(data, dict):
            raise NotFoundError("malformed record locator")
        partition = data.get("partition")
        position = data.get("position")
        if not isinstance(partition, str) or not partition or isinstance(position, bool) or not isinstance(position, int):
            raise NotFoundError("malformed record locator")
        if position < 0:
            raise NotFoundError("malformed record locator")
        return cls(partition=partition, position=position, record_id=str(data.get("record_id") or ""))


@dataclass
class LocatedRecord:
    partition: str
    position: int
    record: Record

    @property
    def locator(self) -> RecordLocator:
        return RecordLocator(partition=self.partition, position=self.position, record_id=self.record.record_id)

    def as_view(self) -> dict[str, Any]:
        view = self.record.as_view()
        view["partition"] = self.partition
        view["locator"] = self.locator.encode()
        return view
