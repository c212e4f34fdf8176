from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta, tzinfo
from typing import Any

from conciliapp.actors import Actor
from conciliapp.errors import (
    ConflictError,
    Outcome,
    PermissionDeniedError,
    ValidationError,
    attempt,
)
from conciliapp.partitions import PartitionStrategy, missing_codes, resolve_partition_key, sort_newest_first
from conciliapp.record_store import RecordStore
from conciliapp.records import (
    LocatedRecord,
    Record,
    RecordLocator,
    normalize_identity,
    normalize_invoice_refs,
    parse_amount,
)

logger = logging.getLogger(__name__)

DUPLICATE_REFERENCE_MESSAGE = "El número de referencia ya existe en esta partición."
DEFAULT_DELETE_WINDOW_SECONDS = 300
RECENT_FETCH_MULTIPLIER = 5

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def new_record_id(now: datetime) -> str:
    """Time-ordered prefix plus random suffix."""
    return f"{_base36(int(now.timestamp() * 1000))}{uuid.uuid4().hex[:7]}"


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return "" if value is None else str(value).strip()


class IngestionService:
    def __init__(
        self,
        *,
        store: RecordStore,
        directory_source: Any,
        update_signal: Any,
        deleted_records_repository: Any,
        strategy: PartitionStrategy = PartitionStrategy.BY_MONTH,
        timezone: tzinfo,
        now_fn: Callable[[], datetime],
        delete_window_s: int = DEFAULT_DELETE_WINDOW_SECONDS,
    ) -> None:
        self.store = store
        self.directory_source = directory_source
        self.update_signal = update_signal
        self.deleted_records_repository = deleted_records_repository
        self.strategy = strategy
        self.timezone = timezone
        self._now_fn = now_fn
        self.delete_window = timedelta(seconds=max(0, int(delete_window_s)))

    def _now(self) -> datetime:
        return self._now_fn().astimezone(self.timezone)

    def _validate(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        invoices_raw = payload.get("invoice_refs")
        if not normalize_invoice_refs(invoices_raw):
            invoices_raw = payload.get("document")
        invoice_refs = normalize_invoice_refs(invoices_raw)
        if not invoice_refs:
            raise ValidationError("Debe indicar al menos una factura.", code="RECORD_INVOICES_REQUIRED")
        amount = parse_amount(payload.get("amount"))
        if amount is None or amount <= 0:
            raise ValidationError("Monto inválido.", code="RECORD_AMOUNT_INVALID")
        vendor_code = _text(payload, "vendor_code")
        if not vendor_code:
            raise ValidationError("Vendedor requerido.", code="RECORD_VENDOR_REQUIRED")
        client_code = _text(payload, "client_code")
        if not client_code:
            raise ValidationError("Código de cliente requerido.", code="RECORD_CLIENT_REQUIRED")
        return {
            "invoice_refs": invoice_refs,
            "amount": amount,
            "vendor_code": vendor_code,
            "client_code": client_code,
        }

    def submit(self, payload: Mapping[str, Any], creator_identity: str) -> str:
        creator = normalize_identity(creator_identity)
        if not creator:
            raise ValidationError("creator identity is required")
        checked = self._validate(payload)
        directory = self.directory_source.load()
        seller = directory.seller(checked["vendor_code"])

        created_at = self._now()
        receiving_bank = _text(payload, "receiving_bank")
        partition = resolve_partition_key(
            self.strategy,
            created_at,
            vendor_code=checked["vendor_code"],
            bank_code=receiving_bank,
        )
        missing = missing_codes(self.strategy, vendor_code=checked["vendor_code"], bank_code=receiving_bank)
        if missing:
            logger.warning(
                "partition_strategy_fallback strategy=%s missing=%s partition=%s",
                self.strategy.value,
                ",".join(missing),
                partition,
            )
        self.store.ensure_partition(partition)

        reference_number = _text(payload, "reference_number")
        # Check-then-append is not atomic; concurrent submits can both pass.
        if reference_number and reference_number in self.store.reference_numbers(partition):
            logger.info(
                "submission_rejected reason=duplicate_reference partition=%s creator=%s",
                partition,
                creator,
            )
            raise ConflictError(DUPLICATE_REFERENCE_MESSAGE)

        record = Record(
            record_id=new_record_id(created_at),
            vendor_code=checked["vendor_code"],
            vendor_name=seller.name if seller is not None else checked["vendor_code"],
            client_code=checked["client_code"],
            client_name=_text(payload, "client_name"),
            invoice_refs=checked["invoice_refs"],
            amount=checked["amount"],
            payment_method=_text(payload, "payment_method"),
            issuing_bank=_text(payload, "issuing_bank"),
            receiving_bank=receiving_bank,
            reference_number=reference_number,
            collection_type=_text(payload, "collection_type"),
            payment_date=_text(payload, "payment_date"),
            observations=_text(payload, "observations"),
            creator_identity=creator,
            branch=seller.branch if seller is not None else "",
            created_at=created_at,
        )
        located = self.store.append(partition, record)
        self.update_signal.touch(now_ms=int(created_at.timestamp() * 1000))
        logger.info(
            "submission_accepted record_id=%s partition=%s position=%s creator=%s invoices=%s",
            record.record_id,
            partition,
            located.position,
            creator,
            record.invoice_refs,
        )
        return record.record_id

    def submit_many(self, payloads: Sequence[Mapping[str, Any]], creator_identity: str) -> list[Outcome]:
        outcomes: list[Outcome] = []
        for payload in payloads:
            outcomes.append(attempt(lambda payload=payload: self.submit(payload, creator_identity)))
        return outcomes

    def _within_window(self, record: Record, now: datetime) -> bool:
        if record.created_at is None:
            return False
        created_at = record.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=self.timezone)
        return now - created_at < self.delete_window

    def delete_record(self, locator: str, actor: Actor) -> dict[str, Any]:
        decoded = RecordLocator.decode(locator)
        located = self.store.get(decoded)
        record = located.record
        if normalize_identity(record.creator_identity) != actor.identity:
            logger.warning(
                "record_delete_denied reason=not_creator record_id=%s partition=%s actor=%s",
                record.record_id,
                decoded.partition,
                actor.identity,
            )
            raise PermissionDeniedError("No tienes permiso para eliminar este registro.")
        now = self._now()
        if not self._within_window(record, now):
            logger.warning(
                "record_delete_denied reason=window_elapsed record_id=%s partition=%s actor=%s",
                record.record_id,
                decoded.partition,
                actor.identity,
            )
            raise PermissionDeniedError(
                "No se puede eliminar un registro después de 5 minutos de su creación.",
                code="RECORD_DELETE_WINDOW_ELAPSED",
            )
        entry = {
            "deletion_id": f"del_{uuid.uuid4().hex[:12]}",
            "record_id": record.record_id,
            "deleted_at": now.isoformat(),
            "deleted_by": actor.identity,
            "partition": decoded.partition,
            "record": record.cell_values(),
        }
        self.deleted_records_repository.append(entry=entry)
        self.store.delete(decoded)
        logger.info(
            "record_deleted record_id=%s partition=%s position=%s actor=%s",
            record.record_id,
            decoded.partition,
            decoded.position,
            actor.identity,
        )
        return {"record_id": record.record_id, "deleted": True}

    def list_recent_submissions(
        self,
        actor: Actor,
        *,
        vendor_code: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Newest submissions visible to the actor, each flagged with whether it can still be deleted."""
        limit = max(1, int(limit))
        fetch_cap = limit * RECENT_FETCH_MULTIPLIER
        collected: list[LocatedRecord] = []
        for name in sort_newest_first(self.store.list_partitions()):
            if len(collected) >= fetch_cap:
                break
            collected.extend(self.store.read_partition(name))

        directory = self.directory_source.load()
        vendor_filter = str(vendor_code or "").strip()
        if actor.is_admin:
            if vendor_filter:
                visible = [x for x in collected if x.record.vendor_code == vendor_filter]
            else:
                visible = collected
        else:
            owned = directory.sellers_for_owner(actor.identity)
            owned_codes = {x.code for x in owned}
            owned_names = {x.name for x in owned}
            visible = [
                x
                for x in collected
                if x.record.vendor_code in owned_codes
                or x.record.vendor_name in owned_names
                or normalize_identity(x.record.creator_identity) == actor.identity
            ]

        visible.sort(key=lambda x: x.record.created_timestamp(self.timezone), reverse=True)
        now = self._now()
        items: list[dict[str, Any]] = []
        for located in visible[:limit]:
            view = located.as_view()
            view["can_delete"] = normalize_identity(
                located.record.creator_identity
            ) == actor.identity and self._within_window(located.record, now)
            items.append(view)
        return items

    def check_for_updates(self, client_timestamp: int | str | None) -> dict[str, Any]:
        server_timestamp = self.update_signal.last()
        try:
            client_value = int(client_timestamp) if client_timestamp not in (None, "") else 0
        except (TypeError, ValueError):
            client_value = 0
        return {
            "new_updates": server_timestamp is not None and server_timestamp > client_value,
            "server_timestamp": server_timestamp,
        }
