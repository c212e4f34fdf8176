from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from datetime import datetime
from typing import Any

from conciliapp.errors import NotFoundError
from conciliapp.partitions import GENERAL_PREFIX, is_partition_name, month_suffix, months_to_prepare
from conciliapp.records import (
    COLUMN_BY_FIELD,
    RECORD_HEADER,
    LocatedRecord,
    Record,
    RecordLocator,
    header_version,
)

logger = logging.getLogger(__name__)


class RecordStore:
    """Named-field access over positional partition rows.

    Each partition keeps the header it was created with. Reads resolve columns
    by label so partitions created under older headers stay readable; writes
    skip fields the partition's header does not carry.
    """

    def __init__(self, *, partitions_repository: Any, header: Sequence[str] = RECORD_HEADER) -> None:
        self.partitions_repository = partitions_repository
        self.header = tuple(header)
        self._headers: dict[str, list[str]] = {}

    def ensure_partition(self, name: str, header: Sequence[str] | None = None) -> dict[str, Any]:
        info = self.partitions_repository.ensure(name=name, header=list(header or self.header))
        self._headers[name] = list(info["header"])
        if info.get("created"):
            logger.info("partition_created name=%s header_version=%s", name, header_version(info["header"]))
        return info

    def partition_header(self, name: str) -> list[str] | None:
        cached = self._headers.get(name)
        if cached is not None:
            return list(cached)
        header = self.partitions_repository.header(name=name)
        if header is not None:
            self._headers[name] = list(header)
        return header

    def list_partitions(self) -> list[str]:
        """Partition names in creation order; tables not matching the naming pattern are skipped."""
        return [name for name in self.partitions_repository.list_names() if is_partition_name(name)]

    def read_partition(self, name: str) -> list[LocatedRecord]:
        header = self.partition_header(name)
        if header is None:
            return []
        rows = self.partitions_repository.read_rows(name=name)
        return [
            LocatedRecord(partition=name, position=position, record=Record.from_row(header, row))
            for position, row in enumerate(rows)
        ]

    def iter_records(self, partitions: Sequence[str] | None = None) -> Iterator[LocatedRecord]:
        names = list(partitions) if partitions is not None else self.list_partitions()
        for name in names:
            yield from self.read_partition(name)

    def reference_numbers(self, name: str) -> set[str]:
        header = self.partition_header(name)
        if header is None:
            return set()
        label = COLUMN_BY_FIELD["reference_number"]
        if label not in header:
            return set()
        column = self.partitions_repository.read_column(name=name, column_index=header.index(label))
        return {str(x).strip() for x in column if str(x).strip()}

    def append(self, name: str, record: Record) -> LocatedRecord:
        header = self.partition_header(name)
        if header is None:
            header = list(self.ensure_partition(name)["header"])
        position = self.partitions_repository.append(name=name, row=record.to_row(header))
        return LocatedRecord(partition=name, position=position, record=record)

    def get(self, locator: RecordLocator) -> LocatedRecord:
        header = self.partition_header(locator.partition)
        if header is None:
            raise NotFoundError("record partition not found")
        row = self.partitions_repository.read_row(name=locator.partition, position=locator.position)
        if row is None:
            raise NotFoundError("record not found; locator is stale")
        record = Record.from_row(header, row)
        if locator.record_id and record.record_id != locator.record_id:
            raise NotFoundError("record moved; locator is stale")
        return LocatedRecord(partition=locator.partition, position=locator.position, record=record)

    def _column_updates(self, header: Sequence[str], values: dict[str, str]) -> dict[int, str]:
        cells: dict[int, str] = {}
        for field_name, value in values.items():
            label = COLUMN_BY_FIELD.get(field_name)
            if label is None or label not in header:
                logger.warning("record_field_not_in_header field=%s", field_name)
                continue
            cells[list(header).index(label)] = "" if value is None else str(value)
        return cells

    def update_fields(
        self,
        name: str,
        updates: list[tuple[int, dict[str, str]]],
        *,
        expected_record_ids: dict[int, str] | None = None,
    ) -> list[int]:
        """Apply several row updates to one partition in a single repository call.

        With ``expected_record_ids`` rows whose id no longer matches (shifted by a
        deletion since they were read) are skipped. Returns the positions written.
        """
        header = self.partition_header(name)
        if header is None:
            raise NotFoundError("record partition not found")
        if expected_record_ids:
            id_label = COLUMN_BY_FIELD["record_id"]
            current_ids = (
                self.partitions_repository.read_column(name=name, column_index=header.index(id_label))
                if id_label in header
                else []
            )
            kept: list[tuple[int, dict[str, str]]] = []
            for position, values in updates:
                expected = expected_record_ids.get(position)
                actual = current_ids[position] if position < len(current_ids) else None
                if expected and actual != expected:
                    logger.warning(
                        "record_update_skipped reason=row_moved partition=%s position=%s record_id=%s",
                        name,
                        position,
                        expected,
                    )
                    continue
                kept.append((position, values))
            updates = kept
        batch = [(position, self._column_updates(header, values)) for position, values in updates]
        batch = [(position, cells) for position, cells in batch if cells]
        if not batch:
            return []
        return list(self.partitions_repository.update_cells(name=name, updates=batch))

    def delete(self, locator: RecordLocator) -> Record:
        located = self.get(locator)
        removed = self.partitions_repository.delete_row(name=locator.partition, position=locator.position)
        if removed is None:
            raise NotFoundError("record not found; locator is stale")
        return located.record

    def prepare_monthly_partitions(self, now: datetime) -> list[dict[str, Any]]:
        """Ensure the general partition for the current and next month."""
        prepared: list[dict[str, Any]] = []
        for month_start in months_to_prepare(now):
            prepared.append(self.ensure_partition(f"{GENERAL_PREFIX}{month_suffix(month_start)}"))
        return prepared
