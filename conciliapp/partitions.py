"""Partition naming for collection records.

Records are sharded into monthly partitions, optionally split further by
vendor code, receiving bank, or both. Names are part of the persisted layout:

    REG_2025_mar
    V_V001_2025_mar
    B_BANESCO_2025_mar
    V_V001_B_BANESCO_2025_mar

Month tokens come from a fixed lowercase table so names never depend on the
host locale.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

MONTH_ABBREVIATIONS: tuple[str, ...] = (
    "ene",
    "feb",
    "mar",
    "abr",
    "may",
    "jun",
    "jul",
    "ago",
    "sep",
    "oct",
    "nov",
    "dic",
)

GENERAL_PREFIX = "REG_"
VENDOR_PREFIX = "V_"
BANK_PREFIX = "B_"

PARTITION_NAME_PATTERN = re.compile(
    r"^(?P<prefix>REG|V_.+_B_.+|V_.+|B_.+)_(?P<year>\d{4})_(?P<month>" + "|".join(MONTH_ABBREVIATIONS) + r")$"
)


class PartitionStrategy(str, Enum):
    BY_MONTH = "by_month"
    BY_VENDOR = "by_vendor"
    BY_BANK = "by_bank"
    BY_VENDOR_AND_BANK = "by_vendor_and_bank"

    @classmethod
    def from_setting(cls, raw: str | None) -> "PartitionStrategy":
        value = (raw or "").strip()
        if not value:
            return cls.BY_MONTH
        legacy = {
            "NONE": cls.BY_MONTH,
            "VENDOR": cls.BY_VENDOR,
            "BANK": cls.BY_BANK,
            "VENDOR_AND_BANK": cls.BY_VENDOR_AND_BANK,
        }
        if value.upper() in legacy:
            return legacy[value.upper()]
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"unsupported partition strategy: {raw}") from None


def _clean_code(value: str | None) -> str:
    return str(value or "").strip()


def missing_codes(
    strategy: PartitionStrategy,
    *,
    vendor_code: str | None = None,
    bank_code: str | None = None,
) -> list[str]:
    """Return the codes the strategy needs but did not receive."""
    missing: list[str] = []
    if strategy in {PartitionStrategy.BY_VENDOR, PartitionStrategy.BY_VENDOR_AND_BANK}:
        if not _clean_code(vendor_code):
            missing.append("vendor_code")
    if strategy in {PartitionStrategy.BY_BANK, PartitionStrategy.BY_VENDOR_AND_BANK}:
        if not _clean_code(bank_code):
            missing.append("bank_code")
    return missing


def month_suffix(timestamp: datetime) -> str:
    return f"{timestamp.year:04d}_{MONTH_ABBREVIATIONS[timestamp.month - 1]}"


def resolve_partition_key(
    strategy: PartitionStrategy,
    timestamp: datetime,
    vendor_code: str | None = None,
    bank_code: str | None = None,
) -> str:
    """Map a creation timestamp and shard codes to a partition name.

    Deterministic for equal inputs. A strategy whose required code is blank
    falls back to the general monthly partition; callers that care can detect
    this with :func:`missing_codes`.
    """
    vendor = _clean_code(vendor_code)
    bank = _clean_code(bank_code)
    suffix = month_suffix(timestamp)
    if missing_codes(strategy, vendor_code=vendor, bank_code=bank):
        return f"{GENERAL_PREFIX}{suffix}"
    if strategy is PartitionStrategy.BY_VENDOR:
        return f"{VENDOR_PREFIX}{vendor}_{suffix}"
    if strategy is PartitionStrategy.BY_BANK:
        return f"{BANK_PREFIX}{bank}_{suffix}"
    if strategy is PartitionStrategy.BY_VENDOR_AND_BANK:
        return f"{VENDOR_PREFIX}{vendor}_{BANK_PREFIX}{bank}_{suffix}"
    return f"{GENERAL_PREFIX}{suffix}"


def is_partition_name(name: str) -> bool:
    return PARTITION_NAME_PATTERN.match(name) is not None


def partition_period(name: str) -> tuple[int, int] | None:
    match = PARTITION_NAME_PATTERN.match(name)
    if match is None:
        return None
    return int(match.group("year")), MONTH_ABBREVIATIONS.index(match.group("month")) + 1


def sort_newest_first(names: list[str]) -> list[str]:
    """Order partition names by period, newest month first; ties keep input order."""
    periods = {name: partition_period(name) for name in names}
    recognised = [name for name in names if periods[name] is not None]
    return sorted(recognised, key=lambda name: periods[name], reverse=True)


def months_to_prepare(now: datetime) -> list[datetime]:
    """Current month plus the following one, as first-of-month timestamps."""
    current = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if current.month == 12:
        following = current.replace(year=current.year + 1, month=1)
    else:
        following = current.replace(month=current.month + 1)
    return [current, following]
