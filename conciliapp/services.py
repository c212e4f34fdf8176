from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from conciliapp.assignment import DEFAULT_LOCK_WAIT_SECONDS, AssignmentEngine
from conciliapp.audit import AuditTrail
from conciliapp.coordination import (
    DEFAULT_CURSOR_TTL_SECONDS,
    Coordination,
    _env_int,
    create_coordination_from_env,
)
from conciliapp.db.postgres import PostgresTxRunner
from conciliapp.db.schema import ensure_schema
from conciliapp.directory import create_directory_source_from_env
from conciliapp.ingestion import DEFAULT_DELETE_WINDOW_SECONDS, IngestionService
from conciliapp.overrides import OverrideRegistry
from conciliapp.partitions import PartitionStrategy
from conciliapp.queries import QueryService
from conciliapp.record_store import RecordStore
from conciliapp.repositories import (
    InMemoryAuditLogsRepository,
    InMemoryDeletedRecordsRepository,
    InMemoryOverridesRepository,
    InMemoryPartitionsRepository,
    PostgresAuditLogsRepository,
    PostgresDeletedRecordsRepository,
    PostgresOverridesRepository,
    PostgresPartitionsRepository,
)
from conciliapp.review import ReviewStateMachine
from conciliapp.runtime_profile import true_stack_required

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Caracas"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _resolve_timezone(timezone_name: str) -> tzinfo:
    candidate = (timezone_name or DEFAULT_TIMEZONE).strip() or DEFAULT_TIMEZONE
    if candidate.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("timezone_unknown name=%s fallback=UTC", candidate)
        return UTC


@dataclass
class Repositories:
    partitions: Any
    audit_logs: Any
    deleted_records: Any
    overrides: Any
    backend: str = "memory"


def _create_repositories_from_env(env: Mapping[str, str]) -> Repositories:
    backend = env.get("CONCILIA_STORE_BACKEND", "memory").strip().lower()
    if backend == "memory":
        return Repositories(
            partitions=InMemoryPartitionsRepository({}),
            audit_logs=InMemoryAuditLogsRepository([]),
            deleted_records=InMemoryDeletedRecordsRepository([]),
            overrides=InMemoryOverridesRepository({}),
            backend="memory",
        )
    if backend == "postgres":
        dsn = env.get("POSTGRES_DSN", "").strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must be set when CONCILIA_STORE_BACKEND=postgres")
        tx_runner = PostgresTxRunner(dsn)
        ensure_schema(tx_runner)
        return Repositories(
            partitions=PostgresPartitionsRepository(tx_runner=tx_runner),
            audit_logs=PostgresAuditLogsRepository(tx_runner=tx_runner),
            deleted_records=PostgresDeletedRecordsRepository(tx_runner=tx_runner),
            overrides=PostgresOverridesRepository(tx_runner=tx_runner),
            backend="postgres",
        )
    raise RuntimeError(f"unsupported store backend: {backend}")


@dataclass
class Services:
    store: RecordStore
    ingestion: IngestionService
    assignment: AssignmentEngine
    review: ReviewStateMachine
    overrides: OverrideRegistry
    queries: QueryService
    audit_trail: AuditTrail
    directory_source: Any
    coordination: Coordination
    repositories: Repositories
    timezone: tzinfo
    now_fn: Callable[[], datetime]


def build_services(
    environ: Mapping[str, str] | None = None,
    *,
    directory_source: Any | None = None,
    now_fn: Callable[[], datetime] | None = None,
    timezone: tzinfo | None = None,
    coordination: Coordination | None = None,
) -> Services:
    """Wire every component from environment settings.

    Explicit arguments win over the environment so tests can pin the clock,
    the timezone and the directory.
    """
    env = os.environ if environ is None else environ
    strict = true_stack_required(env)
    repositories = _create_repositories_from_env(env)
    coordination = coordination or create_coordination_from_env(env)
    if strict and (repositories.backend == "memory" or coordination.backend == "memory"):
        raise RuntimeError(
            "in-memory backends refused: set CONCILIA_STORE_BACKEND=postgres and "
            "CONCILIA_COORDINATION_BACKEND=redis"
        )

    clock = now_fn or _utcnow
    tz = timezone or _resolve_timezone(env.get("CONCILIA_TIMEZONE", DEFAULT_TIMEZONE))
    directory = directory_source or create_directory_source_from_env(env)
    strategy = PartitionStrategy.from_setting(env.get("CONCILIA_PARTITION_BY", "NONE"))

    store = RecordStore(partitions_repository=repositories.partitions)
    audit_trail = AuditTrail(repository=repositories.audit_logs, now_fn=clock)
    overrides = OverrideRegistry(
        repository=repositories.overrides,
        directory_source=directory,
        now_fn=clock,
    )
    assignment = AssignmentEngine(
        store=store,
        directory_source=directory,
        override_rules=overrides.active_rules,
        lock=coordination.lock,
        cursors=coordination.cursors,
        lock_wait_s=_env_int(
            env,
            "CONCILIA_ASSIGNMENT_LOCK_WAIT_SECONDS",
            default=DEFAULT_LOCK_WAIT_SECONDS,
            minimum=0,
        ),
        cursor_ttl_s=_env_int(env, "CONCILIA_CURSOR_TTL_SECONDS", default=DEFAULT_CURSOR_TTL_SECONDS, minimum=1),
    )
    ingestion = IngestionService(
        store=store,
        directory_source=directory,
        update_signal=coordination.update_signal,
        deleted_records_repository=repositories.deleted_records,
        strategy=strategy,
        timezone=tz,
        now_fn=clock,
        delete_window_s=_env_int(
            env,
            "CONCILIA_DELETE_WINDOW_SECONDS",
            default=DEFAULT_DELETE_WINDOW_SECONDS,
            minimum=0,
        ),
    )
    review = ReviewStateMachine(store=store, audit_trail=audit_trail)
    queries = QueryService(
        store=store,
        assignment_engine=assignment,
        directory_source=directory,
        timezone=tz,
    )
    logger.info(
        "services_built store_backend=%s coordination_backend=%s partition_strategy=%s timezone=%s",
        repositories.backend,
        coordination.backend,
        strategy.value,
        tz,
    )
    return Services(
        store=store,
        ingestion=ingestion,
        assignment=assignment,
        review=review,
        overrides=overrides,
        queries=queries,
        audit_trail=audit_trail,
        directory_source=directory,
        coordination=coordination,
        repositories=repositories,
        timezone=tz,
        now_fn=clock,
    )
