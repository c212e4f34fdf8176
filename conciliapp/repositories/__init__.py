from conciliapp.repositories.audit_logs import InMemoryAuditLogsRepository, PostgresAuditLogsRepository
from conciliapp.repositories.deleted_records import (
    InMemoryDeletedRecordsRepository,
    PostgresDeletedRecordsRepository,
)
from conciliapp.repositories.overrides import InMemoryOverridesRepository, PostgresOverridesRepository
from conciliapp.repositories.partitions import InMemoryPartitionsRepository, PostgresPartitionsRepository

__all__ = [
    "InMemoryAuditLogsRepository",
    "PostgresAuditLogsRepository",
    "InMemoryDeletedRecordsRepository",
    "PostgresDeletedRecordsRepository",
    "InMemoryOverridesRepository",
    "PostgresOverridesRepository",
    "InMemoryPartitionsRepository",
    "PostgresPartitionsRepository",
]
