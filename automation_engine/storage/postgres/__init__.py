"""PostgreSQL storage layer."""

from automation_engine.storage.postgres.models import Base, ExecutionTraceModel, WorkflowModel
from automation_engine.storage.postgres.repository import WorkflowRepository
from automation_engine.storage.postgres.database import Database
from automation_engine.storage.postgres.stores import PostgresExecutionStore, PostgresWorkflowStore

__all__ = [
    "Base",
    "ExecutionTraceModel",
    "WorkflowModel",
    "WorkflowRepository",
    "Database",
    "PostgresExecutionStore",
    "PostgresWorkflowStore",
]
