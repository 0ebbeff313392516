"""
SQLAlchemy models for PostgreSQL persistence.

Workflows keep the editable graph and the compiled tree side by side as
JSONB; execution traces are append-only rows.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


class WorkflowModel(Base):
    """Stores workflows: graph, compiled form, status and execution stats."""

    __tablename__ = "workflows"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT", index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    # Trigger event of the compiled form, denormalized for dispatch lookups
    event_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    graph: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    compiled: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Stats
    execution_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_workflows_dispatch", "status", "event_type", "priority"),
    )


class ExecutionTraceModel(Base):
    """Stores execution traces. Rows are inserted once and never updated."""

    __tablename__ = "execution_traces"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    workflow_id: Mapped[Optional[UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    workflow_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True, unique=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    event_context: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    # Full trace document (NodeResults included), camelCase
    trace: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_execution_traces_workflow_started", "workflow_id", "started_at"),
    )
