"""
Execution trace records.

An ExecutionTrace is the immutable historical record of one dispatch.
Editor highlighting is derived from it by projection, never stored on it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from uuid import UUID, uuid4

from pydantic import ConfigDict, Field

from automation_engine.core.models import CamelModel, EventType, GraphModel, TriggerNode


class NodeStatus(str, Enum):
    """Outcome of a visited Branch or ActionStep."""

    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class TraceStatus(str, Enum):
    """Outcome of a whole run."""

    SUCCESS = "success"
    ERROR = "error"


class NodeResult(CamelModel):
    """Result of one visited node."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    kind: Literal["branch", "action"]
    status: NodeStatus
    started_at: datetime
    duration_ms: int = Field(default=0, ge=0)
    attempts: int = Field(default=1, ge=0)
    output: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class ExecutionTrace(CamelModel):
    """One dispatch of one workflow against one event."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    workflow_id: Optional[UUID] = None
    workflow_version: int = 0
    event_type: EventType
    entity_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    event_context: dict[str, Any] = Field(default_factory=dict)
    results: tuple[NodeResult, ...] = ()
    status: TraceStatus = TraceStatus.SUCCESS
    error: Optional[str] = None
    dry_run: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: int = 0

    @property
    def visited_node_ids(self) -> list[str]:
        return [result.node_id for result in self.results]

    def result_for(self, node_id: str) -> Optional[NodeResult]:
        """Last result recorded for a node (None when not visited)."""
        for result in reversed(self.results):
            if result.node_id == node_id:
                return result
        return None


def project_node_statuses(trace: ExecutionTrace, graph: GraphModel) -> dict[str, str]:
    """
    Replay a trace over the editable graph for display.

    Returns node_id -> "success" | "error" | "skipped" | "idle". The trigger
    is "success" whenever the trace exists; nodes the run never reached are
    "idle". Nodes that no longer exist in the graph are ignored.
    """
    statuses: dict[str, str] = {}
    for node in graph.nodes:
        if isinstance(node, TriggerNode):
            statuses[node.id] = NodeStatus.SUCCESS.value
            continue
        result = trace.result_for(node.id)
        statuses[node.id] = result.status.value if result else "idle"
    return statuses
