"""
Domain models for the workflow graph produced by the visual editor.

All models use Pydantic for validation and serialization. Field names are
snake_case in Python and camelCase on the wire, so the editor's graph
document loads verbatim.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EventType(str, Enum):
    """Platform events that can trigger a workflow."""

    ORDER_CREATED = "ORDER_CREATED"
    PAYIN_RECEIVED = "PAYIN_RECEIVED"
    PAYOUT_REQUESTED = "PAYOUT_REQUESTED"
    KYC_SUBMITTED = "KYC_SUBMITTED"
    USER_REGISTERED = "USER_REGISTERED"
    WALLET_ADDED = "WALLET_ADDED"
    AMOUNT_THRESHOLD = "AMOUNT_THRESHOLD"


class NodeKind(str, Enum):
    """Closed set of node kinds."""

    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"


class Operator(str, Enum):
    """Condition and filter operators."""

    EQ = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    MATCHES = "matches"


class FilterLogic(str, Enum):
    """How trigger filter rules are combined."""

    AND = "AND"
    OR = "OR"


# Edge handles
HANDLE_TRUE = "true"
HANDLE_FALSE = "false"
HANDLE_OUTPUT = "output"
CONDITION_HANDLES = (HANDLE_TRUE, HANDLE_FALSE)


# ==================== Node Payloads ====================

class FilterRule(CamelModel):
    """A single `{field, operator, value}` predicate of a trigger filter."""

    field: str = Field(..., min_length=1, description="Dotted path into the event context")
    operator: Operator
    value: Any = None


class TriggerPayload(CamelModel):
    """Trigger node data."""

    event_type: EventType
    filter: list[FilterRule] = Field(default_factory=list)
    logic: FilterLogic = Field(default=FilterLogic.AND)
    filter_enabled: bool = Field(default=True, description="Disabled filters always match")


class ConditionPayload(CamelModel):
    """Condition node data."""

    field: str = Field(..., min_length=1, description="Dotted path into the event context")
    operator: Operator
    value: Any = None
    label: Optional[str] = None


class ActionPayload(CamelModel):
    """
    Action node data.

    `config` is opaque here and validated by the registered handler.
    `continueOnError` may be given either on the payload or inside `config`.
    """

    action_type: str = Field(..., min_length=1, description="ActionRegistry key")
    config: dict[str, Any] = Field(default_factory=dict)
    continue_on_error: bool = Field(default=False)
    label: Optional[str] = None

    @model_validator(mode="after")
    def read_continue_on_error_from_config(self) -> "ActionPayload":
        """Honour a `continueOnError` flag placed inside the action config."""
        if "continue_on_error" not in self.model_fields_set and "continueOnError" in self.config:
            self.continue_on_error = bool(self.config["continueOnError"])
        return self


# ==================== Nodes and Edges ====================

class _NodeBase(CamelModel):
    id: str = Field(..., min_length=1, max_length=255, description="Unique node identifier")
    position: Optional[dict[str, float]] = Field(default=None, description="Editor canvas position")


class TriggerNode(_NodeBase):
    kind: Literal["trigger"] = "trigger"
    payload: TriggerPayload


class ConditionNode(_NodeBase):
    kind: Literal["condition"] = "condition"
    payload: ConditionPayload


class ActionNode(_NodeBase):
    kind: Literal["action"] = "action"
    payload: ActionPayload


Node = Annotated[Union[TriggerNode, ConditionNode, ActionNode], Field(discriminator="kind")]


class Edge(CamelModel):
    """Directed edge between two nodes, leaving through a named handle."""

    id: Optional[str] = None
    source_node_id: str = Field(..., min_length=1)
    target_node_id: str = Field(..., min_length=1)
    source_handle: str = Field(default=HANDLE_OUTPUT)

    @field_validator("source_handle", mode="before")
    @classmethod
    def normalize_handle(cls, v: Any) -> str:
        """Missing handles are the implicit `output`; booleans map to branch handles."""
        if v is None or v == "":
            return HANDLE_OUTPUT
        if isinstance(v, bool):
            return HANDLE_TRUE if v else HANDLE_FALSE
        return str(v)

    @property
    def label(self) -> str:
        """Human readable reference used in validation messages."""
        if self.id:
            return self.id
        return f"{self.source_node_id}->{self.target_node_id}"


class GraphModel(CamelModel):
    """Editable node/edge graph. Holds no logic beyond lookups."""

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    version: int = Field(default=0, ge=0, description="Incremented on every successful compile")

    def get_node(self, node_id: str) -> Optional[Union[TriggerNode, ConditionNode, ActionNode]]:
        """Get node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_trigger_nodes(self) -> list[TriggerNode]:
        """Get all trigger nodes (a valid graph has exactly one)."""
        return [node for node in self.nodes if isinstance(node, TriggerNode)]

    def get_outgoing_edges(self, node_id: str) -> list[Edge]:
        """Get edges leaving a node, in document order."""
        return [edge for edge in self.edges if edge.source_node_id == node_id]


# ==================== Event Ingress ====================

# Context keys holding the entity id, per event type.
ENTITY_ID_FIELDS: dict[EventType, str] = {
    EventType.ORDER_CREATED: "orderId",
    EventType.AMOUNT_THRESHOLD: "orderId",
    EventType.PAYIN_RECEIVED: "payInId",
    EventType.PAYOUT_REQUESTED: "payOutId",
    EventType.KYC_SUBMITTED: "kycSessionId",
    EventType.USER_REGISTERED: "userId",
    EventType.WALLET_ADDED: "walletId",
}

# Entity type recorded alongside traces, per event type.
ENTITY_TYPES: dict[EventType, str] = {
    EventType.ORDER_CREATED: "Order",
    EventType.AMOUNT_THRESHOLD: "Order",
    EventType.PAYIN_RECEIVED: "PayIn",
    EventType.PAYOUT_REQUESTED: "PayOut",
    EventType.KYC_SUBMITTED: "KYC",
    EventType.USER_REGISTERED: "User",
    EventType.WALLET_ADDED: "Wallet",
}


class EventEnvelope(CamelModel):
    """A platform event delivered to the dispatcher."""

    event_type: EventType
    entity_id: Optional[str] = Field(default=None, description="Derived from context when omitted")
    event_version: str = Field(default="1", description="Changes when the entity is re-emitted with new data")
    context: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("event_version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> str:
        """Accept integer versions from producers."""
        return str(v)

    @model_validator(mode="after")
    def resolve_entity_id(self) -> "EventEnvelope":
        """
        Fill entity_id from the conventional context key when missing.

        The entity id is part of the idempotency token, so an event without
        one is rejected rather than deduplicated against unrelated events.
        """
        if not self.entity_id:
            self.entity_id = derive_entity_id(self.event_type, self.context)
        if not self.entity_id:
            key = ENTITY_ID_FIELDS.get(self.event_type, "id")
            raise ValueError(
                f"{self.event_type.value} event needs an entityId or a '{key}' field in its context"
            )
        return self

    @property
    def entity_type(self) -> str:
        return ENTITY_TYPES.get(self.event_type, "Unknown")

    @property
    def idempotency_token(self) -> str:
        """Token identifying this delivery of this event, independent of workflow."""
        return f"{self.event_type.value}:{self.entity_id}:{self.event_version}"


def derive_entity_id(event_type: EventType, context: dict[str, Any]) -> Optional[str]:
    """Entity id from the event type's conventional context key, falling back to `id`."""
    key = ENTITY_ID_FIELDS.get(event_type)
    value = context.get(key) if key else None
    if value is None:
        value = context.get("id")
    if value is None or value == "":
        return None
    return str(value)
