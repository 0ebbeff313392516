"""
Executable form of a workflow.

A CompiledWorkflow is a decision tree of Branch and Sequence nodes kept in a
flat table keyed by node id. Children are referenced by id; a `None`
reference is the Terminal end of the workflow. The table never nests, so
serializing, copying and persisting a compiled form cost the same at any
graph depth. It is produced by the Compiler once per successful save and is
the only thing the Evaluator walks at dispatch time.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Iterator, Literal, Optional, Union
from uuid import UUID

from pydantic import Field, model_validator

from automation_engine.core.models import CamelModel, EventType, FilterLogic, FilterRule, Operator


class Terminal(CamelModel):
    """End of workflow; what a `None` child reference resolves to."""

    type: Literal["terminal"] = "terminal"


TERMINAL = Terminal()


class ActionStep(CamelModel):
    """One action invocation inside a Sequence."""

    node_id: str
    action_type: str
    config: dict[str, Any] = Field(default_factory=dict)
    continue_on_error: bool = False


class Sequence(CamelModel):
    """A run of consecutive actions followed by `onComplete`. Keyed by its first action."""

    type: Literal["sequence"] = "sequence"
    node_id: str
    steps: list[ActionStep] = Field(..., min_length=1)
    on_complete: Optional[str] = None

    @property
    def children(self) -> tuple[Optional[str], ...]:
        return (self.on_complete,)


class Branch(CamelModel):
    """Binary decision on a single predicate. A `None` side is Terminal."""

    type: Literal["branch"] = "branch"
    node_id: str
    field: str
    operator: Operator
    value: Any = None
    on_true: Optional[str] = None
    on_false: Optional[str] = None

    @property
    def children(self) -> tuple[Optional[str], ...]:
        return (self.on_true, self.on_false)


CompiledNode = Annotated[Union[Branch, Sequence], Field(discriminator="type")]


class CompiledWorkflow(CamelModel):
    """Serializable decision tree rooted at the trigger's successor."""

    workflow_id: Optional[UUID] = None
    version: int = Field(default=0, ge=0)
    trigger_node_id: str
    event_type: EventType
    filter: list[FilterRule] = Field(default_factory=list)
    filter_logic: FilterLogic = FilterLogic.AND
    filter_enabled: bool = True
    root: Optional[str] = None
    nodes: dict[str, CompiledNode] = Field(default_factory=dict)
    compiled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_tree(self) -> "CompiledWorkflow":
        """
        Reject tables that are not a single tree under `root`.

        Every reference must resolve, no node may have more than one parent
        and the root has none. Under those rules every node reachable from
        the root is visited once, so a cycle can only hide in an unreachable
        part of the table, which the final count catches.
        """
        referenced: set[str] = set()
        for key, node in self.nodes.items():
            if key != node.node_id:
                raise ValueError(f"Compiled node '{node.node_id}' is stored under key '{key}'")
            for child in node.children:
                if child is None:
                    continue
                if child not in self.nodes:
                    raise ValueError(f"Compiled node '{key}' references unknown node '{child}'")
                if child in referenced:
                    raise ValueError(f"Compiled node '{child}' has more than one parent")
                referenced.add(child)

        if self.root is None:
            if self.nodes:
                raise ValueError("Compiled nodes present without a root")
            return self
        if self.root not in self.nodes:
            raise ValueError(f"Root references unknown node '{self.root}'")
        if self.root in referenced:
            raise ValueError(f"Root node '{self.root}' has a parent")
        if sum(1 for _ in self.iter_nodes()) != len(self.nodes):
            raise ValueError("Compiled nodes not reachable from the root")
        return self

    def node(self, ref: Optional[str]) -> Union[Branch, Sequence, Terminal]:
        """Resolve a child reference."""
        if ref is None:
            return TERMINAL
        return self.nodes[ref]

    @property
    def root_node(self) -> Union[Branch, Sequence, Terminal]:
        return self.node(self.root)

    def iter_nodes(self) -> Iterator[Union[Branch, Sequence]]:
        """Pre-order walk over the tree, true side first."""
        stack = [self.root]
        while stack:
            ref = stack.pop()
            if ref is None:
                continue
            node = self.nodes[ref]
            yield node
            stack.extend(reversed(node.children))

    def iter_branches(self) -> Iterator[Branch]:
        for node in self.iter_nodes():
            if isinstance(node, Branch):
                yield node

    def iter_steps(self) -> Iterator[ActionStep]:
        for node in self.iter_nodes():
            if isinstance(node, Sequence):
                yield from node.steps
