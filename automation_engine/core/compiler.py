"""
Graph to decision-tree compiler.

Turns a validated GraphModel into a CompiledWorkflow:

- Condition -> Branch (true/false edges become onTrue/onFalse)
- run of consecutive Actions -> one Sequence, onComplete = compiled successor
- no successor -> Terminal

The walk uses an explicit work stack and the result is a flat id-keyed
table, so graph depth never touches the interpreter recursion limit. Every
graph node lands in exactly one compiled node; reaching a node twice means
the graph was not a tree.
"""

import logging
from typing import Optional, Union
from uuid import UUID

from automation_engine.core.compiled import ActionStep, Branch, CompiledWorkflow, Sequence
from automation_engine.core.errors import CompileError
from automation_engine.core.models import (
    HANDLE_FALSE,
    HANDLE_TRUE,
    ActionNode,
    ConditionNode,
    GraphModel,
    TriggerNode,
)
from automation_engine.core.validator import GraphValidator

logger = logging.getLogger(__name__)


class Compiler:
    """Compiles validator-passing graphs. Stateless; safe to share."""

    def compile(
        self,
        graph: GraphModel,
        workflow_id: Optional[UUID] = None,
        version: Optional[int] = None,
    ) -> CompiledWorkflow:
        """
        Compile a graph into its executable form.

        Args:
            graph: Editor graph that passed GraphValidator
            workflow_id: Owning workflow, stamped on the result
            version: Version to stamp (defaults to graph.version)

        Returns:
            CompiledWorkflow

        Raises:
            CompileError: If the graph is structurally invalid
        """
        result = GraphValidator().validate(graph)
        if not result.is_valid:
            logger.error(f"Compile attempted on invalid graph: {result.messages}")
            raise CompileError(f"Cannot compile invalid graph: {result.messages}")

        trigger = graph.get_trigger_nodes()[0]
        edges = graph.get_outgoing_edges(trigger.id)
        root: Optional[str] = None
        nodes: dict[str, Union[Branch, Sequence]] = {}
        if edges:
            root = edges[0].target_node_id
            nodes = _TreeBuilder(graph).build(root)

        compiled = CompiledWorkflow(
            workflow_id=workflow_id,
            version=graph.version if version is None else version,
            trigger_node_id=trigger.id,
            event_type=trigger.payload.event_type,
            filter=list(trigger.payload.filter),
            filter_logic=trigger.payload.logic,
            filter_enabled=trigger.payload.filter_enabled,
            root=root,
            nodes=nodes,
        )
        logger.debug(
            f"Compiled workflow {workflow_id} v{compiled.version} from trigger {trigger.id} "
            f"({len(nodes)} node(s))"
        )
        return compiled


class _TreeBuilder:
    """Builds the compiled node table over id-keyed adjacency."""

    def __init__(self, graph: GraphModel):
        self.graph = graph
        self.nodes = {node.id: node for node in graph.nodes}
        self.successors: dict[str, dict[str, str]] = {}
        for edge in graph.edges:
            self.successors.setdefault(edge.source_node_id, {})[edge.source_handle] = edge.target_node_id

    def build(self, start_id: str) -> dict[str, Union[Branch, Sequence]]:
        table: dict[str, Union[Branch, Sequence]] = {}
        consumed: set[str] = set()
        stack = [start_id]

        while stack:
            node_id = stack.pop()
            compiled, members = self._build_node(node_id)
            for member in members:
                if member in consumed:
                    raise CompileError(f"Node '{member}' is reached more than once")
                consumed.add(member)
            table[node_id] = compiled
            stack.extend(child for child in compiled.children if child is not None)

        return table

    def _node(self, node_id: str):
        node = self.nodes.get(node_id)
        if node is None:
            raise CompileError(f"Dangling reference to node '{node_id}'")
        if isinstance(node, TriggerNode):
            raise CompileError(f"Trigger node '{node_id}' cannot be a successor")
        return node

    def _next(self, node_id: str, handle: str = "output") -> Optional[str]:
        return self.successors.get(node_id, {}).get(handle)

    def _action_run(self, node_id: str) -> tuple[list[ActionNode], Optional[str]]:
        """Consecutive actions starting at node_id, plus the id following the run."""
        run: list[ActionNode] = []
        seen: set[str] = set()
        current: Optional[str] = node_id

        while current is not None:
            node = self._node(current)
            if not isinstance(node, ActionNode):
                break
            if current in seen:
                raise CompileError(f"Cycle detected at node '{current}'")
            seen.add(current)
            run.append(node)
            current = self._next(current)

        return run, current

    def _build_node(self, node_id: str) -> tuple[Union[Branch, Sequence], list[str]]:
        """Compiled node for node_id, plus the graph node ids it covers."""
        node = self._node(node_id)

        if isinstance(node, ConditionNode):
            branch = Branch(
                node_id=node_id,
                field=node.payload.field,
                operator=node.payload.operator,
                value=node.payload.value,
                on_true=self._next(node_id, HANDLE_TRUE),
                on_false=self._next(node_id, HANDLE_FALSE),
            )
            return branch, [node_id]

        run, after = self._action_run(node_id)
        steps = [
            ActionStep(
                node_id=action.id,
                action_type=action.payload.action_type,
                config=dict(action.payload.config),
                continue_on_error=action.payload.continue_on_error,
            )
            for action in run
        ]
        return Sequence(node_id=node_id, steps=steps, on_complete=after), [action.id for action in run]


def compile_graph(
    graph: GraphModel,
    workflow_id: Optional[UUID] = None,
    version: Optional[int] = None,
) -> CompiledWorkflow:
    """Convenience wrapper around Compiler().compile()."""
    return Compiler().compile(graph, workflow_id=workflow_id, version=version)
