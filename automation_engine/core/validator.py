"""
Graph validation for editor-produced workflow graphs.

Every rule is checked independently and all violations are collected, so
the editor can show the full list at once. Cycle detection uses Kahn's
algorithm over the id-keyed adjacency.
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from automation_engine.core.models import (
    CONDITION_HANDLES,
    HANDLE_OUTPUT,
    ActionNode,
    ConditionNode,
    Edge,
    GraphModel,
    Operator,
    TriggerNode,
)
from automation_engine.core.operators import validate_operand

if TYPE_CHECKING:
    from automation_engine.actions.registry import ActionRegistry


@dataclass
class ValidationError:
    """Represents a single validation error."""

    code: str
    message: str
    node_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "nodeId": self.node_id,
            "details": self.details,
        }


@dataclass
class ValidationResult:
    """Result of graph validation."""

    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)

    # Populated when the graph is acyclic
    topological_order: list[str] = field(default_factory=list)

    def add_error(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        **details: Any,
    ) -> None:
        """Add a validation error."""
        self.errors.append(ValidationError(code, message, node_id, details))
        self.is_valid = False

    @property
    def messages(self) -> list[str]:
        """Error messages in the order they were found."""
        return [error.message for error in self.errors]

    @property
    def codes(self) -> list[str]:
        return [error.code for error in self.errors]


class GraphValidator:
    """
    Validates graph structure against the trigger -> condition -> action rules.

    The registry is optional; without one, action types and configs are not
    checked.
    """

    def __init__(self, registry: Optional["ActionRegistry"] = None):
        self.registry = registry

    def validate(self, graph: GraphModel) -> ValidationResult:
        """
        Perform full validation of the graph.

        Returns:
            ValidationResult with every violation found
        """
        result = ValidationResult(is_valid=True)
        check = _GraphCheck(graph, self.registry, result)

        check.validate_node_ids()
        check.validate_trigger_count()
        check.validate_edge_references()
        check.validate_no_self_loops()
        check.validate_outgoing_edges()
        check.validate_incoming_edges()
        check.detect_cycles()
        check.check_unreachable_nodes()
        check.validate_payloads()

        return result


class _GraphCheck:
    """Per-validation working state (adjacency built once from valid edges)."""

    def __init__(self, graph: GraphModel, registry: Optional["ActionRegistry"], result: ValidationResult):
        self.graph = graph
        self.registry = registry
        self.result = result

        self.node_map: dict[str, Any] = {}
        for node in graph.nodes:
            self.node_map.setdefault(node.id, node)

        self.outgoing: dict[str, list[Edge]] = defaultdict(list)
        self.adjacency: dict[str, list[str]] = defaultdict(list)
        for edge in graph.edges:
            self.outgoing[edge.source_node_id].append(edge)
            if edge.source_node_id in self.node_map and edge.target_node_id in self.node_map:
                self.adjacency[edge.source_node_id].append(edge.target_node_id)

        self.triggers = [node for node in self.node_map.values() if isinstance(node, TriggerNode)]

    def validate_node_ids(self) -> None:
        seen: set[str] = set()
        for node in self.graph.nodes:
            if node.id in seen:
                self.result.add_error(
                    code="DUPLICATE_NODE_ID",
                    message=f"Node id '{node.id}' is used more than once",
                    node_id=node.id,
                )
            seen.add(node.id)

    def validate_trigger_count(self) -> None:
        if not self.triggers:
            self.result.add_error(
                code="MISSING_TRIGGER",
                message="Workflow must have exactly one trigger node, found none",
            )
        elif len(self.triggers) > 1:
            ids = [node.id for node in self.triggers]
            self.result.add_error(
                code="MULTIPLE_TRIGGERS",
                message=f"Workflow must have exactly one trigger node, found {len(ids)}: {ids}",
                trigger_nodes=ids,
            )

    def validate_edge_references(self) -> None:
        """Validate that every edge points at existing nodes on both ends."""
        for edge in self.graph.edges:
            if edge.source_node_id not in self.node_map:
                self.result.add_error(
                    code="UNKNOWN_EDGE_SOURCE",
                    message=f"Edge '{edge.label}' references non-existent source node '{edge.source_node_id}'",
                    edge_id=edge.id,
                )
            if edge.target_node_id not in self.node_map:
                self.result.add_error(
                    code="UNKNOWN_EDGE_TARGET",
                    message=f"Edge '{edge.label}' references non-existent target node '{edge.target_node_id}'",
                    edge_id=edge.id,
                )
            elif isinstance(self.node_map[edge.target_node_id], TriggerNode):
                self.result.add_error(
                    code="EDGE_INTO_TRIGGER",
                    message=f"Edge '{edge.label}' points into trigger node '{edge.target_node_id}'",
                    node_id=edge.target_node_id,
                    edge_id=edge.id,
                )

    def validate_no_self_loops(self) -> None:
        for edge in self.graph.edges:
            if edge.source_node_id == edge.target_node_id and edge.source_node_id in self.node_map:
                self.result.add_error(
                    code="SELF_LOOP",
                    message=f"Node '{edge.source_node_id}' has an edge to itself",
                    node_id=edge.source_node_id,
                    edge_id=edge.id,
                )

    def validate_outgoing_edges(self) -> None:
        """Branch handles on conditions, single successor elsewhere."""
        for node_id, node in self.node_map.items():
            edges = self.outgoing.get(node_id, [])

            if isinstance(node, ConditionNode):
                by_handle: dict[str, int] = defaultdict(int)
                for edge in edges:
                    if edge.source_handle not in CONDITION_HANDLES:
                        self.result.add_error(
                            code="INVALID_HANDLE",
                            message=(
                                f"Condition '{node_id}' edge '{edge.label}' uses handle "
                                f"'{edge.source_handle}', expected 'true' or 'false'"
                            ),
                            node_id=node_id,
                            edge_id=edge.id,
                        )
                        continue
                    by_handle[edge.source_handle] += 1
                for handle in CONDITION_HANDLES:
                    count = by_handle.get(handle, 0)
                    if count == 0:
                        self.result.add_error(
                            code="MISSING_BRANCH",
                            message=f"Condition '{node_id}' is missing its '{handle}' branch",
                            node_id=node_id,
                            handle=handle,
                        )
                    elif count > 1:
                        self.result.add_error(
                            code="DUPLICATE_BRANCH",
                            message=f"Condition '{node_id}' has {count} '{handle}' branches",
                            node_id=node_id,
                            handle=handle,
                        )
                continue

            for edge in edges:
                if edge.source_handle != HANDLE_OUTPUT:
                    self.result.add_error(
                        code="INVALID_HANDLE",
                        message=(
                            f"Node '{node_id}' edge '{edge.label}' uses handle "
                            f"'{edge.source_handle}', expected 'output'"
                        ),
                        node_id=node_id,
                        edge_id=edge.id,
                    )
            if len(edges) > 1:
                self.result.add_error(
                    code="FAN_OUT_NOT_ALLOWED",
                    message=f"Node '{node_id}' has {len(edges)} outgoing edges, at most one is allowed",
                    node_id=node_id,
                )
            if isinstance(node, TriggerNode) and not edges:
                self.result.add_error(
                    code="TRIGGER_NOT_CONNECTED",
                    message=f"Trigger '{node_id}' is not connected to any node",
                    node_id=node_id,
                )

    def validate_incoming_edges(self) -> None:
        """At most one edge may lead into a node, so the compiled form is a strict tree."""
        incoming: dict[str, int] = defaultdict(int)
        for edge in self.graph.edges:
            if edge.source_node_id == edge.target_node_id:
                continue
            if edge.source_node_id in self.node_map and edge.target_node_id in self.node_map:
                incoming[edge.target_node_id] += 1

        for node_id, count in incoming.items():
            if count > 1 and not isinstance(self.node_map[node_id], TriggerNode):
                self.result.add_error(
                    code="FAN_IN_NOT_ALLOWED",
                    message=f"Node '{node_id}' has {count} incoming edges, at most one is allowed",
                    node_id=node_id,
                )

    def detect_cycles(self) -> None:
        """
        Detect cycles using Kahn's algorithm.

        Nodes never reaching in-degree 0 lie on, or downstream of, a cycle.
        """
        in_degree = {node_id: 0 for node_id in self.node_map}
        for node_id in self.node_map:
            for neighbor in self.adjacency.get(node_id, []):
                in_degree[neighbor] += 1

        queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        order: list[str] = []

        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            for neighbor in self.adjacency.get(node_id, []):
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(order) != len(self.node_map):
            processed = set(order)
            remaining = [node_id for node_id in self.node_map if node_id not in processed]
            cycle_nodes = self._find_cycle_nodes(set(remaining))
            self.result.add_error(
                code="CYCLE_DETECTED",
                message=f"Workflow contains a cycle involving nodes: {cycle_nodes}",
                node_id=cycle_nodes[0] if cycle_nodes else None,
                cycle_nodes=cycle_nodes,
            )
        else:
            self.result.topological_order = order

    def _find_cycle_nodes(self, candidates: set[str]) -> list[str]:
        """Find one concrete cycle among the candidates with an iterative DFS."""
        visited: set[str] = set()

        for start in sorted(candidates):
            if start in visited:
                continue
            path: list[str] = [start]
            on_path = {start}
            visited.add(start)
            iterators = [iter(self.adjacency.get(start, []))]

            while iterators:
                neighbor = next(iterators[-1], None)
                if neighbor is None:
                    iterators.pop()
                    on_path.discard(path.pop())
                    continue
                if neighbor not in candidates:
                    continue
                if neighbor in on_path:
                    return path[path.index(neighbor):]
                if neighbor not in visited:
                    visited.add(neighbor)
                    path.append(neighbor)
                    on_path.add(neighbor)
                    iterators.append(iter(self.adjacency.get(neighbor, [])))

        return sorted(candidates)

    def check_unreachable_nodes(self) -> None:
        """Every non-trigger node must be reachable from a trigger."""
        if not self.triggers:
            return

        roots = [node.id for node in self.triggers]
        reachable = set(roots)
        queue = deque(roots)

        while queue:
            node_id = queue.popleft()
            for neighbor in self.adjacency.get(node_id, []):
                if neighbor not in reachable:
                    reachable.add(neighbor)
                    queue.append(neighbor)

        for node_id, node in self.node_map.items():
            if node_id not in reachable and not isinstance(node, TriggerNode):
                self.result.add_error(
                    code="UNREACHABLE_NODE",
                    message=f"Node '{node_id}' is not reachable from the trigger",
                    node_id=node_id,
                )

    def validate_payloads(self) -> None:
        """Operator operands, trigger filters and action configs."""
        for node_id, node in self.node_map.items():
            if isinstance(node, ConditionNode):
                self._check_operand(node_id, node.payload.operator, node.payload.value, node.payload.field)
            elif isinstance(node, TriggerNode):
                for rule in node.payload.filter:
                    self._check_operand(node_id, rule.operator, rule.value, rule.field)
            elif isinstance(node, ActionNode):
                self._check_action(node_id, node)

    def _check_operand(self, node_id: str, operator: Operator, value: Any, field_path: str) -> None:
        for problem in validate_operand(operator, value):
            code = "INVALID_PATTERN" if operator == Operator.MATCHES else "INVALID_OPERAND"
            self.result.add_error(
                code=code,
                message=f"Node '{node_id}' field '{field_path}': {problem}",
                node_id=node_id,
                field=field_path,
            )

    def _check_action(self, node_id: str, node: ActionNode) -> None:
        if self.registry is None:
            return
        action_type = node.payload.action_type
        if not self.registry.has(action_type):
            self.result.add_error(
                code="UNKNOWN_ACTION_TYPE",
                message=f"Action '{node_id}' uses unknown action type '{action_type}'",
                node_id=node_id,
                action_type=action_type,
            )
            return
        for problem in self.registry.get(action_type).validate_config(node.payload.config):
            self.result.add_error(
                code="INVALID_ACTION_CONFIG",
                message=f"Action '{node_id}' ({action_type}): {problem}",
                node_id=node_id,
                action_type=action_type,
            )


def validate_graph(graph: GraphModel, registry: Optional["ActionRegistry"] = None) -> ValidationResult:
    """
    Validate a graph.

    Args:
        graph: Editor graph
        registry: Action catalogue used for action type and config checks

    Returns:
        ValidationResult
    """
    return GraphValidator(registry).validate(graph)


def parse_graph_json(graph_json: dict) -> tuple[GraphModel, ValidationResult]:
    """
    Parse and validate a graph JSON payload without a registry.

    Raises:
        pydantic.ValidationError: If JSON cannot be parsed into a GraphModel
    """
    graph = GraphModel.model_validate(graph_json)
    return graph, validate_graph(graph)
