"""
Unit tests for graph compilation.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from automation_engine.core.compiled import ActionStep, Branch, CompiledWorkflow, Sequence, Terminal
from automation_engine.core.compiler import Compiler, compile_graph
from automation_engine.core.errors import CompileError
from automation_engine.core.models import EventType, FilterLogic, GraphModel, Operator


def _deep_graph(graph_parts, depth: int) -> GraphModel:
    """Chain of `depth` conditions; each false side ends in its own action."""
    p = graph_parts
    nodes = [p["trigger"]("t"), p["action"]("end", "RECORD")]
    edges = [p["edge"]("t", "c0")]
    for i in range(depth):
        nodes.append(p["condition"](f"c{i}", "n", ">", i))
        nodes.append(p["action"](f"leaf{i}", "RECORD"))
        nxt = f"c{i + 1}" if i + 1 < depth else "end"
        edges.append(p["edge"](f"c{i}", nxt, "true"))
        edges.append(p["edge"](f"c{i}", f"leaf{i}", "false"))
    return GraphModel.model_validate({"nodes": nodes, "edges": edges})


class TestCompiler:
    """Tests for the graph -> decision tree compiler."""

    def test_condition_becomes_branch(self, approval_graph):
        """Test the approval graph compiles to one Branch with two Sequences."""
        workflow_id = uuid4()

        compiled = Compiler().compile(approval_graph, workflow_id=workflow_id, version=3)

        assert compiled.workflow_id == workflow_id
        assert compiled.version == 3
        assert compiled.event_type == EventType.ORDER_CREATED
        assert compiled.trigger_node_id == "trigger"
        assert compiled.root == "big_order"
        assert set(compiled.nodes) == {"big_order", "approve", "auto"}

        root = compiled.root_node
        assert isinstance(root, Branch)
        assert root.operator == Operator.GT
        assert root.value == 1000
        on_true = compiled.node(root.on_true)
        assert isinstance(on_true, Sequence)
        assert [s.node_id for s in on_true.steps] == ["approve"]
        assert [s.node_id for s in compiled.node(root.on_false).steps] == ["auto"]
        assert on_true.on_complete is None
        assert isinstance(compiled.node(on_true.on_complete), Terminal)

    def test_consecutive_actions_form_one_sequence(self, linear_graph_json):
        compiled = compile_graph(GraphModel.model_validate(linear_graph_json))

        root = compiled.root_node
        assert isinstance(root, Sequence)
        assert root.node_id == "first"
        assert [s.node_id for s in root.steps] == ["first", "second", "third"]
        assert root.steps[1].config == {"output": {"step": 2}}
        assert root.on_complete is None
        assert list(compiled.nodes) == ["first"]

    def test_sequence_continues_into_branch(self, graph_parts):
        p = graph_parts
        graph = GraphModel.model_validate({
            "nodes": [
                p["trigger"]("t"),
                p["action"]("enrich", "RECORD"),
                p["condition"]("c", "risk", ">=", 50),
                p["action"]("high", "RECORD"),
                p["action"]("low", "RECORD"),
            ],
            "edges": [
                p["edge"]("t", "enrich"),
                p["edge"]("enrich", "c"),
                p["edge"]("c", "high", "true"),
                p["edge"]("c", "low", "false"),
            ],
        })

        compiled = Compiler().compile(graph)
        root = compiled.root_node

        assert isinstance(root, Sequence)
        assert [s.node_id for s in root.steps] == ["enrich"]
        assert root.on_complete == "c"
        assert isinstance(compiled.node(root.on_complete), Branch)

    def test_cyclic_graph_never_compiles(self, graph_parts):
        p = graph_parts
        graph = GraphModel.model_validate({
            "nodes": [p["trigger"]("t"), p["action"]("a", "RECORD"), p["action"]("b", "RECORD")],
            "edges": [p["edge"]("t", "a"), p["edge"]("a", "b"), p["edge"]("b", "a")],
        })

        with pytest.raises(CompileError):
            Compiler().compile(graph)

    def test_every_branch_has_both_sides(self, graph_parts):
        """Test every compiled Branch has both sides populated."""
        p = graph_parts
        graph = GraphModel.model_validate({
            "nodes": [
                p["trigger"]("t"),
                p["condition"]("c1", "amount", ">", 100),
                p["condition"]("c2", "country", "in", ["DE", "FR"]),
                p["action"]("a", "RECORD"),
                p["action"]("b", "RECORD"),
                p["action"]("d", "RECORD"),
            ],
            "edges": [
                p["edge"]("t", "c1"),
                p["edge"]("c1", "c2", "true"),
                p["edge"]("c1", "d", "false"),
                p["edge"]("c2", "a", "true"),
                p["edge"]("c2", "b", "false"),
            ],
        })

        compiled = Compiler().compile(graph)

        branches = list(compiled.iter_branches())
        assert [b.node_id for b in branches] == ["c1", "c2"]
        for branch in branches:
            assert branch.on_true is not None
            assert branch.on_false is not None
        assert [s.node_id for s in compiled.iter_steps()] == ["a", "b", "d"]

    def test_fan_in_never_compiles(self, graph_parts):
        """Test both sides of a condition leading to one action is rejected."""
        p = graph_parts
        graph = GraphModel.model_validate({
            "nodes": [
                p["trigger"]("t"),
                p["condition"]("c", "amount", ">", 1),
                p["action"]("notify", "RECORD"),
            ],
            "edges": [
                p["edge"]("t", "c"),
                p["edge"]("c", "notify", "true"),
                p["edge"]("c", "notify", "false"),
            ],
        })

        with pytest.raises(CompileError, match="Node .notify. has 2 incoming edges"):
            Compiler().compile(graph)

    def test_trigger_filter_carried(self, graph_parts):
        p = graph_parts
        trigger = p["trigger"](
            "t",
            filter=[{"field": "currency", "operator": "==", "value": "EUR"}],
            logic="OR",
        )
        graph = GraphModel.model_validate({
            "nodes": [trigger, p["action"]("a", "RECORD")],
            "edges": [p["edge"]("t", "a")],
        })

        compiled = Compiler().compile(graph)

        assert compiled.filter_logic == FilterLogic.OR
        assert compiled.filter[0].field == "currency"

    def test_continue_on_error_from_config(self, graph_parts):
        p = graph_parts
        graph = GraphModel.model_validate({
            "nodes": [p["trigger"]("t"), p["action"]("a", "RECORD", {"continueOnError": True})],
            "edges": [p["edge"]("t", "a")],
        })

        step = Compiler().compile(graph).root_node.steps[0]

        assert step.continue_on_error is True

    def test_invalid_graph_raises_compile_error(self, graph_parts):
        graph = GraphModel.model_validate({"nodes": [graph_parts["action"]("a", "RECORD")], "edges": []})

        with pytest.raises(CompileError):
            Compiler().compile(graph)

    def test_deep_graph_does_not_recurse(self, graph_parts):
        """Test a long chain of conditions compiles, serializes and reloads without recursing."""
        depth = 2000

        compiled = Compiler().compile(_deep_graph(graph_parts, depth))

        assert sum(1 for _ in compiled.iter_branches()) == depth
        assert len(compiled.nodes) == 2 * depth + 1
        restored = CompiledWorkflow.model_validate_json(compiled.model_dump_json(by_alias=True))
        assert restored.nodes == compiled.nodes
        copied = compiled.model_copy(deep=True)
        assert copied.root == "c0"

    def test_serialized_size_grows_linearly(self, graph_parts):
        small = Compiler().compile(_deep_graph(graph_parts, 50)).model_dump_json(by_alias=True)
        large = Compiler().compile(_deep_graph(graph_parts, 100)).model_dump_json(by_alias=True)

        assert len(large) < 3 * len(small)

    def test_round_trips_through_json(self, approval_graph):
        compiled = Compiler().compile(approval_graph)

        restored = CompiledWorkflow.model_validate_json(compiled.model_dump_json(by_alias=True))

        assert restored.root == compiled.root
        assert restored.nodes == compiled.nodes
        assert restored.event_type == compiled.event_type


class TestCompiledTable:
    """Loading a compiled form enforces the single-tree shape."""

    def _sequence(self, node_id: str, on_complete=None) -> Sequence:
        return Sequence(
            node_id=node_id,
            steps=[ActionStep(node_id=node_id, action_type="RECORD")],
            on_complete=on_complete,
        )

    def _compiled(self, root, nodes) -> CompiledWorkflow:
        return CompiledWorkflow(
            trigger_node_id="t",
            event_type=EventType.ORDER_CREATED,
            root=root,
            nodes={node.node_id: node for node in nodes},
        )

    def test_shared_child_rejected(self):
        branch = Branch(node_id="b", field="x", operator=Operator.GT, value=1, on_true="s", on_false="s")

        with pytest.raises(ValidationError, match="more than one parent"):
            self._compiled("b", [branch, self._sequence("s")])

    def test_dangling_reference_rejected(self):
        with pytest.raises(ValidationError, match="unknown node 'missing'"):
            self._compiled("s", [self._sequence("s", on_complete="missing")])

    def test_cycle_outside_root_rejected(self):
        nodes = [self._sequence("s"), self._sequence("x", on_complete="y"), self._sequence("y", on_complete="x")]

        with pytest.raises(ValidationError, match="not reachable"):
            self._compiled("s", nodes)

    def test_valid_table_accepted(self):
        branch = Branch(node_id="b", field="x", operator=Operator.GT, value=1, on_true="s")

        compiled = self._compiled("b", [branch, self._sequence("s")])

        assert [n.node_id for n in compiled.iter_nodes()] == ["b", "s"]
        assert isinstance(compiled.node(branch.on_false), Terminal)
