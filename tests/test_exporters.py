"""Tests for exporters."""

import json

import pytest

from extractor.dependencies import (
    UNMATCHED_REFERENCE,
    ExtractionDiagnostic,
    LibraryDependency,
    ModuleDependencies,
)
from extractor.references import ModuleCall
from graph.model import DependencyGraph
from exporters.dot_exporter import to_dot
from exporters.json_exporter import to_json
from exporters.mermaid_exporter import to_mermaid
from scanner.discovery import Module


@pytest.fixture
def graph():
    graph = DependencyGraph()
    for module_id in [
        "platform/stage/eu-central-1/vpc",
        "platform/stage/eu-central-1/eks",
        "platform/stage/eu-central-1/ec2/rabbitmq",
        "billing/stage/eu-central-1/api",
    ]:
        graph.add_node(Module.from_id(module_id))
    graph.add_edge("platform/stage/eu-central-1/eks", "platform/stage/eu-central-1/vpc")
    graph.add_edge("platform/stage/eu-central-1/ec2/rabbitmq", "platform/stage/eu-central-1/vpc")
    return graph


class TestMermaidExporter:
    """Tests for Mermaid exporter."""

    def test_empty_graph(self):
        """Test exporting empty graph."""
        output = to_mermaid(DependencyGraph())
        assert output.startswith("flowchart LR")

    def test_simple_graph(self, graph):
        """Test node IDs are sanitized and edges rendered."""
        output = to_mermaid(graph)

        assert 'platform_stage_eu_central_1_vpc["platform/stage/eu-central-1/vpc"]' in output
        assert "platform_stage_eu_central_1_eks --> platform_stage_eu_central_1_vpc" in output
        assert output.count("-->") == 2

    def test_colliding_ids_kept_apart(self):
        """Test that IDs sanitizing to the same string stay distinct nodes."""
        graph = DependencyGraph()
        graph.add_node(Module.from_id("a-b/x", pattern=["service", "module"]))
        graph.add_node(Module.from_id("a_b/x", pattern=["service", "module"]))
        graph.add_edge("a-b/x", "a_b/x")

        output = to_mermaid(graph)

        assert 'a_b_x["a-b/x"]' in output
        assert 'a_b_x_2["a_b/x"]' in output
        assert "a_b_x --> a_b_x_2" in output

    def test_orientation(self, graph):
        """Test different orientations."""
        for orientation in ["LR", "TD", "TB", "RL", "BT"]:
            output = to_mermaid(graph, orientation=orientation)
            assert output.startswith(f"flowchart {orientation}")

    def test_grouped_output(self, graph):
        """Test grouping modules by service/environment/region."""
        output = to_mermaid(graph, group_by_context=True)

        assert output.count("subgraph") == 2
        assert "[platform/stage/eu-central-1]" in output
        assert "[billing/stage/eu-central-1]" in output
        assert '["ec2/rabbitmq"]' in output


class TestDotExporter:
    """Tests for DOT exporter."""

    def test_empty_graph(self):
        """Test exporting empty graph."""
        output = to_dot(DependencyGraph())
        assert output.startswith("digraph dependencies {")
        assert output.rstrip().endswith("}")

    def test_simple_graph(self, graph):
        """Test nodes, labels and edges."""
        output = to_dot(graph, rankdir="TB")

        assert "rankdir=TB;" in output
        assert '"platform/stage/eu-central-1/vpc" [label="platform\\nstage\\neu-central-1\\nvpc"];' in output
        assert '"platform/stage/eu-central-1/eks" -> "platform/stage/eu-central-1/vpc";' in output

    def test_deterministic(self, graph):
        """Test identical output across calls."""
        assert to_dot(graph) == to_dot(graph)


class TestJSONExporter:
    """Tests for JSON exporter."""

    def test_empty_graph(self):
        """Test exporting empty graph."""
        data = json.loads(to_json(DependencyGraph()))

        assert data == {"nodes": [], "edges": [], "levels": [], "cycles": []}

    def test_simple_graph(self, graph):
        """Test nodes, edges and levels."""
        data = json.loads(to_json(graph))

        ids = [n["id"] for n in data["nodes"]]
        assert ids == sorted(ids)
        eks = next(n for n in data["nodes"] if n["id"].endswith("eks"))
        assert eks["depends_on"] == ["platform/stage/eu-central-1/vpc"]
        assert eks["path"] == "platform/stage/eu-central-1/eks"
        assert {"from": "platform/stage/eu-central-1/eks", "to": "platform/stage/eu-central-1/vpc"} in data["edges"]
        assert data["levels"][0] == ["billing/stage/eu-central-1/api", "platform/stage/eu-central-1/vpc"]
        assert data["cycles"] == []

    def test_with_dependencies(self, graph):
        """Test library paths and diagnostics are attached."""
        rabbit = graph.get_node("platform/stage/eu-central-1/ec2/rabbitmq").module
        deps = {
            rabbit.id: ModuleDependencies(
                module=rabbit,
                library_dependencies=[LibraryDependency(ModuleCall("q", "../_modules/q"), "/repo/_modules/q")],
                errors=[ExtractionDiagnostic(rabbit.id, UNMATCHED_REFERENCE, "no module", reference_name="redis")],
            ),
        }

        data = json.loads(to_json(graph, deps))

        node = next(n for n in data["nodes"] if n["id"] == rabbit.id)
        assert node["libraries"] == ["/repo/_modules/q"]
        assert node["diagnostics"] == [f"{rabbit.id}.redis: no module"]

    def test_cyclic_graph(self):
        """Test levels are null and cycles listed for a cyclic graph."""
        graph = DependencyGraph()
        graph.add_node(Module.from_id("a", pattern=["name"]))
        graph.add_node(Module.from_id("b", pattern=["name"]))
        graph.add_edge("a", "b")
        graph.add_edge("b", "a")

        data = json.loads(to_json(graph))

        assert data["levels"] is None
        assert data["cycles"] == [["a", "b"]]
