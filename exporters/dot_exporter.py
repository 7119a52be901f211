"""Graphviz DOT exporter for dependency graphs."""

from graph.model import DependencyGraph


def to_dot(graph: DependencyGraph, rankdir: str = "LR") -> str:
    """
    Convert a dependency graph to DOT format.

    Nodes are labelled with one path segment per line; an edge ``a -> b``
    means ``a`` depends on ``b``. Output is sorted so it diffs cleanly.

    Args:
        graph: The dependency graph to export.
        rankdir: Graphviz layout direction.

    Returns:
        DOT source text.
    """
    lines = [
        "digraph dependencies {",
        f"  rankdir={rankdir};",
        "  node [shape=box];",
        "",
    ]

    for node_id in sorted(graph.nodes):
        label = _escape(node_id).replace("/", "\\n")
        lines.append(f'  "{_escape(node_id)}" [label="{label}"];')

    lines.append("")
    for from_id, to_id in graph.iter_edges():
        lines.append(f'  "{_escape(from_id)}" -> "{_escape(to_id)}";')

    lines.append("}")
    return "\n".join(lines) + "\n"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')
