"""Mermaid flowchart exporter for dependency graphs."""

import re
from typing import Dict, List

from graph.model import DependencyGraph


def to_mermaid(
    graph: DependencyGraph,
    orientation: str = "LR",
    group_by_context: bool = False,
) -> str:
    """
    Convert a dependency graph to Mermaid flowchart syntax.

    Args:
        graph: The dependency graph to export.
        orientation: Flowchart orientation (LR, TD, TB, RL, BT).
        group_by_context: If True, wrap modules sharing a
                          service/environment/region in a subgraph.

    Returns:
        Mermaid flowchart string.
    """
    lines = [f"flowchart {orientation}"]
    node_ids = _unique_ids(sorted(graph.nodes))

    if group_by_context:
        lines.extend(_grouped_nodes(graph, node_ids))
    else:
        for node_id in sorted(node_ids):
            lines.append(f'    {node_ids[node_id]}["{node_id}"]')
        lines.append("")

    for from_id, to_id in graph.iter_edges():
        lines.append(f"    {node_ids[from_id]} --> {node_ids[to_id]}")

    return "\n".join(lines)


def _grouped_nodes(graph: DependencyGraph, node_ids: Dict[str, str]) -> List[str]:
    """Emit node definitions inside one subgraph per module context."""
    lines = []

    groups: Dict[str, List[str]] = {}
    for node_id, node in graph.nodes.items():
        context = "/".join(node.module.context) or "root"
        groups.setdefault(context, []).append(node_id)

    for context in sorted(groups):
        lines.append(f"    subgraph {_sanitize_id('group_' + context)}[{context}]")
        for node_id in sorted(groups[context]):
            lines.append(f'        {node_ids[node_id]}["{graph.get_node(node_id).module.name}"]')
        lines.append("    end")
        lines.append("")

    return lines


def _unique_ids(module_ids: List[str]) -> Dict[str, str]:
    """Map module IDs to Mermaid IDs, suffixing a counter when sanitizing collides."""
    result: Dict[str, str] = {}
    used = set()
    for module_id in module_ids:
        base = _sanitize_id(module_id)
        candidate = base
        counter = 2
        while candidate in used:
            candidate = f"{base}_{counter}"
            counter += 1
        used.add(candidate)
        result[module_id] = candidate
    return result


def _sanitize_id(value: str) -> str:
    """Sanitize a module ID to be a valid Mermaid node ID."""
    sanitized = re.sub(r"[/\\.\-]", "_", value)
    sanitized = re.sub(r"[^a-zA-Z0-9_]", "", sanitized)
    if sanitized and not sanitized[0].isalpha():
        sanitized = "n_" + sanitized
    return sanitized or "unknown"
