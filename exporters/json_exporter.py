"""JSON exporter for dependency graphs (machine-friendly format)."""

import json
from typing import Any, Dict, List, Mapping, Optional

from extractor.dependencies import ModuleDependencies
from graph.model import DependencyGraph, GraphCycleError


def to_json(
    graph: DependencyGraph,
    dependencies: Optional[Mapping[str, ModuleDependencies]] = None,
    indent: int = 2,
) -> str:
    """
    Convert a dependency graph to JSON.

    Args:
        graph: The dependency graph to export.
        dependencies: Extraction results; when given, each module's library
                      paths and diagnostics are included.
        indent: JSON indentation level.

    Returns:
        JSON string with ``nodes``, ``edges``, ``levels`` and ``cycles``.
        ``levels`` is null when the graph is cyclic.
    """
    nodes: List[Dict[str, Any]] = []
    for node_id in sorted(graph.nodes):
        node = graph.get_node(node_id)
        entry: Dict[str, Any] = {
            "id": node_id,
            "path": node.module.relative_path,
            "depends_on": sorted(graph.get_dependencies(node_id)),
        }
        if dependencies is not None and node_id in dependencies:
            result = dependencies[node_id]
            entry["libraries"] = result.library_paths
            entry["diagnostics"] = [str(d) for d in result.errors]
        nodes.append(entry)

    edges = [{"from": from_id, "to": to_id} for from_id, to_id in graph.iter_edges()]

    levels: Optional[List[List[str]]]
    try:
        levels = graph.execution_levels()
        cycles: List[List[str]] = []
    except GraphCycleError as e:
        levels = None
        cycles = e.cycles

    data: Dict[str, Any] = {
        "nodes": nodes,
        "edges": edges,
        "levels": levels,
        "cycles": cycles,
    }
    return json.dumps(data, indent=indent)
