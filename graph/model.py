"""Dependency graph of infrastructure modules."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

if TYPE_CHECKING:
    from extractor.dependencies import ModuleDependencies
    from scanner.discovery import Module


logger = logging.getLogger(__name__)


class GraphCycleError(Exception):
    """
    Raised when an operation needs an acyclic graph but cycles exist.

    Attributes:
        cycles: The cycles found, each an ordered list of module IDs.
    """

    def __init__(self, cycles: List[List[str]]):
        self.cycles = cycles
        if cycles:
            detail = "; ".join(" -> ".join(c + c[:1]) for c in cycles)
            message = f"cycle detected in dependency graph: {detail}"
        else:
            message = "cycle detected in dependency graph"
        super().__init__(message)


@dataclass
class Node:
    """
    A module in the graph.

    ``in_degree`` counts the module's dependencies, ``out_degree`` the
    modules that depend on it.
    """

    module: "Module"
    in_degree: int = 0
    out_degree: int = 0


@dataclass
class GraphStats:
    total_modules: int = 0
    total_edges: int = 0
    root_modules: int = 0  # no dependencies
    leaf_modules: int = 0  # no dependents
    max_depth: int = 0
    average_depth: float = 0.0
    has_cycles: bool = False
    cycle_count: int = 0


def _normalize_path(path: str) -> Path:
    return Path(os.path.normpath(os.path.abspath(path)))


class DependencyGraph:
    """
    A directed graph of module dependencies.

    An edge ``a -> b`` means "a depends on b", so b must be processed first.
    The graph is built once and then queried; it is not safe to mutate it
    while other threads query it.
    """

    def __init__(self):
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, List[str]] = {}
        self._reverse: Dict[str, List[str]] = {}
        self._libraries: Dict[str, List[str]] = {}  # module ID -> library paths
        self._acyclic: Optional[bool] = None

    @classmethod
    def from_dependencies(
        cls,
        modules: Iterable["Module"],
        dependencies: Mapping[str, "ModuleDependencies"],
    ) -> "DependencyGraph":
        """
        Build a graph from discovered modules and their extracted dependencies.

        Args:
            modules: All modules; each becomes a node.
            dependencies: Extraction results keyed by module ID.

        Returns:
            The populated graph.
        """
        graph = cls()
        for m in modules:
            graph.add_node(m)

        for module_id in sorted(dependencies):
            result = dependencies[module_id]
            for dep_id in result.depends_on:
                graph.add_edge(module_id, dep_id)
            for library in result.library_dependencies:
                graph.add_library_usage(module_id, library.library_path)

        logger.info("built dependency graph: %r", graph)
        return graph

    # -- construction -----------------------------------------------------

    def add_node(self, module: "Module") -> None:
        if module.id not in self._nodes:
            self._nodes[module.id] = Node(module=module)
            self._acyclic = None

    def add_edge(self, from_id: str, to_id: str) -> None:
        """
        Record that ``from_id`` depends on ``to_id``.

        Ignored unless both modules are already nodes, or if the edge exists.
        """
        if from_id not in self._nodes or to_id not in self._nodes:
            return
        targets = self._edges.setdefault(from_id, [])
        if to_id in targets:
            return

        targets.append(to_id)
        self._reverse.setdefault(to_id, []).append(from_id)
        self._nodes[from_id].in_degree += 1
        self._nodes[to_id].out_degree += 1
        self._acyclic = None

    def add_library_usage(self, module_id: str, library_path: str) -> None:
        if module_id not in self._nodes:
            return
        paths = self._libraries.setdefault(module_id, [])
        normalized = str(_normalize_path(library_path))
        if normalized not in paths:
            paths.append(normalized)

    # -- accessors --------------------------------------------------------

    @property
    def nodes(self) -> Dict[str, Node]:
        return dict(self._nodes)

    @property
    def edges(self) -> Dict[str, List[str]]:
        """Adjacency list: module ID -> IDs it depends on."""
        return {k: list(v) for k, v in self._edges.items() if v}

    @property
    def library_usage(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self._libraries.items()}

    @property
    def is_acyclic(self) -> Optional[bool]:
        """None until checked, True once a topological sort has succeeded."""
        return self._acyclic

    def get_node(self, module_id: str) -> Optional[Node]:
        return self._nodes.get(module_id)

    def get_dependencies(self, module_id: str) -> List[str]:
        """Direct dependencies of a module."""
        return list(self._edges.get(module_id, []))

    def get_dependents(self, module_id: str) -> List[str]:
        """Modules that directly depend on the given module."""
        return list(self._reverse.get(module_id, []))

    def iter_edges(self) -> Iterator[Tuple[str, str]]:
        """Iterate over ``(from, to)`` pairs in sorted order."""
        for from_id in sorted(self._edges):
            for to_id in sorted(self._edges[from_id]):
                yield from_id, to_id

    def edge_count(self) -> int:
        return sum(len(t) for t in self._edges.values())

    # -- ordering ---------------------------------------------------------

    def topological_sort(self) -> List[str]:
        """
        Order modules so that every dependency comes before its dependents.

        Uses Kahn's algorithm; ties are broken by module ID so the result is
        the same on every run.

        Raises:
            GraphCycleError: If the graph has a cycle. The error carries the
                cycles found by :meth:`detect_cycles`.
        """
        remaining = {node_id: len(self._edges.get(node_id, [])) for node_id in self._nodes}
        frontier = sorted(node_id for node_id, count in remaining.items() if count == 0)

        order: List[str] = []
        while frontier:
            node_id = frontier.pop(0)
            order.append(node_id)
            for dependent in self._reverse.get(node_id, []):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    frontier.append(dependent)
                    frontier.sort()

        if len(order) != len(self._nodes):
            cycles = self.detect_cycles()
            logger.warning("dependency graph has %d cycle(s)", len(cycles))
            self._acyclic = False
            raise GraphCycleError(cycles)

        self._acyclic = True
        return order

    def execution_levels(self) -> List[List[str]]:
        """
        Group modules into levels that can run in parallel.

        Level 0 holds modules with no dependencies; every other module sits
        one level above its deepest dependency. Each level is sorted by ID.

        Raises:
            GraphCycleError: If the graph has a cycle.
        """
        levels: Dict[str, int] = {}
        for node_id in self.topological_sort():
            deps = self._edges.get(node_id, [])
            levels[node_id] = 1 + max((levels[d] for d in deps), default=-1)

        if not levels:
            return []

        grouped: List[List[str]] = [[] for _ in range(max(levels.values()) + 1)]
        for node_id, level in levels.items():
            grouped[level].append(node_id)
        for group in grouped:
            group.sort()
        return grouped

    def detect_cycles(self) -> List[List[str]]:
        """
        Find cycles with a depth-first search.

        Works on any graph, cyclic or not. Each reported cycle is the slice of
        the current DFS path from the revisited node onwards, so
        ``a -> b -> c -> a`` is reported as ``["a", "b", "c"]``.
        """
        cycles: List[List[str]] = []
        visited: Set[str] = set()
        on_stack: Set[str] = set()
        path: List[str] = []

        for start_id in sorted(self._nodes):
            if start_id in visited:
                continue

            visited.add(start_id)
            on_stack.add(start_id)
            path.append(start_id)
            # Each frame: (node, its not yet visited neighbors)
            frames: List[Tuple[str, Iterator[str]]] = [(start_id, iter(self._edges.get(start_id, [])))]

            while frames:
                node_id, neighbors = frames[-1]
                neighbor = next(neighbors, None)
                if neighbor is None:
                    frames.pop()
                    path.pop()
                    on_stack.discard(node_id)
                elif neighbor not in visited:
                    visited.add(neighbor)
                    on_stack.add(neighbor)
                    path.append(neighbor)
                    frames.append((neighbor, iter(self._edges.get(neighbor, []))))
                elif neighbor in on_stack:
                    cycles.append(path[path.index(neighbor):])

        return cycles

    # -- transitive queries -----------------------------------------------

    def _reachable(self, start: str, adjacency: Dict[str, List[str]]) -> List[str]:
        visited: Set[str] = set()
        result: List[str] = []
        stack = list(reversed(adjacency.get(start, [])))
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            result.append(node_id)
            stack.extend(reversed(adjacency.get(node_id, [])))
        return result

    def get_all_dependencies(self, module_id: str) -> List[str]:
        """All modules the given module depends on, directly or not."""
        return self._reachable(module_id, self._edges)

    def get_all_dependents(self, module_id: str) -> List[str]:
        """All modules depending on the given module, directly or not."""
        return self._reachable(module_id, self._reverse)

    def get_affected_modules(self, changed: Iterable[str]) -> List[str]:
        """
        Modules to consider when ``changed`` modules change.

        The result holds the changed modules, everything that depends on
        them (must run after them) and everything they depend on (needed to
        order them), sorted by ID.
        """
        affected: Set[str] = set()
        for module_id in changed:
            affected.add(module_id)
            affected.update(self.get_all_dependents(module_id))
            affected.update(self.get_all_dependencies(module_id))
        return sorted(affected)

    def get_affected_by_library_changes(self, changed_library_paths: Iterable[str]) -> List[str]:
        """
        Modules using a changed library.

        A module is affected when one of its recorded library paths equals a
        changed path or lies below it, which also covers libraries nested in
        other libraries.
        """
        changed = [_normalize_path(p) for p in changed_library_paths]
        if not changed:
            return []

        affected = set()
        for module_id, paths in self._libraries.items():
            for lib in paths:
                lib_path = Path(lib)
                if any(lib_path == c or c in lib_path.parents for c in changed):
                    affected.add(module_id)
                    break
        return sorted(affected)

    def get_affected_modules_with_libraries(
        self,
        changed: Iterable[str],
        changed_library_paths: Iterable[str],
    ) -> List[str]:
        """Union of :meth:`get_affected_modules` and library-based impact."""
        library_users = self.get_affected_by_library_changes(changed_library_paths)
        return self.get_affected_modules(list(changed) + library_users)

    # -- derived graphs and reporting ---------------------------------------

    def subgraph(self, module_ids: Iterable[str]) -> "DependencyGraph":
        """
        Restrict the graph to ``module_ids``.

        Only edges whose endpoints are both included survive; unknown IDs are
        ignored.
        """
        included = {i for i in module_ids if i in self._nodes}
        sub = DependencyGraph()
        for node_id in sorted(included):
            sub.add_node(self._nodes[node_id].module)
        for from_id in sorted(included):
            for to_id in self._edges.get(from_id, []):
                if to_id in included:
                    sub.add_edge(from_id, to_id)
            for lib in self._libraries.get(from_id, []):
                sub.add_library_usage(from_id, lib)
        return sub

    def get_roots(self) -> List[str]:
        """Modules with no dependencies."""
        return sorted(i for i in self._nodes if not self._edges.get(i))

    def get_leaves(self) -> List[str]:
        """Modules nothing depends on."""
        return sorted(i for i in self._nodes if not self._reverse.get(i))

    def get_stats(self) -> GraphStats:
        stats = GraphStats(
            total_modules=len(self._nodes),
            total_edges=self.edge_count(),
            root_modules=len(self.get_roots()),
            leaf_modules=len(self.get_leaves()),
        )

        cycles = self.detect_cycles()
        stats.has_cycles = bool(cycles)
        stats.cycle_count = len(cycles)

        if not cycles and self._nodes:
            levels = self.execution_levels()
            stats.max_depth = len(levels) - 1
            total = sum(level * len(group) for level, group in enumerate(levels))
            stats.average_depth = total / len(self._nodes)

        return stats

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, module_id: str) -> bool:
        return module_id in self._nodes

    def __repr__(self) -> str:
        return (
            f"DependencyGraph(nodes={len(self._nodes)}, edges={self.edge_count()}, "
            f"libraries={sum(len(p) for p in self._libraries.values())})"
        )
