"""Read-only lookup index over discovered modules."""

from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Set

if TYPE_CHECKING:
    from .discovery import Module


class ModuleIndex:
    """
    Fast lookup of modules by ID, path and name.

    The index is built once from the discovered modules and never mutated,
    so it can be shared between extraction workers without locking.
    Parent/child relationships are derived from ID prefixes on demand.
    """

    def __init__(self, modules: Iterable["Module"]):
        self._modules: List["Module"] = list(modules)
        self._by_id: Dict[str, "Module"] = {}
        self._by_path: Dict[str, "Module"] = {}
        self._by_name: Dict[str, List["Module"]] = {}
        self._children: Dict[str, List["Module"]] = {}

        for m in self._modules:
            if m.id in self._by_id:
                raise ValueError(f"duplicate module ID: {m.id}")
            self._by_id[m.id] = m
            self._by_path[str(m.path)] = m
            self._by_path[m.relative_path] = m

            # Submodules are reachable by base name and by module/submodule
            self._by_name.setdefault(m.module, []).append(m)
            if m.is_submodule():
                self._by_name.setdefault(m.name, []).append(m)

        for m in self._modules:
            parent_id = m.parent_id
            if parent_id is not None and parent_id in self._by_id:
                self._children.setdefault(parent_id, []).append(m)

    def all(self) -> List["Module"]:
        return list(self._modules)

    def by_id(self, module_id: str) -> Optional["Module"]:
        return self._by_id.get(module_id)

    def by_path(self, path: str) -> Optional["Module"]:
        """Look up by absolute or root-relative path."""
        return self._by_path.get(str(path))

    def by_name(self, name: str) -> List["Module"]:
        """All modules with the given base name (or ``module/submodule`` name)."""
        return list(self._by_name.get(name, []))

    def filter(self, fn: Callable[["Module"], bool]) -> List["Module"]:
        return [m for m in self._modules if fn(m)]

    def base_modules(self) -> List["Module"]:
        return self.filter(lambda m: not m.is_submodule())

    def submodules(self) -> List["Module"]:
        return self.filter(lambda m: m.is_submodule())

    def children(self, module_id: str) -> List["Module"]:
        return list(self._children.get(module_id, []))

    def parent(self, module_id: str) -> Optional["Module"]:
        m = self._by_id.get(module_id)
        if m is None or m.parent_id is None:
            return None
        return self._by_id.get(m.parent_id)

    @property
    def depths(self) -> List[int]:
        """Distinct segment counts of indexed modules, deepest first."""
        seen: Set[int] = {len(m.segments) for m in self._modules}
        return sorted(seen, reverse=True)

    def find_in_context(self, name: str, context: "Module") -> Optional["Module"]:
        """
        Find a module by name within the same service/environment/region.

        Tries, in order: a sibling submodule when ``context`` is itself a
        submodule, a sibling module of ``context``, a submodule of
        ``context``'s own module, then any module with that base name sharing
        the same context segments.
        """
        prefix = list(context.context)
        nested = "/".join(prefix + [context.module, name])
        candidates = [
            "/".join(prefix + [name]),
            nested,
        ]
        if context.is_submodule():
            candidates.reverse()
        for module_id in candidates:
            m = self._by_id.get(module_id)
            if m is not None:
                return m

        for m in self._by_name.get(name, []):
            if m.context == context.context:
                return m
        return None

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, module_id: str) -> bool:
        return module_id in self._by_id

    def __iter__(self):
        return iter(self._modules)

    def __repr__(self) -> str:
        return f"ModuleIndex(modules={len(self._modules)}, submodules={len(self.submodules())})"
