"""Module filters: include/exclude globs on module IDs and service, environment
or region selection, combinable with AND semantics.
"""

import re
from typing import TYPE_CHECKING, Iterable, List, Optional, Pattern

if TYPE_CHECKING:
    from .discovery import Module


def compile_glob(pattern: str) -> Pattern:
    """
    Compile a module-ID glob into a regular expression.

    ``*`` and ``?`` stay within one path segment, ``**`` spans any number of
    segments (including none). A pattern matching a module also matches every
    module nested below it, so excluding ``ec2`` excludes ``ec2/rabbitmq``.
    """
    pattern = pattern.replace("\\", "/").strip("/")
    regex = ""
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            regex += "(?:.*/)?"
            i += 3
        elif pattern.startswith("/**", i) and i + 3 == len(pattern):
            regex += "(?:/.*)?"
            i += 3
        elif pattern.startswith("**", i):
            regex += ".*"
            i += 2
        elif pattern[i] == "*":
            regex += "[^/]*"
            i += 1
        elif pattern[i] == "?":
            regex += "[^/]"
            i += 1
        else:
            regex += re.escape(pattern[i])
            i += 1
    return re.compile(f"^{regex}(?:/.*)?$")


class GlobFilter:
    """
    Filters module IDs with exclude and include glob patterns.

    Excludes win over includes. With no include patterns every module that is
    not excluded passes.
    """

    def __init__(self, exclude: Optional[Iterable[str]] = None, include: Optional[Iterable[str]] = None):
        self.exclude_patterns = list(exclude or [])
        self.include_patterns = list(include or [])
        self._exclude = [compile_glob(p) for p in self.exclude_patterns]
        self._include = [compile_glob(p) for p in self.include_patterns]

    def match(self, module_id: str) -> bool:
        """Return True if the module should be kept."""
        module_id = module_id.replace("\\", "/")
        if any(p.match(module_id) for p in self._exclude):
            return False
        if not self._include:
            return True
        return any(p.match(module_id) for p in self._include)

    def apply(self, modules: Iterable["Module"]) -> List["Module"]:
        return [m for m in modules if self.match(m.id)]

    def apply_ids(self, module_ids: Iterable[str]) -> List[str]:
        return [i for i in module_ids if self.match(i)]

    def match_module(self, module: "Module") -> bool:
        return self.match(module.id)

    def __bool__(self) -> bool:
        return bool(self._exclude or self._include)


class FieldFilter:
    """
    Keeps modules whose ``placeholder`` segment is one of ``values``.

    With no values every module passes.
    """

    placeholder = ""

    def __init__(self, values: Optional[Iterable[str]] = None):
        self.values = list(values or [])

    def match_module(self, module: "Module") -> bool:
        if not self.values:
            return True
        return module.get(self.placeholder) in self.values

    def __bool__(self) -> bool:
        return bool(self.values)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.values!r})"


class ServiceFilter(FieldFilter):
    placeholder = "service"


class EnvironmentFilter(FieldFilter):
    placeholder = "environment"


class RegionFilter(FieldFilter):
    placeholder = "region"


class CompositeFilter:
    """Combines module filters; a module is kept only if every filter keeps it."""

    def __init__(self, *filters):
        self.filters = [f for f in filters if f is not None]

    def match_module(self, module: "Module") -> bool:
        return all(f.match_module(module) for f in self.filters)

    def apply(self, modules: Iterable["Module"]) -> List["Module"]:
        return [m for m in modules if self.match_module(m)]

    def __bool__(self) -> bool:
        return any(bool(f) for f in self.filters)
