"""Strategies for matching a state path to a discovered module.

Each matcher is a pure function ``(path, from_module, index) -> Module|None``.
They are tried in the order of :data:`MATCHERS` and the first hit wins.
"""

import logging
import re
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

if TYPE_CHECKING:
    from scanner.discovery import Module
    from scanner.index import ModuleIndex


logger = logging.getLogger(__name__)

Matcher = Callable[[str, "Module", "ModuleIndex"], Optional["Module"]]

STATE_FILE_SUFFIXES = ("/terraform.tfstate", ".tfstate")
WORKSPACE_PREFIX = "env:/"


def normalize_state_path(path: str) -> str:
    """
    Strip state-file decorations from a path.

    ``svc/env/region/vpc/terraform.tfstate`` and ``svc/env/region/vpc.tfstate``
    both become ``svc/env/region/vpc``; a leading ``env:/`` workspace prefix
    is removed.
    """
    path = path.strip()
    for suffix in STATE_FILE_SUFFIXES:
        if path.endswith(suffix):
            path = path[: -len(suffix)]
            break
    if path.startswith(WORKSPACE_PREFIX):
        path = path[len(WORKSPACE_PREFIX):]
    return path


def _split(path: str) -> List[str]:
    return [p for p in re.split(r"[\\/]+", path) if p and p != "."]


def match_exact(path: str, from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    return index.by_id(path)


def match_normalized(path: str, from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    """Match after unifying separators and dropping empty or ``.`` segments."""
    return index.by_id("/".join(_split(path)))


def match_suffix(path: str, from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    """Match the trailing segments against every module depth, deepest first."""
    parts = _split(path)
    for depth in index.depths:
        if len(parts) >= depth:
            m = index.by_id("/".join(parts[-depth:]))
            if m is not None:
                return m
    return None


def match_same_context(path: str, from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    """
    Resolve a bare name relative to the referencing module.

    Delegates to :meth:`ModuleIndex.find_in_context`: a submodule first looks
    for a sibling submodule under its own parent, then a module of that name
    under the same service/environment/region is tried. Only the referencer's
    context disambiguates, so a name shared by modules in other contexts is
    never considered.
    """
    parts = _split(path)
    if len(parts) != 1:
        return None
    return index.find_in_context(parts[0], from_module)


def match_module_submodule(path: str, from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    """Resolve a ``module/submodule`` pair within the referencer's context."""
    parts = _split(path)
    if len(parts) != 2:
        return None
    return index.by_id("/".join(list(from_module.context) + parts))


MATCHERS: List[Tuple[str, Matcher]] = [
    ("exact", match_exact),
    ("normalized", match_normalized),
    ("suffix", match_suffix),
    ("same-context", match_same_context),
    ("module-submodule", match_module_submodule),
]


def match_path_to_module(
    state_path: str,
    from_module: "Module",
    index: "ModuleIndex",
    matchers: Optional[List[Tuple[str, Matcher]]] = None,
) -> Optional["Module"]:
    """
    Match a remote-state path to a module.

    Args:
        state_path: Resolved state path, e.g. ``svc/env/region/vpc/terraform.tfstate``.
        from_module: The module declaring the reference.
        index: Index of all discovered modules.
        matchers: Strategy list to use instead of :data:`MATCHERS`.

    Returns:
        The matched module, or None.
    """
    path = normalize_state_path(state_path)
    if not path:
        return None

    for name, matcher in matchers or MATCHERS:
        m = matcher(path, from_module, index)
        if m is not None:
            logger.debug("matched %s -> %s via %s", state_path, m.id, name)
            return m
    return None


# Fallback for remote states that declare no key or prefix: the data source
# name itself is taken as a module name.

NameMatcher = Callable[[List[str], "Module", "ModuleIndex"], Optional["Module"]]


def name_variants(name: str) -> List[str]:
    """``eks_cluster`` also tries ``eks-cluster`` and vice versa."""
    variants: List[str] = []
    for candidate in (name, name.replace("_", "-"), name.replace("-", "_")):
        if candidate not in variants:
            variants.append(candidate)
    return variants


def match_name_in_context(names: List[str], from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    context = list(from_module.context)
    for name in names:
        m = index.by_id("/".join(context + [name]))
        if m is not None:
            return m
    return None


def match_name_as_submodule(names: List[str], from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    """``ec2_rabbitmq`` or ``ec2-rabbitmq`` -> ``ec2/rabbitmq`` in the same context."""
    context = list(from_module.context)
    for name in names:
        for separator in ("_", "-"):
            if separator not in name:
                continue
            module, submodule = name.split(separator, 1)
            m = index.by_id("/".join(context + [module, submodule]))
            if m is not None:
                return m
    return None


def match_name_as_sibling(names: List[str], from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    if not from_module.is_submodule():
        return None
    context = list(from_module.context)
    for name in names:
        m = index.by_id("/".join(context + [from_module.module, name]))
        if m is not None:
            return m
    return None


def match_name_as_parent(names: List[str], from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    if not from_module.is_submodule() or from_module.module not in names:
        return None
    return index.by_id(from_module.parent_id)


def match_name_anywhere(names: List[str], from_module: "Module", index: "ModuleIndex") -> Optional["Module"]:
    """
    Any other module with that name.

    A unique match wins; with several, the first in the referencer's
    environment is taken. Otherwise the next name variant is tried.
    """
    for name in names:
        candidates = [m for m in index.all() if m.name == name and m.id != from_module.id]
        if len(candidates) == 1:
            return candidates[0]
        for m in candidates:
            if m.environment == from_module.environment:
                return m
    return None


NAME_MATCHERS: List[Tuple[str, NameMatcher]] = [
    ("name-in-context", match_name_in_context),
    ("name-as-submodule", match_name_as_submodule),
    ("name-as-sibling", match_name_as_sibling),
    ("name-as-parent", match_name_as_parent),
    ("name-anywhere", match_name_anywhere),
]


def match_remote_state_name(
    ref_name: str,
    from_module: "Module",
    index: "ModuleIndex",
    matchers: Optional[List[Tuple[str, NameMatcher]]] = None,
) -> Optional["Module"]:
    """
    Match a remote state by its data source name when it declares no path.

    Args:
        ref_name: Data source name, e.g. ``vpc`` or ``ec2_rabbitmq``.
        from_module: The module declaring the reference.
        index: Index of all discovered modules.
        matchers: Strategy list to use instead of :data:`NAME_MATCHERS`.

    Returns:
        The matched module, or None.
    """
    names = name_variants(ref_name)
    for name, matcher in matchers or NAME_MATCHERS:
        m = matcher(names, from_module, index)
        if m is not None:
            logger.debug("matched remote state %s -> %s via %s", ref_name, m.id, name)
            return m
    return None
