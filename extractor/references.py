"""Structured reference records supplied by a configuration parser.

Turning raw module sources into these records is the parser's job; this
module only defines the shapes the extractor consumes.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Union

if TYPE_CHECKING:
    from scanner.discovery import Module


ForEachValue = Union[None, str, List[Any], Dict[str, Any]]


@dataclass
class RemoteStateRef:
    """
    A remote-state data source declared by a module.

    Attributes:
        name: Data source name (``vpc`` in ``data.terraform_remote_state.vpc``).
        backend: Backend type, e.g. ``s3`` or ``gcs``.
        path_expression: Raw ``key``/``prefix`` expression, possibly with
                         ``${...}`` interpolations. Empty if none was declared.
        for_each: The for-each source: a literal list/dict, a reference such
                  as ``"local.deps"``, or None.
    """

    name: str
    backend: str = ""
    path_expression: str = ""
    for_each: ForEachValue = None

    @property
    def has_for_each(self) -> bool:
        return self.for_each is not None


@dataclass
class ModuleCall:
    """A module block: ``module "name" { source = ... }``."""

    name: str
    source: str
    version: str = ""

    @property
    def is_local(self) -> bool:
        return self.source.startswith(("./", "../"))


@dataclass
class ParsedModule:
    remote_states: List[RemoteStateRef] = field(default_factory=list)
    module_calls: List[ModuleCall] = field(default_factory=list)
    # Scalar values (or collections, for for-each sources) known statically
    locals: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)


class ModuleParser(Protocol):
    """Anything that can turn a discovered module into a ParsedModule."""

    def __call__(self, module: "Module") -> ParsedModule:
        ...


def parsed_module_from_dict(data: Optional[Dict[str, Any]]) -> ParsedModule:
    """
    Build a ParsedModule from plain data, e.g. a parser's JSON output.

    Expected keys: ``remote_states`` (list of mappings with ``name``,
    ``backend``, ``key`` or ``prefix``, ``for_each``), ``module_calls``
    (list of mappings with ``name``, ``source``, ``version``), ``locals`` and
    ``variables``.
    """
    data = data or {}
    remote_states = []
    for item in data.get("remote_states", []):
        remote_states.append(
            RemoteStateRef(
                name=item["name"],
                backend=item.get("backend", ""),
                path_expression=item.get("key") or item.get("prefix") or item.get("path_expression", ""),
                for_each=item.get("for_each"),
            )
        )
    module_calls = [
        ModuleCall(name=item["name"], source=item.get("source", ""), version=item.get("version", ""))
        for item in data.get("module_calls", [])
    ]
    return ParsedModule(
        remote_states=remote_states,
        module_calls=module_calls,
        locals=dict(data.get("locals", {})),
        variables=dict(data.get("variables", {})),
    )
