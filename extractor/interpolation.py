"""Static evaluation of remote-state path expressions.

Only plain references are substituted: ``${local.name}``, ``${var.name}``,
``${each.key}``, ``${each.value}`` and ``${each.value.attr}``. Anything else
(function calls, conditionals, unknown names) cannot be known without running
the infrastructure tool and is reported as unresolved.
"""

import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from .references import RemoteStateRef

if TYPE_CHECKING:
    from scanner.discovery import Module


logger = logging.getLogger(__name__)

INTERPOLATION_RE = re.compile(r"\$\{([^}]*)\}")
REFERENCE_RE = re.compile(r"^(local|var|each)((?:\.[A-Za-z_][\w-]*)+)$")
SCALAR_TYPES = (str, int, float, bool)


class UnresolvedExpressionError(ValueError):
    """Raised when an expression depends on values not known statically."""


def contains_dynamic_pattern(path: str) -> bool:
    """Check whether a path still carries interpolation syntax."""
    return "${" in path or "}" in path


def path_locals(module: "Module") -> Dict[str, str]:
    """
    Locals derived from the module's position in the tree.

    For a submodule ``module`` is the submodule name and ``scope`` the parent
    module name; for a base module both are the module name.
    """
    values = {name: module.get(name) for name in module.pattern}
    values.setdefault("service", module.service)
    values.setdefault("environment", module.environment)
    values.setdefault("region", module.region)
    values["scope"] = module.module
    if module.is_submodule():
        values["module"] = module.submodule
    return values


class EvaluationScope:
    """Values visible to a path expression."""

    def __init__(
        self,
        locals_: Optional[Mapping[str, Any]] = None,
        variables: Optional[Mapping[str, Any]] = None,
        each: Optional[Tuple[Any, Any]] = None,
    ):
        self.locals = dict(locals_ or {})
        self.variables = dict(variables or {})
        self.each = each

    @classmethod
    def for_module(
        cls,
        module: "Module",
        locals_: Optional[Mapping[str, Any]] = None,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> "EvaluationScope":
        merged = path_locals(module)
        # Declared locals win over path-derived ones
        merged.update(locals_ or {})
        return cls(merged, variables)

    def with_each(self, key: Any, value: Any) -> "EvaluationScope":
        return EvaluationScope(self.locals, self.variables, (key, value))

    def lookup(self, reference: str) -> Any:
        """
        Resolve a dotted reference such as ``local.service``.

        Raises:
            UnresolvedExpressionError: If the reference is not a plain
                reference or names something unknown.
        """
        match = REFERENCE_RE.match(reference.strip())
        if not match:
            raise UnresolvedExpressionError(f"unsupported expression: {reference.strip()}")

        namespace = match.group(1)
        attrs = match.group(2).lstrip(".").split(".")

        if namespace == "each":
            if self.each is None:
                raise UnresolvedExpressionError(f"{reference.strip()} used outside for_each")
            key, value = self.each
            head = attrs[0]
            if head == "key":
                current = key
            elif head == "value":
                current = value
            else:
                raise UnresolvedExpressionError(f"unknown attribute each.{head}")
        else:
            source = self.locals if namespace == "local" else self.variables
            head = attrs[0]
            if head not in source:
                raise UnresolvedExpressionError(f"unknown value {namespace}.{head}")
            current = source[head]

        for attr in attrs[1:]:
            if not isinstance(current, Mapping) or attr not in current:
                raise UnresolvedExpressionError(f"cannot resolve attribute {attr!r} of {reference.strip()}")
            current = current[attr]
        return current


def evaluate(expression: str, scope: EvaluationScope) -> str:
    """
    Substitute every interpolation in ``expression`` with its scalar value.

    Raises:
        UnresolvedExpressionError: If any interpolation cannot be resolved to
            a scalar, or syntax remains after substitution.
    """

    def _replace(match):
        value = scope.lookup(match.group(1))
        if isinstance(value, bool):
            return "true" if value else "false"
        if not isinstance(value, SCALAR_TYPES):
            raise UnresolvedExpressionError(
                f"{match.group(1).strip()} is not a scalar value"
            )
        return str(value)

    result = INTERPOLATION_RE.sub(_replace, expression)
    if contains_dynamic_pattern(result):
        raise UnresolvedExpressionError(f"unresolved interpolation remains in {expression!r}")
    return result


def resolve_for_each(ref: RemoteStateRef, scope: EvaluationScope) -> List[Tuple[Any, Any]]:
    """
    Resolve a for-each source into ``(key, value)`` pairs.

    Lists, tuples and sets bind key and value to the element; mappings bind
    key and value as given.

    Raises:
        UnresolvedExpressionError: If the collection is not known statically.
    """
    source = ref.for_each
    if isinstance(source, str):
        reference = source.strip()
        match = INTERPOLATION_RE.fullmatch(reference)
        if match:
            reference = match.group(1)
        source = scope.lookup(reference)

    if isinstance(source, Mapping):
        return [(k, source[k]) for k in source]
    if isinstance(source, (list, tuple)):
        return [(item, item) for item in source]
    if isinstance(source, (set, frozenset)):
        return [(item, item) for item in sorted(source, key=str)]
    raise UnresolvedExpressionError(
        f"for_each of {ref.name} is not a collection: {type(source).__name__}"
    )


def resolve_paths(
    ref: RemoteStateRef, scope: EvaluationScope
) -> Tuple[List[str], List[str]]:
    """
    Expand a remote-state reference into concrete state paths.

    Args:
        ref: The remote-state reference.
        scope: Values available to the expression.

    Returns:
        ``(paths, problems)``; ``problems`` describes for-each elements that
        could not be evaluated. Evaluated paths are kept even when some
        elements fail.

    Raises:
        UnresolvedExpressionError: If the expression (or for-each source)
            cannot be evaluated at all.
    """
    if not ref.has_for_each:
        path = evaluate(ref.path_expression, scope)
        logger.debug("resolved %s to %s", ref.name, path)
        return [path], []

    paths: List[str] = []
    problems: List[str] = []
    for key, value in resolve_for_each(ref, scope):
        try:
            path = evaluate(ref.path_expression, scope.with_each(key, value))
        except UnresolvedExpressionError as e:
            problems.append(f"for_each element {key!r}: {e}")
            continue
        logger.debug("resolved %s[%s] to %s", ref.name, key, path)
        paths.append(path)
    return paths, problems
