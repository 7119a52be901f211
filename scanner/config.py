"""Configuration for module discovery and dependency extraction."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import yaml

from extractor.workers import DEFAULT_MAX_WORKERS


DEFAULT_PATTERN = "{service}/{environment}/{region}/{module}"

_PLACEHOLDER_RE = re.compile(r"^\{(\w+)\}$")


class ConfigError(ValueError):
    """Raised when configuration content is invalid."""


def parse_pattern(pattern: Union[str, List[str]]) -> List[str]:
    """
    Turn a structure pattern into its ordered placeholder names.

    Accepts either ``"{service}/{environment}/{region}/{module}"`` or an
    already split list such as ``["service", "environment", "region", "module"]``.

    Raises:
        ConfigError: If a segment is not a ``{name}`` placeholder.
    """
    if isinstance(pattern, str):
        names = []
        for segment in pattern.strip("/").split("/"):
            match = _PLACEHOLDER_RE.match(segment)
            if not match:
                raise ConfigError(f"invalid pattern segment {segment!r} in {pattern!r}")
            names.append(match.group(1))
    else:
        names = [str(name).strip("{}") for name in pattern]

    if not names:
        raise ConfigError("structure pattern must contain at least one placeholder")
    if len(set(names)) != len(names):
        raise ConfigError(f"duplicate placeholder in pattern {pattern!r}")
    return names


@dataclass
class StructureConfig:
    """Directory layout of the monorepo."""

    pattern: Union[str, List[str]] = DEFAULT_PATTERN
    # 0 means "derive from the pattern"
    min_depth: int = 0
    max_depth: int = 0
    allow_submodules: bool = True

    @property
    def placeholders(self) -> List[str]:
        return parse_pattern(self.pattern)

    @property
    def resolved_min_depth(self) -> int:
        return self.min_depth or len(self.placeholders)

    @property
    def resolved_max_depth(self) -> int:
        min_depth = self.resolved_min_depth
        if not self.allow_submodules:
            return min_depth
        return self.max_depth or min_depth + 1

    def validate(self) -> None:
        """Check depth bounds against each other and the pattern."""
        placeholders = self.placeholders
        if self.min_depth < 0 or self.max_depth < 0:
            raise ConfigError("depth bounds must not be negative")
        if self.resolved_max_depth < self.resolved_min_depth:
            raise ConfigError(
                f"max_depth ({self.resolved_max_depth}) is lower than "
                f"min_depth ({self.resolved_min_depth})"
            )
        if self.resolved_min_depth > len(placeholders) + 1:
            raise ConfigError(
                f"min_depth ({self.resolved_min_depth}) exceeds pattern "
                f"length ({len(placeholders)})"
            )


@dataclass
class LibraryModulesConfig:
    """Directories holding reusable library modules, relative to the root."""

    paths: List[str] = field(default_factory=list)

    def resolve(self, root: Path) -> List[Path]:
        """Return the library roots as absolute paths under ``root``."""
        root = Path(root).resolve()
        return [(root / p).resolve() for p in self.paths]


@dataclass
class ScanConfig:
    structure: StructureConfig = field(default_factory=StructureConfig)
    library_modules: LibraryModulesConfig = field(default_factory=LibraryModulesConfig)
    exclude: List[str] = field(default_factory=list)
    include: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    environments: List[str] = field(default_factory=list)
    regions: List[str] = field(default_factory=list)
    max_workers: int = DEFAULT_MAX_WORKERS


def config_from_dict(data: Optional[Mapping[str, Any]]) -> ScanConfig:
    """
    Build a ScanConfig from a plain mapping (e.g. parsed YAML).

    Unknown top-level keys are ignored so the file can be shared with other
    tools. Missing sections fall back to defaults.

    Args:
        data: Mapping with optional ``structure``, ``library_modules``,
              ``exclude``, ``include``, ``services``, ``environments``,
              ``regions`` and ``max_workers`` keys.

    Returns:
        A validated ScanConfig.

    Raises:
        ConfigError: If a section has the wrong shape or invalid values.
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"configuration must be a mapping, got {type(data).__name__}")

    structure_data = data.get("structure") or {}
    if not isinstance(structure_data, Mapping):
        raise ConfigError("'structure' must be a mapping")

    allow_submodules = structure_data.get("allow_submodules", True)
    if not isinstance(allow_submodules, bool):
        raise ConfigError(f"'structure.allow_submodules' must be true or false, got {allow_submodules!r}")

    try:
        structure = StructureConfig(
            pattern=structure_data.get("pattern", DEFAULT_PATTERN),
            min_depth=int(structure_data.get("min_depth", 0) or 0),
            max_depth=int(structure_data.get("max_depth", 0) or 0),
            allow_submodules=allow_submodules,
        )
        max_workers = int(data.get("max_workers", DEFAULT_MAX_WORKERS))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid configuration value: {e}") from e
    structure.validate()

    library_data = data.get("library_modules") or {}
    if not isinstance(library_data, Mapping):
        raise ConfigError("'library_modules' must be a mapping")
    library_paths = library_data.get("paths") or []

    if max_workers < 1:
        raise ConfigError("max_workers must be at least 1")

    return ScanConfig(
        structure=structure,
        library_modules=LibraryModulesConfig(paths=_string_list(library_paths, "library_modules.paths")),
        exclude=_string_list(data.get("exclude") or [], "exclude"),
        include=_string_list(data.get("include") or [], "include"),
        services=_string_list(data.get("services") or [], "services"),
        environments=_string_list(data.get("environments") or [], "environments"),
        regions=_string_list(data.get("regions") or [], "regions"),
        max_workers=max_workers,
    )


def load_config(path: Union[str, Path]) -> ScanConfig:
    """
    Load a ScanConfig from a YAML file.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse config {path}: {e}") from e

    return config_from_dict(data)


def _string_list(value: Any, key: str) -> List[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{key}' must be a list of strings")
    return [str(item) for item in value]
