"""Module discovery for infrastructure monorepos.

Modules are directories laid out by a structure pattern such as
``{service}/{environment}/{region}/{module}``, optionally followed by one
more level of submodules (``ec2/rabbitmq``). A module's identity is derived
purely from its position in the tree.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple, Union

from .config import DEFAULT_PATTERN, parse_pattern
from .index import ModuleIndex


logger = logging.getLogger(__name__)

DEFAULT_SOURCE_EXTENSIONS = {".tf"}


class DiscoveryError(Exception):
    """Raised when the module tree cannot be walked."""


@dataclass(frozen=True)
class Module:
    """
    A discovered module.

    ``segments`` are the path components below the root; ``pattern`` holds the
    placeholder names they were bound to, position by position. Segments past
    the end of the pattern form the submodule name.
    """

    segments: Tuple[str, ...]
    pattern: Tuple[str, ...] = tuple(parse_pattern(DEFAULT_PATTERN))
    path: Path = field(default=Path("."), compare=False)
    relative_path: str = field(default="", compare=False)

    @classmethod
    def from_id(
        cls,
        module_id: str,
        root: Optional[Path] = None,
        pattern: Union[str, Sequence[str]] = DEFAULT_PATTERN,
    ) -> "Module":
        """Build a module from a slash-joined ID, mostly useful in tests."""
        segments = tuple(s for s in module_id.split("/") if s)
        base = Path(root) if root is not None else Path("/")
        return cls(
            segments=segments,
            pattern=tuple(parse_pattern(pattern if isinstance(pattern, str) else list(pattern))),
            path=base.joinpath(*segments),
            relative_path="/".join(segments),
        )

    @property
    def id(self) -> str:
        return "/".join(self.segments)

    def get(self, placeholder: str) -> str:
        """Return the segment bound to ``placeholder``, or ``""``."""
        try:
            position = self.pattern.index(placeholder)
        except ValueError:
            return ""
        if position < len(self.segments):
            return self.segments[position]
        return ""

    @property
    def _module_position(self) -> int:
        if "module" in self.pattern:
            return self.pattern.index("module")
        return len(self.pattern) - 1

    @property
    def service(self) -> str:
        return self.get("service")

    @property
    def environment(self) -> str:
        return self.get("environment")

    @property
    def region(self) -> str:
        return self.get("region")

    @property
    def module(self) -> str:
        position = self._module_position
        if position < len(self.segments):
            return self.segments[position]
        return ""

    @property
    def submodule(self) -> str:
        return "/".join(self.segments[len(self.pattern):])

    @property
    def context(self) -> Tuple[str, ...]:
        """Segments that precede the module name (service/environment/region)."""
        return self.segments[: self._module_position]

    @property
    def name(self) -> str:
        """Module name including the submodule, e.g. ``ec2/rabbitmq``."""
        if self.submodule:
            return f"{self.module}/{self.submodule}"
        return self.module

    def is_submodule(self) -> bool:
        return len(self.segments) > len(self.pattern)

    @property
    def parent_id(self) -> Optional[str]:
        if not self.is_submodule():
            return None
        return "/".join(self.segments[: len(self.pattern)])

    def __str__(self) -> str:
        return self.id


def contains_source_files(directory: Path, extensions: Optional[Set[str]] = None) -> bool:
    """Check whether ``directory`` directly contains a recognized source file."""
    if extensions is None:
        extensions = DEFAULT_SOURCE_EXTENSIONS
    try:
        return any(
            entry.is_file() and entry.suffix in extensions
            for entry in Path(directory).iterdir()
        )
    except OSError:
        return False


class ModuleScanner:
    """
    Walks a directory tree and collects modules.

    Args:
        root: Root directory of the monorepo.
        pattern: Structure pattern string or list of placeholder names.
        min_depth: Shallowest module depth. Defaults to the pattern length.
        max_depth: Deepest module depth. Defaults to ``min_depth + 1`` when
                   submodules are allowed, ``min_depth`` otherwise.
        allow_submodules: Whether modules one level below ``min_depth`` count.
        source_extensions: File suffixes that mark a module directory.
    """

    def __init__(
        self,
        root: Union[str, Path],
        pattern: Union[str, Sequence[str]] = DEFAULT_PATTERN,
        min_depth: Optional[int] = None,
        max_depth: Optional[int] = None,
        allow_submodules: bool = True,
        source_extensions: Optional[Iterable[str]] = None,
    ):
        self.root = Path(root)
        self.pattern = tuple(parse_pattern(pattern if isinstance(pattern, str) else list(pattern)))
        self.min_depth = min_depth or len(self.pattern)
        if not allow_submodules:
            self.max_depth = self.min_depth
        else:
            self.max_depth = max_depth or self.min_depth + 1
        if self.max_depth < self.min_depth:
            raise ValueError(f"max_depth ({self.max_depth}) < min_depth ({self.min_depth})")
        self.allow_submodules = allow_submodules
        self.source_extensions = set(source_extensions or DEFAULT_SOURCE_EXTENSIONS)

    def scan(self) -> List[Module]:
        """
        Walk the tree and return all modules sorted by ID.

        Raises:
            DiscoveryError: If the root or any directory below it cannot be read.
        """
        try:
            root = self.root.resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise DiscoveryError(f"cannot access root directory {self.root}: {e}") from e
        if not root.is_dir():
            raise DiscoveryError(f"root {root} is not a directory")

        modules: List[Module] = []
        self._walk(root, (), modules)
        modules.sort(key=lambda m: m.id)

        logger.info(
            "discovered %d modules under %s (%d submodules)",
            len(modules),
            root,
            sum(1 for m in modules if m.is_submodule()),
        )
        return modules

    def scan_index(self) -> Tuple[List[Module], ModuleIndex]:
        """Scan and build the lookup index in one step."""
        modules = self.scan()
        return modules, ModuleIndex(modules)

    def _walk(self, current: Path, segments: Tuple[str, ...], modules: List[Module]) -> None:
        try:
            entries = sorted(current.iterdir())
            subdirs = [e for e in entries if e.is_dir() and not e.name.startswith(".")]
            has_sources = any(e.is_file() and e.suffix in self.source_extensions for e in entries)
        except OSError as e:
            raise DiscoveryError(f"cannot read directory {current}: {e}") from e

        depth = len(segments)
        if self.min_depth <= depth <= self.max_depth and has_sources:
            modules.append(
                Module(
                    segments=segments,
                    pattern=self.pattern,
                    path=current,
                    relative_path="/".join(segments),
                )
            )
            logger.debug("found module %s", "/".join(segments))

        if depth >= self.max_depth:
            return

        for subdir in subdirs:
            self._walk(subdir, segments + (subdir.name,), modules)


def scan_modules(
    root: Union[str, Path],
    pattern: Union[str, Sequence[str]] = DEFAULT_PATTERN,
    min_depth: Optional[int] = None,
    max_depth: Optional[int] = None,
    allow_submodules: bool = True,
    source_extensions: Optional[Iterable[str]] = None,
) -> List[Module]:
    """Discover modules under ``root``. See :class:`ModuleScanner`."""
    return ModuleScanner(
        root,
        pattern=pattern,
        min_depth=min_depth,
        max_depth=max_depth,
        allow_submodules=allow_submodules,
        source_extensions=source_extensions,
    ).scan()
