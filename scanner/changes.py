"""Map externally supplied changed files onto modules and library paths."""

import os
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Union

from .index import ModuleIndex


def modules_for_changed_files(files: Iterable[str], index: ModuleIndex) -> List[str]:
    """
    Return the IDs of modules containing the given changed files.

    Each file (relative to the repository root) is attributed to the deepest
    module whose directory contains it, so a change inside ``ec2/rabbitmq``
    marks the submodule and not its parent.

    Args:
        files: Repository-relative file paths, as produced by a VCS diff.
        index: Index of discovered modules.

    Returns:
        Sorted, deduplicated module IDs.
    """
    changed = set()
    for file_path in files:
        normalized = file_path.replace("\\", "/")
        if normalized.startswith("./"):
            normalized = normalized[2:]
        parts = PurePosixPath(normalized.lstrip("/")).parts
        # Walk up from the file's directory, deepest first
        for depth in range(len(parts) - 1, 0, -1):
            m = index.by_id("/".join(parts[:depth]))
            if m is not None:
                changed.add(m.id)
                break
    return sorted(changed)


def library_paths_for_changed_files(
    files: Iterable[str],
    root: Union[str, Path],
    library_paths: Iterable[Union[str, Path]],
) -> List[str]:
    """
    Return absolute directories of changed files that live in a library root.

    Args:
        files: Repository-relative file paths.
        root: Repository root the file paths are relative to.
        library_paths: Library roots, absolute or relative to ``root``.

    Returns:
        Sorted, deduplicated absolute directory paths.
    """
    root = Path(os.path.abspath(root))
    libraries = [_normalize(root / p) for p in library_paths]

    changed = set()
    for file_path in files:
        directory = _normalize(root / file_path).parent
        if _under_any(directory, libraries):
            changed.add(str(directory))
    return sorted(changed)


def _normalize(path: Path) -> Path:
    return Path(os.path.normpath(os.path.abspath(path)))


def _under_any(path: Path, roots: List[Path]) -> Optional[Path]:
    for lib_root in roots:
        if path == lib_root or lib_root in path.parents:
            return lib_root
    return None
