"""Dependency extraction from parsed module references."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple, Union

from .interpolation import EvaluationScope, UnresolvedExpressionError, resolve_paths
from .matching import match_path_to_module, match_remote_state_name
from .references import ModuleCall, ModuleParser, ParsedModule, RemoteStateRef
from .workers import DEFAULT_MAX_WORKERS, ResultCollector, run_bounded

if TYPE_CHECKING:
    from scanner.discovery import Module
    from scanner.index import ModuleIndex


logger = logging.getLogger(__name__)

KIND_REMOTE_STATE = "remote-state"

# Diagnostic kinds
UNRESOLVED_PATH = "unresolved-path"
UNMATCHED_REFERENCE = "unmatched-reference"
DYNAMIC_EXPRESSION = "dynamic-expression"
MISSING_PATH = "missing-path"
PARSE_ERROR = "parse-error"


@dataclass(frozen=True)
class ExtractionDiagnostic:
    """A non-fatal problem found while extracting one module's dependencies."""

    module_id: str
    kind: str
    message: str
    reference_name: str = ""
    path: str = ""

    def __str__(self) -> str:
        where = f"{self.module_id}.{self.reference_name}" if self.reference_name else self.module_id
        return f"{where}: {self.message}"


@dataclass
class Dependency:
    from_id: str
    to_id: Optional[str]
    kind: str = KIND_REMOTE_STATE
    reference_name: str = ""


@dataclass
class LibraryDependency:
    module_call: ModuleCall
    library_path: str


@dataclass
class ModuleDependencies:
    """Everything extracted for a single module."""

    module: "Module"
    dependencies: List[Dependency] = field(default_factory=list)
    library_dependencies: List[LibraryDependency] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)
    errors: List[ExtractionDiagnostic] = field(default_factory=list)

    @property
    def module_id(self) -> str:
        return self.module.id

    @property
    def library_paths(self) -> List[str]:
        return [lib.library_path for lib in self.library_dependencies]


def _normalize_path(path: Union[str, Path]) -> Path:
    return Path(os.path.normpath(os.path.abspath(path)))


class DependencyExtractor:
    """
    Resolves a module's declared references into module dependencies.

    The extractor only reads the shared index, so one instance can serve
    many worker threads at once.

    Args:
        index: Index of all discovered modules.
        library_paths: Absolute library roots. A local module call is
                       recorded as a library dependency only when it points at
                       or below one of them, so with no roots nothing is
                       recorded.
    """

    def __init__(
        self,
        index: "ModuleIndex",
        library_paths: Optional[Iterable[Union[str, Path]]] = None,
    ):
        self.index = index
        self.library_paths = [_normalize_path(p) for p in (library_paths or [])]

    def extract(self, module: "Module", parsed: ParsedModule) -> ModuleDependencies:
        """
        Extract dependencies of ``module`` from its parsed references.

        Unresolvable references are recorded in ``errors``; extraction
        continues with the remaining references.
        """
        result = ModuleDependencies(module=module)
        scope = EvaluationScope.for_module(module, parsed.locals, parsed.variables)

        for ref in parsed.remote_states:
            deps, errors = self._resolve_remote_state(module, ref, scope)
            result.dependencies.extend(deps)
            result.errors.extend(errors)

        for call in parsed.module_calls:
            library = self._resolve_library(module, call)
            if library is not None:
                result.library_dependencies.append(library)

        seen = set()
        for dep in result.dependencies:
            if dep.to_id is not None and dep.to_id not in seen:
                seen.add(dep.to_id)
                result.depends_on.append(dep.to_id)

        return result

    def _resolve_remote_state(
        self,
        module: "Module",
        ref: RemoteStateRef,
        scope: EvaluationScope,
    ) -> Tuple[List[Dependency], List[ExtractionDiagnostic]]:
        deps: List[Dependency] = []
        errors: List[ExtractionDiagnostic] = []

        if not ref.path_expression:
            # No key or prefix: fall back to the data source name
            target = match_remote_state_name(ref.name, module, self.index)
            if target is not None:
                deps.append(
                    Dependency(
                        from_id=module.id,
                        to_id=target.id,
                        kind=KIND_REMOTE_STATE,
                        reference_name=ref.name,
                    )
                )
            else:
                errors.append(
                    ExtractionDiagnostic(
                        module_id=module.id,
                        kind=MISSING_PATH,
                        message=f"no key or prefix found in remote state config and no module named {ref.name}",
                        reference_name=ref.name,
                    )
                )
            return deps, errors

        try:
            paths, problems = resolve_paths(ref, scope)
        except UnresolvedExpressionError as e:
            logger.debug("cannot resolve %s.%s: %s", module.id, ref.name, e)
            errors.append(
                ExtractionDiagnostic(
                    module_id=module.id,
                    kind=DYNAMIC_EXPRESSION,
                    message=f"could not resolve path {ref.path_expression!r}: {e}",
                    reference_name=ref.name,
                    path=ref.path_expression,
                )
            )
            return deps, errors

        for problem in problems:
            errors.append(
                ExtractionDiagnostic(
                    module_id=module.id,
                    kind=UNRESOLVED_PATH,
                    message=problem,
                    reference_name=ref.name,
                    path=ref.path_expression,
                )
            )

        for path in paths:
            target = match_path_to_module(path, module, self.index)
            if target is None:
                errors.append(
                    ExtractionDiagnostic(
                        module_id=module.id,
                        kind=UNMATCHED_REFERENCE,
                        message=f"could not find module for path {path}",
                        reference_name=ref.name,
                        path=path,
                    )
                )
                continue
            deps.append(
                Dependency(
                    from_id=module.id,
                    to_id=target.id,
                    kind=KIND_REMOTE_STATE,
                    reference_name=ref.name,
                )
            )

        return deps, errors

    def _resolve_library(self, module: "Module", call: ModuleCall) -> Optional[LibraryDependency]:
        if not call.is_local:
            return None

        resolved = _normalize_path(Path(module.path) / call.source)
        if not self.library_paths or not any(
            resolved == root or root in resolved.parents for root in self.library_paths
        ):
            return None

        return LibraryDependency(module_call=call, library_path=str(resolved))

    def extract_all(
        self,
        parse_module: ModuleParser,
        modules: Optional[Iterable["Module"]] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> Tuple[Dict[str, ModuleDependencies], List[ExtractionDiagnostic]]:
        """
        Parse and extract every module with a bounded pool of workers.

        Args:
            parse_module: Callable producing a ParsedModule for a module.
            modules: Modules to process. Defaults to every module in the index.
            max_workers: Upper bound on concurrent workers.

        Returns:
            ``(results, diagnostics)`` where ``results`` maps module ID to its
            ModuleDependencies and ``diagnostics`` aggregates all modules'
            errors sorted by module ID. A module whose parse step raised gets
            an empty result carrying a ``parse-error`` diagnostic.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        targets = list(modules) if modules is not None else self.index.all()
        collector = ResultCollector()

        def work(module: "Module") -> None:
            try:
                parsed = parse_module(module)
                result = self.extract(module, parsed)
            except Exception as e:
                logger.warning("failed to parse module %s: %s", module.id, e)
                result = ModuleDependencies(module=module)
                result.errors.append(
                    ExtractionDiagnostic(
                        module_id=module.id,
                        kind=PARSE_ERROR,
                        message=f"failed to parse module: {e}",
                    )
                )
            collector.add(module.id, result, result.errors)

        run_bounded(work, targets, max_workers=max_workers)

        results, diagnostics = collector.snapshot()
        diagnostics.sort(key=lambda d: (d.module_id, d.reference_name, d.path, d.message))

        logger.info(
            "extracted dependencies for %d modules (%d edges, %d diagnostics)",
            len(results),
            sum(len(r.depends_on) for r in results.values()),
            len(diagnostics),
        )
        return results, diagnostics
