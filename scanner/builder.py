"""Graph builder that orchestrates discovery, extraction and graph construction."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from extractor.dependencies import DependencyExtractor, ExtractionDiagnostic, ModuleDependencies
from extractor.references import ModuleParser
from graph.model import DependencyGraph

from .config import ScanConfig
from .discovery import Module, ModuleScanner
from .filter import CompositeFilter, EnvironmentFilter, GlobFilter, RegionFilter, ServiceFilter
from .index import ModuleIndex


logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    modules: List[Module]
    index: ModuleIndex
    graph: DependencyGraph
    dependencies: Dict[str, ModuleDependencies] = field(default_factory=dict)
    diagnostics: List[ExtractionDiagnostic] = field(default_factory=list)


def build_dependency_graph(
    root: Union[str, Path],
    parse_module: ModuleParser,
    config: Optional[ScanConfig] = None,
) -> BuildResult:
    """
    Scan a monorepo and build its module dependency graph.

    Args:
        root: Repository root directory.
        parse_module: Parser turning a module into its structured references.
        config: Structure, filter, library and concurrency settings.
                Defaults to :class:`ScanConfig` defaults.

    Returns:
        BuildResult with the modules, index, per-module extraction results,
        aggregated diagnostics and the graph.

    Raises:
        DiscoveryError: If the tree cannot be walked.
    """
    if config is None:
        config = ScanConfig()
    root = Path(root).resolve()

    structure = config.structure
    scanner = ModuleScanner(
        root,
        pattern=structure.placeholders,
        min_depth=structure.resolved_min_depth,
        max_depth=structure.resolved_max_depth,
        allow_submodules=structure.allow_submodules,
    )
    modules = scanner.scan()

    module_filter = CompositeFilter(
        GlobFilter(exclude=config.exclude, include=config.include),
        ServiceFilter(config.services),
        EnvironmentFilter(config.environments),
        RegionFilter(config.regions),
    )
    if module_filter:
        kept = module_filter.apply(modules)
        logger.info("filter kept %d of %d modules", len(kept), len(modules))
        modules = kept

    index = ModuleIndex(modules)
    extractor = DependencyExtractor(index, library_paths=config.library_modules.resolve(root))
    dependencies, diagnostics = extractor.extract_all(parse_module, max_workers=config.max_workers)

    graph = DependencyGraph.from_dependencies(modules, dependencies)
    return BuildResult(
        modules=modules,
        index=index,
        graph=graph,
        dependencies=dependencies,
        diagnostics=diagnostics,
    )
