"""Scanner package for module discovery and graph construction."""

from .builder import BuildResult, build_dependency_graph
from .changes import library_paths_for_changed_files, modules_for_changed_files
from .config import ConfigError, ScanConfig, load_config
from .discovery import DiscoveryError, Module, ModuleScanner, scan_modules
from .filter import CompositeFilter, EnvironmentFilter, GlobFilter, RegionFilter, ServiceFilter
from .index import ModuleIndex

__all__ = [
    "BuildResult",
    "build_dependency_graph",
    "library_paths_for_changed_files",
    "modules_for_changed_files",
    "ConfigError",
    "ScanConfig",
    "load_config",
    "DiscoveryError",
    "Module",
    "ModuleScanner",
    "scan_modules",
    "CompositeFilter",
    "EnvironmentFilter",
    "GlobFilter",
    "RegionFilter",
    "ServiceFilter",
    "ModuleIndex",
]
