"""Dependency extraction from parsed module references."""

from .dependencies import (
    Dependency,
    DependencyExtractor,
    ExtractionDiagnostic,
    LibraryDependency,
    ModuleDependencies,
)
from .matching import MATCHERS, NAME_MATCHERS, match_path_to_module, match_remote_state_name
from .references import ModuleCall, ModuleParser, ParsedModule, RemoteStateRef

__all__ = [
    "Dependency",
    "DependencyExtractor",
    "ExtractionDiagnostic",
    "LibraryDependency",
    "ModuleDependencies",
    "MATCHERS",
    "NAME_MATCHERS",
    "match_path_to_module",
    "match_remote_state_name",
    "ModuleCall",
    "ModuleParser",
    "ParsedModule",
    "RemoteStateRef",
]
