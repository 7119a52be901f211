"""Exporters for converting a dependency graph to text formats."""

from .dot_exporter import to_dot
from .json_exporter import to_json
from .mermaid_exporter import to_mermaid

__all__ = ["to_dot", "to_json", "to_mermaid"]
