"""Dependency graph of infrastructure modules."""

from .model import DependencyGraph, GraphCycleError, GraphStats, Node

__all__ = ["DependencyGraph", "GraphCycleError", "GraphStats", "Node"]
