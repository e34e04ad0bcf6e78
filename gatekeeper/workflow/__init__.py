"""Multi-pass dependency tracking between operations."""

from gatekeeper.workflow.coordinator import DependencyGraph, PassCoordinator

__all__ = ["DependencyGraph", "PassCoordinator"]
