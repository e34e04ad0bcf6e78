"""Gatekeeper: confidence-gated execution and review of host operations."""

__version__ = "0.1.0"
