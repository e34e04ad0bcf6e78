"""Confidence scoring: request schemas, validation rules, factors and the calculator."""

from gatekeeper.confidence.calculator import ConfidenceCalculator, weighted_score
from gatekeeper.confidence.schemas import SchemaRegistry, default_schema_registry
from gatekeeper.confidence.validator import ArchitecturalValidator

__all__ = [
    "ArchitecturalValidator",
    "ConfidenceCalculator",
    "SchemaRegistry",
    "default_schema_registry",
    "weighted_score",
]
