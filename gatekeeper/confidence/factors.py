"""Scoring factors evaluated by the confidence calculator.

Every factor returns one ConfidenceFactor (score in [0, 1] plus weight and
reason) and, optionally, alternative parameter proposals. Factors must be
deterministic for identical inputs and identical learned state.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from gatekeeper.confidence.schemas import SchemaRegistry, matches_kind
from gatekeeper.confidence.validator import ArchitecturalValidator
from gatekeeper.core.host import HostStateReader
from gatekeeper.core.models import Alternative, ConfidenceFactor

if TYPE_CHECKING:
    from gatekeeper.learning.feedback import FeedbackLearner
    from gatekeeper.rules.evaluator import RuleEvaluator

logger = logging.getLogger("gatekeeper.confidence.factors")


@dataclass
class FactorResult:
    factor: ConfidenceFactor
    alternatives: list[Alternative] = field(default_factory=list)


class ScoringFactor(ABC):
    """One named, weighted signal."""

    name: str = "factor"

    def __init__(self, weight: float):
        self.weight = weight

    @abstractmethod
    def evaluate(self, method_name: str, parameters: dict[str, Any]) -> FactorResult:
        """Score the proposed operation."""

    def _result(self, score: float, reason: str) -> FactorResult:
        clamped = round(min(1.0, max(0.0, score)), 4)
        return FactorResult(
            factor=ConfidenceFactor(name=self.name, score=clamped, weight=self.weight, reason=reason)
        )


class ParameterCompletenessFactor(ScoringFactor):
    """Share of the method's required parameters that are present and well-typed."""

    name = "parameter_completeness"
    UNKNOWN_METHOD_SCORE = 0.6
    MALFORMED_OPTIONAL_PENALTY = 0.1

    def __init__(self, schemas: SchemaRegistry, weight: float = 0.30):
        super().__init__(weight)
        self.schemas = schemas

    def evaluate(self, method_name, parameters):
        schema = self.schemas.get(method_name)
        if schema is None:
            return self._result(
                self.UNKNOWN_METHOD_SCORE,
                f"No parameter schema registered for {method_name}",
            )

        missing = [k for k in schema.required if k not in parameters]
        malformed = [
            k for k, kind in schema.required.items()
            if k in parameters and not matches_kind(parameters[k], kind)
        ]
        malformed_optional = [
            k for k, kind in schema.optional.items()
            if k in parameters and not matches_kind(parameters[k], kind)
        ]

        total = len(schema.required)
        good = total - len(missing) - len(malformed)
        score = good / total if total else 1.0
        score -= self.MALFORMED_OPTIONAL_PENALTY * len(malformed_optional)

        problems = []
        if missing:
            problems.append(f"missing {', '.join(missing)}")
        if malformed or malformed_optional:
            problems.append(f"malformed {', '.join(malformed + malformed_optional)}")
        reason = "; ".join(problems) if problems else "All required parameters present"
        return self._result(score, reason)


class ArchitecturalValidationFactor(ScoringFactor):
    name = "architectural_validation"

    def __init__(self, validator: Optional[ArchitecturalValidator] = None, weight: float = 0.30):
        super().__init__(weight)
        self.validator = validator or ArchitecturalValidator(weight=weight)

    def evaluate(self, method_name, parameters):
        outcome = self.validator.validate(method_name, parameters)
        result = self._result(outcome.factor.score, outcome.factor.reason)
        result.alternatives = list(outcome.alternatives)
        return result


class RuleConsistencyFactor(ScoringFactor):
    """Whether the rule corpus expects this method for the current project state."""

    name = "rule_consistency"
    TRIGGERED_SCORE = 1.0
    APPLICABLE_SCORE = 0.85
    NEUTRAL_SCORE = 0.75

    def __init__(
        self,
        evaluator: "RuleEvaluator",
        host_reader: Optional[HostStateReader] = None,
        weight: float = 0.20,
    ):
        super().__init__(weight)
        self.evaluator = evaluator
        self.host_reader = host_reader

    def evaluate(self, method_name, parameters):
        state = None
        if self.host_reader is not None:
            try:
                state = self.host_reader.read_state()
            except Exception as e:
                logger.warning("Host state unavailable for rule consistency: %s", e)
        if state is None:
            return self._result(self.NEUTRAL_SCORE, "No host state available")

        analysis = self.evaluator.analyze_project(state, record_firm=False)
        if not analysis.success:
            return self._result(self.NEUTRAL_SCORE, analysis.error or "Rule analysis failed")

        for rule in analysis.triggered_rules:
            if method_name in rule.mcp_methods:
                return self._result(
                    self.TRIGGERED_SCORE, f"Expected by triggered rule {rule.rule_id}",
                )
        for rule in self.evaluator.applicable_rules(analysis.project_type):
            if method_name in rule.mcp_methods:
                return self._result(
                    self.APPLICABLE_SCORE, f"Referenced by applicable rule {rule.rule_id}",
                )
        return self._result(
            self.NEUTRAL_SCORE,
            f"No rule for project type '{analysis.project_type}' references {method_name}",
        )


class HistoricalAccuracyFactor(ScoringFactor):
    """Neutral baseline nudged by what human reviewers taught us about the method."""

    name = "historical_accuracy"
    NEUTRAL_SCORE = 0.8

    def __init__(self, learner: "FeedbackLearner", weight: float = 0.20):
        super().__init__(weight)
        self.learner = learner

    def evaluate(self, method_name, parameters):
        pattern = self.learner.pattern_for(method_name)
        if pattern is None:
            return self._result(self.NEUTRAL_SCORE, "Insufficient review history")
        return self._result(
            self.NEUTRAL_SCORE + pattern.confidence_adjustment,
            f"Learned adjustment {pattern.confidence_adjustment:+.3f} "
            f"from {pattern.sample_count} reviews",
        )
