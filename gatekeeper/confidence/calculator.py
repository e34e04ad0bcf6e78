"""Multi-factor confidence calculation.

Runs a fixed, ordered list of scoring factors over a proposed operation and
folds them into a ConfidenceEnvelope. Calculation has no side effects: it
never touches the envelope registry, the review queue or persistence, so
callers may batch-score candidates before committing to any of them.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from gatekeeper.confidence.factors import ScoringFactor
from gatekeeper.core.models import Alternative, ConfidenceEnvelope, ConfidenceFactor, ThresholdSet

logger = logging.getLogger("gatekeeper.confidence.calculator")

ThresholdResolver = Callable[[str], ThresholdSet]


def weighted_score(factors: list[ConfidenceFactor]) -> float:
    """Weight-normalized sum of factor scores, clamped to [0, 1]."""
    total_weight = sum(f.weight for f in factors)
    if total_weight <= 0:
        return 0.0
    score = sum(f.score * f.weight for f in factors) / total_weight
    return round(min(1.0, max(0.0, score)), 4)


class ConfidenceCalculator:
    """Produces envelopes for (method, parameters) pairs.

    Injected dependencies:
        factors: Ordered scoring factors.
        thresholds: Resolves the active threshold set for a method
            (per-method override or global default).
    """

    def __init__(
        self,
        factors: list[ScoringFactor],
        thresholds: Optional[ThresholdResolver] = None,
    ):
        self.factors = list(factors)
        self._thresholds = thresholds or (lambda _method: ThresholdSet())

    def thresholds_for(self, method_name: str) -> ThresholdSet:
        return self._thresholds(method_name)

    def calculate(self, method_name: str, parameters: dict[str, Any]) -> ConfidenceEnvelope:
        params = dict(parameters or {})
        factors: list[ConfidenceFactor] = []
        alternatives: list[Alternative] = []

        for scorer in self.factors:
            result = scorer.evaluate(method_name, params)
            factors.append(result.factor)
            alternatives.extend(result.alternatives)

        overall = weighted_score(factors)
        level = self.thresholds_for(method_name).level_for(overall)
        logger.debug(
            "Confidence for %s: %.4f (%s) from %d factors",
            method_name, overall, level.value, len(factors),
        )
        return ConfidenceEnvelope(
            method_name=method_name,
            parameters=params,
            factors=factors,
            overall_confidence=overall,
            level=level,
            alternatives=alternatives,
        )
