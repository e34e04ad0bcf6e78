"""Tests for gatekeeper/confidence — schemas, factors and the calculator."""

import pytest

from gatekeeper.confidence.calculator import ConfidenceCalculator, weighted_score
from gatekeeper.confidence.factors import (
    ArchitecturalValidationFactor,
    HistoricalAccuracyFactor,
    ParameterCompletenessFactor,
    RuleConsistencyFactor,
)
from gatekeeper.confidence.schemas import default_schema_registry, matches_kind
from gatekeeper.core.exceptions import ValidationError
from gatekeeper.core.models import ConfidenceFactor, ConfidenceLevel, ThresholdSet
from gatekeeper.learning.feedback import FeedbackLearner
from gatekeeper.rules.evaluator import RuleEvaluator

from tests.conftest import FakeHost, FixedScoreFactor


@pytest.fixture
def schemas():
    return default_schema_registry()


class TestWeightedScore:
    def test_weight_normalized(self):
        factors = [
            ConfidenceFactor(name="a", score=0.5, weight=1.0),
            ConfidenceFactor(name="b", score=1.0, weight=3.0),
        ]
        assert weighted_score(factors) == 0.875

    def test_no_weight_scores_zero(self):
        assert weighted_score([]) == 0.0
        assert weighted_score([ConfidenceFactor(name="a", score=1.0, weight=0.0)]) == 0.0


class TestSchemas:
    def test_kinds(self):
        assert matches_kind(3, "number")
        assert not matches_kind(True, "number")
        assert matches_kind({"x": 0, "y": 1.5}, "point")
        assert matches_kind([0, 1, 2], "point")
        assert not matches_kind("  ", "string")

    def test_check_request_accepts_none(self, schemas):
        assert schemas.check_request("createWall", None) == {}

    def test_check_request_rejects_non_mapping(self, schemas):
        with pytest.raises(ValidationError):
            schemas.check_request("createWall", ["length", 10])

    def test_check_request_rejects_unknown_field(self, schemas):
        with pytest.raises(ValidationError, match="colour"):
            schemas.check_request("createWall", {"length": 10, "colour": "red"})

    def test_unknown_method_passes_through(self, schemas):
        params = {"anything": 1}
        assert schemas.check_request("customMethod", params) == params


class TestParameterCompleteness:
    def test_all_required_present(self, schemas):
        result = ParameterCompletenessFactor(schemas).evaluate("createWall", {"length": 10})
        assert result.factor.score == 1.0

    def test_missing_required(self, schemas):
        result = ParameterCompletenessFactor(schemas).evaluate("placeWindow", {"width": 36})
        assert result.factor.score == 0.5
        assert "missing height" in result.factor.reason

    def test_malformed_optional_penalized(self, schemas):
        result = ParameterCompletenessFactor(schemas).evaluate(
            "placeWindow", {"width": 36, "height": 48, "sillHeight": "low"},
        )
        assert result.factor.score == 0.9

    def test_unknown_method(self, schemas):
        result = ParameterCompletenessFactor(schemas).evaluate("customMethod", {})
        assert result.factor.score == ParameterCompletenessFactor.UNKNOWN_METHOD_SCORE


class TestRuleConsistency:
    def test_triggered_rule_method_scores_full(self, host, rule_corpus):
        factor = RuleConsistencyFactor(RuleEvaluator(rule_corpus), host)
        assert factor.evaluate("createSheet", {}).factor.score == 1.0

    def test_applicable_but_untriggered(self, host, rule_corpus):
        factor = RuleConsistencyFactor(RuleEvaluator(rule_corpus), host)
        result = factor.evaluate("createElevationView", {})
        assert result.factor.score == RuleConsistencyFactor.APPLICABLE_SCORE

    def test_unrelated_method_is_neutral(self, host, rule_corpus):
        factor = RuleConsistencyFactor(RuleEvaluator(rule_corpus), host)
        assert factor.evaluate("createWall", {}).factor.score == RuleConsistencyFactor.NEUTRAL_SCORE

    def test_no_state_is_neutral(self, rule_corpus):
        factor = RuleConsistencyFactor(RuleEvaluator(rule_corpus), FakeHost(state=None))
        result = factor.evaluate("createSheet", {})
        assert result.factor.score == RuleConsistencyFactor.NEUTRAL_SCORE
        assert result.factor.reason == "No host state available"


class TestHistoricalAccuracy:
    def test_neutral_without_history(self):
        factor = HistoricalAccuracyFactor(FeedbackLearner())
        assert factor.evaluate("createWall", {}).factor.score == 0.8


class TestCalculator:
    def test_envelope_fields(self, schemas):
        calculator = ConfidenceCalculator(
            factors=[
                ParameterCompletenessFactor(schemas, weight=0.5),
                ArchitecturalValidationFactor(weight=0.5),
            ],
        )
        envelope = calculator.calculate("placeDoor", {"width": 60})
        assert [f.name for f in envelope.factors] == [
            "parameter_completeness", "architectural_validation",
        ]
        assert envelope.overall_confidence == 0.825
        assert envelope.level == ConfidenceLevel.MEDIUM

    def test_alternatives_collected(self, schemas):
        calculator = ConfidenceCalculator(
            factors=[ParameterCompletenessFactor(schemas), ArchitecturalValidationFactor()],
        )
        envelope = calculator.calculate("placeDoor", {"width": 31})
        assert len(envelope.alternatives) == 1
        assert envelope.alternatives[0].parameters["width"] == 30

    def test_per_method_thresholds(self):
        overrides = {"createSheet": ThresholdSet(high=0.7, medium=0.5, low=0.3)}
        calculator = ConfidenceCalculator(
            factors=[FixedScoreFactor(0.75)],
            thresholds=lambda m: overrides.get(m, ThresholdSet()),
        )
        assert calculator.calculate("createSheet", {}).level == ConfidenceLevel.HIGH
        assert calculator.calculate("createWall", {}).level == ConfidenceLevel.MEDIUM

    def test_deterministic(self, schemas):
        calculator = ConfidenceCalculator(
            factors=[ParameterCompletenessFactor(schemas), ArchitecturalValidationFactor()],
        )
        a = calculator.calculate("createWall", {"length": 12, "thickness": 7})
        b = calculator.calculate("createWall", {"length": 12, "thickness": 7})
        assert a.overall_confidence == b.overall_confidence
        assert a.factors == b.factors
        assert a.operation_id != b.operation_id

    def test_does_not_alias_parameters(self, schemas):
        params = {"length": 10}
        envelope = ConfidenceCalculator([ParameterCompletenessFactor(schemas)]).calculate(
            "createWall", params,
        )
        envelope.parameters["length"] = 99
        assert params["length"] == 10
