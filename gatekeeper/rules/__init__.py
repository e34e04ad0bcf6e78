"""Rule corpus loading and project rule evaluation."""

from gatekeeper.rules.corpus import FirmPattern, RuleCorpus, load_rule_corpus
from gatekeeper.rules.evaluator import RuleEvaluator

__all__ = ["FirmPattern", "RuleCorpus", "RuleEvaluator", "load_rule_corpus"]
