"""Rule evaluation against host project state.

Classifies the project type and firm numbering convention from host-state
indicators, matches applicable rules, decides which ones trigger, and emits
suggested follow-on actions. Public methods never raise: failures come
back as ``ProjectAnalysis(success=False, error=...)``.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Optional

from gatekeeper.core.models import HostState, ProjectAnalysis, Rule, SuggestedAction
from gatekeeper.rules.corpus import FirmPattern, RuleCorpus

logger = logging.getLogger("gatekeeper.rules.evaluator")

FIRM_INFO_KEYS = ("firm", "architect", "client")
FIRM_SHEET_MATCH_RATIO = 0.5

SHEET_PLACEHOLDERS = {
    "{level}": "2",
    "{unit}": "A",
    "{n}": "1",
    "{discipline}": "A",
    "{phase}": "1",
}
NAMING_PLACEHOLDERS = {
    "{level_name}": "LEVEL 2",
    "{unit_letter}": "A",
    "{direction1}": "NORTH",
    "{direction2}": "SOUTH",
}


def render_example(pattern: Optional[str], firm: Optional[str] = None) -> Optional[str]:
    """Substitute sheet-number placeholders with concrete example values."""
    if not pattern:
        return None
    example = pattern
    for placeholder, value in SHEET_PLACEHOLDERS.items():
        example = example.replace(placeholder, value)
    return example.replace("{firm_pattern}", firm or "default")


def render_naming(pattern: Optional[str]) -> Optional[str]:
    if not pattern:
        return None
    example = pattern
    for placeholder, value in NAMING_PLACEHOLDERS.items():
        example = example.replace(placeholder, value)
    return example


def _searchable_text(state: HostState) -> str:
    parts = [state.document_title]
    parts.extend(state.project_info.values())
    parts.extend(sheet.name for sheet in state.sheets)
    parts.extend(state.rooms)
    parts.extend(state.views)
    return " ".join(p for p in parts if p).lower()


class RuleEvaluator:
    """Evaluates a loaded RuleCorpus against host state snapshots.

    Remembers the firm detected by the most recent analysis so that
    sheet-pattern lookups without an explicit firm use it.
    """

    def __init__(self, corpus: RuleCorpus):
        self.corpus = corpus
        self._lock = threading.Lock()
        self._detected_firm: Optional[str] = None

    @property
    def detected_firm(self) -> Optional[str]:
        with self._lock:
            return self._detected_firm

    # -------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------

    def analyze_project(
        self, state: Optional[HostState], record_firm: bool = True,
    ) -> ProjectAnalysis:
        """Analyze a host snapshot against the corpus.

        With ``record_firm`` false the detected firm is reported but not
        remembered for later pattern lookups.
        """
        if state is None:
            return ProjectAnalysis(success=False, error="No active document")
        if not self.corpus.loaded:
            return ProjectAnalysis(success=False, error=self.corpus.load_error)

        try:
            return self._analyze(state, record_firm)
        except (re.error, AttributeError, TypeError, ValueError) as e:
            logger.error("Rule analysis failed: %s", e)
            return ProjectAnalysis(success=False, error=f"Rule analysis failed: {e}")

    def _analyze(self, state: HostState, record_firm: bool) -> ProjectAnalysis:
        indicators: list[str] = []
        text = _searchable_text(state)

        project_type, type_confidence = self._detect_project_type(state, text, indicators)
        firm = self._detect_firm(state, indicators)
        if record_firm:
            with self._lock:
                self._detected_firm = firm.firm_name if firm else None

        applicable = self.applicable_rules(project_type)
        triggered = [rule for rule in applicable if self._is_triggered(rule, state, text)]
        actions = [self._suggest(rule, firm) for rule in triggered]

        logger.info(
            "Project analysis: type=%s (%.2f) firm=%s applicable=%d triggered=%d",
            project_type, type_confidence, firm.firm_name if firm else None,
            len(applicable), len(triggered),
        )
        return ProjectAnalysis(
            success=True,
            project_name=state.document_title or None,
            project_type=project_type,
            project_type_confidence=type_confidence,
            detected_firm=firm.firm_name if firm else None,
            firm_pattern=firm.pattern_id if firm else None,
            indicators=indicators,
            applicable_rule_count=len(applicable),
            triggered_rule_count=len(triggered),
            triggered_rules=triggered,
            suggested_actions=actions,
        )

    def _detect_project_type(
        self, state: HostState, text: str, indicators: list[str],
    ) -> tuple[str, float]:
        best_type = "unknown"
        best_score = 0.0
        best_hits: list[str] = []

        for type_name, hints in self.corpus.project_types.items():
            hints = hints or {}
            criteria = 0
            hits: list[str] = []

            keywords = [str(k).lower() for k in hints.get("keywords") or []]
            if keywords:
                criteria += 1
                found = [k for k in keywords if k in text]
                if found:
                    hits.append(f"{type_name}: keywords {', '.join(found)}")
            if hints.get("min_levels") is not None:
                criteria += 1
                if len(state.levels) >= int(hints["min_levels"]):
                    hits.append(f"{type_name}: {len(state.levels)} levels >= {hints['min_levels']}")
            if hints.get("min_rooms") is not None:
                criteria += 1
                if len(state.rooms) >= int(hints["min_rooms"]):
                    hits.append(f"{type_name}: {len(state.rooms)} rooms >= {hints['min_rooms']}")

            score = len(hits) / criteria if criteria else 0.0
            if score > best_score:
                best_type, best_score, best_hits = type_name, score, hits

        indicators.extend(best_hits)
        return best_type, round(best_score, 3)

    def _detect_firm(self, state: HostState, indicators: list[str]) -> Optional[FirmPattern]:
        for key in FIRM_INFO_KEYS:
            value = state.project_info.get(key)
            if not value:
                continue
            firm = self.corpus.find_firm(value)
            if firm is not None:
                indicators.append(f"firm: project info '{key}' matches {firm.firm_name}")
                return firm

        numbers = [sheet.number for sheet in state.sheets if sheet.number]
        if not numbers:
            return None
        for firm in self.corpus.firm_patterns:
            if not firm.sheet_regex:
                continue
            regex = re.compile(firm.sheet_regex)
            matched = sum(1 for number in numbers if regex.search(number))
            if matched / len(numbers) >= FIRM_SHEET_MATCH_RATIO:
                indicators.append(
                    f"firm: {matched}/{len(numbers)} sheet numbers match {firm.firm_name} pattern"
                )
                return firm
        return None

    def _is_triggered(self, rule: Rule, state: HostState, text: str) -> bool:
        numbers = [sheet.number for sheet in state.sheets]
        for condition, value in rule.trigger.items():
            if not self._condition_holds(condition, value, state, text, numbers):
                return False
        return True

    @staticmethod
    def _condition_holds(
        condition: str, value: Any, state: HostState, text: str, numbers: list[str],
    ) -> bool:
        if condition == "min_levels":
            return len(state.levels) >= int(value)
        if condition == "max_levels":
            return len(state.levels) <= int(value)
        if condition == "min_rooms":
            return len(state.rooms) >= int(value)
        if condition == "min_elements":
            return all(
                state.element_counts.get(category, 0) >= int(count)
                for category, count in (value or {}).items()
            )
        if condition == "missing_sheet_pattern":
            regex = re.compile(str(value))
            return not any(regex.search(number) for number in numbers)
        if condition == "has_sheet_pattern":
            regex = re.compile(str(value))
            return any(regex.search(number) for number in numbers)
        if condition == "keywords":
            return any(str(k).lower() in text for k in value or [])
        logger.debug("Unknown trigger condition '%s' treated as unsatisfied", condition)
        return False

    def suggestion_for(self, rule: Rule) -> SuggestedAction:
        """Suggested action for a rule using the most recently detected firm."""
        firm_name = self.detected_firm
        return self._suggest(rule, self.corpus.find_firm(firm_name) if firm_name else None)

    def _suggest(self, rule: Rule, firm: Optional[FirmPattern]) -> SuggestedAction:
        action = rule.action or {}
        sheet_pattern = action.get("sheet_pattern")
        if firm is not None and rule.rule_id in firm.rule_patterns:
            sheet_pattern = firm.rule_patterns[rule.rule_id]
        return SuggestedAction(
            rule_id=rule.rule_id,
            rule_name=rule.name,
            action_type=action.get("type", ""),
            description=action.get("description", ""),
            sheet_pattern=sheet_pattern,
            naming_pattern=action.get("naming_pattern"),
            confidence=rule.confidence,
            mcp_methods=list(rule.mcp_methods),
        )

    # -------------------------------------------------------------------
    # Corpus queries
    # -------------------------------------------------------------------

    def applicable_rules(self, project_type: str) -> list[Rule]:
        return [rule for rule in self.corpus.rules if rule.applies_to_type(project_type)]

    def get_executable_rules(
        self,
        category: Optional[str] = None,
        project_type: Optional[str] = None,
    ) -> list[Rule]:
        rules = self.corpus.rules
        if category:
            rules = [r for r in rules if r.category.lower() == category.lower()]
        if project_type:
            rules = [r for r in rules if r.applies_to_type(project_type)]
        return list(rules)

    def get_sheet_pattern(self, rule_id: str, firm_name: Optional[str] = None) -> Optional[str]:
        """Firm-specific pattern for a rule, else the rule default, else None."""
        rule = self.corpus.get_rule(rule_id)
        firm_name = firm_name or self.detected_firm
        if firm_name:
            firm = self.corpus.find_firm(firm_name)
            if firm is not None and rule_id in firm.rule_patterns:
                return firm.rule_patterns[rule_id]
        if rule is None:
            return None
        return (rule.action or {}).get("sheet_pattern")
