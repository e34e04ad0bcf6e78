"""Rule corpus loading.

The corpus is an external, read-only dataset of executable rules, firm
sheet-numbering conventions and project-type detection hints. It is loaded
once per process; a failed load is recorded on the corpus instead of raised
so callers can report it through their normal failure payloads.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from gatekeeper.core.models import Rule

logger = logging.getLogger("gatekeeper.rules.corpus")


@dataclass(frozen=True)
class FirmPattern:
    firm_name: str
    pattern_id: str
    sheet_regex: Optional[str] = None
    rule_patterns: dict[str, str] = field(default_factory=dict)
    description: str = ""


@dataclass
class RuleCorpus:
    version: Optional[str] = None
    generated_at: Optional[str] = None
    rules: list[Rule] = field(default_factory=list)
    firm_patterns: list[FirmPattern] = field(default_factory=list)
    project_types: dict[str, dict[str, Any]] = field(default_factory=dict)
    source: Optional[str] = None
    load_error: Optional[str] = None

    @property
    def loaded(self) -> bool:
        return self.load_error is None

    @property
    def total_rules(self) -> int:
        return len(self.rules)

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        return None

    def find_firm(self, name: str) -> Optional[FirmPattern]:
        """Case-insensitive substring match of a known firm inside ``name``."""
        lowered = name.lower()
        for firm in self.firm_patterns:
            if firm.firm_name.lower() in lowered or lowered in firm.firm_name.lower():
                return firm
        return None

    def firm_patterns_payload(self) -> dict[str, Any]:
        return {
            f.firm_name: {
                "patternId": f.pattern_id,
                "sheetRegex": f.sheet_regex,
                "rulePatterns": dict(f.rule_patterns),
                "description": f.description,
            }
            for f in self.firm_patterns
        }


INTEGER_CONDITIONS = ("min_levels", "max_levels", "min_rooms")
REGEX_CONDITIONS = ("missing_sheet_pattern", "has_sheet_pattern")


def _check_trigger(rule: Rule) -> None:
    for condition, value in rule.trigger.items():
        if condition in INTEGER_CONDITIONS:
            int(value)
        elif condition in REGEX_CONDITIONS:
            try:
                re.compile(str(value))
            except re.error as e:
                raise ValueError(f"rule {rule.rule_id}: bad {condition} regex: {e}") from e
        elif condition == "min_elements":
            if not isinstance(value, dict):
                raise ValueError(f"rule {rule.rule_id}: min_elements must be a mapping")
            for count in value.values():
                int(count)
        elif condition == "keywords" and not isinstance(value, list):
            raise ValueError(f"rule {rule.rule_id}: keywords must be a list")


def _check_project_types(project_types: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(project_types, dict):
        raise ValueError("project_type_detection must be a mapping")
    checked: dict[str, dict[str, Any]] = {}
    for type_name, hints in project_types.items():
        hints = hints or {}
        if not isinstance(hints, dict):
            raise ValueError(f"project type {type_name}: detection hints must be a mapping")
        if not isinstance(hints.get("keywords") or [], list):
            raise ValueError(f"project type {type_name}: keywords must be a list")
        for key in ("min_levels", "min_rooms"):
            if hints.get(key) is not None:
                int(hints[key])
        checked[str(type_name)] = hints
    return checked


def corpus_from_dict(data: dict[str, Any], source: Optional[str] = None) -> RuleCorpus:
    """Build a corpus from already-parsed data.

    Raises:
        ValueError: A trigger or detection entry has the wrong shape.
    """
    rules = [Rule(**raw) for raw in data.get("rules") or []]
    for rule in rules:
        _check_trigger(rule)
    project_types = _check_project_types(data.get("project_type_detection") or {})
    firms = []
    for firm_name, raw in (data.get("firm_numbering_patterns") or {}).items():
        raw = raw or {}
        firms.append(
            FirmPattern(
                firm_name=firm_name,
                pattern_id=str(raw.get("pattern_id", "")),
                sheet_regex=raw.get("sheet_regex"),
                rule_patterns=dict(raw.get("rule_patterns") or {}),
                description=raw.get("description", ""),
            )
        )
    return RuleCorpus(
        version=str(data["version"]) if data.get("version") is not None else None,
        generated_at=str(data["generated_at"]) if data.get("generated_at") is not None else None,
        rules=rules,
        firm_patterns=firms,
        project_types=project_types,
        source=source,
    )


def load_rule_corpus(path: Path) -> RuleCorpus:
    """Load a YAML or JSON rule corpus; never raises."""
    if not path.exists():
        logger.error("Rule corpus not found: %s", path)
        return RuleCorpus(source=str(path), load_error=f"Rule corpus not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
        if not isinstance(data, dict):
            raise ValueError("corpus root must be a mapping")
        corpus = corpus_from_dict(data, source=str(path))
    except (OSError, TypeError, ValueError, yaml.YAMLError, PydanticValidationError) as e:
        logger.error("Failed to load rule corpus %s: %s", path, e)
        return RuleCorpus(source=str(path), load_error=f"Failed to load rule corpus: {e}")

    logger.info(
        "Loaded rule corpus %s (version=%s, %d rules, %d firms)",
        path, corpus.version, corpus.total_rules, len(corpus.firm_patterns),
    )
    return corpus
