"""Architectural sanity checks for proposed host operations.

Compares proposed parameters against building-domain constraints (wall
dimensions, door and window sizes, room areas, sheet numbering). Each
violation lowers the validation score; values that are legal but
non-standard produce alternative proposals instead.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from gatekeeper.core.models import Alternative, ConfidenceFactor

FACTOR_NAME = "architectural_validation"
VIOLATION_PENALTY = 0.35

VALIDATION_RULES: dict[str, dict[str, Any]] = {
    "walls": {
        "min_length_inches": 6,
        "max_length_feet": 100,
        "valid_thicknesses_inches": [4, 6, 8, 10, 12],
        "min_height_feet": 7,
        "max_height_feet": 40,
    },
    "doors": {
        "min_width_inches": 24,
        "max_width_inches": 48,
        "standard_widths_inches": [28, 30, 32, 34, 36],
        "min_height_inches": 78,
        "max_height_inches": 96,
    },
    "windows": {
        "min_width_inches": 12,
        "max_width_inches": 120,
        "min_height_inches": 12,
        "max_height_inches": 96,
        "min_sill_height_inches": 18,
    },
    "rooms": {
        "min_area_sqft": 25,
        "min_dimension_feet": 4,
        "bathroom_min_sqft": 35,
        "bedroom_min_sqft": 70,
        "kitchen_min_sqft": 50,
    },
    "sheets": {
        "number_pattern": r"^[A-Z]{1,3}[-.]?\d{1,4}(\.\d{1,3})?[A-Z]?$",
    },
}


@dataclass
class ValidationOutcome:
    factor: ConfidenceFactor
    violations: list[str] = field(default_factory=list)
    alternatives: list[Alternative] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.factor.score >= 1.0


def _number(parameters: dict[str, Any], key: str) -> float | None:
    value = parameters.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _nearest(value: float, options: list[int]) -> int:
    # Ties resolve to the smaller option so results are stable.
    return min(options, key=lambda option: (abs(option - value), option))


def _snap_alternative(
    parameters: dict[str, Any], key: str, value: float, standard: int, label: str,
) -> Alternative:
    proposal = dict(parameters)
    proposal[key] = standard
    confidence = round(1.0 - min(abs(value - standard) / standard, 0.5), 3)
    return Alternative(
        description=f"Use standard {label} {standard}\" instead of {value:g}\"",
        parameters=proposal,
        confidence=confidence,
    )


class ArchitecturalValidator:
    """Scores parameters against VALIDATION_RULES.

    Stateless; safe to share between threads.
    """

    def __init__(self, weight: float = 0.30, rules: dict[str, dict[str, Any]] | None = None):
        self.weight = weight
        self.rules = rules or VALIDATION_RULES
        self._checks = {
            "createWall": self._check_wall,
            "placeDoor": self._check_door,
            "placeWindow": self._check_window,
            "createRoom": self._check_room,
            "createSheet": self._check_sheet,
        }

    def validate(self, method_name: str, parameters: dict[str, Any]) -> ValidationOutcome:
        check = self._checks.get(method_name)
        if check is None:
            return ValidationOutcome(
                factor=ConfidenceFactor(
                    name=FACTOR_NAME,
                    score=1.0,
                    weight=self.weight,
                    reason=f"No architectural constraints registered for {method_name}",
                )
            )

        violations: list[str] = []
        alternatives: list[Alternative] = []
        check(parameters, violations, alternatives)

        score = max(0.0, 1.0 - VIOLATION_PENALTY * len(violations))
        if violations:
            reason = "; ".join(violations)
        else:
            reason = "All architectural constraints satisfied"
        return ValidationOutcome(
            factor=ConfidenceFactor(
                name=FACTOR_NAME, score=round(score, 4), weight=self.weight, reason=reason,
            ),
            violations=violations,
            alternatives=alternatives,
        )

    # -------------------------------------------------------------------
    # Per-method checks
    # -------------------------------------------------------------------

    def _check_wall(self, params, violations, alternatives) -> None:
        rules = self.rules["walls"]
        length = _number(params, "length")
        if length is not None:
            if length * 12 < rules["min_length_inches"]:
                violations.append(f"Wall length {length:g}' is shorter than {rules['min_length_inches']}\"")
            elif length > rules["max_length_feet"]:
                violations.append(f"Wall length {length:g}' exceeds {rules['max_length_feet']}'")

        height = _number(params, "height")
        if height is not None and not rules["min_height_feet"] <= height <= rules["max_height_feet"]:
            violations.append(
                f"Wall height {height:g}' outside {rules['min_height_feet']}'-{rules['max_height_feet']}'"
            )

        thickness = _number(params, "thickness")
        if thickness is not None:
            valid = rules["valid_thicknesses_inches"]
            if thickness <= 0 or thickness > max(valid) * 2:
                violations.append(f"Wall thickness {thickness:g}\" is not plausible")
            elif thickness not in valid:
                standard = _nearest(thickness, valid)
                alternatives.append(
                    _snap_alternative(params, "thickness", thickness, standard, "wall thickness")
                )

    def _check_door(self, params, violations, alternatives) -> None:
        rules = self.rules["doors"]
        width = _number(params, "width")
        if width is not None:
            if not rules["min_width_inches"] <= width <= rules["max_width_inches"]:
                violations.append(
                    f"Door width {width:g}\" outside {rules['min_width_inches']}\"-{rules['max_width_inches']}\""
                )
            elif width not in rules["standard_widths_inches"]:
                standard = _nearest(width, rules["standard_widths_inches"])
                alternatives.append(_snap_alternative(params, "width", width, standard, "door width"))

        height = _number(params, "height")
        if height is not None and not rules["min_height_inches"] <= height <= rules["max_height_inches"]:
            violations.append(
                f"Door height {height:g}\" outside {rules['min_height_inches']}\"-{rules['max_height_inches']}\""
            )

    def _check_window(self, params, violations, alternatives) -> None:
        rules = self.rules["windows"]
        width = _number(params, "width")
        if width is not None and not rules["min_width_inches"] <= width <= rules["max_width_inches"]:
            violations.append(
                f"Window width {width:g}\" outside {rules['min_width_inches']}\"-{rules['max_width_inches']}\""
            )
        height = _number(params, "height")
        if height is not None and not rules["min_height_inches"] <= height <= rules["max_height_inches"]:
            violations.append(
                f"Window height {height:g}\" outside {rules['min_height_inches']}\"-{rules['max_height_inches']}\""
            )
        sill = _number(params, "sillHeight")
        if sill is not None and sill < rules["min_sill_height_inches"]:
            violations.append(f"Sill height {sill:g}\" below {rules['min_sill_height_inches']}\"")

    def _check_room(self, params, violations, alternatives) -> None:
        rules = self.rules["rooms"]
        name = str(params.get("name") or params.get("roomType") or "").lower()
        minimum = rules["min_area_sqft"]
        for keyword in ("bathroom", "bedroom", "kitchen"):
            if keyword in name:
                minimum = rules[f"{keyword}_min_sqft"]
                break

        area = _number(params, "area")
        if area is None:
            width = _number(params, "width")
            depth = _number(params, "depth")
            if width is not None and depth is not None:
                area = width * depth
        if area is not None and area < minimum:
            violations.append(f"Room area {area:g} sqft below minimum {minimum} sqft")

        for key in ("width", "depth"):
            dimension = _number(params, key)
            if dimension is not None and dimension < rules["min_dimension_feet"]:
                violations.append(
                    f"Room {key} {dimension:g}' below minimum {rules['min_dimension_feet']}'"
                )

    def _check_sheet(self, params, violations, alternatives) -> None:
        number = params.get("sheetNumber")
        if isinstance(number, str) and number.strip():
            if not re.match(self.rules["sheets"]["number_pattern"], number.strip()):
                violations.append(f"Sheet number '{number}' does not follow a discipline-number pattern")
