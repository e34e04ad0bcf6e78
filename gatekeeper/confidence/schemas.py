"""Parameter schemas for host methods.

Each host method that Gatekeeper knows about is described once here: which
parameters it requires, which it accepts optionally, their expected kinds,
and which parameters the verifier can compare against the created element.
Parameters not named by a method's schema are rejected at entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from gatekeeper.core.exceptions import ValidationError

# Parameter kinds
NUMBER = "number"
STRING = "string"
POINT = "point"
ANY = "any"


def matches_kind(value: Any, kind: str) -> bool:
    if kind == ANY:
        return value is not None
    if kind == NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == STRING:
        return isinstance(value, str) and bool(value.strip())
    if kind == POINT:
        if isinstance(value, dict):
            return all(matches_kind(value.get(axis), NUMBER) for axis in ("x", "y"))
        if isinstance(value, (list, tuple)):
            return len(value) in (2, 3) and all(matches_kind(v, NUMBER) for v in value)
        return False
    return False


@dataclass(frozen=True)
class VerificationField:
    """Parameter whose value should be observable on the created element."""

    parameter: str
    element_property: str
    tolerance: Optional[float] = None  # None: use the configured default
    numeric: bool = True


@dataclass(frozen=True)
class MethodSchema:
    name: str
    required: dict[str, str] = field(default_factory=dict)
    optional: dict[str, str] = field(default_factory=dict)
    verification: tuple[VerificationField, ...] = ()
    description: str = ""

    @property
    def known_fields(self) -> set[str]:
        return set(self.required) | set(self.optional)

    def unknown_fields(self, parameters: dict[str, Any]) -> list[str]:
        return sorted(k for k in parameters if k not in self.known_fields)


class SchemaRegistry:
    """Runtime map from method name to its statically declared schema."""

    def __init__(self, schemas: Optional[list[MethodSchema]] = None):
        self._schemas: dict[str, MethodSchema] = {}
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: MethodSchema) -> None:
        self._schemas[schema.name] = schema

    def get(self, method_name: str) -> Optional[MethodSchema]:
        return self._schemas.get(method_name)

    def names(self) -> list[str]:
        return sorted(self._schemas)

    def check_request(self, method_name: str, parameters: Any) -> dict[str, Any]:
        """Validate the shape of a request's parameter payload.

        Raises:
            ValidationError: parameters is not a mapping, or names fields the
                method's schema does not declare.
        """
        if parameters is None:
            return {}
        if not isinstance(parameters, dict):
            raise ValidationError("'parameters' must be an object")
        schema = self.get(method_name)
        if schema is None:
            return parameters
        unknown = schema.unknown_fields(parameters)
        if unknown:
            raise ValidationError(
                f"Unknown parameter(s) for {method_name}: {', '.join(unknown)}"
            )
        return parameters


BUILTIN_SCHEMAS: list[MethodSchema] = [
    MethodSchema(
        name="createWall",
        description="Create a straight wall (lengths in feet, thickness in inches).",
        required={"length": NUMBER},
        optional={
            "height": NUMBER,
            "thickness": NUMBER,
            "level": STRING,
            "wallType": STRING,
            "startPoint": POINT,
            "endPoint": POINT,
        },
        verification=(
            VerificationField("length", "length"),
            VerificationField("height", "height"),
        ),
    ),
    MethodSchema(
        name="placeDoor",
        description="Place a door in a host wall (inches).",
        required={"width": NUMBER},
        optional={
            "height": NUMBER,
            "wallId": STRING,
            "level": STRING,
            "doorType": STRING,
            "location": POINT,
        },
        verification=(
            VerificationField("width", "width", tolerance=0.5),
            VerificationField("height", "height", tolerance=0.5),
        ),
    ),
    MethodSchema(
        name="placeWindow",
        description="Place a window in a host wall (inches).",
        required={"width": NUMBER, "height": NUMBER},
        optional={
            "sillHeight": NUMBER,
            "wallId": STRING,
            "level": STRING,
            "windowType": STRING,
            "location": POINT,
        },
        verification=(
            VerificationField("width", "width", tolerance=0.5),
            VerificationField("height", "height", tolerance=0.5),
            VerificationField("sillHeight", "sillHeight", tolerance=0.5),
        ),
    ),
    MethodSchema(
        name="createRoom",
        description="Create a room (area in square feet, dimensions in feet).",
        required={"name": STRING},
        optional={
            "number": STRING,
            "area": NUMBER,
            "width": NUMBER,
            "depth": NUMBER,
            "level": STRING,
            "roomType": STRING,
            "location": POINT,
        },
        verification=(
            VerificationField("name", "name", numeric=False),
            VerificationField("area", "area", tolerance=0.5),
        ),
    ),
    MethodSchema(
        name="createSheet",
        description="Create a drawing sheet.",
        required={"sheetNumber": STRING, "sheetName": STRING},
        optional={"titleBlock": STRING},
        verification=(
            VerificationField("sheetNumber", "sheetNumber", numeric=False),
            VerificationField("sheetName", "sheetName", numeric=False),
        ),
    ),
    MethodSchema(
        name="createLevel",
        description="Create a building level (elevation in feet).",
        required={"elevation": NUMBER},
        optional={"name": STRING},
        verification=(VerificationField("elevation", "elevation"),),
    ),
]


def default_schema_registry() -> SchemaRegistry:
    return SchemaRegistry(list(BUILTIN_SCHEMAS))
