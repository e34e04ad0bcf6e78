"""Entry-point registry.

Maps an entry-point name ("process-operation", ...) to a statically
registered MethodEntry: its handler, the pydantic model its request is
validated against, and whether it needs the gate to be enabled. ``call``
is the only way in, and it never raises: every failure comes back as a
``{"success": False, "error": ..., "errorType": ...}`` payload. Storage
failures collected during the call are attached as ``warnings``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from gatekeeper.core.exceptions import (
    FeatureDisabledError,
    GatekeeperError,
    HostExecutionError,
    NotFoundError,
)

if TYPE_CHECKING:
    from gatekeeper.core.factory import GatekeeperContext

logger = logging.getLogger("gatekeeper.methods.registry")


class RequestModel(BaseModel):
    """Base for entry-point requests: camelCase on the wire, unknown fields rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


Handler = Callable[["GatekeeperContext", Any], dict[str, Any]]


@dataclass(frozen=True)
class MethodEntry:
    name: str
    handler: Handler
    request_model: type[RequestModel]
    requires_enabled: bool = True
    description: str = ""


def error_payload(message: str, error_type: str, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "error": message, "errorType": error_type}
    payload.update(extra)
    return payload


def _describe_validation(name: str, error: PydanticValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "request"
        problems.append(f"{location}: {item.get('msg', 'invalid')}")
    return f"Invalid request for {name}: {'; '.join(problems)}"


class MethodRegistry:
    def __init__(self, entries: Optional[list[MethodEntry]] = None):
        self._entries: dict[str, MethodEntry] = {}
        for entry in entries or []:
            self.register(entry)

    def register(self, entry: MethodEntry) -> None:
        if entry.name in self._entries:
            raise ValueError(f"Entry point already registered: {entry.name}")
        self._entries[entry.name] = entry

    def get(self, name: str) -> Optional[MethodEntry]:
        return self._entries.get(name)

    def names(self) -> list[str]:
        return sorted(self._entries)

    def call(
        self,
        context: "GatekeeperContext",
        name: str,
        request: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        entry = self._entries.get(name)
        if entry is None:
            return error_payload(f"Unknown method: {name}", NotFoundError.error_type)

        try:
            if entry.requires_enabled and not context.config.gatekeeper.enabled:
                raise FeatureDisabledError()
            if request is not None and not isinstance(request, dict):
                return error_payload("Request must be an object", "ValidationError")
            parsed = entry.request_model.model_validate(request or {})
            response = entry.handler(context, parsed)
        except PydanticValidationError as e:
            response = error_payload(_describe_validation(name, e), "ValidationError")
        except HostExecutionError as e:
            response = error_payload(str(e), e.error_type, operationId=e.operation_id)
        except GatekeeperError as e:
            response = error_payload(str(e), e.error_type)
        except Exception as e:
            logger.exception("Unhandled error in %s", name)
            response = error_payload(f"Internal error: {e}", "InternalError")

        storage_warnings = context.store.drain_errors()
        if storage_warnings:
            response.setdefault("warnings", []).extend(storage_warnings)
        return response
