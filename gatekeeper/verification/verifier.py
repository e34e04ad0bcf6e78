"""Post-execution verification.

Re-reads the element an executed operation produced and compares it with
the parameters the operation was executed with. Checks are independent:
an exception inside one check becomes a failed check and the rest still
run.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from gatekeeper.confidence.schemas import SchemaRegistry, VerificationField
from gatekeeper.core.host import HostStateReader
from gatekeeper.core.models import ConfidenceEnvelope, VerificationCheck, VerificationReport

logger = logging.getLogger("gatekeeper.verification.verifier")

ELEMENT_EXISTS = "element_exists"


def _timed(name: str, check: Callable[[], VerificationCheck]) -> VerificationCheck:
    started = time.perf_counter()
    try:
        result = check()
    except Exception as e:
        logger.warning("Verification check %s raised: %s", name, e)
        result = VerificationCheck(name=name, passed=False, message=f"Check raised: {e}")
    elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
    return result.model_copy(update={"execution_time_ms": elapsed_ms})


class PostExecutionVerifier:
    """Compares created elements against executed parameters.

    Injected dependencies:
        host_reader: Read-only element lookup.
        schemas: Which parameters each method can be verified on.
        default_tolerance: Absolute numeric tolerance when a field sets none.
    """

    def __init__(
        self,
        host_reader: HostStateReader,
        schemas: SchemaRegistry,
        default_tolerance: float = 0.01,
    ):
        self.host_reader = host_reader
        self.schemas = schemas
        self.default_tolerance = default_tolerance

    def run_verifications(self, envelope: ConfidenceEnvelope) -> VerificationReport:
        started = time.perf_counter()
        element_id = envelope.element_id
        checks: list[VerificationCheck] = []

        if element_id is None:
            checks.append(VerificationCheck(
                name=ELEMENT_EXISTS,
                passed=False,
                message="Execution result carries no elementId",
            ))
            return self._report(envelope, checks, started)

        element: dict[str, Any] = {}

        def exists() -> VerificationCheck:
            found = self.host_reader.get_element(element_id)
            if found is not None:
                element.update(found)
            return VerificationCheck(
                name=ELEMENT_EXISTS,
                passed=found is not None,
                expected=element_id,
                actual=element_id if found is not None else None,
                message="Element found" if found is not None else f"Element {element_id} not found",
            )

        checks.append(_timed(ELEMENT_EXISTS, exists))

        schema = self.schemas.get(envelope.method_name)
        parameters = envelope.executed_parameters or envelope.parameters
        for field in schema.verification if schema else ():
            if field.parameter not in parameters:
                continue
            name = f"{field.parameter}_matches"
            checks.append(_timed(
                name,
                lambda field=field, name=name: self._compare(name, field, parameters[field.parameter], element),
            ))

        return self._report(envelope, checks, started)

    def _compare(
        self, name: str, field: VerificationField, expected: Any, element: dict[str, Any],
    ) -> VerificationCheck:
        if not element:
            return VerificationCheck(
                name=name, passed=False, expected=expected, message="Element not available",
            )
        if field.element_property not in element:
            return VerificationCheck(
                name=name,
                passed=False,
                expected=expected,
                message=f"Element has no '{field.element_property}' property",
            )

        actual = element[field.element_property]
        if not field.numeric:
            passed = str(actual).strip() == str(expected).strip()
            return VerificationCheck(
                name=name,
                passed=passed,
                expected=expected,
                actual=actual,
                message="Matches" if passed else f"Expected '{expected}', found '{actual}'",
            )

        tolerance = field.tolerance if field.tolerance is not None else self.default_tolerance
        deviation = round(abs(float(actual) - float(expected)), 6)
        passed = deviation <= tolerance
        return VerificationCheck(
            name=name,
            passed=passed,
            expected=expected,
            actual=actual,
            tolerance=tolerance,
            deviation=deviation,
            message=(
                f"Within tolerance ({deviation:g} <= {tolerance:g})" if passed
                else f"Deviation {deviation:g} exceeds tolerance {tolerance:g}"
            ),
        )

    @staticmethod
    def _report(
        envelope: ConfidenceEnvelope, checks: list[VerificationCheck], started: float,
    ) -> VerificationReport:
        report = VerificationReport(
            operation_id=envelope.operation_id,
            checks=checks,
            total_execution_time_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        logger.info("Verification of %s: %s", envelope.operation_id, report.summary())
        return report
