"""Confidence-gated orchestration.

The orchestrator owns every ConfidenceEnvelope for its lifetime. It
sequences calculation -> threshold policy -> execution or review, applies
human decisions, records feedback and runs post-execution verification.

Concurrency model:
    - ``_lock`` (re-entrant) guards the envelope registry and the in-flight
      set. It is never held while the host executes.
    - The review queue and feedback learner carry their own locks.
    - Execution goes through HostDispatcher (one host worker, bounded wait).
    - An operation id enters the in-flight set before dispatch, so each
      transition into Executed dispatches at most once.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Iterable, Optional

from gatekeeper.confidence.calculator import ConfidenceCalculator
from gatekeeper.confidence.schemas import SchemaRegistry
from gatekeeper.core.config import GatekeeperConfig
from gatekeeper.core.exceptions import (
    ExecutionTimeoutError,
    HostExecutionError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from gatekeeper.core.models import (
    EXECUTED_STATES,
    ConfidenceEnvelope,
    FeedbackRecord,
    FeedbackStats,
    ProcessingStatus,
    QueueStats,
    ReviewDecision,
    ReviewItem,
    ThresholdSet,
    VerificationReport,
    can_transition,
)
from gatekeeper.core.observability import EventLog
from gatekeeper.db.store import Store
from gatekeeper.learning.feedback import FeedbackLearner
from gatekeeper.orchestrator.dispatch import HostDispatcher
from gatekeeper.review.queue import ReviewQueue, review_prompt_for
from gatekeeper.verification.verifier import PostExecutionVerifier
from gatekeeper.workflow.coordinator import PassCoordinator

logger = logging.getLogger("gatekeeper.orchestrator")

REASON_HIGH_NO_AUTO = "high confidence (auto-execute disabled)"
REASON_MEDIUM = "medium confidence"
REASON_LOW = "low confidence"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ProcessResult:
    envelope: ConfidenceEnvelope
    review_item: Optional[ReviewItem] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def executed(self) -> bool:
        return self.envelope.status in EXECUTED_STATES

    @property
    def in_review(self) -> bool:
        return self.envelope.status == ProcessingStatus.IN_REVIEW


@dataclass
class ReviewOutcome:
    review_id: str
    decision: ReviewDecision
    envelope: ConfidenceEnvelope
    feedback: Optional[FeedbackRecord] = None

    @property
    def executed(self) -> bool:
        return self.envelope.status in EXECUTED_STATES


class Orchestrator:
    """Facade tying the gate together.

    Injected dependencies:
        config: Thresholds, policy flags and feature switches.
        calculator: Pure envelope calculation.
        queue: Human review queue.
        learner: Feedback learner.
        coordinator: Dependency bookkeeping.
        verifier: Post-execution verifier.
        dispatcher: Host execution channel.
        schemas: Per-method parameter descriptors.
        store: Optional durable store for envelopes.
        events: Optional JSONL audit log.
    """

    def __init__(
        self,
        config: GatekeeperConfig,
        calculator: ConfidenceCalculator,
        queue: ReviewQueue,
        learner: FeedbackLearner,
        coordinator: PassCoordinator,
        verifier: PostExecutionVerifier,
        dispatcher: HostDispatcher,
        schemas: SchemaRegistry,
        store: Optional[Store] = None,
        events: Optional[EventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.calculator = calculator
        self.queue = queue
        self.learner = learner
        self.coordinator = coordinator
        self.verifier = verifier
        self.dispatcher = dispatcher
        self.schemas = schemas
        self.store = store
        self.events = events or EventLog()
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._envelopes: dict[str, ConfidenceEnvelope] = {}
        self._in_flight: set[str] = set()

    def load(self) -> None:
        """Restore envelopes, review items and feedback from the store."""
        if self.store is not None:
            envelopes = self.store.list_envelopes()
            with self._lock:
                for envelope in envelopes:
                    self._envelopes[envelope.operation_id] = envelope
            for envelope in envelopes:
                self.coordinator.register(envelope, envelope.depends_on)
                self.coordinator.update_status(
                    envelope.operation_id, envelope.status, envelope.element_id,
                )
            logger.info("Loaded %d envelopes from store", len(envelopes))
        self.queue.load()
        self.learner.load()

    # -------------------------------------------------------------------
    # Thresholds
    # -------------------------------------------------------------------

    def thresholds_for(self, method_name: str) -> ThresholdSet:
        with self._lock:
            return self.config.thresholds_for(method_name)

    def set_thresholds(self, method_name: str, thresholds: ThresholdSet) -> None:
        """Install a per-method threshold override at runtime."""
        with self._lock:
            self.config.operation_thresholds[method_name] = thresholds
        logger.info(
            "Threshold override for %s: high=%.2f medium=%.2f low=%.2f",
            method_name, thresholds.high, thresholds.medium, thresholds.low,
        )

    # -------------------------------------------------------------------
    # Registry helpers
    # -------------------------------------------------------------------

    def _save(self, envelope: ConfidenceEnvelope) -> None:
        if self.store is not None:
            self.store.save_envelope(envelope)

    def _transition(
        self, envelope: ConfidenceEnvelope, target: ProcessingStatus, **updates: Any,
    ) -> ConfidenceEnvelope:
        """Apply a status change in place. Caller holds the lock for registered envelopes."""
        if not can_transition(envelope.status, target):
            raise InvariantViolation(
                f"Illegal transition {envelope.status.value} -> {target.value} "
                f"for operation {envelope.operation_id}"
            )
        envelope.status = target
        envelope.updated_at = self._clock()
        for key, value in updates.items():
            setattr(envelope, key, value)
        return envelope

    def _register(
        self, envelope: ConfidenceEnvelope, depends_on: Iterable[str],
    ) -> list[str]:
        with self._lock:
            self._envelopes[envelope.operation_id] = envelope
            snapshot = envelope.model_copy(deep=True)
        self._save(snapshot)
        return self.coordinator.register(snapshot, depends_on)

    def _require(self, operation_id: str) -> ConfidenceEnvelope:
        envelope = self._envelopes.get(operation_id)
        if envelope is None:
            raise NotFoundError(f"Operation not found: {operation_id}")
        return envelope

    # -------------------------------------------------------------------
    # Calculation and policy
    # -------------------------------------------------------------------

    def calculate_confidence(
        self, method_name: str, parameters: Optional[dict[str, Any]] = None,
    ) -> ConfidenceEnvelope:
        """Score without side effects: nothing is registered, queued or stored."""
        params = self.schemas.check_request(method_name, parameters)
        return self.calculator.calculate(method_name, params)

    def process_operation(
        self,
        method_name: str,
        parameters: Optional[dict[str, Any]] = None,
        auto_execute: bool = True,
        depends_on: Iterable[str] = (),
    ) -> ProcessResult:
        depends_on = list(depends_on)
        envelope = self.calculate_confidence(method_name, parameters)
        envelope.depends_on = depends_on
        thresholds = self.thresholds_for(method_name)
        score = envelope.overall_confidence

        self.events.emit("operation_processed", {
            "operation_id": envelope.operation_id,
            "method": method_name,
            "confidence": score,
            "level": envelope.level.value,
        })

        if score >= thresholds.high and auto_execute:
            warnings = self._register(envelope, depends_on)
            executed = self._execute(envelope.operation_id, envelope.parameters)
            return ProcessResult(envelope=executed, warnings=warnings)

        if self.config.reject_below_low and score < thresholds.low:
            self._transition(
                envelope, ProcessingStatus.REJECTED,
                error=f"Confidence {score:.4f} below rejection floor {thresholds.low:.2f}",
            )
            warnings = self._register(envelope, depends_on)
            logger.info("Rejected %s outright (confidence=%.4f)", method_name, score)
            self.events.emit("operation_rejected", {
                "operation_id": envelope.operation_id, "confidence": score,
            })
            return ProcessResult(envelope=envelope.model_copy(deep=True), warnings=warnings)

        if score >= thresholds.high:
            reason = REASON_HIGH_NO_AUTO
        elif score >= thresholds.medium:
            reason = REASON_MEDIUM
        else:
            reason = REASON_LOW

        # Enqueue first so a full queue leaves nothing registered.
        questions, options, recommendation = review_prompt_for(envelope, thresholds)
        item = self.queue.enqueue(envelope, reason, questions, options, recommendation)
        self._transition(envelope, ProcessingStatus.IN_REVIEW)
        warnings = self._register(envelope, depends_on)
        self.events.emit("operation_queued", {
            "operation_id": envelope.operation_id,
            "review_id": item.review_id,
            "reason": reason,
        })
        return ProcessResult(
            envelope=envelope.model_copy(deep=True), review_item=item, warnings=warnings,
        )

    def force_execute(
        self, method_name: str, parameters: Optional[dict[str, Any]] = None,
    ) -> ProcessResult:
        """Execute regardless of confidence. The envelope is still scored for provenance."""
        envelope = self.calculate_confidence(method_name, parameters)
        warnings = self._register(envelope, ())
        logger.warning(
            "Force-executing %s without confidence check (confidence=%.4f)",
            method_name, envelope.overall_confidence,
        )
        executed = self._execute(envelope.operation_id, envelope.parameters)
        return ProcessResult(envelope=executed, warnings=warnings)

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------

    def _execute(self, operation_id: str, parameters: dict[str, Any]) -> ConfidenceEnvelope:
        with self._lock:
            envelope = self._require(operation_id)
            if operation_id in self._in_flight:
                raise InvariantViolation(f"Operation {operation_id} is already executing")
            if not can_transition(envelope.status, ProcessingStatus.EXECUTED):
                raise InvariantViolation(
                    f"Operation {operation_id} cannot execute from status {envelope.status.value}"
                )
            self._in_flight.add(operation_id)
            method_name = envelope.method_name

        try:
            outcome = self.dispatcher.dispatch(operation_id, method_name, parameters)
        except ExecutionTimeoutError as e:
            self._fail(operation_id, str(e))
            raise

        with self._lock:
            self._in_flight.discard(operation_id)
            envelope = self._require(operation_id)
            if outcome.success:
                now = self._clock()
                self._transition(
                    envelope, ProcessingStatus.EXECUTED,
                    result=outcome.result,
                    executed_parameters=dict(parameters),
                    executed_at=now,
                )
            snapshot = envelope.model_copy(deep=True)

        if not outcome.success:
            message = outcome.error_message or "Executor reported failure"
            self._fail(operation_id, message)
            raise HostExecutionError(message, operation_id=operation_id)

        self._save(snapshot)
        self.coordinator.update_status(operation_id, snapshot.status, snapshot.element_id)
        logger.info("Executed %s (%s)", method_name, operation_id)
        self.events.emit("operation_executed", {
            "operation_id": operation_id,
            "method": method_name,
            "element_id": snapshot.element_id,
        })

        if self.config.verification.auto_verify:
            snapshot, _ = self.verify(operation_id)
        return snapshot

    def _fail(self, operation_id: str, message: str) -> None:
        with self._lock:
            self._in_flight.discard(operation_id)
            envelope = self._require(operation_id)
            self._transition(envelope, ProcessingStatus.EXECUTION_FAILED, error=message)
            snapshot = envelope.model_copy(deep=True)
        self._save(snapshot)
        self.coordinator.update_status(operation_id, snapshot.status)
        logger.error("Execution of %s failed: %s", operation_id, message)
        self.events.emit("execution_failed", {"operation_id": operation_id, "error": message})

    # -------------------------------------------------------------------
    # Review
    # -------------------------------------------------------------------

    def submit_review(
        self,
        review_id: str,
        decision: ReviewDecision,
        modified_parameters: Optional[dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> ReviewOutcome:
        """Apply a human decision to a pending review item.

        Raises:
            NotFoundError: Unknown, already-resolved or expired item.
            ValidationError: Modify without valid replacement parameters.
            HostExecutionError: Approved execution failed; feedback is still
                recorded first.
        """
        item = self.queue.get_item(review_id)
        if item is None:
            raise NotFoundError(f"Review item not found or already processed: {review_id}")

        if decision == ReviewDecision.MODIFY:
            if not modified_parameters:
                raise ValidationError("'modifiedParameters' is required for a modify decision")
            modified_parameters = self.schemas.check_request(item.method_name, modified_parameters)

        with self._lock:
            original = self._require(item.envelope_id).model_copy(deep=True)

        if not self.queue.resolve(review_id, decision, modified_parameters, notes):
            raise NotFoundError(f"Review item not found or already processed: {review_id}")

        logger.info("Review %s: %s for %s", review_id, decision.value, original.method_name)
        self.events.emit("review_submitted", {
            "review_id": review_id,
            "operation_id": original.operation_id,
            "decision": decision.value,
        })

        if decision in (ReviewDecision.REJECT, ReviewDecision.SKIP):
            target = (
                ProcessingStatus.REJECTED if decision == ReviewDecision.REJECT
                else ProcessingStatus.SKIPPED
            )
            with self._lock:
                envelope = self._require(original.operation_id)
                self._transition(envelope, target)
                snapshot = envelope.model_copy(deep=True)
            self._save(snapshot)
            self.coordinator.update_status(snapshot.operation_id, snapshot.status)
            feedback = None
            if decision == ReviewDecision.REJECT:
                feedback = self.learner.record_feedback(original, decision)
            return ReviewOutcome(review_id, decision, snapshot, feedback)

        parameters = modified_parameters if decision == ReviewDecision.MODIFY else original.parameters
        # Feedback is recorded only once the execution outcome is known.
        try:
            executed = self._execute(original.operation_id, parameters)
        except HostExecutionError:
            self.learner.record_feedback(original, decision)
            raise
        feedback = self.learner.record_feedback(original, decision)
        return ReviewOutcome(review_id, decision, executed, feedback)

    def expire_reviews(self, now: Optional[datetime] = None) -> list[ReviewItem]:
        """Sweep hook: expire overdue items and their envelopes."""
        expired = self.queue.sweep_expired(now)
        for item in expired:
            with self._lock:
                envelope = self._envelopes.get(item.envelope_id)
                if envelope is None or envelope.status != ProcessingStatus.IN_REVIEW:
                    continue
                self._transition(envelope, ProcessingStatus.EXPIRED)
                snapshot = envelope.model_copy(deep=True)
            self._save(snapshot)
            self.coordinator.update_status(snapshot.operation_id, snapshot.status)
            self.events.emit("review_expired", {
                "review_id": item.review_id, "operation_id": item.envelope_id,
            })
        if expired:
            logger.info("Expired %d review items", len(expired))
        return expired

    # -------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------

    def verify(self, operation_id: str) -> tuple[ConfidenceEnvelope, VerificationReport]:
        with self._lock:
            envelope = self._require(operation_id)
            if envelope.status not in EXECUTED_STATES:
                raise ValidationError(
                    f"Operation has not been executed yet. Status: {envelope.status.value}"
                )
            candidate = envelope.model_copy(deep=True)

        report = self.verifier.run_verifications(candidate)
        target = (
            ProcessingStatus.VERIFIED if report.all_passed
            else ProcessingStatus.VERIFICATION_FAILED
        )
        with self._lock:
            envelope = self._require(operation_id)
            self._transition(envelope, target, verification_report=report)
            snapshot = envelope.model_copy(deep=True)
        self._save(snapshot)
        self.coordinator.update_status(operation_id, snapshot.status, snapshot.element_id)
        self.events.emit("operation_verified", {
            "operation_id": operation_id,
            "passed": report.all_passed,
            "failed_checks": report.failed_count,
        })
        return snapshot, report

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def get_envelope(self, operation_id: str) -> Optional[ConfidenceEnvelope]:
        with self._lock:
            envelope = self._envelopes.get(operation_id)
            return envelope.model_copy(deep=True) if envelope else None

    def get_pending_reviews(self, limit: Optional[int] = None) -> list[ReviewItem]:
        return self.queue.get_pending(limit)

    def queue_stats(self) -> QueueStats:
        return self.queue.stats()

    def feedback_stats(self) -> FeedbackStats:
        return self.learner.get_stats()
