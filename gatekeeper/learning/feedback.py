"""Feedback learning from human review decisions.

Every Approve/Modify/Reject decision becomes an append-only FeedbackRecord
saying whether the confidence gate's implicit recommendation matched the
human. Once a method has enough records, the recent agreement rate becomes
a bounded confidence adjustment that the ``historical_accuracy`` factor
folds into future scores. This is the only cross-session learning path.

A learning session groups the patterns, project rules and terminology
gathered while working on one project. At most one session is active.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import UTC, datetime
from typing import Callable, Optional

from gatekeeper.core.config import FeedbackConfig
from gatekeeper.core.exceptions import SessionError, ValidationError
from gatekeeper.core.models import (
    ConfidenceEnvelope,
    ConfidenceLevel,
    FeedbackRecord,
    FeedbackStats,
    LearnedPattern,
    LearningSession,
    MethodStats,
    ReviewDecision,
    SessionSummary,
    ThresholdSet,
)
from gatekeeper.db.store import Store

logger = logging.getLogger("gatekeeper.learning.feedback")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def learned_adjustment(records: list[FeedbackRecord], max_adjustment: float) -> float:
    """max_adjustment * (2 * accuracy - 1), clamped and rounded to 4 places."""
    if not records:
        return 0.0
    accuracy = sum(1 for r in records if r.ai_was_correct) / len(records)
    adjustment = max_adjustment * (2 * accuracy - 1)
    return round(max(-max_adjustment, min(max_adjustment, adjustment)), 4)


class FeedbackLearner:
    """Records human decisions and derives per-method confidence adjustments.

    Injected dependencies:
        config: Sample minimum, adjustment bound and history window.
        store: Optional durable store for records and patterns.
        thresholds: Resolves a method's active threshold set; a factor is
            "flagged" when it scores below that set's medium cutoff.
    """

    def __init__(
        self,
        config: Optional[FeedbackConfig] = None,
        store: Optional[Store] = None,
        thresholds: Optional[Callable[[str], ThresholdSet]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or FeedbackConfig()
        self.store = store
        self._thresholds = thresholds or (lambda _method: ThresholdSet())
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._records: list[FeedbackRecord] = []
        self._patterns: dict[str, LearnedPattern] = {}
        self._session: Optional[LearningSession] = None

    def load(self) -> None:
        """Restore feedback history and learned patterns from the store."""
        if self.store is None:
            return
        records = self.store.list_feedback()
        patterns = self.store.list_patterns()
        with self._lock:
            self._records = list(records)
            self._patterns = {p.method_name: p for p in patterns}
        logger.info("Loaded %d feedback records and %d patterns", len(records), len(patterns))

    # -------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------

    def ai_was_correct(self, envelope: ConfidenceEnvelope, decision: ReviewDecision) -> bool:
        """Whether the gate's implicit recommendation matched the human decision.

        Approve agrees with High/Medium confidence. Reject agrees with Low
        confidence or any flagged factor. Modify agrees when the envelope
        already proposed alternatives or flagged a factor.
        """
        flagged = bool(envelope.flagged_factors(self._thresholds(envelope.method_name).medium))
        if decision == ReviewDecision.APPROVE:
            return envelope.level in (ConfidenceLevel.HIGH, ConfidenceLevel.MEDIUM)
        if decision == ReviewDecision.REJECT:
            return envelope.level == ConfidenceLevel.LOW or flagged
        if decision == ReviewDecision.MODIFY:
            return bool(envelope.alternatives) or flagged
        raise ValidationError("Skip decisions carry no learning signal")

    def record_feedback(
        self, envelope: ConfidenceEnvelope, decision: ReviewDecision,
    ) -> FeedbackRecord:
        record = FeedbackRecord(
            operation_id=envelope.operation_id,
            method_name=envelope.method_name,
            original_confidence=envelope.overall_confidence,
            original_level=envelope.level,
            human_decision=decision,
            ai_was_correct=self.ai_was_correct(envelope, decision),
            recorded_at=self._clock(),
        )
        with self._lock:
            self._records.append(record)
            pattern = self._relearn(envelope.method_name)

        logger.info(
            "Feedback for %s: %s (ai_was_correct=%s)",
            envelope.method_name, decision.value, record.ai_was_correct,
        )
        if self.store is not None:
            self.store.append_feedback(record)
            if pattern is not None:
                self.store.save_pattern(pattern)
        return record

    def _relearn(self, method_name: str) -> Optional[LearnedPattern]:
        """Recompute the method's pattern. Caller holds the lock."""
        records = [r for r in self._records if r.method_name == method_name]
        if len(records) < self.config.min_samples_to_learn:
            return None

        window = records[-self.config.history_window:]
        correct = sum(1 for r in window if r.ai_was_correct)
        existing = self._patterns.get(method_name)
        fields = {
            "method_name": method_name,
            "description": f"{correct}/{len(window)} recent reviews agreed with the gate",
            "confidence_adjustment": learned_adjustment(window, self.config.max_adjustment),
            "sample_count": len(records),
            "updated_at": self._clock(),
        }
        if existing is not None:
            pattern = existing.model_copy(update=fields)
        else:
            pattern = LearnedPattern(**fields)
        self._patterns[method_name] = pattern
        if self._session is not None:
            self._session.learned_patterns[method_name] = pattern
        logger.debug(
            "Learned adjustment for %s: %+.4f over %d samples",
            method_name, pattern.confidence_adjustment, len(window),
        )
        return pattern

    def pattern_for(self, method_name: str) -> Optional[LearnedPattern]:
        with self._lock:
            return self._patterns.get(method_name)

    def adjustment_for(self, method_name: str) -> float:
        pattern = self.pattern_for(method_name)
        return pattern.confidence_adjustment if pattern else 0.0

    def get_history(
        self, limit: Optional[int] = 50, method_filter: Optional[str] = None,
    ) -> list[FeedbackRecord]:
        """Newest first. The method filter is case-insensitive and applied before the limit."""
        with self._lock:
            records = list(self._records)
        if method_filter:
            wanted = method_filter.lower()
            records = [r for r in records if r.method_name.lower() == wanted]
        records.reverse()
        return records[:limit] if limit is not None else records

    def get_stats(self, top_n: int = 10) -> FeedbackStats:
        with self._lock:
            records = list(self._records)
            pattern_count = len(self._patterns)

        per_method: dict[str, MethodStats] = defaultdict(lambda: MethodStats(method_name=""))
        for record in records:
            stats = per_method[record.method_name]
            stats.method_name = record.method_name
            stats.total += 1
            stats.correct += int(record.ai_was_correct)

        total_correct = sum(1 for r in records if r.ai_was_correct)
        top = sorted(per_method.values(), key=lambda s: (-s.total, s.method_name))[:top_n]
        return FeedbackStats(
            total_feedback=len(records),
            total_correct=total_correct,
            accuracy_rate=round(total_correct / len(records), 4) if records else 0.0,
            pattern_count=pattern_count,
            top_methods=top,
        )

    # -------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------

    @property
    def current_session(self) -> Optional[LearningSession]:
        with self._lock:
            return self._session.model_copy(deep=True) if self._session else None

    def start_session(
        self, project_name: Optional[str] = None, project_path: Optional[str] = None,
    ) -> LearningSession:
        with self._lock:
            if self._session is not None:
                raise SessionError(
                    f"Session {self._session.session_id} is already active; end it first"
                )
            self._session = LearningSession(
                project_name=project_name,
                project_path=project_path,
                started_at=self._clock(),
            )
            session = self._session.model_copy(deep=True)
        logger.info("Learning session %s started (%s)", session.session_id, project_name)
        return session

    def end_session(self) -> SessionSummary:
        with self._lock:
            session = self._session
            if session is None:
                raise SessionError("No active learning session")
            self._session = None
            now = self._clock()
            summary = SessionSummary(
                session_id=session.session_id,
                project_name=session.project_name,
                pattern_count=len(session.learned_patterns),
                rule_count=len(session.project_rules),
                terminology_count=len(session.terminology_map),
                duration_seconds=round((now - session.started_at).total_seconds(), 3),
                ended_at=now,
            )

        if self.store is not None:
            for pattern in session.learned_patterns.values():
                self.store.save_pattern(pattern)
        logger.info(
            "Learning session %s ended after %.0fs (%d patterns)",
            summary.session_id, summary.duration_seconds, summary.pattern_count,
        )
        return summary

    def record_project_rule(self, key: str, value: str) -> None:
        with self._lock:
            if self._session is None:
                raise SessionError("No active learning session")
            self._session.project_rules[key] = value

    def record_terminology(self, term: str, meaning: str) -> None:
        with self._lock:
            if self._session is None:
                raise SessionError("No active learning session")
            self._session.terminology_map[term] = meaning
