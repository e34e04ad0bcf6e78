"""Human review queue.

Holds envelopes awaiting human disposition, each with a deadline. Items
move Pending -> Resolved (via ``resolve``) or Pending -> Expired (via
``sweep_expired``) exactly once; both transitions take the queue lock and
re-check the status, so a concurrent resolve and sweep can never both win.

Persistence happens after the in-memory transition, outside the lock.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional

from gatekeeper.core.config import ReviewQueueConfig
from gatekeeper.core.exceptions import QueueFullError
from gatekeeper.core.models import (
    ConfidenceEnvelope,
    ConfidenceLevel,
    QueueStats,
    ReviewDecision,
    ReviewItem,
    ReviewOption,
    ReviewStatus,
    ThresholdSet,
)
from gatekeeper.db.store import Store

logger = logging.getLogger("gatekeeper.review.queue")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def review_prompt_for(
    envelope: ConfidenceEnvelope, thresholds: ThresholdSet,
) -> tuple[list[str], list[ReviewOption], str]:
    """Questions, options and the recommended decision for a queued envelope."""
    flagged = envelope.flagged_factors(thresholds.medium)
    questions = [
        f"{factor.name} scored {factor.score:.2f}: {factor.reason}. Is this acceptable?"
        for factor in flagged
    ]
    for alternative in envelope.alternatives:
        questions.append(f"Should the operation instead: {alternative.description}?")
    if not questions:
        questions.append(
            f"Confidence {envelope.overall_confidence:.2f} is below the auto-execute "
            f"threshold {thresholds.high:.2f}. Execute {envelope.method_name} as proposed?"
        )

    if envelope.level == ConfidenceLevel.LOW and flagged:
        recommendation = ReviewDecision.REJECT
    elif envelope.alternatives:
        recommendation = ReviewDecision.MODIFY
    else:
        recommendation = ReviewDecision.APPROVE

    options = [
        ReviewOption(
            id="approve",
            label="Approve",
            description="Execute with the proposed parameters",
            is_recommended=recommendation == ReviewDecision.APPROVE,
        ),
        ReviewOption(
            id="modify",
            label="Modify",
            description="Execute with replacement parameters",
            is_recommended=recommendation == ReviewDecision.MODIFY,
        ),
        ReviewOption(
            id="reject",
            label="Reject",
            description="Do not execute",
            is_recommended=recommendation == ReviewDecision.REJECT,
        ),
        ReviewOption(id="skip", label="Skip", description="Discard without feedback"),
    ]
    return questions, options, recommendation.value


class ReviewQueue:
    """Thread-safe queue of ReviewItems.

    Returned items are copies; the queue's own records change only through
    ``enqueue``, ``resolve`` and ``sweep_expired``.

    Injected dependencies:
        config: Capacity and expiry settings.
        store: Optional durable backing store.
        clock: Time source (UTC), replaceable in tests.
    """

    def __init__(
        self,
        config: Optional[ReviewQueueConfig] = None,
        store: Optional[Store] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or ReviewQueueConfig()
        self.store = store
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._items: dict[str, ReviewItem] = {}

    def load(self) -> int:
        """Reload items from the backing store. Returns the number loaded."""
        if self.store is None:
            return 0
        items = self.store.list_review_items()
        with self._lock:
            for item in items:
                self._items[item.review_id] = item
        logger.info("Loaded %d review items from store", len(items))
        return len(items)

    def _persist(self, item: ReviewItem) -> None:
        if self.store is not None:
            self.store.save_review_item(item)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def enqueue(
        self,
        envelope: ConfidenceEnvelope,
        reason: str,
        questions: Optional[list[str]] = None,
        options: Optional[list[ReviewOption]] = None,
        ai_recommendation: str = "",
    ) -> ReviewItem:
        now = self._clock()
        with self._lock:
            pending = sum(1 for i in self._items.values() if i.status == ReviewStatus.PENDING)
            if pending >= self.config.max_size:
                raise QueueFullError(self.config.max_size)
            item = ReviewItem(
                envelope_id=envelope.operation_id,
                method_name=envelope.method_name,
                confidence=envelope.overall_confidence,
                reason=reason,
                questions=list(questions or []),
                options=list(options or []),
                ai_recommendation=ai_recommendation,
                queued_at=now,
                expires_at=now + timedelta(hours=self.config.expire_hours),
            )
            self._items[item.review_id] = item
            snapshot = item.model_copy(deep=True)

        logger.info(
            "Queued %s for review (%s, confidence=%.3f, review_id=%s)",
            envelope.method_name, reason, envelope.overall_confidence, item.review_id,
        )
        self._persist(snapshot)
        return snapshot

    def resolve(
        self,
        review_id: str,
        decision: ReviewDecision,
        modified_parameters: Optional[dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> bool:
        """Resolve a pending, unexpired item. False (no side effects) otherwise."""
        now = self._clock()
        with self._lock:
            item = self._items.get(review_id)
            if item is None or item.status != ReviewStatus.PENDING or item.is_overdue(now):
                return False
            resolved = item.model_copy(update={
                "status": ReviewStatus.RESOLVED,
                "decision": decision,
                "modified_parameters": modified_parameters,
                "notes": notes,
                "resolved_at": now,
            })
            self._items[review_id] = resolved

        logger.info("Review %s resolved: %s", review_id, decision.value)
        self._persist(resolved)
        return True

    def sweep_expired(self, now: Optional[datetime] = None) -> list[ReviewItem]:
        """Mark every overdue pending item Expired. Each item expires once."""
        now = now or self._clock()
        expired: list[ReviewItem] = []
        with self._lock:
            for review_id, item in self._items.items():
                if item.status == ReviewStatus.PENDING and item.is_overdue(now):
                    updated = item.model_copy(update={"status": ReviewStatus.EXPIRED})
                    self._items[review_id] = updated
                    expired.append(updated)

        for item in expired:
            logger.info("Review %s expired (queued %s)", item.review_id, item.queued_at.isoformat())
            self._persist(item)
        return expired

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def get_item(self, review_id: str) -> Optional[ReviewItem]:
        with self._lock:
            item = self._items.get(review_id)
            return item.model_copy(deep=True) if item else None

    def get_pending(self, limit: Optional[int] = None) -> list[ReviewItem]:
        """Pending, unexpired items, oldest first."""
        now = self._clock()
        with self._lock:
            pending = [
                item.model_copy(deep=True) for item in self._items.values()
                if item.status == ReviewStatus.PENDING and not item.is_overdue(now)
            ]
        pending.sort(key=lambda i: i.queued_at)
        return pending[:limit] if limit is not None else pending

    def find_by_envelope(self, envelope_id: str) -> list[ReviewItem]:
        with self._lock:
            return [
                item.model_copy(deep=True) for item in self._items.values()
                if item.envelope_id == envelope_id
            ]

    def stats(self) -> QueueStats:
        with self._lock:
            items = list(self._items.values())

        pending = [i for i in items if i.status == ReviewStatus.PENDING]
        decided = [i.decision for i in items if i.status == ReviewStatus.RESOLVED]
        return QueueStats(
            total_items=len(items),
            pending_items=len(pending),
            approved_items=decided.count(ReviewDecision.APPROVE),
            modified_items=decided.count(ReviewDecision.MODIFY),
            rejected_items=decided.count(ReviewDecision.REJECT),
            skipped_items=decided.count(ReviewDecision.SKIP),
            expired_items=sum(1 for i in items if i.status == ReviewStatus.EXPIRED),
            average_confidence=(
                round(sum(i.confidence for i in pending) / len(pending), 4) if pending else 0.0
            ),
            oldest_pending=min((i.queued_at for i in pending), default=None),
        )
