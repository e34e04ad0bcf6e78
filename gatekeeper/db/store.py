"""Durable storage contract for envelopes, review items, feedback and patterns.

``Store`` is the get/put/list contract the core relies on. ``MemoryStore``
keeps everything in process; ``Repository`` (PostgreSQL) is the durable
implementation. ``GuardedStore`` wraps either so a failed write is logged
and reported back to the caller instead of propagating: in-memory state is
always updated first, so a storage failure leaves the process queryable
even when it is not durable.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from gatekeeper.core.exceptions import GatekeeperError
from gatekeeper.core.models import ConfidenceEnvelope, FeedbackRecord, LearnedPattern, ReviewItem

logger = logging.getLogger("gatekeeper.db.store")


class Store(ABC):
    """Keyed persistence for the core's entities."""

    @abstractmethod
    def save_envelope(self, envelope: ConfidenceEnvelope) -> None: ...

    @abstractmethod
    def get_envelope(self, operation_id: str) -> Optional[ConfidenceEnvelope]: ...

    @abstractmethod
    def list_envelopes(self) -> list[ConfidenceEnvelope]: ...

    @abstractmethod
    def save_review_item(self, item: ReviewItem) -> None: ...

    @abstractmethod
    def get_review_item(self, review_id: str) -> Optional[ReviewItem]: ...

    @abstractmethod
    def list_review_items(self) -> list[ReviewItem]: ...

    @abstractmethod
    def append_feedback(self, record: FeedbackRecord) -> None: ...

    @abstractmethod
    def list_feedback(self) -> list[FeedbackRecord]:
        """All feedback records, oldest first."""

    @abstractmethod
    def save_pattern(self, pattern: LearnedPattern) -> None: ...

    @abstractmethod
    def list_patterns(self) -> list[LearnedPattern]: ...

    def close(self) -> None:
        pass


class MemoryStore(Store):
    """Process-local store. Saves are copies so callers cannot alias state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._envelopes: dict[str, ConfidenceEnvelope] = {}
        self._reviews: dict[str, ReviewItem] = {}
        self._feedback: list[FeedbackRecord] = []
        self._patterns: dict[str, LearnedPattern] = {}

    def save_envelope(self, envelope):
        with self._lock:
            self._envelopes[envelope.operation_id] = envelope.model_copy(deep=True)

    def get_envelope(self, operation_id):
        with self._lock:
            envelope = self._envelopes.get(operation_id)
            return envelope.model_copy(deep=True) if envelope else None

    def list_envelopes(self):
        with self._lock:
            return [e.model_copy(deep=True) for e in self._envelopes.values()]

    def save_review_item(self, item):
        with self._lock:
            self._reviews[item.review_id] = item.model_copy(deep=True)

    def get_review_item(self, review_id):
        with self._lock:
            item = self._reviews.get(review_id)
            return item.model_copy(deep=True) if item else None

    def list_review_items(self):
        with self._lock:
            return [i.model_copy(deep=True) for i in self._reviews.values()]

    def append_feedback(self, record):
        with self._lock:
            if any(r.feedback_id == record.feedback_id for r in self._feedback):
                raise GatekeeperError(f"Feedback record {record.feedback_id} already stored")
            self._feedback.append(record)

    def list_feedback(self):
        with self._lock:
            return list(self._feedback)

    def save_pattern(self, pattern):
        with self._lock:
            self._patterns[pattern.method_name] = pattern.model_copy(deep=True)

    def list_patterns(self):
        with self._lock:
            return [p.model_copy(deep=True) for p in self._patterns.values()]


class GuardedStore(Store):
    """Wraps a store; failures are logged and collected per calling thread.

    Reads that fail return empty results. Entry points call
    ``drain_errors()`` at the end of a request to report what was not
    persisted as warnings.
    """

    def __init__(self, inner: Store):
        self.inner = inner
        self._local = threading.local()

    def _errors(self) -> list[str]:
        errors = getattr(self._local, "errors", None)
        if errors is None:
            errors = []
            self._local.errors = errors
        return errors

    def drain_errors(self) -> list[str]:
        errors = self._errors()
        drained = list(errors)
        errors.clear()
        return drained

    def _guard(self, action: str, fn: Callable[[], Any], default: Any = None) -> Any:
        try:
            return fn()
        except (GatekeeperError, OSError) as e:
            logger.error("Storage failure during %s: %s", action, e)
            self._errors().append(f"Storage failure during {action}: {e}")
            return default

    def save_envelope(self, envelope):
        self._guard("save_envelope", lambda: self.inner.save_envelope(envelope))

    def get_envelope(self, operation_id):
        return self._guard("get_envelope", lambda: self.inner.get_envelope(operation_id))

    def list_envelopes(self):
        return self._guard("list_envelopes", self.inner.list_envelopes, [])

    def save_review_item(self, item):
        self._guard("save_review_item", lambda: self.inner.save_review_item(item))

    def get_review_item(self, review_id):
        return self._guard("get_review_item", lambda: self.inner.get_review_item(review_id))

    def list_review_items(self):
        return self._guard("list_review_items", self.inner.list_review_items, [])

    def append_feedback(self, record):
        self._guard("append_feedback", lambda: self.inner.append_feedback(record))

    def list_feedback(self):
        return self._guard("list_feedback", self.inner.list_feedback, [])

    def save_pattern(self, pattern):
        self._guard("save_pattern", lambda: self.inner.save_pattern(pattern))

    def list_patterns(self):
        return self._guard("list_patterns", self.inner.list_patterns, [])

    def close(self) -> None:
        self.inner.close()
