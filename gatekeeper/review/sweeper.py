"""Background expiry sweep for the review queue.

Runs independently of any request in a daemon thread and calls the
supplied hook (normally ``Orchestrator.expire_reviews``) every
``interval_seconds`` until stopped.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger("gatekeeper.review.sweeper")


class ExpirySweeper:
    def __init__(self, hook: Callable[[], Any], interval_seconds: float = 60.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.hook = hook
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="gatekeeper-expiry-sweeper", daemon=True,
        )
        self._thread.start()
        logger.info("Expiry sweeper started (interval=%.1fs)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Expiry sweeper did not stop within %.1fs", timeout)
            self._thread = None
        logger.info("Expiry sweeper stopped")

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.hook()
            except Exception as e:
                # Keep sweeping; one failed pass must not stop expiry for good.
                logger.error("Expiry sweep failed: %s", e, exc_info=True)
