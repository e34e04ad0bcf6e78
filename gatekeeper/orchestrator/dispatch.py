"""Dispatch onto the host's single execution channel.

The host is single-threaded, so every executor call runs on one dedicated
worker thread. Callers wait for the result with a bounded timeout and never
hold orchestrator locks while waiting. A call that has started cannot be
preempted; on timeout the caller gives up waiting and the worker finishes
the call on its own. A call still queued behind it is cancelled so it never
reaches the host.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any

from gatekeeper.core.exceptions import ExecutionTimeoutError
from gatekeeper.core.host import Executor
from gatekeeper.core.models import ExecutionOutcome

logger = logging.getLogger("gatekeeper.orchestrator.dispatch")


class HostDispatcher:
    def __init__(self, executor: Executor, timeout_seconds: float = 30.0):
        self.executor = executor
        self.timeout_seconds = timeout_seconds
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gatekeeper-host")

    def _call(self, method_name: str, parameters: dict[str, Any]) -> ExecutionOutcome:
        try:
            outcome = self.executor.execute(method_name, parameters)
        except Exception as e:
            logger.error("Executor raised for %s: %s", method_name, e)
            return ExecutionOutcome(success=False, error_message=f"{type(e).__name__}: {e}")
        if not isinstance(outcome, ExecutionOutcome):
            return ExecutionOutcome(
                success=False,
                error_message=f"Executor returned {type(outcome).__name__}, expected ExecutionOutcome",
            )
        return outcome

    def dispatch(
        self, operation_id: str, method_name: str, parameters: dict[str, Any],
    ) -> ExecutionOutcome:
        """Run one call and wait for it.

        Raises:
            ExecutionTimeoutError: No answer within ``timeout_seconds``.
        """
        logger.debug("Dispatching %s (%s)", method_name, operation_id)
        future = self._pool.submit(self._call, method_name, dict(parameters))
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as e:
            cancelled = future.cancel()
            logger.error(
                "Operation %s (%s) timed out after %.1fs (%s)",
                operation_id, method_name, self.timeout_seconds,
                "cancelled before start" if cancelled else "still running on host",
            )
            raise ExecutionTimeoutError(operation_id, self.timeout_seconds) from e

    def shutdown(self, wait: bool = False) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=True)
