"""Operation lifecycle: scoring policy, host dispatch and review resolution."""

from gatekeeper.orchestrator.dispatch import HostDispatcher
from gatekeeper.orchestrator.orchestrator import Orchestrator, ProcessResult, ReviewOutcome

__all__ = ["HostDispatcher", "Orchestrator", "ProcessResult", "ReviewOutcome"]
