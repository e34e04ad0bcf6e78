"""Entry points exposed to the transport."""

from gatekeeper.methods.handlers import default_registry
from gatekeeper.methods.registry import MethodEntry, MethodRegistry, RequestModel

__all__ = ["MethodEntry", "MethodRegistry", "RequestModel", "default_registry"]
