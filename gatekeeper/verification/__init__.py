"""Post-execution verification against host state."""

from gatekeeper.verification.verifier import PostExecutionVerifier

__all__ = ["PostExecutionVerifier"]
