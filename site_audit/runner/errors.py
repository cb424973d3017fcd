# site_audit/runner/errors.py
"""
Audit failure types and the transient-error classifier.
"""
from __future__ import annotations

from typing import Final, Tuple

#: lowercase fragments of messages produced by Chrome/Lighthouse flakiness
TRANSIENT_PATTERNS: Final[Tuple[str, ...]] = (
    "performance mark",
    "econnrefused",
    "econnreset",
    "navigation timeout",
    "target closed",
    "session closed",
    "protocol error",
)


class AuditError(Exception):
    """Base class for audit failures."""


class AuditAttemptError(AuditError):
    """One attempt against the auditor failed."""


class AuditTimeoutError(AuditAttemptError):
    """The attempt did not finish within the per-attempt timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Lighthouse timeout after {timeout:g}s")
        self.timeout = timeout


def is_transient_error(message: str) -> bool:
    """True when *message* looks like environment flakiness worth retrying."""
    lower = (message or "").lower()
    return any(pattern in lower for pattern in TRANSIENT_PATTERNS)


__all__ = [
    "TRANSIENT_PATTERNS",
    "AuditError",
    "AuditAttemptError",
    "AuditTimeoutError",
    "is_transient_error",
]
