"""Domain error taxonomy.

Every core operation either returns its result or raises exactly one of
these. The ``kind`` attribute is stable and is what callers (the HTTP layer,
the UI behind it) switch on; messages are informational only.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for all marketplace failures."""

    kind = "marketplace_error"

    def __init__(self, message: str = "", **context: object) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.context = context


class NotFoundError(MarketplaceError):
    """A Task, Enrollment, Profile or Question does not exist."""

    kind = "not_found"


class CapacityExceededError(MarketplaceError):
    kind = "capacity_exceeded"


class InsufficientStakeError(MarketplaceError):
    kind = "insufficient_stake"


class DuplicateEnrollmentError(MarketplaceError):
    kind = "duplicate_enrollment"


class InvalidStateTransitionError(MarketplaceError):
    kind = "invalid_state_transition"


class DuplicateBadgeError(MarketplaceError):
    kind = "duplicate_badge"


class MintingFailure(MarketplaceError):
    """A minting phase failed; the session is back in ``idle``."""

    kind = "minting_failure"


class SettlementFailure(MarketplaceError):
    """The settlement batch could not be committed; nothing was written."""

    kind = "settlement_failure"


class InvalidInputError(MarketplaceError, ValueError):
    """Rejected before any store mutation was attempted."""

    kind = "invalid_input"


class NotAuthorizedError(MarketplaceError):
    kind = "not_authorized"


class TaskClosedError(MarketplaceError):
    kind = "task_closed"


class AttemptsExhaustedError(MarketplaceError):
    kind = "attempts_exhausted"


class ConcurrencyConflictError(MarketplaceError):
    """A compare-and-set kept losing to concurrent writers."""

    kind = "concurrency_conflict"
