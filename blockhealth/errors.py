"""
Error taxonomy for the record update protocol.

Every failure surfaced by the store, the ledger, the session or the
orchestrator derives from BlockHealthError so callers can catch the whole
family in one place. Lower layers raise the specific leaf types; the
orchestrator wraps them in RecordUpdateError tagged with the state in which
they occurred.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ledger import RejectReason
    from .orchestrator import RecordState


class BlockHealthError(Exception):
    """Base class for all blockhealth errors."""


# -----------------------------------------------------------------------------
# Identity
# -----------------------------------------------------------------------------


class IdentityError(BlockHealthError):
    """No identity could be established for the session."""


class NoIdentityAvailable(IdentityError):
    pass


class UserDeclined(IdentityError):
    pass


# -----------------------------------------------------------------------------
# Ledger
# -----------------------------------------------------------------------------


class LedgerError(BlockHealthError):
    """Failure reading from or committing to the pointer ledger."""


class LedgerUnavailable(LedgerError):
    pass


class UnknownIdentity(LedgerError):
    def __init__(self, identity: str):
        super().__init__(f"identity not registered on ledger: {identity}")
        self.identity = identity


class CommitRejected(LedgerError):
    """The ledger refused to advance the pointer."""

    def __init__(self, reason: RejectReason, detail: str = ""):
        message = f"commit rejected: {reason.value}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
        self.reason = reason
        self.detail = detail


# -----------------------------------------------------------------------------
# Content store
# -----------------------------------------------------------------------------


class StoreError(BlockHealthError):
    """Failure storing or resolving a document in the content store."""


class StoreUnavailable(StoreError):
    pass


class NotFound(StoreError):
    def __init__(self, address: str):
        super().__init__(f"content address not found: {address}")
        self.address = address


class SerializationError(StoreError):
    pass


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


class ValidationError(BlockHealthError):
    """A document or history entry failed schema validation."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors) if errors else "invalid document")
        self.errors = list(errors)


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------


class RecordUpdateError(BlockHealthError):
    """
    A read or append failed.

    `state` is the orchestrator state that was active when the failure
    happened; `error` is the lower-layer error, also chained as __cause__.
    """

    def __init__(self, state: RecordState, error: BlockHealthError):
        super().__init__(f"failed while {state.value}: {error}")
        self.state = state
        self.error = error
