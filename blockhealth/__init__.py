"""
BlockHealth patient record core.

Patient documents are immutable JSON blobs in a content-addressed store; a
pointer ledger maps each identity to the address of its current document.
Updates go through RecordOrchestrator's read-modify-write cycle.
"""

__version__ = "0.1.0"

from .content_store import ContentStore, LocalContentStore, PinataContentStore, compute_address
from .errors import (
    BlockHealthError,
    CommitRejected,
    IdentityError,
    LedgerError,
    LedgerUnavailable,
    NoIdentityAvailable,
    NotFound,
    RecordUpdateError,
    SerializationError,
    StoreError,
    StoreUnavailable,
    UnknownIdentity,
    UserDeclined,
    ValidationError,
)
from .ledger import CommitResult, HttpPointerLedger, LocalPointerLedger, PointerLedger, RejectReason
from .models import Credential, HistoryEntry, HistoryStatus, Identity, PatientDocument
from .orchestrator import OrchestratorConfig, RecordOrchestrator, RecordState, append_entry
from .session import EnvIdentityProvider, IdentityProvider, Session, StaticIdentityProvider

__all__ = [
    "__version__",
    # Model
    "Credential",
    "HistoryEntry",
    "HistoryStatus",
    "Identity",
    "PatientDocument",
    # Store
    "ContentStore",
    "LocalContentStore",
    "PinataContentStore",
    "compute_address",
    # Ledger
    "CommitResult",
    "HttpPointerLedger",
    "LocalPointerLedger",
    "PointerLedger",
    "RejectReason",
    # Session
    "EnvIdentityProvider",
    "IdentityProvider",
    "Session",
    "StaticIdentityProvider",
    # Orchestrator
    "OrchestratorConfig",
    "RecordOrchestrator",
    "RecordState",
    "append_entry",
    # Errors
    "BlockHealthError",
    "CommitRejected",
    "IdentityError",
    "LedgerError",
    "LedgerUnavailable",
    "NoIdentityAvailable",
    "NotFound",
    "RecordUpdateError",
    "SerializationError",
    "StoreError",
    "StoreUnavailable",
    "UnknownIdentity",
    "UserDeclined",
    "ValidationError",
]
