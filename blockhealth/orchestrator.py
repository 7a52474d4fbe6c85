"""
Record update orchestrator.

Every mutation of a patient record is a read-modify-write cycle:

    IDLE -> CONNECTING -> RESOLVING -> FETCHING -> EDITING -> STORING -> COMMITTING -> DONE

with FAILED reachable from every non-terminal state. Each call to read(),
append() or register() starts a fresh cycle at IDLE; a failed cycle is
never resumed. Lower-layer errors are not retried here. They are re-raised
as RecordUpdateError tagged with the state in which they happened.

The edit is a pure function applied to the document fetched in the same
cycle, never to a copy held by the caller. This narrows the lost-update
window but does not close it: on a ledger without compare-and-swap, two
cycles that resolved the same pointer both commit and the later commit wins.

An orchestrator keeps the state of its current cycle, so concurrent
invocations each need their own instance. Instances may share the store,
the ledger and the session's provider.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Iterator, Mapping

from .audit_log import AuditLog
from .content_store import ContentStore
from .errors import (
    BlockHealthError,
    CommitRejected,
    RecordUpdateError,
    UnknownIdentity,
    ValidationError,
)
from .ledger import PointerLedger, RejectReason
from .models import (
    HistoryEntry,
    Identity,
    PatientDocument,
    append_only_violations,
    validate_document,
)
from .session import Session

logger = logging.getLogger(__name__)

EditFn = Callable[[PatientDocument], PatientDocument]


class RecordState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    EDITING = "editing"
    STORING = "storing"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RecordState.DONE, RecordState.FAILED)


def append_entry(entry: HistoryEntry) -> EditFn:
    """Edit function that appends one history entry."""

    def edit(document: PatientDocument) -> PatientDocument:
        return document.with_entry(entry)

    return edit


@dataclass(frozen=True)
class OrchestratorConfig:
    # Serve read() from the session cache when it holds a pointer.
    # Writes always resolve through the ledger.
    allow_stale_reads: bool = False


class RecordOrchestrator:
    def __init__(
        self,
        store: ContentStore,
        ledger: PointerLedger,
        session: Session,
        *,
        config: OrchestratorConfig | None = None,
        audit: AuditLog | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.session = session
        self.config = config or OrchestratorConfig()
        self.audit = audit
        self.state = RecordState.IDLE
        self.trace: list[RecordState] = [RecordState.IDLE]
        # Address stored by the current cycle, committed or not
        self.stored_address: str | None = None

    # -------------------------------------------------------------------------
    # State bookkeeping
    # -------------------------------------------------------------------------

    def _begin(self) -> None:
        self.state = RecordState.IDLE
        self.trace = [RecordState.IDLE]
        self.stored_address = None

    def _enter(self, state: RecordState) -> None:
        logger.debug("%s -> %s", self.state.value, state.value)
        self.state = state
        self.trace.append(state)

    @contextmanager
    def _step(self, state: RecordState) -> Iterator[None]:
        self._enter(state)
        try:
            yield
        except RecordUpdateError:
            raise
        except BlockHealthError as e:
            failed_in = self.state
            self._enter(RecordState.FAILED)
            logger.warning("record update failed while %s: %s", failed_in.value, e)
            raise RecordUpdateError(failed_in, e) from e
        except Exception:
            self._enter(RecordState.FAILED)
            raise

    def _record(
        self,
        operation: str,
        identity: Identity | None,
        outcome: str,
        *,
        previous: str | None = None,
        new: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if self.audit is None or identity is None:
            return
        self.audit.log(
            operation,
            identity.value,
            outcome,
            previous_address=previous,
            new_address=new,
            metadata=metadata,
        )

    @staticmethod
    def _outcome(error: RecordUpdateError) -> str:
        if isinstance(error.error, CommitRejected):
            return f"rejected:{error.error.reason.value}"
        return f"failed:{error.state.value}"

    # -------------------------------------------------------------------------
    # Protocol
    # -------------------------------------------------------------------------

    def _resolve(self, identity: Identity, *, for_write: bool) -> str:
        if self.config.allow_stale_reads and not for_write:
            cached = self.session.cached_pointer(identity)
            if cached is not None:
                logger.debug("using cached pointer %s for %s", cached, identity)
                return cached
        return self.ledger.resolve(identity)

    def _read(self, identity: Identity | None, *, for_write: bool) -> tuple[Identity, str, PatientDocument]:
        with self._step(RecordState.CONNECTING):
            target = identity or self.session.connect()

        with self._step(RecordState.RESOLVING):
            address = self._resolve(target, for_write=for_write)

        with self._step(RecordState.FETCHING):
            document = self.store.get(address)

        self.session.update_cache(address, target)
        return target, address, document

    def read(self, identity: Identity | None = None) -> PatientDocument:
        """
        Fetch the current document for an identity.

        Uses the session's connected identity when none is given.

        Raises:
            RecordUpdateError: tagged with CONNECTING, RESOLVING or FETCHING
        """
        self._begin()
        _, _, document = self._read(identity, for_write=False)
        self._enter(RecordState.DONE)
        return document

    def append(self, identity: Identity | None, edit_fn: EditFn) -> str:
        """
        Apply `edit_fn` to the current document and commit the result.

        The edited document must be valid and must keep every prior history
        entry unchanged and in order. On a rejected commit the stored
        document stays in the store unreferenced and nothing is retried.

        Returns:
            The address now current for the identity

        Raises:
            RecordUpdateError: tagged with the state that failed
        """
        self._begin()
        return self._append(identity, edit_fn)

    def _append(self, identity: Identity | None, edit_fn: EditFn) -> str:
        target: Identity | None = identity
        base: str | None = None
        try:
            target, base, document = self._read(identity, for_write=True)

            with self._step(RecordState.EDITING):
                edited = edit_fn(document)
                errors = validate_document(edited)
                if not errors:
                    errors = append_only_violations(document, edited)
                if errors:
                    raise ValidationError(errors)

            new_address = self._store_and_commit(target, edited, expected=base)
        except RecordUpdateError as e:
            self._record("append", target, self._outcome(e), previous=base, new=self.stored_address)
            raise

        self._record(
            "append",
            target,
            "accepted",
            previous=base,
            new=new_address,
            metadata={"entries": len(edited.medical_history)},
        )
        return new_address

    def _store_and_commit(self, identity: Identity, document: PatientDocument, *, expected: str | None) -> str:
        with self._step(RecordState.STORING):
            address = self.store.put(document)
            self.stored_address = address

        with self._step(RecordState.COMMITTING):
            credential = self.session.credential(identity)
            result = self.ledger.commit(identity, address, credential, expected=expected)
            if not result.accepted:
                raise CommitRejected(result.reason or RejectReason.LEDGER_UNAVAILABLE, result.detail)

        self._enter(RecordState.DONE)
        self.session.update_cache(address, identity)
        logger.info("committed %s for %s", address, identity)
        return address

    def add_history_entry(
        self,
        identity: Identity | None,
        disease: str | None,
        diagnosed_date: str | date | None,
        status: str | None,
    ) -> str:
        """
        Append one history entry from form input.

        The fields are validated before anything is resolved, stored or
        committed. A rejected form is still audited, under the identity
        already known to the session if none is given.
        """
        self._begin()
        try:
            with self._step(RecordState.EDITING):
                entry = HistoryEntry.from_form(disease, diagnosed_date, status)
        except RecordUpdateError as e:
            self._record("append", identity or self.session.identity, self._outcome(e))
            raise
        return self._append(identity, append_entry(entry))

    def register(self, identity: Identity | None, profile: Mapping[str, Any]) -> str:
        """
        Create the first document for an identity and commit it.

        Raises:
            RecordUpdateError: wrapping ValidationError if the identity is
                already registered or the profile is invalid
        """
        self._begin()
        target: Identity | None = identity
        try:
            with self._step(RecordState.CONNECTING):
                target = identity or self.session.connect()

            with self._step(RecordState.RESOLVING):
                try:
                    existing = self.ledger.resolve(target)
                except UnknownIdentity:
                    existing = None
                if existing is not None:
                    raise ValidationError([f"{target} is already registered"])

            with self._step(RecordState.EDITING):
                document = PatientDocument(profile=profile)
                errors = validate_document(document)
                if errors:
                    raise ValidationError(errors)

            address = self._store_and_commit(target, document, expected=None)
        except RecordUpdateError as e:
            self._record("register", target, self._outcome(e), new=self.stored_address)
            raise

        self._record("register", target, "accepted", new=address)
        return address
