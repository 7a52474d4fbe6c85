"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from blockhealth.content_store import ContentStore, LocalContentStore
from blockhealth.errors import StoreUnavailable
from blockhealth.ledger import CommitResult, LocalPointerLedger, PointerLedger
from blockhealth.models import Credential, Identity, PatientDocument
from blockhealth.orchestrator import RecordOrchestrator
from blockhealth.session import Session, StaticIdentityProvider

PATIENT = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
PATIENT_SECRET = "patient-wallet-key"


class RecordingStore(ContentStore):
    """Wraps a store, counting calls and optionally failing put()."""

    def __init__(self, inner: ContentStore):
        self.inner = inner
        self.puts: list[str] = []
        self.gets: list[str] = []
        self.fail_put = False

    def put(self, document: PatientDocument) -> str:
        if self.fail_put:
            raise StoreUnavailable("simulated outage")
        address = self.inner.put(document)
        self.puts.append(address)
        return address

    def get(self, address: str) -> PatientDocument:
        self.gets.append(address)
        return self.inner.get(address)


class RecordingLedger(PointerLedger):
    """Wraps a ledger, counting resolve() and commit() calls."""

    def __init__(self, inner: PointerLedger):
        self.inner = inner
        self.resolves: list[Identity] = []
        self.commits: list[tuple[Identity, str]] = []

    def resolve(self, identity: Identity) -> str:
        self.resolves.append(identity)
        return self.inner.resolve(identity)

    def commit(
        self,
        identity: Identity,
        address: str,
        credential: Credential,
        *,
        expected: str | None = None,
    ) -> CommitResult:
        self.commits.append((identity, address))
        return self.inner.commit(identity, address, credential, expected=expected)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / ".blockhealth"


@pytest.fixture
def identity() -> Identity:
    return Identity(PATIENT)


@pytest.fixture
def provider(identity: Identity) -> StaticIdentityProvider:
    return StaticIdentityProvider(identity, PATIENT_SECRET)


@pytest.fixture
def store(data_dir: Path) -> RecordingStore:
    return RecordingStore(LocalContentStore(data_dir))


@pytest.fixture
def ledger(data_dir: Path) -> RecordingLedger:
    return RecordingLedger(LocalPointerLedger(data_dir))


@pytest.fixture
def session(provider: StaticIdentityProvider) -> Session:
    return Session(provider)


@pytest.fixture
def orchestrator(store: RecordingStore, ledger: RecordingLedger, session: Session) -> RecordOrchestrator:
    return RecordOrchestrator(store, ledger, session)


@pytest.fixture
def registered(orchestrator: RecordOrchestrator, identity: Identity) -> str:
    """Register the patient and return the initial pointer."""
    return orchestrator.register(identity, {"name": "Asha Rao", "bloodgroup": "O+"})
