"""
Pointer ledger: the authoritative identity -> content address mapping.

commit() is "authorize and record". It checks that the caller controls the
identity and then moves the pointer; it does not check that the caller saw
the latest pointer. Two writers that resolved the same pointer can both
commit, and the later commit wins. Ledgers constructed with
compare_and_swap=True close that gap by rejecting commits whose `expected`
pointer is stale.

Commit outcomes are returned as CommitResult values, not raised.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from http.client import HTTPException
from pathlib import Path
from typing import Any, Iterator
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .errors import LedgerUnavailable, UnknownIdentity
from .models import Credential, Identity

logger = logging.getLogger(__name__)

POINTER_COMMITTED = "pointer.committed"


class RejectReason(str, Enum):
    UNAUTHORIZED = "unauthorized"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    INVALID_IDENTITY = "invalid_identity"
    # Only produced by ledgers that enforce compare-and-swap
    STALE_POINTER = "stale_pointer"


@dataclass(frozen=True)
class CommitResult:
    accepted: bool
    reason: RejectReason | None = None
    detail: str = ""

    @classmethod
    def accept(cls) -> CommitResult:
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: RejectReason, detail: str = "") -> CommitResult:
        return cls(accepted=False, reason=reason, detail=detail)

    def __str__(self) -> str:
        if self.accepted:
            return "accepted"
        return f"rejected:{self.reason.value if self.reason else 'unknown'}"


class PointerLedger(ABC):
    @abstractmethod
    def resolve(self, identity: Identity) -> str:
        """
        Current content address for an identity.

        Raises:
            UnknownIdentity: the identity was never registered
            LedgerUnavailable: the ledger could not be reached
        """
        ...

    @abstractmethod
    def commit(
        self,
        identity: Identity,
        address: str,
        credential: Credential,
        *,
        expected: str | None = None,
    ) -> CommitResult:
        """
        Advance the identity's pointer to `address`.

        `expected` is the pointer the caller based its edit on (None when
        registering). Ledgers without compare-and-swap ignore it.
        """
        ...


@dataclass(frozen=True)
class PointerEvent:
    """One accepted commit. Lines in pointers.jsonl are never rewritten."""

    identity: str
    address: str
    key_fingerprint: str
    timestamp: datetime
    previous: str | None = None
    event_type: str = POINTER_COMMITTED

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "event_type": self.event_type,
            "identity": self.identity,
            "address": self.address,
            "key_fingerprint": self.key_fingerprint,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.previous is not None:
            result["previous"] = self.previous
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PointerEvent:
        return cls(
            event_type=data.get("event_type", POINTER_COMMITTED),
            identity=data["identity"],
            address=data["address"],
            key_fingerprint=data["key_fingerprint"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            previous=data.get("previous"),
        )

    @classmethod
    def from_json(cls, line: str) -> PointerEvent:
        return cls.from_dict(json.loads(line))


class LocalPointerLedger(PointerLedger):
    """
    Append-only pointer ledger in a JSONL file.

    The first commit for an identity registers it and binds the key
    fingerprint of the committing credential. Later commits must present
    the same key. The current pointer is the address of the identity's
    last event.

    INVARIANT: existing lines are never modified; append() is the only write.
    """

    def __init__(self, root: Path, *, compare_and_swap: bool = False):
        self.root = root
        self.ledger_path = root / "pointers.jsonl"
        self.compare_and_swap = compare_and_swap
        self._lock = threading.Lock()

    def iter_events(self) -> Iterator[PointerEvent]:
        """All events in append order. Re-read on every call."""
        if not self.ledger_path.exists():
            return
        try:
            with self.ledger_path.open("r", encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = PointerEvent.from_json(line)
                    except (ValueError, KeyError, TypeError) as e:
                        # A torn line cannot be skipped: it may hold the current pointer
                        raise LedgerUnavailable(
                            f"corrupt entry at {self.ledger_path}:{lineno}: {e}"
                        ) from e
                    yield event
        except OSError as e:
            raise LedgerUnavailable(f"cannot read {self.ledger_path}: {e}") from e

    def _last_event(self, identity: Identity) -> PointerEvent | None:
        last: PointerEvent | None = None
        for event in self.iter_events():
            if event.identity == identity.value:
                last = event
        return last

    def history(self, identity: Identity) -> list[str]:
        """Every address ever committed for `identity`, oldest first."""
        return [e.address for e in self.iter_events() if e.identity == identity.value]

    def resolve(self, identity: Identity) -> str:
        event = self._last_event(identity)
        if event is None:
            raise UnknownIdentity(identity.value)
        return event.address

    def commit(
        self,
        identity: Identity,
        address: str,
        credential: Credential,
        *,
        expected: str | None = None,
    ) -> CommitResult:
        if not address:
            raise ValueError("address must be non-empty")
        if credential.identity != identity:
            return CommitResult.reject(
                RejectReason.INVALID_IDENTITY,
                f"credential belongs to {credential.identity}, not {identity}",
            )

        fingerprint = credential.fingerprint()
        with self._lock:
            try:
                current = self._last_event(identity)
            except LedgerUnavailable as e:
                return CommitResult.reject(RejectReason.LEDGER_UNAVAILABLE, str(e))

            if current is not None and current.key_fingerprint != fingerprint:
                logger.warning("unauthorized commit attempt for %s", identity)
                return CommitResult.reject(RejectReason.UNAUTHORIZED, "credential does not control identity")

            previous = current.address if current is not None else None
            if self.compare_and_swap and previous != expected:
                return CommitResult.reject(
                    RejectReason.STALE_POINTER,
                    f"pointer is {previous}, caller expected {expected}",
                )

            event = PointerEvent(
                identity=identity.value,
                address=address,
                key_fingerprint=fingerprint,
                timestamp=datetime.now(timezone.utc),
                previous=previous,
            )
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                with self.ledger_path.open("a", encoding="utf-8") as f:
                    f.write(event.to_json() + "\n")
            except OSError as e:
                return CommitResult.reject(RejectReason.LEDGER_UNAVAILABLE, str(e))

        logger.info("pointer for %s advanced %s -> %s", identity, previous, address)
        return CommitResult.accept()


@dataclass(frozen=True)
class HttpLedgerConfig:
    url: str
    timeout_s: float = 10.0
    headers: dict[str, str] = field(default_factory=dict)


class HttpPointerLedger(PointerLedger):
    """
    Pointer ledger behind a JSON gateway.

        GET  {url}/pointers/{identity}  -> {"address": ...}
        POST {url}/pointers/{identity}  <- {"address", "expected", "signature"}

    The signature is HMAC-SHA256 of "identity:address" under the credential
    secret; the secret itself never leaves the process.
    """

    def __init__(self, cfg: HttpLedgerConfig) -> None:
        self._cfg = cfg
        self._base = cfg.url.rstrip("/")

    def _pointer_url(self, identity: Identity) -> str:
        return f"{self._base}/pointers/{quote(identity.value, safe='')}"

    def _request(self, url: str, *, method: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = {"Accept": "application/json", **self._cfg.headers}
        if data is not None:
            headers["Content-Type"] = "application/json"
        req = Request(url, data=data, method=method, headers=headers)
        with urlopen(req, timeout=self._cfg.timeout_s) as resp:
            raw = resp.read().decode("utf-8")
        payload = json.loads(raw) if raw.strip() else {}
        return payload if isinstance(payload, dict) else {}

    def resolve(self, identity: Identity) -> str:
        try:
            payload = self._request(self._pointer_url(identity), method="GET")
        except HTTPError as e:
            if e.code == 404:
                raise UnknownIdentity(identity.value) from e
            raise LedgerUnavailable(f"ledger HTTP error {e.code}: {e.reason}") from e
        except URLError as e:
            raise LedgerUnavailable(f"ledger connection error: {e.reason}") from e
        except (OSError, HTTPException) as e:
            raise LedgerUnavailable(f"ledger connection error: {e!r}") from e
        except ValueError as e:
            raise LedgerUnavailable(f"ledger returned a non-JSON response: {e}") from e

        address = payload.get("address")
        if not address:
            raise UnknownIdentity(identity.value)
        return str(address)

    def commit(
        self,
        identity: Identity,
        address: str,
        credential: Credential,
        *,
        expected: str | None = None,
    ) -> CommitResult:
        if credential.identity != identity:
            return CommitResult.reject(RejectReason.INVALID_IDENTITY, "credential identity mismatch")

        body = {
            "address": address,
            "expected": expected,
            "signature": credential.sign(f"{identity.value}:{address}"),
        }
        try:
            self._request(self._pointer_url(identity), method="POST", body=body)
        except HTTPError as e:
            if e.code in (401, 403):
                return CommitResult.reject(RejectReason.UNAUTHORIZED, f"HTTP {e.code}")
            if e.code in (400, 422):
                return CommitResult.reject(RejectReason.INVALID_IDENTITY, f"HTTP {e.code}")
            if e.code == 409:
                return CommitResult.reject(RejectReason.STALE_POINTER, "HTTP 409")
            return CommitResult.reject(RejectReason.LEDGER_UNAVAILABLE, f"HTTP {e.code}: {e.reason}")
        except URLError as e:
            return CommitResult.reject(RejectReason.LEDGER_UNAVAILABLE, str(e.reason))
        except (OSError, HTTPException) as e:
            # Timeouts and dropped connections leave the commit outcome unknown
            return CommitResult.reject(RejectReason.LEDGER_UNAVAILABLE, repr(e))
        except ValueError as e:
            return CommitResult.reject(RejectReason.LEDGER_UNAVAILABLE, f"non-JSON response: {e}")
        return CommitResult.accept()
