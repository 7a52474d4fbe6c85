"""
Value types for patient records.

A PatientDocument is an immutable aggregate: edits never mutate a document,
they build a new one. The wire format matches the records already pinned by
the web client: profile fields at the top level plus a `medicalhistory` list
whose entries carry `disease`, `time` and `solved`.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .errors import ValidationError

HISTORY_KEY = "medicalhistory"
REQUIRED_PROFILE_FIELDS = ("name",)

_WALLET_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class Identity:
    """
    A connected principal, usually a wallet address.

    Wallet addresses are case-insensitive hex, so they are stored lowercase;
    any other principal string is kept as given.
    """

    value: str

    def __post_init__(self) -> None:
        value = (self.value or "").strip()
        if not value:
            raise ValueError("identity must be a non-empty string")
        if _WALLET_ADDRESS.match(value):
            value = value.lower()
        object.__setattr__(self, "value", value)

    @property
    def is_wallet_address(self) -> bool:
        return bool(_WALLET_ADDRESS.match(self.value))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Credential:
    """
    Opaque proof of control over an identity.

    The secret never appears in repr() and is only used to derive a key
    fingerprint or a signature.
    """

    identity: Identity
    secret: str = field(repr=False)

    def fingerprint(self) -> str:
        return hashlib.sha256(self.secret.encode("utf-8")).hexdigest()

    def sign(self, message: str) -> str:
        return hmac.new(self.secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class HistoryStatus(str, Enum):
    TREATED = "Treated"
    ONGOING = "Ongoing"


@dataclass(frozen=True)
class HistoryEntry:
    disease: str
    diagnosed_date: date
    status: HistoryStatus

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape (`disease`, `time`, `solved`)."""
        return {
            "disease": self.disease,
            "time": self.diagnosed_date.isoformat(),
            "solved": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HistoryEntry:
        """Parse a wire entry. Raises ValueError/KeyError on malformed input."""
        return cls(
            disease=str(data["disease"]),
            diagnosed_date=date.fromisoformat(str(data["time"])),
            status=HistoryStatus(data["solved"]),
        )

    @classmethod
    def from_form(cls, disease: str | None, diagnosed_date: str | date | None, status: str | None) -> HistoryEntry:
        """
        Build an entry from form input, reporting every missing or bad field.

        Raises:
            ValidationError: listing each problem found
        """
        errors: list[str] = []

        disease_str = (disease or "").strip()
        if not disease_str:
            errors.append("disease is required")

        parsed_date: date | None = None
        if diagnosed_date is None or diagnosed_date == "":
            errors.append("diagnosedDate is required")
        elif isinstance(diagnosed_date, date):
            parsed_date = diagnosed_date
        else:
            try:
                parsed_date = date.fromisoformat(str(diagnosed_date).strip())
            except ValueError:
                errors.append(f"diagnosedDate is not an ISO date: {diagnosed_date!r}")

        parsed_status: HistoryStatus | None = None
        if not status:
            errors.append("status is required")
        else:
            try:
                parsed_status = HistoryStatus(str(status).strip())
            except ValueError:
                allowed = ", ".join(s.value for s in HistoryStatus)
                errors.append(f"status must be one of {allowed}, got {status!r}")

        if errors:
            raise ValidationError(errors)
        assert parsed_date is not None and parsed_status is not None
        return cls(disease=disease_str, diagnosed_date=parsed_date, status=parsed_status)


@dataclass(frozen=True)
class PatientDocument:
    """A patient's profile plus their append-only medical history."""

    profile: Mapping[str, Any] = field(default_factory=dict)
    medical_history: tuple[HistoryEntry, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "profile", MappingProxyType(dict(self.profile)))
        object.__setattr__(self, "medical_history", tuple(self.medical_history))

    def with_entry(self, entry: HistoryEntry) -> PatientDocument:
        """Return a new document with `entry` appended to the history."""
        return PatientDocument(profile=self.profile, medical_history=(*self.medical_history, entry))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = dict(self.profile)
        result[HISTORY_KEY] = [entry.to_dict() for entry in self.medical_history]
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PatientDocument:
        """Parse a wire document. Raises ValueError/KeyError/TypeError on malformed input."""
        if not isinstance(data, Mapping):
            raise TypeError(f"document must be a JSON object, got {type(data).__name__}")
        profile = {k: v for k, v in data.items() if k != HISTORY_KEY}
        raw_history = data.get(HISTORY_KEY) or []
        if not isinstance(raw_history, list):
            raise TypeError(f"{HISTORY_KEY} must be a list")
        return cls(profile=profile, medical_history=tuple(HistoryEntry.from_dict(e) for e in raw_history))


def canonical_bytes(document: PatientDocument) -> bytes:
    """
    Deterministic encoding used for content addressing.

    Raises TypeError/ValueError if the document holds values JSON cannot
    represent (including NaN and infinities).
    """
    text = json.dumps(
        document.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return text.encode("utf-8")


def validate_entry(entry: Any, position: int | None = None) -> list[str]:
    """Return the schema problems of one history entry (empty = valid)."""
    where = f"medicalhistory[{position}]" if position is not None else "entry"
    if not isinstance(entry, HistoryEntry):
        return [f"{where} is not a HistoryEntry"]

    errors: list[str] = []
    if not isinstance(entry.disease, str) or not entry.disease.strip():
        errors.append(f"{where}.disease is required")
    if not isinstance(entry.diagnosed_date, date):
        errors.append(f"{where}.diagnosedDate is required")
    if not isinstance(entry.status, HistoryStatus):
        errors.append(f"{where}.status is required")
    return errors


def validate_profile(profile: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    for name in REQUIRED_PROFILE_FIELDS:
        value = profile.get(name)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"profile.{name} is required")
    if HISTORY_KEY in profile:
        errors.append(f"profile must not contain {HISTORY_KEY!r}")
    return errors


def validate_document(document: Any) -> list[str]:
    """Return the schema problems of a document (empty = valid)."""
    if not isinstance(document, PatientDocument):
        return [f"edit must produce a PatientDocument, got {type(document).__name__}"]

    errors = validate_profile(document.profile)
    for i, entry in enumerate(document.medical_history):
        errors.extend(validate_entry(entry, i))
    return errors


def append_only_violations(before: PatientDocument, after: PatientDocument) -> list[str]:
    """
    Check that `after` only appends to the history of `before`.

    Prior entries must be present, unchanged and in the same order.
    """
    prior = before.medical_history
    current = after.medical_history
    if len(current) < len(prior):
        return [f"history shrank from {len(prior)} to {len(current)} entries"]
    errors: list[str] = []
    for i, (old, new) in enumerate(zip(prior, current)):
        if old != new:
            errors.append(f"medicalhistory[{i}] was modified")
    return errors
