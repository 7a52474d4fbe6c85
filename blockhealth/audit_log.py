"""
Audit log of record write attempts.

Every register/append attempt is appended as one JSON line, whether the
commit was accepted, rejected by the ledger, or failed earlier. Orphaned
blobs can be traced from entries whose outcome is not "accepted" but which
carry a new_address.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class AuditEntry:
    """A single audit log entry."""
    timestamp: str
    operation: str
    identity: str
    outcome: str
    previous_address: str | None = None
    new_address: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "identity": self.identity,
            "outcome": self.outcome,
            "previous_address": self.previous_address,
            "new_address": self.new_address,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            timestamp=data["timestamp"],
            operation=data["operation"],
            identity=data["identity"],
            outcome=data["outcome"],
            previous_address=data.get("previous_address"),
            new_address=data.get("new_address"),
            metadata=data.get("metadata", {}),
        )


class AuditLog:
    """Append-only JSON Lines audit log at `path`."""

    def __init__(self, path: Path):
        self.path = path

    def log(
        self,
        operation: str,
        identity: str,
        outcome: str,
        *,
        previous_address: str | None = None,
        new_address: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """
        Append one entry.

        Args:
            operation: "register" or "append"
            identity: identity the write was for
            outcome: "accepted", "rejected:<reason>" or "failed:<state>"
            previous_address: pointer the edit was based on
            new_address: address of the stored document, if one was stored
            metadata: additional context (e.g. entry count)

        Returns:
            The created audit entry
        """
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            operation=operation,
            identity=identity,
            outcome=outcome,
            previous_address=previous_address,
            new_address=new_address,
            metadata=metadata or {},
        )

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict()) + "\n")

        return entry

    def read(self, last_n: int | None = None) -> list[AuditEntry]:
        """
        Read entries, oldest first.

        Args:
            last_n: If specified, return only the last N entries (must be >= 1)
        """
        if last_n is not None and last_n < 1:
            raise ValueError(f"last_n must be at least 1, got {last_n}")
        if not self.path.exists():
            return []

        entries = []
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    try:
                        entries.append(AuditEntry.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError):
                        continue  # Skip malformed lines

        if last_n is not None:
            return entries[-last_n:]
        return entries


def format_audit_entry(entry: AuditEntry) -> str:
    """Format an audit entry for human-readable display."""
    lines = [
        f"[{entry.timestamp}] {entry.operation} {entry.identity}: {entry.outcome}",
    ]
    if entry.previous_address:
        lines.append(f"  From: {entry.previous_address}")
    if entry.new_address:
        lines.append(f"  To: {entry.new_address}")
    for key, value in entry.metadata.items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines)
