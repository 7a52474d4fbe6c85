"""Patient record CLI commands."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from ..audit_log import AuditLog, format_audit_entry
from ..config import Config
from ..errors import BlockHealthError, RecordUpdateError
from ..ledger import LocalPointerLedger
from ..models import Identity
from ..orchestrator import RecordOrchestrator


def _print_error(err: Console, e: BlockHealthError) -> None:
    if isinstance(e, RecordUpdateError):
        err.print(f"Failed while {e.state.value}: {e.error}", style="bold red", markup=False)
    else:
        err.print(str(e), style="bold red", markup=False)


def run_register(
    orchestrator: RecordOrchestrator,
    profile: dict[str, Any],
    *,
    identity: Identity | None = None,
) -> int:
    console = Console()
    err = Console(stderr=True)
    try:
        address = orchestrator.register(identity, profile)
    except BlockHealthError as e:
        _print_error(err, e)
        return 1
    console.print(f"Registered. Record address: [cyan]{address}[/cyan]")
    return 0


def run_history_show(
    orchestrator: RecordOrchestrator,
    *,
    identity: Identity | None = None,
    output_json: bool = False,
) -> int:
    console = Console()
    err = Console(stderr=True)
    try:
        document = orchestrator.read(identity)
    except BlockHealthError as e:
        _print_error(err, e)
        return 1

    if output_json:
        console.print_json(json.dumps(document.to_dict()))
        return 0

    table = Table(title="Medical History")
    table.add_column("Disease", style="cyan")
    table.add_column("Diagnosed Date")
    table.add_column("Status")

    if not document.medical_history:
        console.print("No medical history records found")
        return 0

    for entry in document.medical_history:
        table.add_row(entry.disease, entry.diagnosed_date.isoformat(), entry.status.value)

    console.print(table)
    return 0


def run_history_add(
    orchestrator: RecordOrchestrator,
    *,
    disease: str | None,
    diagnosed_date: str | None,
    status: str | None,
    identity: Identity | None = None,
) -> int:
    console = Console()
    err = Console(stderr=True)
    try:
        address = orchestrator.add_history_entry(identity, disease, diagnosed_date, status)
    except BlockHealthError as e:
        _print_error(err, e)
        return 1
    console.print(f"Medical history added. Record address: [cyan]{address}[/cyan]")
    return 0


def run_pointer(
    orchestrator: RecordOrchestrator,
    *,
    identity: Identity | None = None,
) -> int:
    console = Console()
    err = Console(stderr=True)
    try:
        target = identity or orchestrator.session.connect()
        address = orchestrator.ledger.resolve(target)
    except BlockHealthError as e:
        _print_error(err, e)
        return 1

    console.print(f"{target}: [cyan]{address}[/cyan]")
    if isinstance(orchestrator.ledger, LocalPointerLedger):
        history = orchestrator.ledger.history(target)
        if len(history) > 1:
            console.print("History (oldest first):")
            for i, past in enumerate(history):
                console.print(f"  {i}: {past}", style="dim" if past != address else None)
    return 0


def run_audit(cfg: Config, *, last_n: int | None = None) -> int:
    console = Console()
    entries = AuditLog(cfg.audit_path).read(last_n=last_n)
    if not entries:
        console.print("No audit entries", style="dim")
        return 0
    for entry in entries:
        console.print(format_audit_entry(entry), markup=False, highlight=False)
    return 0
