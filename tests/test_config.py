from __future__ import annotations

from pathlib import Path

import pytest

from blockhealth.config import (
    build_ledger,
    build_orchestrator,
    build_store,
    load_config,
    parse_config,
)
from blockhealth.content_store import LocalContentStore, PinataContentStore
from blockhealth.ledger import HttpPointerLedger, LocalPointerLedger
from blockhealth.session import StaticIdentityProvider


def test_defaults_use_local_backends(tmp_path: Path) -> None:
    cfg = parse_config({}, base_dir=tmp_path)
    assert cfg.data_dir == tmp_path / ".blockhealth"
    assert cfg.audit_path == tmp_path / ".blockhealth" / "audit.log"

    store = build_store(cfg)
    ledger = build_ledger(cfg)
    assert isinstance(store, LocalContentStore) and store.root == cfg.data_dir
    assert isinstance(ledger, LocalPointerLedger) and not ledger.compare_and_swap


def test_load_missing_default_file_gives_defaults(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert load_config().store.backend == "local"


def test_load_explicit_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.toml")


def test_load_full_config(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "blockhealth.toml"
    path.write_text(
        """
data_dir = "state"

[store]
backend = "pinata"
api_key_ref = "env:TEST_PINATA_KEY"
secret_key_ref = "env:TEST_PINATA_SECRET"
timeout_s = 5

[ledger]
backend = "http"
url = "https://ledger.test"

[session]
identity_var = "TEST_IDENTITY"
secret_ref = "env:TEST_SECRET"
allow_stale_reads = true
""",
        encoding="utf-8",
    )
    monkeypatch.setenv("TEST_PINATA_KEY", "k")
    monkeypatch.setenv("TEST_PINATA_SECRET", "s")

    cfg = load_config(path)
    assert cfg.data_dir == tmp_path.resolve() / "state"
    assert cfg.store.timeout_s == 5.0
    assert cfg.session.allow_stale_reads is True
    assert isinstance(build_store(cfg), PinataContentStore)
    assert isinstance(build_ledger(cfg), HttpPointerLedger)

    orch = build_orchestrator(cfg, provider=StaticIdentityProvider("alice", "x"))
    assert orch.config.allow_stale_reads is True
    assert orch.audit is not None and orch.audit.path == cfg.audit_path


def test_pinata_without_keys_fails_to_build(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("PINATA_API_KEY", raising=False)
    cfg = parse_config({"store": {"backend": "pinata"}}, base_dir=tmp_path)
    with pytest.raises(ValueError, match="PINATA_API_KEY"):
        build_store(cfg)


@pytest.mark.parametrize(
    ("data", "message"),
    [
        ({"store": {"backend": "s3"}}, "unknown store backend"),
        ({"ledger": {"backend": "chain"}}, "unknown ledger backend"),
        ({"ledger": {"backend": "http"}}, "ledger.url is required"),
    ],
)
def test_invalid_settings(tmp_path: Path, data, message) -> None:
    with pytest.raises(ValueError, match=message):
        parse_config(data, base_dir=tmp_path)


def test_malformed_toml(tmp_path: Path) -> None:
    path = tmp_path / "blockhealth.toml"
    path.write_text("[store\nbackend = ", encoding="utf-8")
    with pytest.raises(ValueError, match="Failed to parse"):
        load_config(path)
