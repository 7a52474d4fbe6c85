"""
Configuration loading.

Settings come from a TOML file (blockhealth.toml by default):

    data_dir = ".blockhealth"

    [store]
    backend = "pinata"                  # "local" | "pinata"
    api_key_ref = "env:PINATA_API_KEY"
    secret_key_ref = "env:PINATA_SECRET_API_KEY"

    [ledger]
    backend = "http"                    # "local" | "http"
    url = "https://ledger.example.org"
    compare_and_swap = false

    [session]
    identity_var = "BLOCKHEALTH_IDENTITY"
    secret_ref = "env:BLOCKHEALTH_SECRET"
    allow_stale_reads = false

A missing file means local backends under ./.blockhealth. Secrets are only
ever named by reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from .audit_log import AuditLog
from .content_store import ContentStore, LocalContentStore, PinataConfig, PinataContentStore
from .ledger import HttpLedgerConfig, HttpPointerLedger, LocalPointerLedger, PointerLedger
from .orchestrator import OrchestratorConfig, RecordOrchestrator
from .secrets import SecretsProvider, resolve_secret
from .session import EnvIdentityProvider, IdentityProvider, Session

DEFAULT_CONFIG_NAME = "blockhealth.toml"
STORE_BACKENDS = frozenset({"local", "pinata"})
LEDGER_BACKENDS = frozenset({"local", "http"})


@dataclass(frozen=True)
class StoreConfig:
    backend: str = "local"
    path: Path | None = None
    api_url: str = "https://api.pinata.cloud"
    gateway_url: str = "https://gateway.pinata.cloud"
    api_key_ref: str = "env:PINATA_API_KEY"
    secret_key_ref: str = "env:PINATA_SECRET_API_KEY"
    timeout_s: float = 30.0


@dataclass(frozen=True)
class LedgerConfig:
    backend: str = "local"
    path: Path | None = None
    url: str = ""
    timeout_s: float = 10.0
    compare_and_swap: bool = False


@dataclass(frozen=True)
class SessionConfig:
    identity_var: str = "BLOCKHEALTH_IDENTITY"
    secret_ref: str = "env:BLOCKHEALTH_SECRET"
    allow_stale_reads: bool = False


@dataclass(frozen=True)
class Config:
    data_dir: Path = Path(".blockhealth")
    store: StoreConfig = field(default_factory=StoreConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)

    @property
    def audit_path(self) -> Path:
        return self.data_dir / "audit.log"


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _optional_path(value: Any, base: Path) -> Path | None:
    if value is None or value == "":
        return None
    path = Path(str(value))
    return path if path.is_absolute() else base / path


def parse_config(data: dict[str, Any], *, base_dir: Path = Path(".")) -> Config:
    """
    Build a Config from parsed TOML.

    Relative paths are resolved against `base_dir` (the config file's folder).

    Raises:
        ValueError: on an unknown backend or a missing required setting
    """
    data_dir = _optional_path(data.get("data_dir", ".blockhealth"), base_dir) or base_dir / ".blockhealth"

    store_raw = _coerce_dict(data.get("store"))
    store_backend = str(store_raw.get("backend", "local")).strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise ValueError(f"unknown store backend: {store_backend!r} (expected one of {sorted(STORE_BACKENDS)})")
    store = StoreConfig(
        backend=store_backend,
        path=_optional_path(store_raw.get("path"), base_dir),
        api_url=str(store_raw.get("api_url", StoreConfig.api_url)),
        gateway_url=str(store_raw.get("gateway_url", StoreConfig.gateway_url)),
        api_key_ref=str(store_raw.get("api_key_ref", StoreConfig.api_key_ref)),
        secret_key_ref=str(store_raw.get("secret_key_ref", StoreConfig.secret_key_ref)),
        timeout_s=float(store_raw.get("timeout_s", StoreConfig.timeout_s)),
    )

    ledger_raw = _coerce_dict(data.get("ledger"))
    ledger_backend = str(ledger_raw.get("backend", "local")).strip().lower()
    if ledger_backend not in LEDGER_BACKENDS:
        raise ValueError(f"unknown ledger backend: {ledger_backend!r} (expected one of {sorted(LEDGER_BACKENDS)})")
    ledger_url = str(ledger_raw.get("url", "")).strip()
    if ledger_backend == "http" and not ledger_url:
        raise ValueError("ledger.url is required for the http ledger backend")
    ledger = LedgerConfig(
        backend=ledger_backend,
        path=_optional_path(ledger_raw.get("path"), base_dir),
        url=ledger_url,
        timeout_s=float(ledger_raw.get("timeout_s", LedgerConfig.timeout_s)),
        compare_and_swap=bool(ledger_raw.get("compare_and_swap", False)),
    )

    session_raw = _coerce_dict(data.get("session"))
    session = SessionConfig(
        identity_var=str(session_raw.get("identity_var", SessionConfig.identity_var)),
        secret_ref=str(session_raw.get("secret_ref", SessionConfig.secret_ref)),
        allow_stale_reads=bool(session_raw.get("allow_stale_reads", False)),
    )

    return Config(data_dir=data_dir, store=store, ledger=ledger, session=session)


def load_config(path: str | Path | None = None) -> Config:
    """
    Load configuration from TOML.

    With no path, ./blockhealth.toml is used if present, else defaults.

    Raises:
        FileNotFoundError: an explicit path does not exist
        ValueError: the TOML is malformed or has invalid settings
    """
    if path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_NAME
        if not candidate.exists():
            return parse_config({}, base_dir=Path.cwd())
        path = candidate

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except Exception as e:
            raise ValueError(f"Failed to parse config TOML: {e}") from e

    return parse_config(data, base_dir=path.parent.resolve())


def build_store(cfg: Config, *, secrets: SecretsProvider | None = None) -> ContentStore:
    if cfg.store.backend == "pinata":
        return PinataContentStore(
            PinataConfig(
                api_key=resolve_secret(cfg.store.api_key_ref, secrets),
                secret_api_key=resolve_secret(cfg.store.secret_key_ref, secrets),
                api_url=cfg.store.api_url,
                gateway_url=cfg.store.gateway_url,
                timeout_s=cfg.store.timeout_s,
            )
        )
    return LocalContentStore(cfg.store.path or cfg.data_dir)


def build_ledger(cfg: Config) -> PointerLedger:
    if cfg.ledger.backend == "http":
        return HttpPointerLedger(HttpLedgerConfig(url=cfg.ledger.url, timeout_s=cfg.ledger.timeout_s))
    return LocalPointerLedger(cfg.ledger.path or cfg.data_dir, compare_and_swap=cfg.ledger.compare_and_swap)


def build_session(cfg: Config, *, secrets: SecretsProvider | None = None) -> Session:
    return Session(
        EnvIdentityProvider(cfg.session.identity_var, cfg.session.secret_ref, secrets=secrets)
    )


def build_orchestrator(
    cfg: Config,
    *,
    session: Session | None = None,
    provider: IdentityProvider | None = None,
    secrets: SecretsProvider | None = None,
) -> RecordOrchestrator:
    """Wire store, ledger, session and audit log from configuration."""
    if session is None:
        session = Session(provider) if provider is not None else build_session(cfg, secrets=secrets)
    return RecordOrchestrator(
        build_store(cfg, secrets=secrets),
        build_ledger(cfg),
        session,
        config=OrchestratorConfig(allow_stale_reads=cfg.session.allow_stale_reads),
        audit=AuditLog(cfg.audit_path),
    )
