"""
Content-addressed storage for patient documents.

Documents are written once and resolved by their address; nothing is ever
overwritten. Two backends are provided:

- LocalContentStore: sha256-addressed files on disk, used for development
  and tests.
- PinataContentStore: an IPFS pinning service reached over HTTP, which is
  where the web client keeps its records.

Neither backend retries. Readers that need read-after-write across replicas
call fetch_with_backoff explicitly.
"""

from __future__ import annotations

import hashlib
import json
import logging
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from http.client import HTTPException
from pathlib import Path
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .errors import NotFound, SerializationError, StoreUnavailable
from .models import PatientDocument, canonical_bytes

logger = logging.getLogger(__name__)


def encode_document(document: PatientDocument) -> bytes:
    """Canonical bytes of a document, or SerializationError."""
    try:
        return canonical_bytes(document)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"document cannot be encoded: {e}") from e


def decode_document(raw: bytes | str) -> PatientDocument:
    """Parse stored bytes back into a document, or SerializationError."""
    try:
        data = json.loads(raw)
        return PatientDocument.from_dict(data)
    except (TypeError, ValueError, KeyError) as e:
        raise SerializationError(f"stored content is not a patient document: {e}") from e


def compute_address(document: PatientDocument) -> str:
    """sha256 hex digest of the canonical encoding."""
    return hashlib.sha256(encode_document(document)).hexdigest()


class ContentStore(ABC):
    """Immutable document store keyed by content address."""

    @abstractmethod
    def put(self, document: PatientDocument) -> str:
        """
        Store a document and return its address.

        Storing byte-identical content again returns the same address.

        Raises:
            StoreUnavailable: the store could not be reached
            SerializationError: the document cannot be encoded
        """
        ...

    @abstractmethod
    def get(self, address: str) -> PatientDocument:
        """
        Resolve an address to its document.

        Raises:
            NotFound: the address is unknown to the store right now
            SerializationError: the stored bytes do not decode
            StoreUnavailable: the store could not be reached
        """
        ...


class LocalContentStore(ContentStore):
    """
    Content store on the local filesystem.

    Blobs live in a two-level directory structure using the first 2
    characters of the address as the prefix:

        <root>/content/ab/ab1234...json

    Each file holds the canonical bytes, so re-hashing a file reproduces
    its address.
    """

    def __init__(self, root: Path):
        self.root = root
        self.content_dir = root / "content"

    def _path(self, address: str) -> Path:
        return self.content_dir / address[:2] / f"{address}.json"

    def put(self, document: PatientDocument) -> str:
        raw = encode_document(document)
        address = hashlib.sha256(raw).hexdigest()

        path = self._path(address)
        if path.exists():
            return address

        temp_path: Path | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Per-writer temp file, then rename: readers never see a partial blob
            with tempfile.NamedTemporaryFile(
                dir=path.parent, prefix=f"{address}.", suffix=".tmp", delete=False
            ) as f:
                temp_path = Path(f.name)
                f.write(raw)
            temp_path.replace(path)
        except OSError as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            if path.exists():
                return address
            raise StoreUnavailable(f"cannot write {path}: {e}") from e

        logger.debug("stored %s (%d bytes)", address, len(raw))
        return address

    def get_raw(self, address: str) -> bytes:
        """Stored bytes for an address."""
        path = self._path(address)
        if not path.exists():
            raise NotFound(address)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StoreUnavailable(f"cannot read {path}: {e}") from e

    def get(self, address: str) -> PatientDocument:
        return decode_document(self.get_raw(address))

    def exists(self, address: str) -> bool:
        return self._path(address).exists()

    def verify(self, address: str) -> bool:
        """True if the blob exists and still hashes to its address."""
        if not self.exists(address):
            return False
        return hashlib.sha256(self.get_raw(address)).hexdigest() == address

    def list_addresses(self) -> list[str]:
        addresses: list[str] = []
        if not self.content_dir.exists():
            return addresses
        for prefix_dir in sorted(self.content_dir.iterdir()):
            if prefix_dir.is_dir() and len(prefix_dir.name) == 2:
                addresses.extend(p.stem for p in sorted(prefix_dir.glob("*.json")))
        return addresses


@dataclass(frozen=True)
class PinataConfig:
    api_key: str
    secret_api_key: str
    api_url: str = "https://api.pinata.cloud"
    gateway_url: str = "https://gateway.pinata.cloud"
    timeout_s: float = 30.0


class PinataContentStore(ContentStore):
    """IPFS content store backed by the Pinata pinning API."""

    def __init__(self, cfg: PinataConfig) -> None:
        self._cfg = cfg
        self._pin_url = f"{cfg.api_url.rstrip('/')}/pinning/pinJSONToIPFS"
        self._gateway = cfg.gateway_url.rstrip("/")

    def put(self, document: PatientDocument) -> str:
        raw = encode_document(document)
        body = b'{"pinataContent":' + raw + b"}"
        req = Request(
            self._pin_url,
            data=body,
            method="POST",
            headers={
                "pinata_api_key": self._cfg.api_key,
                "pinata_secret_api_key": self._cfg.secret_api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with urlopen(req, timeout=self._cfg.timeout_s) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except HTTPError as e:
            raise StoreUnavailable(f"Pinata HTTP error {e.code}: {e.reason}") from e
        except URLError as e:
            raise StoreUnavailable(f"Pinata connection error: {e.reason}") from e
        except (OSError, HTTPException) as e:
            raise StoreUnavailable(f"Pinata connection error: {e!r}") from e
        except ValueError as e:
            raise StoreUnavailable(f"Pinata returned a non-JSON response: {e}") from e

        cid = payload.get("IpfsHash") if isinstance(payload, dict) else None
        if not cid:
            raise StoreUnavailable("Pinata response missing IpfsHash")
        logger.info("pinned document as %s", cid)
        return str(cid)

    def get(self, address: str) -> PatientDocument:
        req = Request(
            f"{self._gateway}/ipfs/{quote(address, safe='')}",
            method="GET",
            headers={"Accept": "application/json"},
        )
        try:
            with urlopen(req, timeout=self._cfg.timeout_s) as resp:
                raw = resp.read()
        except HTTPError as e:
            if e.code == 404:
                raise NotFound(address) from e
            raise StoreUnavailable(f"IPFS gateway HTTP error {e.code}: {e.reason}") from e
        except URLError as e:
            raise StoreUnavailable(f"IPFS gateway connection error: {e.reason}") from e
        except (OSError, HTTPException) as e:
            raise StoreUnavailable(f"IPFS gateway connection error: {e!r}") from e
        return decode_document(raw)


def fetch_with_backoff(
    store: ContentStore,
    address: str,
    *,
    attempts: int = 5,
    base_delay: float = 0.5,
    sleep: Callable[[float], Any] = time.sleep,
) -> PatientDocument:
    """
    Resolve an address, retrying NotFound with exponential backoff.

    A freshly pinned blob may take a while to reach every gateway. Only
    NotFound is retried; every other error propagates immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        try:
            return store.get(address)
        except NotFound:
            if attempt == attempts - 1:
                raise
            delay = base_delay * (2**attempt)
            logger.debug("%s not visible yet, retrying in %.2fs", address, delay)
            sleep(delay)
    raise NotFound(address)
