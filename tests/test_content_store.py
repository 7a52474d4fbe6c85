from __future__ import annotations

import io
import json
import threading
from datetime import date
from http.client import IncompleteRead
from pathlib import Path
from urllib.error import HTTPError, URLError

import pytest

import blockhealth.content_store as content_store_mod
from blockhealth.content_store import (
    LocalContentStore,
    PinataConfig,
    PinataContentStore,
    compute_address,
    fetch_with_backoff,
)
from blockhealth.errors import NotFound, SerializationError, StoreUnavailable
from blockhealth.models import HistoryEntry, HistoryStatus, PatientDocument


def _doc(*diseases: str) -> PatientDocument:
    return PatientDocument(
        profile={"name": "Asha Rao"},
        medical_history=tuple(HistoryEntry(d, date(2024, 1, 1), HistoryStatus.ONGOING) for d in diseases),
    )


class TestLocalContentStore:
    def test_put_is_deterministic_and_idempotent(self, tmp_path: Path) -> None:
        store = LocalContentStore(tmp_path)
        first = store.put(_doc("flu"))
        second = store.put(_doc("flu"))
        assert first == second == compute_address(_doc("flu"))
        assert store.list_addresses() == [first]

    def test_different_content_gets_a_new_address(self, tmp_path: Path) -> None:
        store = LocalContentStore(tmp_path)
        assert store.put(_doc("flu")) != store.put(_doc("flu", "cold"))

    def test_get_returns_identical_bytes_every_time(self, tmp_path: Path) -> None:
        store = LocalContentStore(tmp_path)
        address = store.put(_doc("flu"))
        raw = store.get_raw(address)

        store.put(_doc("flu", "cold"))
        store.put(_doc("flu"))

        assert store.get_raw(address) == raw
        assert store.get(address) == _doc("flu")
        assert store.verify(address)

    def test_blob_layout_uses_two_char_prefix(self, tmp_path: Path) -> None:
        store = LocalContentStore(tmp_path)
        address = store.put(_doc())
        assert (tmp_path / "content" / address[:2] / f"{address}.json").exists()

    def test_unknown_address_is_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(NotFound):
            LocalContentStore(tmp_path).get("ff" + "0" * 62)

    def test_corrupt_blob_is_serialization_error(self, tmp_path: Path) -> None:
        store = LocalContentStore(tmp_path)
        address = store.put(_doc())
        (tmp_path / "content" / address[:2] / f"{address}.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(SerializationError):
            store.get(address)
        assert not store.verify(address)

    def test_unencodable_document_is_serialization_error(self, tmp_path: Path) -> None:
        store = LocalContentStore(tmp_path)
        with pytest.raises(SerializationError):
            store.put(PatientDocument(profile={"name": "x", "scan": object()}))
        assert store.list_addresses() == []

    def test_concurrent_puts_of_same_content_all_succeed(self, tmp_path: Path) -> None:
        document = PatientDocument(profile={"name": "Asha Rao", "notes": "x" * 200_000})
        expected = compute_address(document)
        writers = 8

        for round_no in range(20):
            store = LocalContentStore(tmp_path / f"round-{round_no}")
            barrier = threading.Barrier(writers)
            results: list[str] = []
            errors: list[Exception] = []

            def write() -> None:
                barrier.wait()
                try:
                    results.append(store.put(document))
                except Exception as e:
                    errors.append(e)

            threads = [threading.Thread(target=write) for _ in range(writers)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert errors == []
            assert results == [expected] * writers
            assert store.verify(expected)
            assert list((store.content_dir / expected[:2]).glob("*.tmp")) == []


# -----------------------------------------------------------------------------
# Pinata
# -----------------------------------------------------------------------------


@pytest.fixture
def pinata() -> PinataContentStore:
    return PinataContentStore(
        PinataConfig(
            api_key="key",
            secret_api_key="secret",
            api_url="https://pinata.test",
            gateway_url="https://gateway.test/",
        )
    )


class TestPinataContentStore:
    def test_put_pins_json_and_returns_cid(self, pinata, monkeypatch) -> None:
        seen = {}

        def fake_urlopen(req, timeout):
            seen["url"] = req.full_url
            seen["headers"] = {k.lower(): v for k, v in req.header_items()}
            seen["body"] = json.loads(req.data)
            return io.BytesIO(b'{"IpfsHash": "QmTestCid", "PinSize": 120}')

        monkeypatch.setattr(content_store_mod, "urlopen", fake_urlopen)

        assert pinata.put(_doc("flu")) == "QmTestCid"
        assert seen["url"] == "https://pinata.test/pinning/pinJSONToIPFS"
        assert seen["headers"]["pinata_api_key"] == "key"
        assert seen["body"]["pinataContent"] == _doc("flu").to_dict()

    def test_get_reads_from_gateway(self, pinata, monkeypatch) -> None:
        seen = {}

        def fake_urlopen(req, timeout):
            seen["url"] = req.full_url
            return io.BytesIO(json.dumps(_doc("flu").to_dict()).encode("utf-8"))

        monkeypatch.setattr(content_store_mod, "urlopen", fake_urlopen)

        assert pinata.get("QmTestCid") == _doc("flu")
        assert seen["url"] == "https://gateway.test/ipfs/QmTestCid"

    def test_gateway_404_is_not_found(self, pinata, monkeypatch) -> None:
        def fake_urlopen(req, timeout):
            raise HTTPError(req.full_url, 404, "Not Found", {}, None)

        monkeypatch.setattr(content_store_mod, "urlopen", fake_urlopen)
        with pytest.raises(NotFound):
            pinata.get("QmMissing")

    def test_connection_failure_is_store_unavailable(self, pinata, monkeypatch) -> None:
        def fake_urlopen(req, timeout):
            raise URLError("connection refused")

        monkeypatch.setattr(content_store_mod, "urlopen", fake_urlopen)
        with pytest.raises(StoreUnavailable):
            pinata.put(_doc())
        with pytest.raises(StoreUnavailable):
            pinata.get("QmTestCid")

    def test_auth_failure_is_store_unavailable(self, pinata, monkeypatch) -> None:
        def fake_urlopen(req, timeout):
            raise HTTPError(req.full_url, 401, "Unauthorized", {}, None)

        monkeypatch.setattr(content_store_mod, "urlopen", fake_urlopen)
        with pytest.raises(StoreUnavailable, match="401"):
            pinata.put(_doc())

    @pytest.mark.parametrize(
        "exc",
        [
            TimeoutError("The read operation timed out"),
            ConnectionResetError(104, "Connection reset by peer"),
            IncompleteRead(b"{\"Ipfs"),
        ],
    )
    def test_transport_failure_is_store_unavailable(self, pinata, monkeypatch, exc) -> None:
        def fake_urlopen(req, timeout):
            raise exc

        monkeypatch.setattr(content_store_mod, "urlopen", fake_urlopen)
        with pytest.raises(StoreUnavailable):
            pinata.put(_doc())
        with pytest.raises(StoreUnavailable):
            pinata.get("QmTestCid")

    def test_response_without_cid_is_store_unavailable(self, pinata, monkeypatch) -> None:
        monkeypatch.setattr(content_store_mod, "urlopen", lambda req, timeout: io.BytesIO(b"{}"))
        with pytest.raises(StoreUnavailable, match="IpfsHash"):
            pinata.put(_doc())


# -----------------------------------------------------------------------------
# Backoff helper
# -----------------------------------------------------------------------------


class LaggingStore(LocalContentStore):
    """Reports NotFound for the first `lag` reads, like a slow gateway."""

    def __init__(self, root: Path, lag: int):
        super().__init__(root)
        self.lag = lag
        self.calls = 0

    def get(self, address: str) -> PatientDocument:
        self.calls += 1
        if self.calls <= self.lag:
            raise NotFound(address)
        return super().get(address)


def test_fetch_with_backoff_waits_for_propagation(tmp_path: Path) -> None:
    store = LaggingStore(tmp_path, lag=2)
    address = store.put(_doc("flu"))
    delays: list[float] = []

    assert fetch_with_backoff(store, address, base_delay=0.1, sleep=delays.append) == _doc("flu")
    assert delays == [0.1, 0.2]


def test_fetch_with_backoff_gives_up(tmp_path: Path) -> None:
    store = LaggingStore(tmp_path, lag=10)
    address = store.put(_doc())
    with pytest.raises(NotFound):
        fetch_with_backoff(store, address, attempts=3, sleep=lambda _: None)
    assert store.calls == 3
