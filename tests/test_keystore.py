from __future__ import annotations

import json
import os
import stat
import threading
from pathlib import Path
from typing import List

import pytest

from locker.auth.gate import PresetGate
from locker.core.exceptions import StoreError
from locker.core.policy import SECURE_ENCLAVE_TOKEN, AccessPolicy, KeyParameters
from locker.crypto.ecies import DEFAULT_ALGORITHM, Direction
from locker.storage.keystore import FileSecureStore, KeyHandle

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")


def test_find_missing_key(store: FileSecureStore) -> None:
    assert store.find_key("nobody") is None
    assert store.delete_key("nobody") is False


def test_generate_then_find(store: FileSecureStore) -> None:
    handle = store.generate_key(KeyParameters(identity="alice"))
    assert handle == KeyHandle(identity="alice", curve="SECP256R1", key_size=256)
    assert store.find_key("alice") == handle
    assert store.delete_key("alice") is True
    assert store.find_key("alice") is None


def test_generate_replaces_existing_record(store: FileSecureStore) -> None:
    store.generate_key(KeyParameters(identity="alice"))
    first = store.derive_public_key(store.find_key("alice"))
    store.generate_key(KeyParameters(identity="alice"))
    second = store.derive_public_key(store.find_key("alice"))
    assert first is not None and second is not None
    assert first.point != second.point
    assert len(list(store.paths.keys.glob("*.json"))) == 1


@posix_only
def test_files_are_private(store: FileSecureStore) -> None:
    store.generate_key(KeyParameters(identity="alice"))
    record = store.paths.key_record("alice")
    assert stat.S_IMODE(record.stat().st_mode) == 0o600
    assert stat.S_IMODE(store.paths.device_key.stat().st_mode) == 0o600


@posix_only
def test_loose_device_key_permissions_refused(store: FileSecureStore) -> None:
    handle = store.generate_key(KeyParameters(identity="alice"))
    public = store.derive_public_key(handle)
    blob = store.encrypt_with_public_key(public, DEFAULT_ALGORITHM, b"data")
    os.chmod(store.paths.device_key, 0o644)
    with pytest.raises(StoreError, match="Insecure permissions"):
        store.decrypt_with_private_key(handle, DEFAULT_ALGORITHM, blob)


def test_record_holds_no_plain_private_key(store: FileSecureStore) -> None:
    store.generate_key(KeyParameters(identity="alice"))
    record = json.loads(store.paths.key_record("alice").read_text(encoding="utf-8"))
    assert record["identity"] == "alice"
    assert record["access"] == ["private-key-usage", "current-enrollment", "when-unlocked-this-device-only"]
    assert record["enrollment"] == "enrollment-1"
    assert "PRIVATE KEY" not in json.dumps(record)


def test_rejects_exportable_policy(store: FileSecureStore) -> None:
    params = KeyParameters(identity="alice", policy=AccessPolicy(exportable=True))
    with pytest.raises(StoreError, match="access control"):
        store.generate_key(params)
    assert store.find_key("alice") is None


def test_rejects_hardware_token(store: FileSecureStore) -> None:
    with pytest.raises(StoreError, match="not available"):
        store.generate_key(KeyParameters(identity="alice", token=SECURE_ENCLAVE_TOKEN))


def test_rejects_mismatched_key_size(store: FileSecureStore) -> None:
    with pytest.raises(StoreError, match="does not match"):
        store.generate_key(KeyParameters(identity="alice", key_size=384))


def test_unenrolled_policy_allows_generation_without_gate_state(store_root: Path) -> None:
    store = FileSecureStore(store_root, PresetGate(enrollment=None))
    policy = AccessPolicy(require_current_enrollment=False)
    handle = store.generate_key(KeyParameters(identity="alice", policy=policy))
    public = store.derive_public_key(handle)
    blob = store.encrypt_with_public_key(public, DEFAULT_ALGORITHM, b"data")
    assert store.decrypt_with_private_key(handle, DEFAULT_ALGORITHM, blob) == b"data"


def test_algorithm_direction(store: FileSecureStore) -> None:
    handle = store.generate_key(KeyParameters(identity="alice"))
    public = store.derive_public_key(handle)
    assert store.is_algorithm_supported(public, Direction.ENCRYPT, DEFAULT_ALGORITHM)
    assert not store.is_algorithm_supported(public, Direction.DECRYPT, DEFAULT_ALGORITHM)
    assert store.is_algorithm_supported(handle, Direction.DECRYPT, DEFAULT_ALGORITHM)
    assert not store.is_algorithm_supported(handle, Direction.ENCRYPT, DEFAULT_ALGORITHM)


def test_tampered_wrapped_key(store: FileSecureStore) -> None:
    handle = store.generate_key(KeyParameters(identity="alice"))
    blob = store.encrypt_with_public_key(store.derive_public_key(handle), DEFAULT_ALGORITHM, b"data")
    path = store.paths.key_record("alice")
    record = json.loads(path.read_text(encoding="utf-8"))
    record["nonce"] = record["nonce"][::-1]
    path.write_text(json.dumps(record), encoding="utf-8")
    with pytest.raises(StoreError, match="integrity"):
        store.decrypt_with_private_key(handle, DEFAULT_ALGORITHM, blob)


def test_decrypt_after_delete(store: FileSecureStore) -> None:
    handle = store.generate_key(KeyParameters(identity="alice"))
    blob = store.encrypt_with_public_key(store.derive_public_key(handle), DEFAULT_ALGORITHM, b"data")
    store.delete_key("alice")
    with pytest.raises(StoreError, match="not found"):
        store.decrypt_with_private_key(handle, DEFAULT_ALGORITHM, blob)


def test_corrupt_record_reads_as_missing(store: FileSecureStore) -> None:
    store.generate_key(KeyParameters(identity="alice"))
    store.paths.key_record("alice").write_text("{not json", encoding="utf-8")
    assert store.find_key("alice") is None


def test_record_for_other_identity_ignored(store: FileSecureStore) -> None:
    store.generate_key(KeyParameters(identity="alice"))
    alice = store.paths.key_record("alice")
    bob = store.paths.key_record("bob")
    bob.write_bytes(alice.read_bytes())
    assert store.find_key("bob") is None


@pytest.mark.parametrize(
    "field, value",
    [("key_size", "n/a"), ("key_size", True), ("curve", 7), ("public", None), ("nonce", 12), ("policy", "strict")],
)
def test_mistyped_record_reads_as_missing(store: FileSecureStore, field: str, value: object) -> None:
    store.generate_key(KeyParameters(identity="alice"))
    path = store.paths.key_record("alice")
    record = json.loads(path.read_text(encoding="utf-8"))
    record[field] = value
    path.write_text(json.dumps(record), encoding="utf-8")
    assert store.find_key("alice") is None


def test_record_marks_key_permanent(store: FileSecureStore) -> None:
    store.generate_key(KeyParameters(identity="alice"))
    record = json.loads(store.paths.key_record("alice").read_text(encoding="utf-8"))
    assert record["permanent"] is True


def test_rejects_ephemeral_key(store: FileSecureStore) -> None:
    with pytest.raises(StoreError, match="permanent"):
        store.generate_key(KeyParameters(identity="alice", permanent=False))
    assert store.find_key("alice") is None


def test_concurrent_first_use_shares_device_key(tmp_path: Path) -> None:
    workers = 4
    for attempt in range(25):
        root = tmp_path / f"root{attempt}"
        barrier = threading.Barrier(workers)
        errors: List[BaseException] = []
        blobs: dict = {}

        def first_use(index: int) -> None:
            store = FileSecureStore(root, PresetGate())
            barrier.wait()
            try:
                handle = store.generate_key(KeyParameters(identity=f"id{index}"))
                public = store.derive_public_key(handle)
                blobs[index] = store.encrypt_with_public_key(public, DEFAULT_ALGORITHM, b"x")
            except BaseException as exc:  # collected for the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=first_use, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        reader = FileSecureStore(root, PresetGate())
        for index, blob in blobs.items():
            handle = reader.find_key(f"id{index}")
            assert reader.decrypt_with_private_key(handle, DEFAULT_ALGORITHM, blob) == b"x"
        assert not [p for p in root.iterdir() if p.name.startswith(".")]


def test_empty_device_key_is_replaced(store: FileSecureStore) -> None:
    store.paths.ensure()
    store.paths.device_key.write_bytes(b"")
    os.chmod(store.paths.device_key, 0o600)
    handle = store.generate_key(KeyParameters(identity="alice"))
    blob = store.encrypt_with_public_key(store.derive_public_key(handle), DEFAULT_ALGORITHM, b"data")
    assert store.decrypt_with_private_key(handle, DEFAULT_ALGORITHM, blob) == b"data"
    assert len(store.paths.device_key.read_bytes()) == 32


def test_truncated_device_key_is_refused(store: FileSecureStore) -> None:
    store.paths.ensure()
    store.paths.device_key.write_bytes(b"short")
    os.chmod(store.paths.device_key, 0o600)
    with pytest.raises(StoreError, match="corrupted"):
        store.generate_key(KeyParameters(identity="alice"))
