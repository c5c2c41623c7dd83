from __future__ import annotations

from pathlib import Path

import pytest

from locker.auth.gate import PresetGate
from locker.config import AppConfig, StoreConfig
from locker.services.vault import KeyVault
from locker.storage.keystore import FileSecureStore


@pytest.fixture
def gate() -> PresetGate:
    return PresetGate(allow=True, enrollment="enrollment-1")


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def store(store_root: Path, gate: PresetGate) -> FileSecureStore:
    return FileSecureStore(store_root, gate)


@pytest.fixture
def config(store_root: Path) -> AppConfig:
    return AppConfig(store=StoreConfig(root=store_root))


@pytest.fixture
def vault(store: FileSecureStore, config: AppConfig) -> KeyVault:
    return KeyVault("SecretMessage", store=store, config=config)
