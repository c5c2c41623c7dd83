# Manage paths and create directories as needed.
from __future__ import annotations

import hashlib
from pathlib import Path


class PathResolver:
    """Compute and ensure paths for the keystore"""

    def __init__(self, root: Path):
        self.root = root
        self.keys = self.root / "keys"
        self.device_key = self.root / "device.key"

    def ensure(self) -> None:
        self.keys.mkdir(parents=True, exist_ok=True)
        self.root.chmod(0o700)

    def key_record(self, identity: str) -> Path:
        # Hashing keeps arbitrary identities filesystem-safe and one file per identity.
        digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:32]
        return self.keys / f"{digest}.json"
