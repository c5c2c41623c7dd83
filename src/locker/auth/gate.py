# Authentication gates consulted by the secure store before private-key use.
from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from getpass import getpass
from pathlib import Path
from typing import Callable, Optional, Protocol, runtime_checkable

import structlog
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..config import AppConfig, KdfConfig
from ..core.exceptions import AuthenticationError
from ..utils import b64d, b64e, constant_time_compare, write_private_file

log = structlog.get_logger(__name__)

MIN_PIN_LENGTH = 4


@runtime_checkable
class AuthenticationGate(Protocol):
    def is_device_unlocked(self) -> bool: ...

    def enrollment_state(self) -> Optional[str]: ...

    def authenticate(self, reason: str) -> None: ...


@dataclass
class PresetGate:
    """Non-interactive gate with a fixed answer.

    ``allow=False`` behaves like a user who dismisses every prompt.
    """

    allow: bool = True
    enrollment: Optional[str] = "preset"
    unlocked: bool = True
    prompts: int = 0

    def is_device_unlocked(self) -> bool:
        return self.unlocked

    def enrollment_state(self) -> Optional[str]:
        return self.enrollment

    def authenticate(self, reason: str) -> None:
        self.prompts += 1
        if not self.allow:
            raise AuthenticationError("Authentication declined")


class PinGate:
    """PIN-backed gate storing a scrypt verifier next to the keystore.

    Re-enrolling changes :meth:`enrollment_state`, so keys created under the
    previous PIN can no longer be used.
    """

    def __init__(
        self,
        path: Path,
        *,
        kdf: KdfConfig | None = None,
        max_attempts: int = 3,
        prompt: Callable[[str], str] = getpass,
    ) -> None:
        self._path = path
        self._kdf = kdf or KdfConfig()
        self._max_attempts = max_attempts
        self._prompt = prompt

    @property
    def path(self) -> Path:
        return self._path

    def is_enrolled(self) -> bool:
        return self._load_verifier() is not None

    def is_device_unlocked(self) -> bool:
        return True

    def enrollment_state(self) -> Optional[str]:
        verifier = self._load_verifier()
        if verifier is None:
            return None
        digest = hashlib.sha256(verifier.salt + verifier.digest)
        return digest.hexdigest()[:32]

    def enroll(self, pin: str) -> None:
        if len(pin) < MIN_PIN_LENGTH:
            raise ValueError(f"PIN must be at least {MIN_PIN_LENGTH} characters")
        salt = os.urandom(self._kdf.salt_length)
        payload = {
            "v": 1,
            "alg": "scrypt",
            "n": self._kdf.n,
            "r": self._kdf.r,
            "p": self._kdf.p,
            "length": self._kdf.length,
            "salt": b64e(salt),
            "hash": b64e(self._derive(pin, salt, self._kdf.n, self._kdf.r, self._kdf.p, self._kdf.length)),
        }
        write_private_file(self._path, json.dumps(payload).encode("utf-8"))
        log.info("auth.pin_enrolled", path=str(self._path))

    def authenticate(self, reason: str) -> None:
        verifier = self._load_verifier()
        if verifier is None:
            raise AuthenticationError("No PIN enrolled")
        for attempt in range(1, self._max_attempts + 1):
            try:
                pin = self._prompt(f"{reason}. Enter PIN: ")
            except (EOFError, KeyboardInterrupt) as exc:
                raise AuthenticationError("Authentication cancelled") from exc
            if not pin:
                raise AuthenticationError("Authentication cancelled")
            try:
                matched = self._verify(pin, verifier)
            except (ValueError, MemoryError) as exc:
                raise AuthenticationError(f"PIN verifier is unusable: {exc}") from exc
            if matched:
                log.info("auth.succeeded", attempt=attempt)
                return
            log.warning("auth.failed", attempt=attempt)
        raise AuthenticationError("Too many failed attempts")

    def _verify(self, pin: str, verifier: _Verifier) -> bool:
        candidate = self._derive(pin, verifier.salt, verifier.n, verifier.r, verifier.p, verifier.length)
        return constant_time_compare(candidate, verifier.digest)

    @staticmethod
    def _derive(pin: str, salt: bytes, n: int, r: int, p: int, length: int) -> bytes:
        kdf = Scrypt(salt=salt, length=length, n=n, r=r, p=p)
        return kdf.derive(pin.encode("utf-8"))

    def _load_verifier(self) -> Optional[_Verifier]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            log.warning("auth.verifier_unreadable", path=str(self._path), error=str(exc))
            return None
        try:
            return _Verifier.from_dict(data)
        except ValueError as exc:
            log.warning("auth.verifier_unreadable", path=str(self._path), error=str(exc))
            return None


@dataclass(frozen=True)
class _Verifier:
    salt: bytes
    digest: bytes
    n: int
    r: int
    p: int
    length: int

    @classmethod
    def from_dict(cls, data: object) -> "_Verifier":
        if not isinstance(data, dict):
            raise ValueError("verifier is not an object")
        params = {}
        for name in ("n", "r", "p", "length"):
            value = data.get(name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"field {name!r} must be a positive integer")
            params[name] = value
        if params["n"] < 2 or params["n"] & (params["n"] - 1):
            raise ValueError("field 'n' must be a power of two")
        salt, digest = data.get("salt"), data.get("hash")
        if not isinstance(salt, str) or not isinstance(digest, str):
            raise ValueError("fields 'salt' and 'hash' must be base64 strings")
        verifier = cls(salt=b64d(salt), digest=b64d(digest), **params)
        if not verifier.salt or len(verifier.digest) != verifier.length:
            raise ValueError("salt or hash has the wrong length")
        return verifier


def gate_from_config(config: AppConfig) -> AuthenticationGate:
    kind = config.auth.gate
    if kind == "allow":
        return PresetGate(allow=True)
    if kind == "deny":
        return PresetGate(allow=False)
    return PinGate(config.pin_file(), kdf=config.auth.kdf, max_attempts=config.auth.max_attempts)


__all__ = ["AuthenticationGate", "MIN_PIN_LENGTH", "PinGate", "PresetGate", "gate_from_config"]
