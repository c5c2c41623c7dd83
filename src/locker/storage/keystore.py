from __future__ import annotations

import contextlib
import json
import os
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Protocol, Union

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..auth.gate import AuthenticationGate
from ..core.exceptions import AuthenticationError, EciesError, StoreError
from ..core.policy import SOFTWARE_TOKEN, AccessPolicy, KeyParameters
from ..crypto.ecies import (
    CURVES,
    Direction,
    EciesAlgorithm,
    curve_for,
    encode_point,
    open_sealed,
    seal,
)
from ..utils import assert_private, b64d, b64e, publish_private_file, write_private_file
from .paths import PathResolver

log = structlog.get_logger(__name__)

RECORD_VERSION = 1
DEVICE_KEY_SIZE = 32
WRAP_NONCE_SIZE = 12

_RECORD_FIELDS = {"curve": str, "key_size": int, "public": str, "nonce": str, "wrapped": str}


@dataclass(frozen=True, slots=True)
class KeyHandle:
    """Reference to a private key held by a store; carries no key material"""

    identity: str
    curve: str
    key_size: int


@dataclass(frozen=True, slots=True)
class PublicKeyHandle:
    identity: str
    curve: str
    point: bytes = field(repr=False)


AnyHandle = Union[KeyHandle, PublicKeyHandle]


class SecureStore(Protocol):
    """Capability a platform keystore provides to KeyVault"""

    def generate_key(self, params: KeyParameters) -> KeyHandle: ...

    def find_key(self, identity: str) -> Optional[KeyHandle]: ...

    def delete_key(self, identity: str) -> bool: ...

    def derive_public_key(self, handle: KeyHandle) -> Optional[PublicKeyHandle]: ...

    def is_algorithm_supported(
        self, handle: AnyHandle, direction: Direction, algorithm: EciesAlgorithm
    ) -> bool: ...

    def encrypt_with_public_key(
        self, handle: PublicKeyHandle, algorithm: EciesAlgorithm, data: bytes
    ) -> bytes: ...

    def decrypt_with_private_key(
        self, handle: KeyHandle, algorithm: EciesAlgorithm, data: bytes
    ) -> bytes: ...


class FileSecureStore:
    """Software keystore under a private directory.

    Layout:
      - device.key                 32-byte wrapping key (0o600)
      - keys/<sha256(identity)>.json  {v, identity, curve, key_size, token,
                                       permanent, created_at, policy, access, enrollment,
                                       public, nonce, wrapped}

    Private keys are PKCS#8 DER sealed with AES-256-GCM under the device key,
    the identity bound as associated data. They are only unwrapped inside
    :meth:`decrypt_with_private_key`, after the gate has been satisfied.
    """

    supported_tokens = frozenset({SOFTWARE_TOKEN})

    def __init__(
        self,
        root: Path,
        gate: AuthenticationGate,
        *,
        algorithms: Iterable[EciesAlgorithm] = tuple(EciesAlgorithm),
    ) -> None:
        self.paths = PathResolver(root)
        self._gate = gate
        self._algorithms = frozenset(algorithms)

    @property
    def gate(self) -> AuthenticationGate:
        return self._gate

    # ----- Key lifecycle -----
    def generate_key(self, params: KeyParameters) -> KeyHandle:
        curve = self._check_parameters(params)
        try:
            access = params.policy.access_flags()
        except ValueError as exc:
            raise StoreError(f"Unable to create access control: {exc}") from exc

        enrollment = None
        if params.policy.require_current_enrollment:
            enrollment = self._gate.enrollment_state()
            if enrollment is None:
                raise StoreError("No authentication credential is enrolled")

        private = ec.generate_private_key(curve)
        der = private.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        try:
            self.paths.ensure()
            nonce = os.urandom(WRAP_NONCE_SIZE)
            wrapped = AESGCM(self._device_key()).encrypt(nonce, der, _aad(params.identity))
            record = {
                "v": RECORD_VERSION,
                "identity": params.identity,
                "curve": params.curve.upper(),
                "key_size": params.key_size,
                "token": params.token,
                "permanent": params.permanent,
                "created_at": int(time.time()),
                "policy": params.policy.as_dict(),
                "access": access,
                "enrollment": enrollment,
                "public": b64e(encode_point(private.public_key())),
                "nonce": b64e(nonce),
                "wrapped": b64e(wrapped),
            }
            write_private_file(
                self.paths.key_record(params.identity),
                json.dumps(record, indent=2).encode("utf-8"),
            )
        except OSError as exc:
            raise StoreError(f"Unable to persist key: {exc}") from exc
        log.info("key.generated", identity=params.identity, curve=record["curve"], token=params.token)
        return KeyHandle(identity=params.identity, curve=record["curve"], key_size=params.key_size)

    def find_key(self, identity: str) -> Optional[KeyHandle]:
        record = self._read_record(identity)
        if record is None:
            return None
        return KeyHandle(identity=identity, curve=record["curve"], key_size=record["key_size"])

    def delete_key(self, identity: str) -> bool:
        try:
            self.paths.key_record(identity).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            log.warning("key.delete_failed", identity=identity, error=str(exc))
            return False
        log.info("key.removed", identity=identity)
        return True

    # ----- Key use -----
    def derive_public_key(self, handle: KeyHandle) -> Optional[PublicKeyHandle]:
        record = self._read_record(handle.identity)
        if record is None:
            return None
        try:
            point = b64d(record["public"])
            ec.EllipticCurvePublicKey.from_encoded_point(curve_for(record["curve"]), point)
        except (ValueError, EciesError) as exc:
            log.warning("key.public_unreadable", identity=handle.identity, error=str(exc))
            return None
        return PublicKeyHandle(identity=handle.identity, curve=record["curve"], point=point)

    def is_algorithm_supported(
        self, handle: AnyHandle, direction: Direction, algorithm: EciesAlgorithm
    ) -> bool:
        if algorithm not in self._algorithms:
            return False
        if isinstance(handle, PublicKeyHandle):
            allowed = Direction.ENCRYPT
        else:
            allowed = Direction.DECRYPT
        return direction == allowed and algorithm.supports(handle.curve, direction)

    def encrypt_with_public_key(
        self, handle: PublicKeyHandle, algorithm: EciesAlgorithm, data: bytes
    ) -> bytes:
        try:
            public = ec.EllipticCurvePublicKey.from_encoded_point(curve_for(handle.curve), handle.point)
        except (ValueError, EciesError) as exc:
            raise StoreError(f"Invalid public key: {exc}") from exc
        return seal(public, data, algorithm)

    def decrypt_with_private_key(
        self, handle: KeyHandle, algorithm: EciesAlgorithm, data: bytes
    ) -> bytes:
        record = self._read_record(handle.identity)
        if record is None:
            raise StoreError("Private key not found")
        policy = AccessPolicy.from_dict(record.get("policy", {}))
        if policy.when_unlocked_this_device_only and not self._gate.is_device_unlocked():
            raise AuthenticationError("Device is locked")
        if policy.require_current_enrollment and self._gate.enrollment_state() != record.get("enrollment"):
            raise AuthenticationError("Enrollment changed since key creation; key is invalidated")

        # Blocks until the user answers the prompt.
        self._gate.authenticate(f"Unlock key {handle.identity!r}")

        try:
            der = AESGCM(self._device_key()).decrypt(
                b64d(record["nonce"]), b64d(record["wrapped"]), _aad(handle.identity)
            )
        except (InvalidTag, ValueError) as exc:
            raise StoreError("Stored private key failed integrity check") from exc
        private = serialization.load_der_private_key(der, password=None)
        if not isinstance(private, ec.EllipticCurvePrivateKey):
            raise StoreError("Expected EC private key")
        return open_sealed(private, data, algorithm)

    # ----- Helpers -----
    def _check_parameters(self, params: KeyParameters) -> ec.EllipticCurve:
        if params.token not in self.supported_tokens:
            raise StoreError(f"Key token {params.token!r} is not available on this device")
        if not params.permanent:
            raise StoreError("Only permanent keys can be held by this store")
        if params.curve.upper() not in CURVES:
            raise StoreError(f"Unsupported curve {params.curve!r}")
        curve = curve_for(params.curve)
        if params.key_size != curve.key_size:
            raise StoreError(f"Key size {params.key_size} does not match curve {curve.name}")
        return curve

    def _device_key(self) -> bytes:
        path = self.paths.device_key
        for _ in range(2):
            key = self._load_device_key(path)
            if key is not None:
                return key
            candidate = os.urandom(DEVICE_KEY_SIZE)
            try:
                published = publish_private_file(path, candidate)
            except OSError as exc:
                raise StoreError(f"Unable to create device key: {exc}") from exc
            if published:
                log.info("store.device_key_created", path=str(path))
                return candidate
        raise StoreError(f"Device key {path} could not be created")

    def _load_device_key(self, path: Path) -> Optional[bytes]:
        try:
            assert_private(path)
            key = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(str(exc)) from exc
        if not key:
            # An interrupted creation; no key was ever wrapped under it.
            self._discard_empty_device_key(path)
            return None
        if len(key) != DEVICE_KEY_SIZE:
            raise StoreError(f"Device key {path} is corrupted")
        return key

    @staticmethod
    def _discard_empty_device_key(path: Path) -> None:
        stale = path.with_name(f".{path.name}.{secrets.token_hex(8)}.stale")
        try:
            os.rename(path, stale)
        except FileNotFoundError:
            return
        try:
            if stale.stat().st_size:
                # Another instance published a key since our read; put it back.
                with contextlib.suppress(FileExistsError):
                    os.link(stale, path)
                return
            log.warning("store.device_key_recovered", path=str(path))
        finally:
            stale.unlink()

    def _read_record(self, identity: str) -> Optional[dict]:
        path = self.paths.key_record(identity)
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            log.warning("key.record_unreadable", identity=identity, error=str(exc))
            return None
        problem = _record_problem(record, identity)
        if problem is not None:
            log.warning("key.record_unreadable", identity=identity, error=problem)
            return None
        return record


def _record_problem(record: object, identity: str) -> Optional[str]:
    if not isinstance(record, dict):
        return "record is not an object"
    if record.get("v") != RECORD_VERSION:
        return "unknown record version"
    if record.get("identity") != identity:
        return "record belongs to another identity"
    for name, kind in _RECORD_FIELDS.items():
        value = record.get(name)
        if not isinstance(value, kind) or isinstance(value, bool):
            return f"field {name!r} is missing or not {kind.__name__}"
    if record["curve"].upper() not in CURVES:
        return f"unknown curve {record['curve']!r}"
    if not isinstance(record.get("policy", {}), dict):
        return "field 'policy' is not an object"
    if not isinstance(record.get("enrollment"), (str, type(None))):
        return "field 'enrollment' is not a string"
    return None


def _aad(identity: str) -> bytes:
    return b"locker-key:" + identity.encode("utf-8")


__all__ = ["AnyHandle", "FileSecureStore", "KeyHandle", "PublicKeyHandle", "SecureStore"]
