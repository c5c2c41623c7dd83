# Key lifecycle and ECIES encryption for a single named identity.
from __future__ import annotations

from typing import Union

import structlog

from ..auth.gate import gate_from_config
from ..config import AppConfig
from ..core.exceptions import (
    AuthenticationError,
    DecryptionError,
    EciesError,
    InvalidIdentityError,
    KeyGenerationError,
    MalformedInputError,
    PublicKeyDerivationError,
    StoreError,
    UnknownCryptoError,
    UnsupportedOperationError,
)
from ..core.policy import AccessPolicy, KeyParameters
from ..crypto.ecies import Direction
from ..storage.keystore import FileSecureStore, KeyHandle, SecureStore
from ..utils import b64d, b64e

log = structlog.get_logger(__name__)


class KeyVault:
    """Owns one identity's keypair in a secure store.

    The handle is re-resolved on every call rather than cached, so several
    vaults bound to the same identity (in this process or another) always see
    the store's current state. The key is created lazily by the first
    :meth:`encrypt` or :meth:`decrypt` and destroyed only by :meth:`remove_key`.

    :meth:`decrypt` may block on an authentication prompt; run it through
    :class:`~locker.services.dispatcher.VaultDispatcher` when the caller must
    stay responsive.
    """

    def __init__(
        self,
        identity: str,
        *,
        store: SecureStore | None = None,
        config: AppConfig | None = None,
    ) -> None:
        if not identity:
            raise InvalidIdentityError("Unacceptable name")
        self._identity = identity
        self._config = config or AppConfig()
        self._store = store or FileSecureStore(self._config.store.root, gate_from_config(self._config))
        self._algorithm = self._config.keys.algorithm

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def store(self) -> SecureStore:
        return self._store

    def has_key(self) -> bool:
        return self._store.find_key(self._identity) is not None

    def remove_key(self) -> bool:
        removed = self._store.delete_key(self._identity)
        log.info("vault.remove_key", identity=self._identity, removed=removed)
        return removed

    def ensure_private_key(self) -> KeyHandle:
        existing = self._store.find_key(self._identity)
        if existing is not None:
            log.debug("vault.key_found", identity=self._identity)
            return existing
        params = self._new_key_parameters()
        try:
            return self._store.generate_key(params)
        except StoreError as exc:
            log.error("vault.key_generation_failed", identity=self._identity, error=str(exc))
            raise KeyGenerationError(cause=exc) from exc

    def encrypt(self, plaintext: str) -> str:
        handle = self.ensure_private_key()
        public = self._store.derive_public_key(handle)
        if public is None:
            raise PublicKeyDerivationError()
        if not self._store.is_algorithm_supported(public, Direction.ENCRYPT, self._algorithm):
            raise UnsupportedOperationError("Encryption not supported")
        try:
            blob = self._store.encrypt_with_public_key(public, self._algorithm, plaintext.encode("utf-8"))
        except (StoreError, EciesError, ValueError) as exc:
            raise UnknownCryptoError(cause=exc) from exc
        log.info("vault.encrypted", identity=self._identity, size=len(blob))
        return b64e(blob)

    def decrypt(self, ciphertext: Union[str, bytes]) -> str:
        data = self._decode(ciphertext)
        handle = self.ensure_private_key()
        if not self._store.is_algorithm_supported(handle, Direction.DECRYPT, self._algorithm):
            raise UnsupportedOperationError("Decryption not supported")
        try:
            plaintext = self._store.decrypt_with_private_key(handle, self._algorithm, data)
        except (AuthenticationError, EciesError, StoreError) as exc:
            log.warning("vault.decrypt_failed", identity=self._identity, reason=type(exc).__name__)
            raise DecryptionError(cause=exc) from exc
        log.info("vault.decrypted", identity=self._identity)
        return plaintext.decode("utf-8", errors="replace")

    def _new_key_parameters(self) -> KeyParameters:
        keys = self._config.keys
        policy = AccessPolicy(require_current_enrollment=True, when_unlocked_this_device_only=True)
        return KeyParameters(
            identity=self._identity,
            curve=keys.curve,
            key_size=keys.key_size,
            token=keys.token,
            permanent=True,
            policy=policy,
        )

    @staticmethod
    def _decode(ciphertext: Union[str, bytes]) -> bytes:
        if isinstance(ciphertext, bytes):
            return ciphertext
        try:
            data = b64d(ciphertext)
        except ValueError as exc:
            raise MalformedInputError(cause=exc) from exc
        if not data:
            raise MalformedInputError("Ciphertext is empty")
        return data

    def __repr__(self) -> str:
        return f"KeyVault(identity={self._identity!r})"


__all__ = ["KeyVault"]
