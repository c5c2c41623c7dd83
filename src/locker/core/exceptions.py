"""Central exception hierarchy"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    KEY_GENERATION = "key_generation"
    PUBLIC_KEY_DERIVATION = "public_key_derivation"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    MALFORMED_INPUT = "malformed_input"
    DECRYPTION = "decryption"
    UNKNOWN = "unknown"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    ErrorKind.KEY_GENERATION: "Unable to generate private key",
    ErrorKind.PUBLIC_KEY_DERIVATION: "Unable to generate public key",
    ErrorKind.UNSUPPORTED_OPERATION: "Operation not supported",
    ErrorKind.MALFORMED_INPUT: "Unacceptable data to decrypt",
    ErrorKind.DECRYPTION: "Unable to decrypt data",
    ErrorKind.UNKNOWN: "Unknown error",
}


class LockerError(Exception):
    """Base exception for all failures"""


class ConfigError(LockerError):
    """Raised when a configuration file cannot be parsed or validated"""


class InvalidIdentityError(LockerError, ValueError):
    """Raised when a vault is bound to an unusable identity"""


class StoreError(LockerError):
    """Raised by a secure store when it cannot complete a request"""


class AuthenticationError(LockerError):
    """Raised when the user declines, cancels or fails authentication"""


class EciesError(LockerError):
    """Raised for malformed or unauthenticated ECIES payloads"""


class CryptoError(LockerError):
    """Failure surfaced by KeyVault operations.

    Each subclass pins an :class:`ErrorKind`. ``description`` is the
    human-readable text a front end shows verbatim; the underlying cause, if
    any, is chained via ``__cause__`` and kept on ``cause``.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, detail: str | None = None, *, cause: BaseException | None = None) -> None:
        self.detail = detail
        self.cause = cause
        super().__init__(self.description)
        if cause is not None:
            self.__cause__ = cause

    @property
    def description(self) -> str:
        base = self.kind.description
        detail = self.detail
        if detail is None and self.cause is not None:
            detail = str(self.cause) or type(self.cause).__name__
        return f"{base}: {detail}" if detail else base


class KeyGenerationError(CryptoError):
    kind = ErrorKind.KEY_GENERATION


class PublicKeyDerivationError(CryptoError):
    kind = ErrorKind.PUBLIC_KEY_DERIVATION


class UnsupportedOperationError(CryptoError):
    """The detail names the refused direction and stands alone as the text"""

    kind = ErrorKind.UNSUPPORTED_OPERATION

    @property
    def description(self) -> str:
        return self.detail or self.kind.description


class MalformedInputError(CryptoError):
    kind = ErrorKind.MALFORMED_INPUT


class DecryptionError(CryptoError):
    kind = ErrorKind.DECRYPTION


class UnknownCryptoError(CryptoError):
    kind = ErrorKind.UNKNOWN


__all__ = [
    "AuthenticationError",
    "ConfigError",
    "CryptoError",
    "DecryptionError",
    "EciesError",
    "ErrorKind",
    "InvalidIdentityError",
    "KeyGenerationError",
    "LockerError",
    "MalformedInputError",
    "PublicKeyDerivationError",
    "StoreError",
    "UnknownCryptoError",
    "UnsupportedOperationError",
]
