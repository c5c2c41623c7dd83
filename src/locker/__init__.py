"""Locker: encrypt short strings under an authentication-gated private key."""
from __future__ import annotations

from .core.exceptions import (
    CryptoError,
    DecryptionError,
    ErrorKind,
    KeyGenerationError,
    LockerError,
    MalformedInputError,
    PublicKeyDerivationError,
    UnknownCryptoError,
    UnsupportedOperationError,
)
from .services.dispatcher import Outcome, VaultDispatcher
from .services.vault import KeyVault
from .version import __version__

__all__ = [
    "CryptoError",
    "DecryptionError",
    "ErrorKind",
    "KeyGenerationError",
    "KeyVault",
    "LockerError",
    "MalformedInputError",
    "Outcome",
    "PublicKeyDerivationError",
    "UnknownCryptoError",
    "UnsupportedOperationError",
    "VaultDispatcher",
    "__version__",
]
