from __future__ import annotations

"""ECIES helpers: ephemeral-static ECDH + X9.63 KDF + AES-GCM.

The blob layout is ``ephemeral point (uncompressed) || ciphertext || tag`` so a
payload carries everything the private-key holder needs. The variable-IV
variant draws the GCM IV from the KDF output; the fixed variant uses a zero IV,
which is safe because every message uses a fresh ephemeral key.
"""

from enum import Enum
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.x963kdf import X963KDF

from ..core.exceptions import EciesError

GCM_IV_SIZE: Final[int] = 16
GCM_TAG_SIZE: Final[int] = 16

CURVES: Final[dict[str, type[ec.EllipticCurve]]] = {
    "SECP256R1": ec.SECP256R1,
    "SECP384R1": ec.SECP384R1,
    "SECP521R1": ec.SECP521R1,
}


class Direction(str, Enum):
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


class EciesAlgorithm(str, Enum):
    COFACTOR_VARIABLE_IV_X963_SHA256_AESGCM = "ecies-cofactor-variable-iv-x963-sha256-aesgcm"
    COFACTOR_X963_SHA256_AESGCM = "ecies-cofactor-x963-sha256-aesgcm"

    @property
    def variable_iv(self) -> bool:
        return self is EciesAlgorithm.COFACTOR_VARIABLE_IV_X963_SHA256_AESGCM

    def supports(self, curve: str, direction: Direction) -> bool:
        return curve.upper() in CURVES and direction in (Direction.ENCRYPT, Direction.DECRYPT)


DEFAULT_ALGORITHM: Final[EciesAlgorithm] = EciesAlgorithm.COFACTOR_VARIABLE_IV_X963_SHA256_AESGCM


def curve_for(name: str) -> ec.EllipticCurve:
    try:
        return CURVES[name.upper()]()
    except KeyError as exc:
        raise EciesError(f"Unsupported curve: {name}") from exc


def point_size(curve: ec.EllipticCurve) -> int:
    """Length of an uncompressed SEC1 point on ``curve``"""
    return 1 + 2 * ((curve.key_size + 7) // 8)


def encode_point(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )


def _aes_key_size(curve: ec.EllipticCurve) -> int:
    return 16 if curve.key_size <= 256 else 32


def _derive(
    shared: bytes, ephemeral_point: bytes, curve: ec.EllipticCurve, algorithm: EciesAlgorithm
) -> tuple[bytes, bytes]:
    key_len = _aes_key_size(curve)
    length = key_len + (GCM_IV_SIZE if algorithm.variable_iv else 0)
    material = X963KDF(algorithm=hashes.SHA256(), length=length, sharedinfo=ephemeral_point).derive(shared)
    key = material[:key_len]
    iv = material[key_len:] if algorithm.variable_iv else bytes(GCM_IV_SIZE)
    return key, iv


def seal(
    recipient: ec.EllipticCurvePublicKey,
    plaintext: bytes,
    algorithm: EciesAlgorithm = DEFAULT_ALGORITHM,
) -> bytes:
    curve = recipient.curve
    ephemeral = ec.generate_private_key(curve)
    ephemeral_point = encode_point(ephemeral.public_key())
    # Cofactor is 1 on the NIST prime curves, so plain ECDH is the cofactor variant.
    shared = ephemeral.exchange(ec.ECDH(), recipient)
    key, iv = _derive(shared, ephemeral_point, curve, algorithm)
    return ephemeral_point + AESGCM(key).encrypt(iv, plaintext, None)


def open_sealed(
    recipient: ec.EllipticCurvePrivateKey,
    blob: bytes,
    algorithm: EciesAlgorithm = DEFAULT_ALGORITHM,
) -> bytes:
    curve = recipient.curve
    size = point_size(curve)
    if len(blob) < size + GCM_TAG_SIZE:
        raise EciesError("Ciphertext is too short")
    ephemeral_point, body = blob[:size], blob[size:]
    try:
        ephemeral = ec.EllipticCurvePublicKey.from_encoded_point(curve, ephemeral_point)
    except ValueError as exc:
        raise EciesError("Invalid ephemeral public key") from exc
    shared = recipient.exchange(ec.ECDH(), ephemeral)
    key, iv = _derive(shared, ephemeral_point, curve, algorithm)
    try:
        return AESGCM(key).decrypt(iv, body, None)
    except InvalidTag as exc:
        raise EciesError("AEAD tag verification failed") from exc


__all__ = [
    "CURVES",
    "DEFAULT_ALGORITHM",
    "Direction",
    "EciesAlgorithm",
    "curve_for",
    "encode_point",
    "open_sealed",
    "point_size",
    "seal",
]
