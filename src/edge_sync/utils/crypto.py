"""Encoding and key-derivation helpers shared by the secure envelope."""

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

_HKDF_SALT = b"edge-sync-envelope-v1"


def stable_json(value: Any) -> bytes:
    """Serialize deterministically so both sides hash the same bytes."""
    return json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")


def b64encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode_str(value: str) -> bytes:
    """Strict base64 decode.

    Raises:
        ValueError: If the value is not valid base64
    """
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64 data: {e}") from e


def derive_key(secret: str, purpose: str, length: int = 32) -> bytes:
    """Derive a fixed-length key from a shared secret.

    Args:
        secret: Pre-shared secret
        purpose: Context label; different labels give independent keys
        length: Key size in bytes

    Returns:
        Derived key bytes
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=_HKDF_SALT,
        info=purpose.encode("utf-8"),
    )
    return hkdf.derive(secret.encode("utf-8"))


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha256).digest()


def hmac_sha256_hex(key: bytes, data: bytes) -> str:
    return hmac_sha256(key, data).hex()


def constant_time_equals(expected: str, actual: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))
