"""Utility modules for the edge sync core."""

from .crypto import (
    b64decode_str,
    b64encode_bytes,
    constant_time_equals,
    derive_key,
    hmac_sha256,
    hmac_sha256_hex,
    stable_json,
)

__all__ = [
    "b64decode_str",
    "b64encode_bytes",
    "constant_time_equals",
    "derive_key",
    "hmac_sha256",
    "hmac_sha256_hex",
    "stable_json",
]
