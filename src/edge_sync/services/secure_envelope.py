"""Secure envelope protocol for edge-to-central transport.

A batch of sync events travels as a SecureSyncPackage:

- token: HS256 JWT binding the package to the sending establishment (1 h)
- data: base64(key_check[8] || gcm_nonce[12] || AES-256-GCM ciphertext+tag
  || seal[32]) of the serialized SyncPayload, where seal is an HMAC-SHA256
  over everything before it under a key derived from the token secret
- hash: HMAC-SHA256 over the plaintext event list

The seal is checked first, so any altered byte reads as tampering. Only an
intact blob whose key check differs is reported as a key-rotation mismatch.

The payload timestamp bounds replay: a package older than the staleness
window is rejected even with a valid token and hash, so no nonce storage is
needed on the receiving side.
"""

import logging
import os
import secrets
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import jwt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import ValidationError

from edge_sync.config import Settings
from edge_sync.dto.wire import SecureSyncPackage, SyncPayload
from edge_sync.entities import SyncEventEntity
from edge_sync.errors import EnvelopeError
from edge_sync.utils import (
    b64decode_str,
    b64encode_bytes,
    constant_time_equals,
    derive_key,
    hmac_sha256,
    hmac_sha256_hex,
    stable_json,
)

logger = logging.getLogger(__name__)

TOKEN_TYPE = "local-system"
_JWT_ALGORITHM = "HS256"
_KEY_CHECK_SIZE = 8
_GCM_NONCE_SIZE = 12
_GCM_TAG_SIZE = 16
_SEAL_SIZE = 32


class EnvelopeRejection(str, Enum):
    """Why a sync package was refused."""

    INVALID_TOKEN = "Invalid token"
    TOKEN_EXPIRED = "Token expired"
    ESTABLISHMENT_MISMATCH = "Token establishment ID mismatch"
    MALFORMED_PACKAGE = "Malformed package data"
    KEY_MISMATCH = "Encryption key mismatch"
    HASH_MISMATCH = "Data hash mismatch"
    STALE_PACKAGE = "Package too old (possible replay attack)"
    FUTURE_PACKAGE = "Package timestamp is in the future"
    INVALID_NONCE = "Invalid nonce"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a sync package.

    Attributes:
        is_valid: True only if every check passed
        payload: Decrypted payload, set only when valid
        error: Rejection reason, set only when invalid
        detail: Extra context for logs (never shown to the sender)
    """

    is_valid: bool
    payload: SyncPayload | None = None
    error: EnvelopeRejection | None = None
    detail: str | None = None

    @classmethod
    def accept(cls, payload: SyncPayload) -> "ValidationResult":
        return cls(is_valid=True, payload=payload)

    @classmethod
    def reject(cls, error: EnvelopeRejection, detail: str | None = None) -> "ValidationResult":
        return cls(is_valid=False, error=error, detail=detail)


@dataclass(frozen=True)
class SyncSecurityConfig:
    """Pre-shared secrets and protocol windows, loaded once per process.

    Attributes:
        jwt_secret: Shared token signing secret
        local_system_secret: Secret this node encrypts outgoing packages under
        central_system_secret: Secret incoming packages are decrypted under
        token_ttl_seconds: Token validity window
        max_package_age_seconds: Staleness window for replay rejection
        max_clock_skew_seconds: How far in the future a payload may be dated
        nonce_bytes: Random bytes in each payload nonce (minimum accepted length)
    """

    jwt_secret: str
    local_system_secret: str
    central_system_secret: str
    token_ttl_seconds: int = 3600
    max_package_age_seconds: float = 300.0
    max_clock_skew_seconds: float = 300.0
    nonce_bytes: int = 16

    def __post_init__(self) -> None:
        for name in ("jwt_secret", "local_system_secret", "central_system_secret"):
            if not getattr(self, name):
                raise ValueError(f"{name.upper()} must be set for the secure envelope")
        if self.nonce_bytes < 16:
            raise ValueError("nonce_bytes must be at least 16")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncSecurityConfig":
        return cls(
            jwt_secret=settings.sync_jwt_secret,
            local_system_secret=settings.local_system_secret,
            central_system_secret=settings.central_system_secret,
        )


class _SealingKey:
    """AES-GCM key plus the short fingerprint written in front of each blob."""

    def __init__(self, secret: str) -> None:
        self.key = derive_key(secret, "edge-sync payload encryption")
        self.check = derive_key(secret, "edge-sync key check", length=_KEY_CHECK_SIZE)


class SecureEnvelope:
    """Builds and validates SecureSyncPackages.

    Example:
        ```python
        envelope = SecureEnvelope(SyncSecurityConfig.from_settings(settings))
        package = envelope.create_secure_sync_package(events, "est-1")
        result = envelope.validate_and_process_sync_package(package, "est-1")
        if not result.is_valid:
            print(result.error.value)
        ```
    """

    def __init__(
        self,
        config: SyncSecurityConfig,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._clock = clock or time.time
        self._local = _SealingKey(config.local_system_secret)
        self._central = _SealingKey(config.central_system_secret)
        self._integrity_key = derive_key(config.jwt_secret, "edge-sync event digest")
        self._seal_key = derive_key(config.jwt_secret, "edge-sync blob seal")

    @property
    def config(self) -> SyncSecurityConfig:
        return self._config

    def create_secure_sync_package(
        self,
        events: Sequence[SyncEventEntity | Mapping[str, Any]],
        establishment_id: str,
    ) -> SecureSyncPackage:
        """Wrap a batch of events for transmission.

        Args:
            events: Events to send (entities or already-serialized dicts)
            establishment_id: Sending establishment

        Returns:
            The package, ready to post as JSON

        Raises:
            EnvelopeError: If the events cannot be serialized or encrypted
        """
        now = self._clock()
        wire_events = [
            event.to_wire() if isinstance(event, SyncEventEntity) else dict(event) for event in events
        ]
        payload = SyncPayload(
            events=wire_events,
            establishment_id=establishment_id,
            timestamp=now,
            nonce=secrets.token_hex(self._config.nonce_bytes),
        )

        try:
            data = self._seal(stable_json(payload.to_wire()), self._local)
            digest = self._digest(wire_events)
        except (TypeError, ValueError) as e:
            raise EnvelopeError(f"Failed to build sync package: {e}") from e

        return SecureSyncPackage(
            token=self._issue_token(establishment_id, now),
            data=data,
            hash=digest,
            timestamp=now,
        )

    def validate_and_process_sync_package(
        self,
        package: SecureSyncPackage,
        claimed_sender_id: str,
    ) -> ValidationResult:
        """Validate a received package and return its decrypted payload.

        Checks run in order and the first failure short-circuits: token,
        establishment binding, decryption, event digest, staleness, nonce.

        Args:
            package: The received package
            claimed_sender_id: Establishment the transport says sent it

        Returns:
            ValidationResult with the payload when valid, the rejection otherwise
        """
        result = self._validate(package, claimed_sender_id)
        if not result.is_valid:
            logger.warning(
                "Rejected sync package from %s: %s (%s)",
                claimed_sender_id,
                result.error.value,
                result.detail or "-",
            )
        return result

    def create_security_headers(
        self,
        establishment_id: str,
        extra: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Build the transport headers that accompany a sync package."""
        headers = {
            "X-Establishment-Id": establishment_id,
            "X-Sync-Timestamp": str(int(self._clock())),
            "X-Sync-Nonce": secrets.token_hex(self._config.nonce_bytes),
        }
        if extra:
            headers.update(extra)
        return headers

    def _validate(self, package: SecureSyncPackage, claimed_sender_id: str) -> ValidationResult:
        now = self._clock()

        try:
            claims = jwt.decode(
                package.token,
                self._config.jwt_secret,
                algorithms=[_JWT_ALGORITHM],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "establishmentId"],
                },
            )
        except jwt.PyJWTError as e:
            return ValidationResult.reject(EnvelopeRejection.INVALID_TOKEN, str(e))

        if claims.get("type") != TOKEN_TYPE:
            return ValidationResult.reject(EnvelopeRejection.INVALID_TOKEN, "unexpected token type")
        if claims["exp"] < now:
            return ValidationResult.reject(EnvelopeRejection.TOKEN_EXPIRED)
        if claims["establishmentId"] != claimed_sender_id:
            return ValidationResult.reject(EnvelopeRejection.ESTABLISHMENT_MISMATCH)

        try:
            blob = b64decode_str(package.data)
        except ValueError as e:
            return ValidationResult.reject(EnvelopeRejection.MALFORMED_PACKAGE, str(e))
        if len(blob) < _KEY_CHECK_SIZE + _GCM_NONCE_SIZE + _GCM_TAG_SIZE + _SEAL_SIZE:
            return ValidationResult.reject(EnvelopeRejection.MALFORMED_PACKAGE, "data too short")

        sealed, seal = blob[:-_SEAL_SIZE], blob[-_SEAL_SIZE:]
        if not secrets.compare_digest(seal, hmac_sha256(self._seal_key, sealed)):
            return ValidationResult.reject(EnvelopeRejection.HASH_MISMATCH, "blob seal mismatch")

        key_check = sealed[:_KEY_CHECK_SIZE]
        gcm_nonce = sealed[_KEY_CHECK_SIZE : _KEY_CHECK_SIZE + _GCM_NONCE_SIZE]
        ciphertext = sealed[_KEY_CHECK_SIZE + _GCM_NONCE_SIZE :]
        if not secrets.compare_digest(key_check, self._central.check):
            return ValidationResult.reject(EnvelopeRejection.KEY_MISMATCH)

        try:
            plaintext = AESGCM(self._central.key).decrypt(gcm_nonce, ciphertext, None)
        except InvalidTag:
            return ValidationResult.reject(EnvelopeRejection.HASH_MISMATCH, "authentication tag mismatch")

        try:
            payload = SyncPayload.model_validate_json(plaintext)
        except ValidationError as e:
            return ValidationResult.reject(EnvelopeRejection.MALFORMED_PACKAGE, str(e))

        if not constant_time_equals(self._digest(payload.events), package.hash):
            return ValidationResult.reject(EnvelopeRejection.HASH_MISMATCH)
        if payload.establishment_id != claimed_sender_id:
            return ValidationResult.reject(EnvelopeRejection.ESTABLISHMENT_MISMATCH, "payload establishment")

        if now - payload.timestamp > self._config.max_package_age_seconds:
            return ValidationResult.reject(EnvelopeRejection.STALE_PACKAGE)
        if payload.timestamp - now > self._config.max_clock_skew_seconds:
            return ValidationResult.reject(EnvelopeRejection.FUTURE_PACKAGE)

        if not self._nonce_is_valid(payload.nonce):
            return ValidationResult.reject(EnvelopeRejection.INVALID_NONCE)

        return ValidationResult.accept(payload)

    def _issue_token(self, establishment_id: str, now: float) -> str:
        issued_at = int(now)
        claims = {
            "establishmentId": establishment_id,
            "type": TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + self._config.token_ttl_seconds,
        }
        return jwt.encode(claims, self._config.jwt_secret, algorithm=_JWT_ALGORITHM)

    def _seal(self, plaintext: bytes, key: _SealingKey) -> str:
        gcm_nonce = os.urandom(_GCM_NONCE_SIZE)
        ciphertext = AESGCM(key.key).encrypt(gcm_nonce, plaintext, None)
        sealed = key.check + gcm_nonce + ciphertext
        return b64encode_bytes(sealed + hmac_sha256(self._seal_key, sealed))

    def _digest(self, events: Sequence[Mapping[str, Any]]) -> str:
        return hmac_sha256_hex(self._integrity_key, stable_json(list(events)))

    def _nonce_is_valid(self, nonce: str) -> bool:
        if not nonce:
            return False
        try:
            raw = bytes.fromhex(nonce)
        except ValueError:
            return False
        return len(raw) >= self._config.nonce_bytes
