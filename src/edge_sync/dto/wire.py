"""Wire DTOs exchanged with the central system.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for wire models: camelCase aliases, population by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SyncPayload(WireModel):
    """Plaintext content of a sync package, encrypted into ``SecureSyncPackage.data``."""

    events: list[dict[str, Any]] = Field(..., description="Serialized sync events")
    establishment_id: str = Field(..., description="Sending establishment")
    timestamp: float = Field(..., description="Creation time (Unix seconds)")
    nonce: str = Field(..., description="Random hex nonce")


class SecureSyncPackage(WireModel):
    """Signed, encrypted and hashed wrapper around one batch of events."""

    token: str = Field(..., description="HS256 token binding the sending establishment")
    data: str = Field(..., description="base64(key_check || gcm_nonce || ciphertext || seal)")
    hash: str = Field(..., description="HMAC-SHA256 of the plaintext events")
    timestamp: float = Field(..., description="Package creation time (Unix seconds)")


class SyncConflict(WireModel):
    """A conflict the central system detected and resolved."""

    event_id: str
    conflict_type: str = "unknown"
    resolution: str = "central-wins"


class CentralSyncResponse(WireModel):
    """Central system's answer to a batch upload."""

    success: bool = Field(..., description="Whether the batch was accepted")
    synced_events: list[str] = Field(
        default_factory=list,
        description="Ids of events the central system durably applied",
    )
    conflicts: list[SyncConflict] = Field(default_factory=list)
    message: str | None = None
