"""Default replayer for operations captured while offline.

A WRITE captured offline becomes a sync event, so the replication engine
carries it to the central system like any other local change. A READ has
nothing left to do once the node is back online.
"""

import logging
import uuid
from typing import Any

from edge_sync.config import settings
from edge_sync.entities import (
    OfflineOperationEntity,
    OperationType,
    SyncEventEntity,
    SyncOperation,
    payload_for,
)
from edge_sync.protocols import LocalStore

logger = logging.getLogger(__name__)


class EventLogReplayer:
    """Replays offline WRITE operations into the sync event log.

    Mapping: resource -> table name, operation -> SyncOperation,
    data["id"] -> record id.
    """

    def __init__(
        self,
        store: LocalStore,
        establishment_id: str | None = None,
    ) -> None:
        self._store = store
        self._establishment_id = establishment_id or settings.establishment_id

    async def replay(self, operation: OfflineOperationEntity) -> Any:
        """Replay one offline operation.

        Returns:
            {"event_id": ...} for writes, None for reads

        Raises:
            ValueError: If the operation name is unknown or the record id is missing
        """
        if operation.type is OperationType.READ:
            logger.debug("Offline read %s needs no replay", operation.id)
            return None

        try:
            sync_operation = SyncOperation(operation.operation.upper())
        except ValueError as e:
            raise ValueError(f"Unknown write operation {operation.operation!r}") from e

        data = operation.data if isinstance(operation.data, dict) else {}
        record_id = data.get("id")
        if record_id in (None, ""):
            raise ValueError(f"Offline write {operation.id} has no record id")

        event = SyncEventEntity(
            id=uuid.uuid4().hex,
            table_name=operation.resource,
            operation=sync_operation,
            record_id=str(record_id),
            payload=payload_for(sync_operation, data),
            # Capture time, not replay time
            timestamp=operation.timestamp,
            establishment_id=self._establishment_id,
        )
        event_id = self._store.create_sync_event(event)
        logger.info(
            "Replayed offline %s %s.%s as sync event %s",
            sync_operation.value,
            operation.resource,
            record_id,
            event_id,
        )
        return {"event_id": event_id}
