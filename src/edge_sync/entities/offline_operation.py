"""Offline operation domain entity."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class OperationType(str, Enum):
    READ = "READ"
    WRITE = "WRITE"


class OperationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class OfflineOperationEntity:
    """A client action captured while the node could not reach the central system.

    Attributes:
        id: Unique identifier
        type: READ or WRITE
        resource: Resource (table) the operation targets
        operation: Operation name (CREATE, UPDATE, DELETE for writes)
        data: Operation body, if any
        timestamp: When the operation was captured
        retry_count: Replay attempts so far
        max_retries: Replay attempts allowed before the operation is failed
        status: pending, completed or failed
        response: Replay result, once completed
        last_error: Error from the last failed replay
    """

    id: str
    type: OperationType
    resource: str
    operation: str
    data: Any
    timestamp: float
    retry_count: int = 0
    max_retries: int = 3
    status: OperationStatus = OperationStatus.PENDING
    response: Any = None
    last_error: str | None = None

    @property
    def can_retry(self) -> bool:
        return self.status is OperationStatus.PENDING and self.retry_count < self.max_retries
