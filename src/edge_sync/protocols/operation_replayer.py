"""Operation replayer protocol.

Decides what "replaying" a captured offline operation means once the node
is back online.
"""

from typing import Any, Protocol, runtime_checkable

from edge_sync.entities import OfflineOperationEntity


@runtime_checkable
class OperationReplayer(Protocol):
    async def replay(self, operation: OfflineOperationEntity) -> Any:
        """Replay one operation and return its response.

        Raises:
            Exception: Any error marks the attempt as failed.
        """
        ...
