"""Protocol interfaces for swappable implementations.

This package contains protocol definitions using structural typing.
Protocols enable:
- Easy swapping of implementations (Redis → SQLite, live central → stub, etc.)
- Unit testing with mock implementations
- Clear separation of concerns
"""

from .local_store import LocalStore
from .managed_service import ManagedService
from .operation_replayer import OperationReplayer

__all__ = [
    "LocalStore",
    "ManagedService",
    "OperationReplayer",
]
