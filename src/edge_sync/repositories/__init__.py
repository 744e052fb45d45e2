"""Repository implementations.

Concrete implementations of the protocols defined in the protocols package.
"""

from .central_client import CentralClient
from .redis_store import RedisLocalStore

__all__ = [
    "CentralClient",
    "RedisLocalStore",
]
