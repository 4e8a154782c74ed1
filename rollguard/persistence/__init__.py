"""
Data persistence layer.

Provides the abstract repository and its concrete stores.
"""

from .repository import RollStore
from .memory_store import InMemoryRollStore

__all__ = [
    "RollStore",
    "InMemoryRollStore",
    "create_store",
]


def create_store(config=None) -> RollStore:
    """
    Build the store for the current configuration.

    PostgreSQL when the database is configured, in-memory otherwise.
    """
    from ..config import get_config

    config = config or get_config()
    if config.db.is_configured:
        from .postgres import PostgresRollStore
        return PostgresRollStore(config.db)
    return InMemoryRollStore()
