"""Persistence backends for torrents and announces."""

from __future__ import annotations

from typing import TYPE_CHECKING

from bitseed.models import PersistenceBackend
from bitseed.persistence.base import (
    DEFAULT_TTL,
    Persistence,
    ResetAfterSpawn,
    reset_if_needed,
)
from bitseed.persistence.memory import InMemoryPersistence
from bitseed.persistence.sqlite import SqlitePersistence

if TYPE_CHECKING:
    from bitseed.models import PersistenceConfig


def create_persistence(config: PersistenceConfig) -> Persistence:
    """Create the backend selected by the persistence section."""
    if config.backend == PersistenceBackend.MEMORY:
        return InMemoryPersistence()
    return SqlitePersistence(config.database)


__all__ = [
    "DEFAULT_TTL",
    "InMemoryPersistence",
    "Persistence",
    "ResetAfterSpawn",
    "SqlitePersistence",
    "create_persistence",
    "reset_if_needed",
]
