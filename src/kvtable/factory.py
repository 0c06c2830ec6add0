"""
Factory functions that create backends and tables from settings.

Each factory imports its driver lazily, so ``redis`` is only loaded when the
Redis backend is actually selected.

Features:
    - ``create_backend()`` — InMemory / Redis backend from settings
    - ``create_table()`` — ``HashTable`` wired to a backend and settings

Tags:
    kvtable, configuration, factory-pattern, lazy-imports, redis

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from kvtable.settings import BackendKind, HashTableSettings

if TYPE_CHECKING:
    from kvtable.protocols import HashTableBackend
    from kvtable.table import HashTable


def create_backend(settings: HashTableSettings) -> HashTableBackend:
    """Create a backend based on *settings.backend*."""
    match settings.backend:
        case BackendKind.MEMORY:
            from kvtable.drivers.memory import InMemoryBackend

            return InMemoryBackend()
        case BackendKind.REDIS:
            from kvtable.drivers.redis import RedisBackend

            return RedisBackend.from_url(settings.redis_url)


def create_table(
    settings: HashTableSettings | None = None,
    *,
    backend: HashTableBackend | None = None,
    logger: Any = None,
) -> HashTable:
    """Create a :class:`~kvtable.table.HashTable`.

    Args:
        settings: Settings to read; loaded from the environment when omitted.
        backend: Use this backend instead of building one from *settings*.
        logger: Optional key-event logger handed to the table.
    """
    from kvtable.table import HashTable

    settings = settings or HashTableSettings()
    if backend is None:
        backend = create_backend(settings)
    return HashTable.from_params(settings.table_params(), backend, logger=logger)


__all__ = ["create_backend", "create_table"]
