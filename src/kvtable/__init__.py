"""
kvtable - Namespaced key-value table with negative caching and distributed locks.

Quick start::

    from kvtable import HashTable
    from kvtable.drivers import RedisBackend

    with HashTable(RedisBackend.from_url("redis://localhost:6379/0"), prefix="app_") as table:
        table.set("user:1", "Alice")
        table.get(["user:1", "user:2"])    # {'user:1': 'Alice', 'user:2': False}
        with table.locked("nightly-report", timeout=10):
            ...
"""

__version__ = "0.1.0"

from kvtable.drivers.memory import InMemoryBackend
from kvtable.errors import (
    BackendUnavailableError,
    ConfigError,
    InvalidConfigError,
    KVTableError,
    LockTimeoutError,
    MissingConfigError,
)
from kvtable.factory import create_backend, create_table
from kvtable.lock import KeyLock
from kvtable.protocols import HashTableBackend, LockingBackend
from kvtable.settings import BackendKind, HashTableSettings, TableParams
from kvtable.table import ABSENT, HashTable, KeyKind

__all__ = [
    "__version__",
    "ABSENT",
    "BackendKind",
    "BackendUnavailableError",
    "ConfigError",
    "HashTable",
    "HashTableBackend",
    "HashTableSettings",
    "InMemoryBackend",
    "InvalidConfigError",
    "KVTableError",
    "KeyKind",
    "KeyLock",
    "LockTimeoutError",
    "LockingBackend",
    "MissingConfigError",
    "TableParams",
    "create_backend",
    "create_table",
]
