"""
Backend contracts consumed by the dispatcher and the lock.

Protocols define contracts without inheritance. ``HashTable`` and
``KeyLock`` only ever talk to these; any store that can provide the
primitives below can back a table.

Architecture:
    ::

        HashTableBackend (Protocol)
        ├── batch_get / batch_exists / batch_delete
        ├── conditional_set
        └── scan_by_pattern

        LockingBackend (Protocol, runtime_checkable)
        ├── everything in HashTableBackend
        └── set_if_absent / expire / delete_if_equals

        Implementations:
            RedisBackend     — persistent, locking
            InMemoryBackend  — single process, locking

Keys passed to a backend are always physical keys: the prefix and any
hashing have been applied by the caller.

Tags:
    protocols, contracts, backend, kvtable

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class HashTableBackend(Protocol):
    """Raw store operations used by :class:`~kvtable.table.HashTable`.

    Drivers raise :class:`~kvtable.errors.BackendUnavailableError` when the
    store cannot be reached; every other outcome is a return value.
    """

    persistent: bool

    def batch_get(self, keys: Sequence[str]) -> dict[str, str | None]:
        """Fetch several keys at once.

        Returns:
            Mapping of every requested key to its value, or ``None`` when the
            key does not exist.
        """
        ...

    def batch_exists(self, keys: Sequence[str]) -> dict[str, bool]:
        """Check existence of several keys at once."""
        ...

    def batch_delete(self, keys: Sequence[str]) -> int:
        """Delete several keys and return how many actually existed."""
        ...

    def conditional_set(
        self,
        key: str,
        value: str,
        *,
        expire: int | None = None,
        require_existing: bool = False,
    ) -> bool:
        """Write *value* to *key*.

        Args:
            key: Physical key.
            value: Value to store.
            expire: Expiry in seconds; ``None`` keeps the key forever.
            require_existing: Only write if the key already exists.

        Returns:
            ``True`` if the value was written.
        """
        ...

    def scan_by_pattern(self, pattern: str) -> list[str]:
        """Return every key matching a glob *pattern* (Redis glob rules)."""
        ...


@runtime_checkable
class LockingBackend(HashTableBackend, Protocol):
    """Backend that also offers the primitives the lock protocol needs."""

    def set_if_absent(self, key: str, value: str) -> bool:
        """Atomically write *value* only if *key* does not exist."""
        ...

    def expire(self, key: str, seconds: int) -> bool:
        """Set a time-to-live on *key*. Returns ``False`` if it is gone."""
        ...

    def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically delete *key* only if it still holds *value*."""
        ...


__all__ = [
    "HashTableBackend",
    "LockingBackend",
]
