"""
Negative-cache-aware hash table dispatcher.

Provides a uniform get/set/delete/exists API over any backend satisfying
:class:`~kvtable.protocols.HashTableBackend`, with key namespacing and an
in-process record of keys known not to exist.

Manifesto:
    Most lookups against a shared store are for keys that were already
    looked up. Remembering which keys came back missing saves a round-trip
    every time the same absent key is asked for again, and costs nothing
    in correctness: the record is dropped as soon as this table writes
    the key, and losing it entirely only costs extra round-trips.

    - **Backend-agnostic:** Only the protocol is used, never a concrete driver
    - **Shape-preserving:** Scalar in → scalar out, collection in → dict out
    - **Absence is a value:** Missing keys return ``False``, never raise
    - **Scoped locks:** Locks held by a table are released when it closes

Architecture:
    ::

        caller ──► HashTable ──► negative cache hit? ──yes──► False
                       │                 │
                       │                no
                       │                 ▼
                       │         hkey(key) = prefix + key
                       │                 ▼
                       │        backend.batch_get / batch_exists
                       │                 ▼
                       │         absent → negative cache
                       │
                       └── lock/unlock ──► KeyLock ──► backend (SETNX/EXPIRE/DEL)
                                         hkey = prefix + md5(key) + "_l"

Examples:
    >>> table = HashTable(InMemoryBackend(), prefix="app_")
    >>> table.set("user:1", "Alice")
    True
    >>> table.get("user:1")
    'Alice'
    >>> table.get(["user:1", "user:2"])
    {'user:1': 'Alice', 'user:2': False}
    >>> table.delete("user:1")
    True
    >>> table.set("user:1", "Alice", replace=True)
    False

Guardrails:
    ❌ DON'T: Share one HashTable between unrelated writers and trust its
              negative cache for keys other processes create
    ✅ DO: Treat the negative cache as an optimization, not a source of truth

    ❌ DON'T: Forget to close a table holding locks
    ✅ DO: Use ``with HashTable(...) as table:``

Tags:
    kvtable, cache, negative-cache, redis, namespacing, locks

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import hashlib
import warnings
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Mapping, Union

from pydantic import ValidationError

from kvtable.errors import BackendUnavailableError, InvalidConfigError, MissingConfigError
from kvtable.lock import KeyLock
from kvtable.logging import get_logger
from kvtable.protocols import HashTableBackend, LockingBackend
from kvtable.settings import DEFAULT_PREFIX, TableParams

logger = get_logger(__name__)

# Returned for keys that do not exist.
ABSENT = False

# Appended to the hashed key body to form a lock key.
LOCK_SUFFIX = "_l"

_GLOB_SPECIALS = "\\*?[]"

Keys = Union[str, Iterable[str]]


class KeyKind(str, Enum):
    """What a physical key is derived for."""

    DATA = "data"
    LOCK = "lock"


def escape_glob(text: str) -> str:
    """Backslash-escape Redis glob metacharacters in *text*."""
    return "".join("\\" + c if c in _GLOB_SPECIALS else c for c in text)


def _as_keys(keys: Keys) -> tuple[list[str], bool]:
    """Normalize to a de-duplicated key list and remember the input shape."""
    if isinstance(keys, str):
        return [keys], False
    return list(dict.fromkeys(keys)), True


class HashTable:
    """Key-value table over a pluggable backend.

    Args:
        backend: Store implementing :class:`~kvtable.protocols.HashTableBackend`.
            Required.
        prefix: Prepended to every physical key.
        logger: Optional structlog-style logger that receives debug events
            naming the keys each operation touched.
        lock_timeout: Seconds before an unreleased lock self-expires.
        lock_retry_interval: Seconds between lock attempts.
        lock_jitter: Upper bound of random extra wait between lock attempts.
        strict_unlock: Release a lock only if it still holds the token this
            table wrote when acquiring it.

    Raises:
        MissingConfigError: If *backend* is ``None``.
        InvalidConfigError: If a parameter fails validation.
    """

    def __init__(
        self,
        backend: HashTableBackend | None,
        *,
        prefix: str = DEFAULT_PREFIX,
        logger: Any = None,
        lock_timeout: int = 30,
        lock_retry_interval: float = 0.1,
        lock_jitter: float = 0.0,
        strict_unlock: bool = False,
    ) -> None:
        if backend is None:
            raise MissingConfigError("backend", "HashTable requires a backend handle")

        try:
            params = TableParams(
                prefix=prefix,
                lock_timeout=lock_timeout,
                lock_retry_interval=lock_retry_interval,
                lock_jitter=lock_jitter,
                strict_unlock=strict_unlock,
            )
        except ValidationError as exc:
            raise InvalidConfigError("params", None, f"Invalid table parameters: {exc}") from exc

        self._backend = backend
        self._params = params
        self._logger = logger
        self._noexist: set[str] = set()
        self._locks: KeyLock | None = None

        if isinstance(backend, LockingBackend):
            self._locks = KeyLock(
                backend,
                lambda key: self.hkey(key, KeyKind.LOCK),
                timeout=params.lock_timeout,
                retry_interval=params.lock_retry_interval,
                jitter=params.lock_jitter,
                strict=params.strict_unlock,
            )

    # ------------------------------------------------------------------ #
    # Construction from serialized parameters
    # ------------------------------------------------------------------ #

    @classmethod
    def from_params(
        cls,
        params: TableParams,
        backend: HashTableBackend | None,
        *,
        logger: Any = None,
    ) -> HashTable:
        """Build a table from ``TableParams`` and a live backend."""
        return cls(backend, logger=logger, **params.model_dump())

    def to_params(self) -> TableParams:
        return self._params

    def dumps(self) -> str:
        """Serialize the table's parameters to JSON.

        The backend handle and both in-process caches are left out; a table
        rebuilt with :meth:`loads` starts with empty caches and no locks.
        """
        return self._params.model_dump_json()

    @classmethod
    def loads(cls, data: str | bytes, backend: HashTableBackend | None, *, logger: Any = None) -> HashTable:
        """Rebuild a table from :meth:`dumps` output and a new backend handle."""
        try:
            params = TableParams.model_validate_json(data)
        except ValidationError as exc:
            raise InvalidConfigError("params", data, f"Invalid table parameters: {exc}") from exc
        return cls.from_params(params, backend, logger=logger)

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def prefix(self) -> str:
        return self._params.prefix

    @prefix.setter
    def prefix(self, value: str) -> None:
        """Change the prefix for subsequent key derivations.

        Keys written under the old prefix are not moved, and the negative
        cache is reset since its entries describe keys under the old prefix.
        Locks already held are still released under the key they were taken
        with.
        """
        self._params = self._params.model_copy(update={"prefix": value})
        self._noexist.clear()

    @property
    def persistent(self) -> bool:
        """Does the backend keep data beyond the process lifetime?"""
        return bool(getattr(self._backend, "persistent", False))

    @property
    def locking(self) -> bool:
        """Does the backend support locking?"""
        return self._locks is not None

    @property
    def backend(self) -> HashTableBackend:
        return self._backend

    # ------------------------------------------------------------------ #
    # Key derivation
    # ------------------------------------------------------------------ #

    def hkey(self, key: str, kind: KeyKind = KeyKind.DATA) -> str:
        """Derive the physical key for *key*.

        Lock keys hash the key body but never the prefix, so that
        :meth:`clear` still finds them by prefix.
        """
        if kind is KeyKind.LOCK:
            digest = hashlib.md5(key.encode("utf-8")).hexdigest()
            return self._params.prefix + digest + LOCK_SUFFIX
        return self._params.prefix + key

    # ------------------------------------------------------------------ #
    # Logging collaborator
    # ------------------------------------------------------------------ #

    def _debug(self, event: str, **fields: Any) -> None:
        if self._logger is None:
            return
        try:
            self._logger.debug(event, table=type(self).__name__, **fields)
        except Exception:  # noqa: BLE001 - logging must never change a result
            pass

    # ------------------------------------------------------------------ #
    # Read operations
    # ------------------------------------------------------------------ #

    def exists(self, keys: Keys) -> bool | dict[str, bool]:
        """Do the keys exist?

        Args:
            keys: A key or a collection of keys.

        Returns:
            A bool for a single key, or a dict of bools keyed by logical key.
        """
        return self._get_exists(keys, self._backend.batch_exists)

    def get(self, keys: Keys) -> Any:
        """Get data associated with a key or keys.

        Args:
            keys: A key or a collection of keys.

        Returns:
            The value for a single key, or a dict keyed by logical key.
            Missing keys yield ``False``; an empty string is a real value.
        """
        return self._get_exists(keys, self._fetch_values)

    def _fetch_values(self, hkeys: list[str]) -> Mapping[str, Any]:
        return {
            hkey: ABSENT if value is None else value
            for hkey, value in self._backend.batch_get(hkeys).items()
        }

    def _get_exists(
        self,
        keys: Keys,
        fetch: Callable[[list[str]], Mapping[str, Any]],
    ) -> Any:
        key_list, many = _as_keys(keys)
        out: dict[str, Any] = {}
        noexist: set[str] = set()
        todo: dict[str, str] = {}

        for key in key_list:
            if key in self._noexist:
                out[key] = ABSENT
                noexist.add(key)
            else:
                todo[self.hkey(key)] = key

        if todo:
            try:
                results = fetch(list(todo))
            except BackendUnavailableError as exc:
                raise exc.with_context(keys=list(todo.values()), prefix=self.prefix)
            for hkey, key in todo.items():
                value = results.get(hkey, ABSENT)
                if value is ABSENT:
                    self._noexist.add(key)
                    noexist.add(key)
                out[key] = value

        retrieved = [key for key in key_list if key not in noexist]
        if retrieved:
            self._debug("keys_retrieved", keys=retrieved)
        if noexist:
            self._debug("keys_nonexistent", keys=[key for key in key_list if key in noexist])

        ordered = {key: out[key] for key in key_list}
        if many:
            return ordered
        return ordered[key_list[0]]

    # ------------------------------------------------------------------ #
    # Write operations
    # ------------------------------------------------------------------ #

    def set(
        self,
        key: str,
        value: str,
        *,
        expire: int | None = None,
        replace: bool = False,
        timeout: int | None = None,
    ) -> bool:
        """Set the value of a key.

        Args:
            key: The key.
            value: The string to store.
            expire: Expiration time in seconds. ``None`` or ``0``: doesn't expire.
            replace: Only overwrite an existing key; returns ``False`` if the
                key doesn't exist.
            timeout: Deprecated alias for *expire*.

        Returns:
            True on success, False on error.

        Raises:
            InvalidConfigError: If *expire* is negative.
        """
        if timeout is not None:
            warnings.warn(
                "HashTable.set(timeout=...) is deprecated, use expire=",
                DeprecationWarning,
                stacklevel=2,
            )
            if expire is None:
                expire = timeout

        if expire is not None and expire < 0:
            raise InvalidConfigError("expire", expire, f"expire must be >= 0 seconds, got {expire}")

        if replace and key in self._noexist:
            self._debug("key_set", key=key, success=False)
            return False

        try:
            result = self._backend.conditional_set(
                self.hkey(key), value, expire=expire, require_existing=replace
            )
        except BackendUnavailableError as exc:
            exc.with_context(keys=[key], prefix=self.prefix)
            logger.warning(
                "backend_unavailable", operation="set", error=str(exc), context=exc.context.to_dict()
            )
            result = False
        else:
            if result:
                self._noexist.discard(key)
            elif replace:
                self._noexist.add(key)

        self._debug("key_set", key=key, success=result)
        return result

    def delete(self, keys: Keys) -> bool:
        """Delete a key or keys.

        Keys already known not to exist are skipped. If the backend deletes
        fewer keys than were sent, the call reports failure and nothing is
        recorded as absent.

        Returns:
            True on success.
        """
        key_list, _ = _as_keys(keys)
        todo = [key for key in key_list if key not in self._noexist]
        if not todo:
            return True

        hkeys = [self.hkey(key) for key in todo]
        try:
            deleted = self._backend.batch_delete(hkeys)
        except BackendUnavailableError as exc:
            exc.with_context(keys=todo, prefix=self.prefix)
            logger.warning(
                "backend_unavailable", operation="delete", error=str(exc), context=exc.context.to_dict()
            )
            return False

        if deleted != len(hkeys):
            self._debug("keys_delete_mismatch", keys=todo, expected=len(hkeys), deleted=deleted)
            return False

        self._noexist.update(todo)
        self._debug("keys_deleted", keys=todo)
        return True

    def clear(self) -> int:
        """Delete every key under the current prefix.

        The negative cache is reset and lock records are dropped, since the
        lock keys live under the same prefix and are gone too.

        Returns:
            Number of physical keys removed.
        """
        pattern = escape_glob(self._params.prefix) + "*"
        hkeys = self._backend.scan_by_pattern(pattern)
        deleted = self._backend.batch_delete(hkeys) if hkeys else 0

        self._noexist.clear()
        if self._locks is not None:
            self._locks.forget_all()

        self._debug("keys_cleared", pattern=pattern, count=deleted)
        return deleted

    # ------------------------------------------------------------------ #
    # Locking
    # ------------------------------------------------------------------ #

    def _require_locks(self) -> KeyLock:
        if self._locks is None:
            raise InvalidConfigError(
                "backend",
                type(self._backend).__name__,
                f"{type(self._backend).__name__} does not support locking",
            )
        return self._locks

    def lock(self, key: str) -> None:
        """Block until the lock for *key* is acquired."""
        self._require_locks().lock(key)

    def acquire(self, key: str, *, blocking: bool = True, timeout: float | None = None) -> bool:
        """Acquire the lock for *key*, optionally giving up after *timeout*."""
        return self._require_locks().acquire(key, blocking=blocking, timeout=timeout)

    def unlock(self, key: str) -> bool:
        """Release the lock for *key*."""
        return self._require_locks().unlock(key)

    @contextmanager
    def locked(self, key: str, *, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for *key* inside a ``with`` block."""
        with self._require_locks().locked(key, timeout=timeout):
            yield

    def held_locks(self) -> list[str]:
        if self._locks is None:
            return []
        return self._locks.held_keys()

    # ------------------------------------------------------------------ #
    # Lifetime
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Release every lock this table still holds."""
        if self._locks is not None:
            released = self._locks.release_all()
            if released:
                logger.info("locks_released_on_close", count=released)

    def __enter__(self) -> HashTable:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"HashTable(backend={type(self._backend).__name__}, prefix={self.prefix!r})"


__all__ = [
    "ABSENT",
    "LOCK_SUFFIX",
    "HashTable",
    "KeyKind",
    "escape_glob",
]
