"""
In-process backend with TTL support.

Implements the full :class:`~kvtable.protocols.LockingBackend` contract in a
plain dict, so a table can run without a Redis server. Several tables in the
same process (threads included) may share one instance, which makes it the
natural stand-in for a shared store in tests.

Guardrails:
    ❌ DON'T: Use InMemoryBackend across processes (nothing is shared)
    ✅ DO: Use RedisBackend when more than one process needs the data

    ❌ DON'T: Rely on TTL cleanup happening on a timer
    ✅ DO: Expect expired keys to vanish lazily, on the next access
"""

from __future__ import annotations

import re
import threading
import time
from typing import Callable, Sequence


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a Redis-style glob into a regular expression.

    Supports ``*``, ``?``, ``[abc]``, ``[^abc]``, ``[a-z]`` and backslash
    escapes, which is what ``SCAN MATCH`` understands.
    """
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if c == "*":
            out.append(".*")
        elif c == "?":
            out.append(".")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                negate = body.startswith("^")
                if negate:
                    body = body[1:]
                body = body.replace("\\", "\\\\")
                out.append(f"[{'^' if negate else ''}{body}]")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z", re.DOTALL)


class InMemoryBackend:
    """Dict-backed store with lazy TTL expiration.

    Example:
        backend = InMemoryBackend()
        table = HashTable(backend, prefix="app_")
    """

    persistent = False

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.RLock()
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._store[key]
            return None
        return entry

    # ------------------------------------------------------------------ #
    # HashTableBackend
    # ------------------------------------------------------------------ #

    def batch_get(self, keys: Sequence[str]) -> dict[str, str | None]:
        with self._lock:
            out: dict[str, str | None] = {}
            for key in keys:
                entry = self._live(key)
                out[key] = entry[0] if entry is not None else None
            return out

    def batch_exists(self, keys: Sequence[str]) -> dict[str, bool]:
        with self._lock:
            return {key: self._live(key) is not None for key in keys}

    def batch_delete(self, keys: Sequence[str]) -> int:
        with self._lock:
            deleted = 0
            for key in set(keys):
                if self._live(key) is not None:
                    del self._store[key]
                    deleted += 1
            return deleted

    def conditional_set(
        self,
        key: str,
        value: str,
        *,
        expire: int | None = None,
        require_existing: bool = False,
    ) -> bool:
        with self._lock:
            if require_existing and self._live(key) is None:
                return False
            expires_at = (self._clock() + expire) if expire else None
            self._store[key] = (value, expires_at)
            return True

    def scan_by_pattern(self, pattern: str) -> list[str]:
        regex = glob_to_regex(pattern)
        with self._lock:
            return [
                key for key in list(self._store)
                if regex.match(key) and self._live(key) is not None
            ]

    # ------------------------------------------------------------------ #
    # LockingBackend
    # ------------------------------------------------------------------ #

    def set_if_absent(self, key: str, value: str) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._store[key] = (value, None)
            return True

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._store[key] = (entry[0], self._clock() + seconds)
            return True

    def delete_if_equals(self, key: str, value: str) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[0] != value:
                return False
            del self._store[key]
            return True

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def size(self) -> int:
        """Return current number of live keys."""
        with self._lock:
            return sum(1 for key in list(self._store) if self._live(key) is not None)

    def ttl(self, key: str) -> float | None:
        """Seconds left before *key* expires, ``None`` if it never does or is gone."""
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[1] is None:
                return None
            return entry[1] - self._clock()
