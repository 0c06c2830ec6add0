"""
Redis backend.

Manifesto:
    The driver is a direct mapping from the backend contract onto redis-py
    commands. All the interesting behaviour (negative cache, prefixes,
    lock protocol) lives above it, so this module stays a thin adapter.

Command mapping::

    batch_get         → MGET
    batch_exists      → pipelined EXISTS (one reply per key)
    batch_delete      → DEL
    conditional_set   → SET [EX seconds] [XX]
    scan_by_pattern   → SCAN MATCH (cursor iteration, never KEYS)
    set_if_absent     → SETNX
    expire            → EXPIRE
    delete_if_equals  → EVALSHA compare-and-delete script

Every :class:`redis.exceptions.RedisError` is re-raised as
:class:`~kvtable.errors.BackendUnavailableError` with the original attached
as ``cause``.

Requires: ``pip install redis``

Tags:
    kvtable, redis, driver, backend

Doc-Types:
    api-reference
"""

from __future__ import annotations

import functools
from typing import Any, Callable, Sequence, TypeVar

import redis
from redis.exceptions import RedisError

from kvtable.errors import BackendUnavailableError

__all__ = ["RedisBackend"]

F = TypeVar("F", bound=Callable[..., Any])

_COMPARE_AND_DELETE = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


def _wrap_errors(operation: str) -> Callable[[F], F]:
    """Translate redis-py failures into ``BackendUnavailableError``."""

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(self: RedisBackend, *args: Any, **kwargs: Any) -> Any:
            try:
                return fn(self, *args, **kwargs)
            except RedisError as exc:
                raise BackendUnavailableError(
                    f"Redis {operation} failed: {exc}", cause=exc
                ).with_context(operation=operation, backend=type(self).__name__) from exc

        return wrapper  # type: ignore[return-value]

    return decorator


class RedisBackend:
    """Backend contract implemented on a redis-py client.

    Example::

        backend = RedisBackend.from_url("redis://localhost:6379/0")
        table = HashTable(backend, prefix="app_")

    Args:
        client: A ``redis.Redis`` (or compatible) client. Connection setup and
            authentication are the client's concern.
        scan_count: ``COUNT`` hint passed to ``SCAN``.
    """

    persistent = True

    def __init__(self, client: Any, *, scan_count: int = 1000) -> None:
        self._client = client
        self._scan_count = scan_count
        self._compare_and_delete = client.register_script(_COMPARE_AND_DELETE)

    @classmethod
    def from_url(cls, url: str = "redis://localhost:6379/0", **kwargs: Any) -> RedisBackend:
        """Build a backend from a connection URL.

        Responses are decoded to ``str``; extra keyword arguments go to
        :func:`redis.from_url`.
        """
        kwargs.setdefault("decode_responses", True)
        return cls(redis.from_url(url, **kwargs))

    @property
    def client(self) -> Any:
        return self._client

    @_wrap_errors("mget")
    def batch_get(self, keys: Sequence[str]) -> dict[str, str | None]:
        keys = list(keys)
        if not keys:
            return {}
        return dict(zip(keys, self._client.mget(keys)))

    @_wrap_errors("exists")
    def batch_exists(self, keys: Sequence[str]) -> dict[str, bool]:
        keys = list(keys)
        if not keys:
            return {}
        pipe = self._client.pipeline(transaction=False)
        for key in keys:
            pipe.exists(key)
        return {key: bool(found) for key, found in zip(keys, pipe.execute())}

    @_wrap_errors("del")
    def batch_delete(self, keys: Sequence[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        return int(self._client.delete(*keys))

    @_wrap_errors("set")
    def conditional_set(
        self,
        key: str,
        value: str,
        *,
        expire: int | None = None,
        require_existing: bool = False,
    ) -> bool:
        result = self._client.set(key, value, ex=expire or None, xx=require_existing)
        return bool(result)

    @_wrap_errors("scan")
    def scan_by_pattern(self, pattern: str) -> list[str]:
        return list(self._client.scan_iter(match=pattern, count=self._scan_count))

    @_wrap_errors("setnx")
    def set_if_absent(self, key: str, value: str) -> bool:
        return bool(self._client.setnx(key, value))

    @_wrap_errors("expire")
    def expire(self, key: str, seconds: int) -> bool:
        return bool(self._client.expire(key, seconds))

    @_wrap_errors("evalsha")
    def delete_if_equals(self, key: str, value: str) -> bool:
        return bool(self._compare_and_delete(keys=[key], args=[value]))
