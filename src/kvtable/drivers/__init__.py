"""
Backend drivers.

    InMemoryBackend — Tier 1 (single process, no server)
    RedisBackend    — Tier 2/3 (shared, persistent)

``RedisBackend`` is imported lazily so that ``import kvtable.drivers`` does
not load redis-py until the driver is actually used.
"""

from __future__ import annotations

from kvtable.drivers.memory import InMemoryBackend

__all__ = ["InMemoryBackend", "RedisBackend"]


def __getattr__(name: str):
    if name == "RedisBackend":
        from kvtable.drivers.redis import RedisBackend

        return RedisBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
