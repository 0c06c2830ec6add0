"""
Shared pytest fixtures for kvtable tests.

This module provides:
- ``backend``: a fresh InMemoryBackend
- ``counting``: an InMemoryBackend wrapper that records every call, used to
  prove which operations reach the store
- ``table``: a HashTable on ``counting`` with prefix ``app_``
- ``FailingBackend``: a backend whose every call raises BackendUnavailableError
"""

from __future__ import annotations

import sys
from collections import Counter
from pathlib import Path
from typing import Sequence

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from kvtable.drivers.memory import InMemoryBackend
from kvtable.errors import BackendUnavailableError
from kvtable.table import HashTable


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test without an explicit marker as a unit test."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fake backends
# =============================================================================


class CountingBackend:
    """Delegates to an InMemoryBackend and counts calls per operation and key."""

    persistent = False

    def __init__(self, inner: InMemoryBackend | None = None) -> None:
        self.inner = inner or InMemoryBackend()
        self.calls: list[tuple[str, tuple[str, ...]]] = []
        self.per_key: Counter[tuple[str, str]] = Counter()

    def _record(self, op: str, keys: Sequence[str]) -> None:
        self.calls.append((op, tuple(keys)))
        for key in keys:
            self.per_key[(op, key)] += 1

    def count(self, op: str, key: str | None = None) -> int:
        if key is None:
            return sum(1 for name, _ in self.calls if name == op)
        return self.per_key[(op, key)]

    def reset(self) -> None:
        self.calls.clear()
        self.per_key.clear()

    def batch_get(self, keys):
        self._record("batch_get", keys)
        return self.inner.batch_get(keys)

    def batch_exists(self, keys):
        self._record("batch_exists", keys)
        return self.inner.batch_exists(keys)

    def batch_delete(self, keys):
        self._record("batch_delete", keys)
        return self.inner.batch_delete(keys)

    def conditional_set(self, key, value, *, expire=None, require_existing=False):
        self._record("conditional_set", [key])
        return self.inner.conditional_set(
            key, value, expire=expire, require_existing=require_existing
        )

    def scan_by_pattern(self, pattern):
        self._record("scan_by_pattern", [pattern])
        return self.inner.scan_by_pattern(pattern)

    def set_if_absent(self, key, value):
        self._record("set_if_absent", [key])
        return self.inner.set_if_absent(key, value)

    def expire(self, key, seconds):
        self._record("expire", [key])
        return self.inner.expire(key, seconds)

    def delete_if_equals(self, key, value):
        self._record("delete_if_equals", [key])
        return self.inner.delete_if_equals(key, value)


class FailingBackend:
    """Every operation fails as if the store were unreachable."""

    persistent = True

    def _fail(self, *args, **kwargs):
        raise BackendUnavailableError("connection refused").with_context(backend="FailingBackend")

    batch_get = batch_exists = batch_delete = _fail
    conditional_set = scan_by_pattern = _fail
    set_if_absent = expire = delete_if_equals = _fail


class PlainBackend:
    """Store without lock primitives."""

    persistent = True

    def __init__(self) -> None:
        self.inner = InMemoryBackend()

    def batch_get(self, keys):
        return self.inner.batch_get(keys)

    def batch_exists(self, keys):
        return self.inner.batch_exists(keys)

    def batch_delete(self, keys):
        return self.inner.batch_delete(keys)

    def conditional_set(self, key, value, *, expire=None, require_existing=False):
        return self.inner.conditional_set(
            key, value, expire=expire, require_existing=require_existing
        )

    def scan_by_pattern(self, pattern):
        return self.inner.scan_by_pattern(pattern)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture()
def counting(backend) -> CountingBackend:
    return CountingBackend(backend)


@pytest.fixture()
def table(counting) -> HashTable:
    return HashTable(counting, prefix="app_")
