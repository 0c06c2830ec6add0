"""Distributed lock built on a key-value store.

Manifesto:
    Several processes sharing one store must be able to serialize work on
    a named resource without a separate coordination service. The store's
    own atomic set-if-absent is the mutual-exclusion primitive; an expiry
    on the lock key is the safety net that keeps a crashed holder from
    wedging everyone else forever.

This module provides blocking and bounded acquire/release of named locks on
any :class:`~kvtable.protocols.LockingBackend`.

Tags:
    kvtable, distributed-locks, TTL, concurrency, setnx

Doc-Types:
    api-reference, architecture-diagram


    Lock Flow::

        acquire(key)
            hkey = derive(key)                    # prefix + md5(key) + "_l"
            while not SETNX hkey token:           # someone else holds it
                sleep(retry_interval + jitter)    # give up after timeout
            EXPIRE hkey lock_timeout              # crash safety net
                                                  # on failure: DEL hkey if ours
            held[key] = (hkey, token)

        release(key)
            default:  DEL hkey                    # hkey recorded at acquire
            strict:   DEL hkey if GET hkey == token

    Only "already held" is retried. A connectivity failure during an attempt
    propagates to the caller as BackendUnavailableError.
"""

from __future__ import annotations

import random
import time
from contextlib import contextmanager
from typing import Callable, Iterator
from uuid import uuid4

from kvtable.errors import BackendUnavailableError, LockTimeoutError
from kvtable.logging import get_logger
from kvtable.protocols import LockingBackend

logger = get_logger(__name__)

# Seconds before an unreleased lock self-clears.
DEFAULT_LOCK_TIMEOUT = 30

# Seconds between acquisition attempts.
DEFAULT_RETRY_INTERVAL = 0.1


class KeyLock:
    """Named locks on a shared store, with a local record of what is held.

    Example:
        >>> locks = KeyLock(backend, lambda key: "app_" + key + "_l")
        >>> locks.lock("report")
        >>> try:
        ...     build_report()
        ... finally:
        ...     locks.unlock("report")

    Args:
        backend: Store offering set-if-absent, expire and compare-and-delete.
        derive_key: Maps a logical key to the physical lock key. Called on
            every acquisition, so prefix changes apply to later locks; a
            release always targets the key recorded when it was acquired.
        timeout: Expiry applied to a lock key once acquired (seconds).
        retry_interval: Wait between attempts while the lock is held elsewhere.
        jitter: Upper bound of a uniform random extra wait added per attempt.
        strict: Release only if the lock key still holds the token written at
            acquisition time. Off by default, which releases unconditionally.
        sleep: Sleep function, replaceable in tests.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        backend: LockingBackend,
        derive_key: Callable[[str], str],
        *,
        timeout: int = DEFAULT_LOCK_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        jitter: float = 0.0,
        strict: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._derive_key = derive_key
        self.timeout = timeout
        self.retry_interval = retry_interval
        self.jitter = jitter
        self.strict = strict
        self._sleep = sleep
        self._clock = clock
        self._held: dict[str, tuple[str, str]] = {}

    def _next_wait(self) -> float:
        if self.jitter > 0:
            return self.retry_interval + random.uniform(0, self.jitter)
        return self.retry_interval

    # === Acquire ===

    def acquire(
        self,
        key: str,
        *,
        blocking: bool = True,
        timeout: float | None = None,
    ) -> bool:
        """Acquire the lock for *key*.

        Args:
            key: Logical key to lock.
            blocking: Make a single attempt when ``False``.
            timeout: Give up after this many seconds; ``None`` waits forever.

        Returns:
            True if the lock was acquired, False if the attempt gave up.
        """
        hkey = self._derive_key(key)
        token = uuid4().hex
        deadline = None if timeout is None else self._clock() + timeout
        attempts = 0

        while not self._backend.set_if_absent(hkey, token):
            if not blocking:
                return False

            wait = self._next_wait()
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.debug("lock_gave_up", key=key, attempts=attempts + 1)
                    return False
                wait = min(wait, remaining)

            if attempts == 0:
                logger.debug("lock_waiting", key=key)
            attempts += 1
            self._sleep(wait)

        try:
            self._backend.expire(hkey, self.timeout)
        except BackendUnavailableError:
            self._abandon(key, hkey, token)
            raise
        self._held[key] = (hkey, token)
        logger.debug("lock_acquired", key=key, attempts=attempts + 1)
        return True

    def _abandon(self, key: str, hkey: str, token: str) -> None:
        """Undo a set-if-absent whose expiry could not be applied.

        A lock key without a TTL outlives a crashed holder, so it is deleted
        at once. If that fails too, the hold is recorded so that
        :meth:`release_all` retries the delete.
        """
        try:
            self._backend.delete_if_equals(hkey, token)
        except BackendUnavailableError as exc:
            self._held[key] = (hkey, token)
            logger.error("lock_expire_failed", key=key, hkey=hkey, error=str(exc))
        else:
            logger.warning("lock_expire_failed_released", key=key, hkey=hkey)

    def lock(self, key: str) -> None:
        """Block until the lock for *key* is acquired."""
        self.acquire(key)

    def lock_or_raise(self, key: str, timeout: float) -> None:
        """Acquire within *timeout* seconds or raise ``LockTimeoutError``."""
        if not self.acquire(key, timeout=timeout):
            raise LockTimeoutError(key, timeout)

    # === Release ===

    def unlock(self, key: str) -> bool:
        """Release the lock for *key*.

        Without ``strict`` the lock key is deleted whether or not this
        instance still owns it, so a lock that expired and was taken by
        another holder gets released too.

        Returns:
            False only in strict mode, when the lock is no longer ours.
        """
        record = self._held.pop(key, None)
        if record is None:
            hkey, token = self._derive_key(key), None
        else:
            hkey, token = record

        if not self.strict:
            self._backend.batch_delete([hkey])
            logger.debug("lock_released", key=key)
            return True

        if token is None:
            logger.warning("lock_release_not_held", key=key)
            return False
        if not self._backend.delete_if_equals(hkey, token):
            logger.warning("lock_release_stale", key=key)
            return False
        logger.debug("lock_released", key=key)
        return True

    def release_all(self) -> int:
        """Release every lock this instance holds.

        Returns:
            Number of locks released
        """
        released = 0
        for key in list(self._held):
            try:
                if self.unlock(key):
                    released += 1
            except BackendUnavailableError as exc:
                logger.error("lock_release_failed", key=key, error=str(exc))
        return released

    def forget_all(self) -> None:
        """Drop local records without touching the store."""
        self._held.clear()

    # === Introspection ===

    def is_held(self, key: str) -> bool:
        """Whether this instance believes it holds *key*."""
        return key in self._held

    def held_keys(self) -> list[str]:
        return list(self._held)

    @contextmanager
    def locked(self, key: str, *, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock for *key* for the duration of a ``with`` block.

        Raises:
            LockTimeoutError: If *timeout* elapses first.
        """
        if timeout is None:
            self.lock(key)
        else:
            self.lock_or_raise(key, timeout)
        try:
            yield
        finally:
            self.unlock(key)


__all__ = [
    "DEFAULT_LOCK_TIMEOUT",
    "DEFAULT_RETRY_INTERVAL",
    "KeyLock",
]
