"""Coalesce concurrent sync triggers for the same channel.

Google does not promise exclusive or ordered webhook delivery, so several
pings for one ``(user_id, channel_id)`` can arrive while a sync for that
key is still running.  :class:`DeduplicatingDispatcher` runs the first and
drops the rest: the next successful run resumes from the last stored sync
token, so a dropped ping does not lose the changes it announced.

The registry of in-flight keys is the only shared mutable state.  Each
claim stores a fresh owner token under its key; the check-and-insert is
atomic under a lock, and a release only removes the key while it still
belongs to the claim being released.  A late release from a finished run
therefore never frees a key claimed by the next run.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any

from cal_memsync.models.sync import ProcessingKey

logger = logging.getLogger(__name__)

Work = Callable[[], Awaitable[Any]]


class _Claim:
    """Owner token for one run of a key."""

    __slots__ = ()


class DeduplicatingDispatcher:
    """At most one outstanding run per :class:`ProcessingKey`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: dict[ProcessingKey, _Claim] = {}
        self._tasks: set[asyncio.Task[bool]] = set()

    def in_flight(self, key: ProcessingKey) -> bool:
        with self._lock:
            return key in self._in_flight

    def _try_acquire(self, key: ProcessingKey) -> _Claim | None:
        with self._lock:
            if key in self._in_flight:
                return None
            claim = _Claim()
            self._in_flight[key] = claim
            return claim

    def _release(self, key: ProcessingKey, claim: _Claim) -> None:
        with self._lock:
            if self._in_flight.get(key) is claim:
                del self._in_flight[key]

    async def dispatch(self, key: ProcessingKey, work: Work) -> bool:
        """Run *work* unless a run for *key* is already outstanding.

        Exceptions raised by *work* propagate after the key is released.

        Returns:
            ``True`` if *work* ran, ``False`` if the trigger was dropped.
        """
        claim = self._try_acquire(key)
        if claim is None:
            logger.info("Sync already in progress for %s, dropping trigger", key)
            return False

        try:
            await work()
        finally:
            self._release(key, claim)
        return True

    def submit(self, key: ProcessingKey, work: Work) -> asyncio.Task[bool] | None:
        """Schedule *work* in the background and return immediately.

        The key is claimed synchronously, so a duplicate submitted right
        after this call is dropped even before the task starts.  The
        dispatcher keeps a reference to the task until it finishes; errors
        escaping *work* are logged there.

        Must be called from a running event loop.

        Returns:
            The scheduled task, or ``None`` if the trigger was dropped.
        """
        claim = self._try_acquire(key)
        if claim is None:
            logger.info("Sync already in progress for %s, dropping trigger", key)
            return None

        try:
            task = asyncio.get_running_loop().create_task(
                self._run_claimed(key, claim, work), name=f"sync-{key}"
            )
        except BaseException:
            self._release(key, claim)
            raise

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        # A task cancelled before its first step never enters _run_claimed.
        task.add_done_callback(lambda _task: self._release(key, claim))
        return task

    async def _run_claimed(self, key: ProcessingKey, claim: _Claim, work: Work) -> bool:
        try:
            await work()
        except Exception:
            logger.exception("Background sync for %s failed", key)
        finally:
            self._release(key, claim)
        return True

    async def drain(self) -> None:
        """Wait for every background task started by :meth:`submit`."""
        tasks = list(self._tasks)
        if tasks:
            logger.info("Waiting for %d background sync task(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
