"""Connectivity status published by the sync coordinator."""

import asyncio
from collections.abc import AsyncIterator, Callable

from loguru import logger

from pvsync.schemas.sync import SyncStatus

StatusCallback = Callable[[SyncStatus], None]


class SyncStatusPublisher:
    """Holds the current sync status and notifies observers of changes.

    Operations call ``begin()`` when they start and ``end()`` when they finish.
    The status is ``SYNCING`` while any operation runs. Once the last one ends
    it rests at ``CONNECTED`` if any operation ever completed, otherwise at
    ``DISCONNECTED``. The status is informational and never blocks work.
    """

    def __init__(self):
        self._status = SyncStatus.DISCONNECTED
        self._active = 0
        self._has_completed = False
        self._callbacks: list[StatusCallback] = []
        self._queues: set[asyncio.Queue[SyncStatus]] = set()

    @property
    def status(self) -> SyncStatus:
        """Current status."""
        return self._status

    @property
    def has_completed_sync(self) -> bool:
        """Whether any operation ever completed."""
        return self._has_completed

    @property
    def active_operations(self) -> int:
        """Number of operations currently running."""
        return self._active

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a change callback; returns a function that unregisters it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def listen(self) -> AsyncIterator[SyncStatus]:
        """Yield the current status, then every change."""
        queue: asyncio.Queue[SyncStatus] = asyncio.Queue()
        self._queues.add(queue)
        try:
            yield self._status
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    def begin(self) -> None:
        """An operation started."""
        self._active += 1
        self._set(SyncStatus.SYNCING)

    def end(self, completed: bool = True) -> None:
        """An operation finished; ``completed`` is False if it failed outright."""
        self._active = max(0, self._active - 1)
        if completed:
            self._has_completed = True
        if self._active == 0:
            self._set(self._rest_status())

    def disconnect(self) -> None:
        """Session ended: nothing has synced in the new session yet."""
        self._active = 0
        self._has_completed = False
        self._set(SyncStatus.DISCONNECTED)

    def _rest_status(self) -> SyncStatus:
        return SyncStatus.CONNECTED if self._has_completed else SyncStatus.DISCONNECTED

    def _set(self, status: SyncStatus) -> None:
        if status == self._status:
            return
        self._status = status
        logger.debug(f"Sync status: {status.value}")

        for callback in list(self._callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.warning(f"Status callback failed: {e}")

        for queue in self._queues:
            queue.put_nowait(status)
