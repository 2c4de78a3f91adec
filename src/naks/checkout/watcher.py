"""Payment record stores and the payment status watcher."""
from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from loguru import logger
from naks.checkout.entities.payment import PaymentEntity
from naks.checkout.models.payment import PaymentRecord
from naks.checkout.util import get_now, get_seconds_until
from sqlalchemy.ext.asyncio import async_sessionmaker

OnChange = Callable[[Optional[PaymentRecord]], None]
"""Called with the current record, or None if it does not exist."""

Unsubscribe = Callable[[], None]


class PaymentRecordStore(ABC):
    """Read access to payment records."""

    @abstractmethod
    async def get(self, key: str) -> Optional[PaymentRecord]:
        """Get a payment record."""
        ...

    @abstractmethod
    def subscribe(self, key: str, on_change: OnChange) -> Unsubscribe:
        """Watch a payment record.

        ``on_change`` is called with the current record and again after each
        change.

        Returns:
            A function that ends the subscription.
        """
        ...


class MemoryPaymentRecordStore(PaymentRecordStore):
    """In-process payment record store."""

    def __init__(self):
        self._records: dict[str, PaymentRecord] = {}
        self._subscribers: dict[str, list[OnChange]] = {}

    async def get(self, key: str) -> Optional[PaymentRecord]:
        return self._records.get(key)

    def set(self, record: PaymentRecord):
        """Store a record and notify subscribers."""
        self._records[record.id] = record
        for cb in list(self._subscribers.get(record.id, ())):
            cb(record)

    def subscribe(self, key: str, on_change: OnChange) -> Unsubscribe:
        # wrap so the same callable may subscribe twice
        def callback(record: Optional[PaymentRecord]):
            on_change(record)

        self._subscribers.setdefault(key, []).append(callback)
        callback(self._records.get(key))

        def unsubscribe():
            subscribers = self._subscribers.get(key, [])
            if callback in subscribers:
                subscribers.remove(callback)
            if not subscribers:
                self._subscribers.pop(key, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        """The number of active subscriptions."""
        return sum(len(s) for s in self._subscribers.values())


class DatabasePaymentRecordStore(PaymentRecordStore):
    """Payment record store backed by the database.

    Subscriptions poll the record. :meth:`notify` wakes them immediately, and is
    called after a payment update commits.
    """

    def __init__(self, session_factory: async_sessionmaker, poll_interval: float = 3.0):
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self._wakeups: dict[str, set[asyncio.Event]] = {}
        self._tasks: set[asyncio.Task] = set()

    async def get(self, key: str) -> Optional[PaymentRecord]:
        async with self.session_factory() as session:
            entity = await session.get(PaymentEntity, key)
            return entity.get_record() if entity is not None else None

    def subscribe(self, key: str, on_change: OnChange) -> Unsubscribe:
        wakeup = asyncio.Event()
        self._wakeups.setdefault(key, set()).add(wakeup)

        task = asyncio.create_task(self._poll(key, wakeup, on_change))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        def unsubscribe():
            wakeups = self._wakeups.get(key, set())
            wakeups.discard(wakeup)
            if not wakeups:
                self._wakeups.pop(key, None)
            task.cancel()

        return unsubscribe

    async def notify(self, key: str):
        """Wake subscriptions to a record."""
        for wakeup in self._wakeups.get(key, ()):
            wakeup.set()

    async def close(self):
        """Cancel all subscriptions."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()

        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _poll(self, key: str, wakeup: asyncio.Event, on_change: OnChange):
        last = None
        first = True
        while True:
            try:
                record = await self.get(key)
            except Exception:
                logger.opt(exception=True).error(f"Failed to load payment {key}")
            else:
                if first or record != last:
                    first = False
                    last = record
                    on_change(record)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(wakeup.wait(), self.poll_interval)
            wakeup.clear()


class PaymentStatusWatcher:
    """Watches a payment record until it reaches a terminal status.

    Terminal statuses are absorbing. The subscription is ended exactly once: when a
    terminal status is seen, when the deadline passes, or on :meth:`close`.
    """

    def __init__(
        self,
        store: PaymentRecordStore,
        payment_id: str,
        deadline: Optional[datetime] = None,
        get_time: Callable[[], datetime] = get_now,
    ):
        self.store = store
        self.payment_id = payment_id
        self.deadline = deadline
        self.get_time = get_time
        self.record: Optional[PaymentRecord] = None
        self.timed_out = False
        self._unsubscribe: Optional[Unsubscribe] = None
        self._started = False
        self._closed = False
        self._done = asyncio.Event()
        self._finished = asyncio.Event()
        self._deadline_handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_done(self) -> bool:
        """Whether a terminal status was seen."""
        return self._done.is_set()

    @property
    def is_active(self) -> bool:
        """Whether the subscription is live."""
        return self._unsubscribe is not None

    def start(self):
        """Subscribe to the payment record."""
        if self._started:
            return
        self._started = True

        remaining = self._get_remaining()
        if remaining is not None and remaining <= 0:
            self._time_out()
            return

        self._unsubscribe = self.store.subscribe(self.payment_id, self._on_change)

        # the first value may already have been terminal
        if self._done.is_set():
            self._release()
        elif remaining is not None:
            loop = asyncio.get_running_loop()
            self._deadline_handle = loop.call_later(remaining, self._time_out)

    async def wait(self, timeout: Optional[float] = None) -> Optional[PaymentRecord]:
        """Wait for a terminal status.

        Args:
            timeout: The most seconds to wait in this call.

        Returns:
            The latest record, which may not be terminal.
        """
        self.start()
        if self._done.is_set() or self._closed:
            return self.record

        remaining = self._get_remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)

        if timeout is not None and timeout <= 0:
            if remaining is not None and remaining <= 0:
                self._time_out()
            return self.record

        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._finished.wait(), timeout)

        remaining = self._get_remaining()
        if not self._done.is_set() and remaining is not None and remaining <= 0:
            self._time_out()

        return self.record

    def close(self):
        """End the subscription."""
        self._closed = True
        self._release()

    def _on_change(self, record: Optional[PaymentRecord]):
        if record is None or self._done.is_set() or self._closed:
            return

        self.record = record
        if record.is_terminal:
            self._done.set()
            self._release()

    def _time_out(self):
        if self._done.is_set() or self._closed:
            return
        logger.debug(f"Stopped watching payment {self.payment_id} after the deadline")
        self.timed_out = True
        self.close()

    def _release(self):
        self._finished.set()
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None

        unsubscribe = self._unsubscribe
        self._unsubscribe = None
        if unsubscribe is not None:
            unsubscribe()

    def _get_remaining(self) -> Optional[float]:
        return get_seconds_until(self.deadline, self.get_time())
