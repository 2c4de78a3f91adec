import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from naks.checkout.models.payment import PaymentRecord, PaymentStatus
from naks.checkout.watcher import (
    DatabasePaymentRecordStore,
    MemoryPaymentRecordStore,
    OnChange,
    PaymentStatusWatcher,
    Unsubscribe,
)


class CountingStore(MemoryPaymentRecordStore):
    def __init__(self):
        super().__init__()
        self.subscribe_count = 0
        self.unsubscribe_count = 0

    def subscribe(self, key: str, on_change: OnChange) -> Unsubscribe:
        self.subscribe_count += 1
        unsubscribe = super().subscribe(key, on_change)

        def counting_unsubscribe():
            self.unsubscribe_count += 1
            unsubscribe()

        return counting_unsubscribe


def record(status: PaymentStatus, **kwargs) -> PaymentRecord:
    return PaymentRecord(id="p1", status=status, **kwargs)


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.mark.asyncio
async def test_completed(store: CountingStore):
    store.set(record(PaymentStatus.pending))
    watcher = PaymentStatusWatcher(store, "p1")
    watcher.start()
    assert watcher.is_active
    assert watcher.record.status == PaymentStatus.pending

    store.set(record(PaymentStatus.processing))
    assert watcher.record.status == PaymentStatus.processing
    assert not watcher.is_done

    store.set(record(PaymentStatus.completed, mpesa_receipt_number="NLJ7RT61SV"))
    result = await watcher.wait(1)

    assert result.status == PaymentStatus.completed
    assert result.mpesa_receipt_number == "NLJ7RT61SV"
    assert watcher.is_done
    assert not watcher.is_active
    assert store.unsubscribe_count == 1
    assert store.subscriber_count == 0

    watcher.close()
    assert store.unsubscribe_count == 1


@pytest.mark.asyncio
async def test_failed(store: CountingStore):
    watcher = PaymentStatusWatcher(store, "p1")
    watcher.start()
    assert watcher.record is None

    store.set(record(PaymentStatus.failed, error_reason="Request cancelled by user"))

    assert watcher.is_done
    assert watcher.record.error_reason == "Request cancelled by user"
    assert store.unsubscribe_count == 1


@pytest.mark.asyncio
async def test_terminal_absorbed(store: CountingStore):
    store.set(record(PaymentStatus.pending))
    watcher = PaymentStatusWatcher(store, "p1")
    watcher.start()

    store.set(record(PaymentStatus.completed))
    store.set(record(PaymentStatus.failed))
    store.set(record(PaymentStatus.pending))

    assert watcher.record.status == PaymentStatus.completed
    assert store.unsubscribe_count == 1


@pytest.mark.asyncio
async def test_already_terminal(store: CountingStore):
    store.set(record(PaymentStatus.completed))
    watcher = PaymentStatusWatcher(store, "p1")
    watcher.start()

    assert watcher.is_done
    assert store.subscribe_count == 1
    assert store.unsubscribe_count == 1
    assert store.subscriber_count == 0


@pytest.mark.asyncio
async def test_close(store: CountingStore):
    store.set(record(PaymentStatus.pending))
    watcher = PaymentStatusWatcher(store, "p1")
    watcher.start()

    watcher.close()
    watcher.close()
    store.set(record(PaymentStatus.completed))

    assert store.unsubscribe_count == 1
    assert watcher.record.status == PaymentStatus.pending
    assert not watcher.is_done
    assert not watcher.timed_out


@pytest.mark.asyncio
async def test_start_once(store: CountingStore):
    watcher = PaymentStatusWatcher(store, "p1")
    watcher.start()
    watcher.start()
    await watcher.wait(0)
    assert store.subscribe_count == 1
    watcher.close()


@pytest.mark.asyncio
async def test_wait_bound(store: CountingStore):
    store.set(record(PaymentStatus.pending))
    watcher = PaymentStatusWatcher(store, "p1")

    result = await watcher.wait(0.01)

    assert result.status == PaymentStatus.pending
    assert watcher.is_active
    assert not watcher.timed_out
    watcher.close()
    assert store.unsubscribe_count == 1


@pytest.mark.asyncio
async def test_wait_wakes_on_change(store: CountingStore):
    store.set(record(PaymentStatus.pending))
    watcher = PaymentStatusWatcher(store, "p1")

    async def complete():
        await asyncio.sleep(0.01)
        store.set(record(PaymentStatus.completed))

    task = asyncio.create_task(complete())
    result = await watcher.wait(5)
    await task

    assert result.status == PaymentStatus.completed


@pytest.mark.asyncio
async def test_deadline(store: CountingStore):
    store.set(record(PaymentStatus.pending))
    deadline = datetime.now(tz=timezone.utc) + timedelta(seconds=0.05)
    watcher = PaymentStatusWatcher(store, "p1", deadline=deadline)

    result = await watcher.wait(5)
    # the deadline timer may fire just after the wait returns
    await asyncio.sleep(0.1)

    assert result.status == PaymentStatus.pending
    assert watcher.timed_out
    assert not watcher.is_active
    assert store.unsubscribe_count == 1


@pytest.mark.asyncio
async def test_deadline_passed(store: CountingStore):
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)
    watcher = PaymentStatusWatcher(
        store, "p1", deadline=now - timedelta(seconds=1), get_time=lambda: now
    )
    watcher.start()

    assert watcher.timed_out
    assert store.subscribe_count == 0
    assert store.unsubscribe_count == 0


@pytest.mark.asyncio
async def test_memory_store_subscribe():
    store = MemoryPaymentRecordStore()
    seen: list[Optional[PaymentRecord]] = []

    unsubscribe = store.subscribe("p1", seen.append)
    store.set(record(PaymentStatus.pending))
    unsubscribe()
    store.set(record(PaymentStatus.completed))

    assert seen == [None, record(PaymentStatus.pending)]
    assert store.subscriber_count == 0
    assert await store.get("p1") == record(PaymentStatus.completed)


class FakeEntity:
    def __init__(self, record: PaymentRecord):
        self.record = record

    def get_record(self) -> PaymentRecord:
        return self.record


class FakeSession:
    def __init__(self, records: dict[str, PaymentRecord]):
        self.records = records

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def get(self, entity_type, key: str):
        record = self.records.get(key)
        return FakeEntity(record) if record is not None else None


class FakeSessionFactory:
    def __init__(self):
        self.records: dict[str, PaymentRecord] = {}
        self.loads = 0

    def __call__(self) -> FakeSession:
        self.loads += 1
        return FakeSession(self.records)


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def db_store(session_factory: FakeSessionFactory):
    return DatabasePaymentRecordStore(session_factory, poll_interval=60)


async def wait_for_value(seen: list, count: int):
    while len(seen) < count:
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_database_store_notify_wakes(
    db_store: DatabasePaymentRecordStore, session_factory: FakeSessionFactory
):
    session_factory.records["p1"] = record(PaymentStatus.pending)
    seen: list[Optional[PaymentRecord]] = []

    unsubscribe = db_store.subscribe("p1", seen.append)
    await asyncio.wait_for(wait_for_value(seen, 1), 1)
    assert seen == [record(PaymentStatus.pending)]

    session_factory.records["p1"] = record(PaymentStatus.processing)
    await db_store.notify("p1")
    await asyncio.wait_for(wait_for_value(seen, 2), 1)
    assert seen[-1] == record(PaymentStatus.processing)
    assert session_factory.loads == 2

    unsubscribe()
    await db_store.close()


@pytest.mark.asyncio
async def test_database_store_unchanged_not_repeated(
    db_store: DatabasePaymentRecordStore, session_factory: FakeSessionFactory
):
    session_factory.records["p1"] = record(PaymentStatus.pending)
    seen: list[Optional[PaymentRecord]] = []

    db_store.subscribe("p1", seen.append)
    await asyncio.wait_for(wait_for_value(seen, 1), 1)

    await db_store.notify("p1")
    while session_factory.loads < 2:
        await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert seen == [record(PaymentStatus.pending)]
    await db_store.close()


@pytest.mark.asyncio
async def test_database_store_terminal_ends_task(
    db_store: DatabasePaymentRecordStore, session_factory: FakeSessionFactory
):
    session_factory.records["p1"] = record(PaymentStatus.pending)
    watcher = PaymentStatusWatcher(db_store, "p1")
    watcher.start()
    tasks = list(db_store._tasks)
    assert len(tasks) == 1

    session_factory.records["p1"] = record(
        PaymentStatus.completed, mpesa_receipt_number="NLJ7RT61SV"
    )
    await db_store.notify("p1")
    result = await watcher.wait(1)

    assert result.status == PaymentStatus.completed
    assert not watcher.is_active
    await asyncio.wait(tasks, timeout=1)
    assert all(t.cancelled() for t in tasks)
    assert db_store._tasks == set()
    assert db_store._wakeups == {}


@pytest.mark.asyncio
async def test_database_store_close(
    db_store: DatabasePaymentRecordStore, session_factory: FakeSessionFactory
):
    session_factory.records["p1"] = record(PaymentStatus.pending)
    db_store.subscribe("p1", lambda r: None)
    db_store.subscribe("p2", lambda r: None)
    tasks = list(db_store._tasks)
    assert len(tasks) == 2

    await db_store.close()

    assert all(t.cancelled() for t in tasks)
    assert db_store._tasks == set()
