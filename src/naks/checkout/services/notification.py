"""Payment change notifications."""
import asyncio
from asyncio import AbstractEventLoop
from collections.abc import Iterable
from concurrent.futures import Future
from typing import Optional

import sqlalchemy.event
from loguru import logger
from naks.checkout.watcher import DatabasePaymentRecordStore
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Session


class PaymentNotificationService:
    """Wakes payment watchers once a payment change is committed.

    Payment IDs are collected per session. They are sent to the record store when
    the session commits and dropped when it rolls back.
    """

    def __init__(self, store: DatabasePaymentRecordStore, loop: AbstractEventLoop):
        self.store = store
        self._loop = loop
        self._pending: dict[int, dict[str, None]] = {}

    def add_listeners(self, event_target: async_sessionmaker):
        underlying = event_target.class_.sync_session_class
        sqlalchemy.event.listen(underlying, "after_commit", self._on_commit)
        sqlalchemy.event.listen(underlying, "after_rollback", self._on_rollback)

    def remove_listeners(self, event_target: async_sessionmaker):
        underlying = event_target.class_.sync_session_class
        sqlalchemy.event.remove(underlying, "after_rollback", self._on_rollback)
        sqlalchemy.event.remove(underlying, "after_commit", self._on_commit)

    def add_notification(self, session: AsyncSession, payment_id: str):
        """Notify watchers of ``payment_id`` when ``session`` commits.

        Must be called from within the event loop.
        """
        ids = self._pending.setdefault(id(session.sync_session), {})
        ids[payment_id] = None

    def _on_commit(self, session: Session) -> Optional[Future]:
        ids = self._pending.pop(id(session), None)
        if not ids:
            return None
        return asyncio.run_coroutine_threadsafe(self._send(ids), self._loop)

    def _on_rollback(self, session: Session):
        self._pending.pop(id(session), None)

    async def _send(self, payment_ids: Iterable[str]):
        for payment_id in payment_ids:
            try:
                await self.store.notify(payment_id)
            except Exception:
                logger.opt(exception=True).error(
                    f"Could not notify watchers of payment {payment_id}"
                )
