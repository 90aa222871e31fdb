"""
Appointment change distribution

Readers subscribe to "current appointment list for user X". After every
committed transaction that touched a user's appointments, each subscriber of
that user receives the full, freshly read list (never a diff).
"""

import asyncio
import inspect
import itertools
import logging
import threading
import weakref
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy import event
from sqlalchemy.orm import Session

from ...database import SessionLocal
from ...exceptions import CalendlySyncError, NotConnected
from .repository import CHANGED_USERS_KEY, AppointmentRepository
from .schemas import AppointmentResponse

logger = logging.getLogger(__name__)

AppointmentsCallback = Callable[[list[AppointmentResponse]], Union[Awaitable[None], None]]
SyncRunner = Callable[[str], Awaitable[int]]

_distributors: "weakref.WeakSet[ChangeDistributor]" = weakref.WeakSet()


@event.listens_for(Session, "after_commit")
def _dispatch_committed_changes(session: Session) -> None:
    changed = session.info.pop(CHANGED_USERS_KEY, None)
    if not changed:
        return
    for distributor in list(_distributors):
        for user_id in changed:
            distributor.notify(user_id)


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back_changes(session: Session) -> None:
    session.info.pop(CHANGED_USERS_KEY, None)


class ChangeDistributor:
    """In-process pub/sub over committed appointment writes"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        sync_runner: Optional[SyncRunner] = None,
    ):
        self.session_factory = session_factory
        self.sync_runner = sync_runner
        self._subscribers: dict[str, dict[int, tuple[AppointmentsCallback, asyncio.AbstractEventLoop]]] = {}
        self._synced_readers: set[str] = set()
        self._tokens = itertools.count()
        self._lock = threading.Lock()
        _distributors.add(self)

    def load_snapshot(self, user_id: str) -> list[AppointmentResponse]:
        db = self.session_factory()
        try:
            rows = AppointmentRepository.list_for_user(db, user_id)
            return [AppointmentResponse.model_validate(row) for row in rows]
        finally:
            db.close()

    async def subscribe(
        self,
        user_id: str,
        callback: AppointmentsCallback,
        reader_id: Optional[str] = None,
    ) -> Callable[[], None]:
        """
        Subscribe a reader to a user's appointment list.

        On a reader's first subscription in this process a sweep runs before
        the initial list is emitted. Returns an idempotent unsubscribe callable.
        """
        loop = asyncio.get_running_loop()
        reader_key = reader_id or user_id

        with self._lock:
            first_subscription = reader_key not in self._synced_readers
            self._synced_readers.add(reader_key)
            token = next(self._tokens)
            self._subscribers.setdefault(user_id, {})[token] = (callback, loop)

        def unsubscribe() -> None:
            with self._lock:
                user_subs = self._subscribers.get(user_id)
                if user_subs is None:
                    return
                user_subs.pop(token, None)
                if not user_subs:
                    del self._subscribers[user_id]

        try:
            if first_subscription and self.sync_runner is not None:
                await self._initial_sync(user_id, reader_key)
            await self._deliver(user_id, callback)
        except asyncio.CancelledError:
            unsubscribe()
            raise
        return unsubscribe

    async def _initial_sync(self, user_id: str, reader_key: str) -> None:
        try:
            synced = await self.sync_runner(user_id)
            logger.info(f"🔄 Initial sync for reader {reader_key}: {synced} events")
        except NotConnected:
            logger.info(f"ℹ️ Skipping initial sync, Calendly not connected for user {user_id}")
        except CalendlySyncError as e:
            logger.warning(f"⚠️ Initial sync failed for user {user_id}: {e}")
        except Exception as e:
            # The reader still gets the stored list
            logger.error(f"❌ Initial sync crashed for user {user_id}: {e}")

    def subscriber_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, {}))

    def notify(self, user_id: str) -> None:
        """Schedule delivery of the current list to every subscriber of user_id"""
        with self._lock:
            targets = list(self._subscribers.get(user_id, {}).values())

        for callback, loop in targets:
            if loop.is_closed():
                logger.warning(f"⚠️ Dropping notification for user {user_id}: reader loop closed")
                continue
            asyncio.run_coroutine_threadsafe(self._deliver(user_id, callback), loop)

    async def _deliver(self, user_id: str, callback: AppointmentsCallback) -> None:
        try:
            snapshot = self.load_snapshot(user_id)
            result = callback(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"❌ Failed to deliver appointments to reader of user {user_id}: {e}")


change_distributor = ChangeDistributor()
