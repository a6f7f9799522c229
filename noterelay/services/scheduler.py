"""
Claim scheduler.

Polls the store for due notes, claims them one at a time and hands each
to the delivery executor. Any number of schedulers may run against the
same database; the atomic claim is the only coordination between them.
"""
import asyncio
from datetime import timedelta

from sqlalchemy.ext.asyncio import async_sessionmaker

from noterelay.config import settings
from noterelay.logging_config import get_logger
from noterelay.models.note import Note
from noterelay.routes.metrics import track_note_claimed, track_stale_locks_reaped
from noterelay.sentry_config import capture_exception
from noterelay.services.delivery_service import DeliveryExecutor
from noterelay.services.note_store import NoteStore


class ClaimScheduler:
    """Fault-tolerant claim/deliver polling loop."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        executor: DeliveryExecutor,
        poll_interval: float | None = None,
        lock_timeout: float | None = None
    ):
        self.session_factory = session_factory
        self.executor = executor
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        if lock_timeout is None:
            lock_timeout = settings.LOCK_TIMEOUT_SECONDS
        self.lock_timeout = timedelta(seconds=lock_timeout) if lock_timeout else None
        self.log = get_logger(component="scheduler")

    async def claim_one_due(self) -> Note | None:
        """Claim the earliest due note, or return None when nothing is due."""
        async with self.session_factory() as db:
            note = await NoteStore(db).claim_one_due()
        if note is not None:
            track_note_claimed()
        return note

    async def process_one(self) -> Note | None:
        """
        Run one claim-deliver cycle.

        Returns:
            The note after its attempt, or None if nothing was due
        """
        async with self.session_factory() as db:
            store = NoteStore(db)
            note = await store.claim_one_due()
            if note is None:
                return None
            track_note_claimed()
            return await self.executor.deliver(store, note)

    async def drain(self, stop: asyncio.Event | None = None) -> int:
        """Claim and deliver until no due note remains. Returns the count processed."""
        processed = 0
        while stop is None or not stop.is_set():
            note = await self.process_one()
            if note is None:
                break
            processed += 1
        return processed

    async def reap(self) -> int:
        """Release notes whose processing lock outlived lock_timeout."""
        if self.lock_timeout is None:
            return 0
        async with self.session_factory() as db:
            reaped = await NoteStore(db).reap_stale_locks(self.lock_timeout)
        if reaped:
            track_stale_locks_reaped(len(reaped))
            self.log.warning("stale_locks_reaped", count=len(reaped), note_ids=reaped)
        return len(reaped)

    async def run(self, stop: asyncio.Event) -> None:
        """
        Poll until stop is set.

        Errors are logged and followed by an idle period; they never end
        the loop.
        """
        self.log.info("worker_started", poll_interval=self.poll_interval)
        while not stop.is_set():
            try:
                await self.reap()
                processed = await self.drain(stop)
                if processed:
                    self.log.info("drain_completed", processed=processed)
            except Exception as e:
                self.log.error("worker_loop_error", error=str(e), error_type=type(e).__name__)
                capture_exception(e)
            await self._idle(stop)
        self.log.info("worker_stopped")

    async def _idle(self, stop: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
