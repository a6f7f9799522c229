"""
Note store: durable persistence for notes and their attempts.

The claim is a single conditional UPDATE so concurrent workers can never
both move the same note out of PENDING. Outcome writes after a claim are
plain updates by id; the appended attempt takes the next free position
in the stored history.
"""
from datetime import datetime, timedelta, timezone
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from noterelay.models.base import utcnow
from noterelay.models.note import Note, NoteAttempt, NoteStatus


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an aware timestamp to naive UTC; naive values are taken as UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class NoteStore:
    """Service for persisting notes and driving their state transitions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_note(
        self,
        title: str,
        body: str,
        release_at: datetime,
        webhook_url: str
    ) -> Note:
        """
        Create a new note in PENDING status.

        Args:
            title: Note title
            body: Note body
            release_at: Earliest delivery time
            webhook_url: Delivery target

        Returns:
            Newly created Note
        """
        note = Note(
            title=title,
            body=body,
            release_at=to_naive_utc(release_at),
            webhook_url=webhook_url,
            status=NoteStatus.PENDING
        )
        self.db.add(note)
        await self.db.commit()
        return await self.get_note(note.id)

    async def get_note(self, note_id: str) -> Note | None:
        """Get note by ID with its attempts in order."""
        stmt = (
            select(Note)
            .where(Note.id == note_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_notes(
        self,
        status: NoteStatus | None = None,
        page: int = 1,
        page_size: int = 50
    ) -> tuple[int, list[Note]]:
        """List notes newest first, optionally filtered by status."""
        page = max(1, page)
        count_stmt = select(func.count()).select_from(Note)
        stmt = select(Note).order_by(Note.created_at.desc(), Note.id.desc())
        if status is not None:
            count_stmt = count_stmt.where(Note.status == status)
            stmt = stmt.where(Note.status == status)

        total = (await self.db.execute(count_stmt)).scalar_one()
        result = await self.db.execute(
            stmt.offset((page - 1) * page_size).limit(page_size)
        )
        return total, list(result.scalars().all())

    async def claim_one_due(self, now: datetime | None = None) -> Note | None:
        """
        Atomically move the earliest due PENDING note to PROCESSING.

        Returns:
            The claimed Note, or None if nothing is due
        """
        now = now or utcnow()
        candidate = aliased(Note)
        due = (
            select(candidate.id)
            .where(
                candidate.status == NoteStatus.PENDING,
                candidate.release_at <= now,
            )
            .order_by(
                candidate.release_at.asc(),
                candidate.created_at.asc(),
                candidate.id.asc(),
            )
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(Note)
            .where(Note.id == due, Note.status == NoteStatus.PENDING)
            .values(status=NoteStatus.PROCESSING, locked_at=now)
            .returning(Note.id)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        note_id = result.scalar_one_or_none()
        await self.db.commit()

        if note_id is None:
            return None
        return await self.get_note(note_id)

    async def _finish_attempt(self, note: Note, attempt: NoteAttempt, **values) -> Note:
        # Outcome writes for one note run one at a time
        await self.db.execute(
            select(Note.id).where(Note.id == note.id).with_for_update()
        )
        # Position comes from the stored history, not the copy loaded at claim
        # time: a reaped note may have gained attempts from another worker
        prior = aliased(NoteAttempt)
        next_position = (
            select(func.coalesce(func.max(prior.position), 0) + 1)
            .where(prior.note_id == note.id)
            .scalar_subquery()
        )
        await self.db.execute(
            insert(NoteAttempt).values(
                note_id=note.id,
                position=next_position,
                at=attempt.at,
                status_code=attempt.status_code,
                ok=attempt.ok,
                error=attempt.error,
            )
        )
        await self.db.execute(
            update(Note)
            .where(Note.id == note.id)
            .values(locked_at=None, **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return await self.get_note(note.id)

    async def mark_delivered(self, note: Note, attempt: NoteAttempt) -> Note:
        """Append a successful attempt and move PROCESSING -> DELIVERED."""
        return await self._finish_attempt(
            note,
            attempt,
            status=NoteStatus.DELIVERED,
            delivered_at=attempt.at,
        )

    async def schedule_retry(self, note: Note, attempt: NoteAttempt, release_at: datetime) -> Note:
        """Append a failed attempt and move PROCESSING -> PENDING at release_at."""
        return await self._finish_attempt(
            note,
            attempt,
            status=NoteStatus.PENDING,
            release_at=release_at,
        )

    async def mark_dead(self, note: Note, attempt: NoteAttempt) -> Note:
        """Append a failed attempt and move PROCESSING -> DEAD."""
        return await self._finish_attempt(note, attempt, status=NoteStatus.DEAD)

    async def replay(self, note_id: str) -> Note | None:
        """
        Force a note back to PENDING for immediate redelivery.

        Applies from any status. Attempts are kept, and earlier failures
        still count toward the retry ceiling.
        """
        now = utcnow()
        result = await self.db.execute(
            update(Note)
            .where(Note.id == note_id)
            .values(
                status=NoteStatus.PENDING,
                locked_at=None,
                delivered_at=None,
                release_at=now,
            )
            .returning(Note.id)
            .execution_options(synchronize_session=False)
        )
        replayed = result.scalar_one_or_none()
        await self.db.commit()

        if replayed is None:
            return None
        return await self.get_note(replayed)

    async def reap_stale_locks(self, older_than: timedelta, now: datetime | None = None) -> list[str]:
        """
        Return PROCESSING notes locked before now - older_than to PENDING.

        Returns:
            IDs of the released notes
        """
        cutoff = (now or utcnow()) - older_than
        result = await self.db.execute(
            update(Note)
            .where(Note.status == NoteStatus.PROCESSING, Note.locked_at < cutoff)
            .values(status=NoteStatus.PENDING, locked_at=None)
            .returning(Note.id)
            .execution_options(synchronize_session=False)
        )
        reaped = list(result.scalars().all())
        await self.db.commit()
        return reaped
