"""
Note model for scheduled webhook delivery.

A note is created pending, claimed by exactly one worker at a time and
finishes delivered or dead. Attempts are append-only.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from noterelay.models.base import Base, TimestampMixin


class NoteStatus(str, enum.Enum):
    """Note lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    DEAD = "dead"


class Note(Base, TimestampMixin):
    """
    Note model.

    Invariants kept by NoteStore:
    - status PROCESSING iff locked_at is set
    - status DELIVERED implies delivered_at is set
    """
    __tablename__ = "notes"
    __table_args__ = (
        Index("ix_notes_status_release_at", "status", "release_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    release_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[NoteStatus] = mapped_column(
        SQLEnum(
            NoteStatus,
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=NoteStatus.PENDING
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    attempts: Mapped[list["NoteAttempt"]] = relationship(
        back_populates="note",
        order_by="NoteAttempt.position",
        lazy="selectin",
    )

    def failure_count(self) -> int:
        """Count failed attempts in the whole history, replays included."""
        return sum(1 for attempt in self.attempts if not attempt.ok)

    def __repr__(self):
        return f"<Note(id={self.id}, status={self.status}, release_at={self.release_at})>"


class NoteAttempt(Base):
    """Immutable record of one delivery try."""
    __tablename__ = "note_attempts"

    note_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("notes.id", ondelete="CASCADE"),
        primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ok: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    note: Mapped["Note"] = relationship(back_populates="attempts")

    def __repr__(self):
        return f"<NoteAttempt(note_id={self.note_id}, position={self.position}, ok={self.ok})>"
