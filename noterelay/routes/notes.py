"""
Note API routes.

Management surface: create notes, list them and force redelivery.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from noterelay.database import get_db
from noterelay.dependencies.auth import require_admin
from noterelay.dependencies.rate_limit import check_rate_limit
from noterelay.logging_config import get_logger
from noterelay.models.note import Note, NoteAttempt, NoteStatus
from noterelay.routes.metrics import track_note_created, track_note_replayed
from noterelay.services.idempotency import format_release_at
from noterelay.services.note_store import NoteStore


router = APIRouter(
    prefix="/api/notes",
    tags=["notes"],
    dependencies=[Depends(check_rate_limit), Depends(require_admin)],
)

PAGE_SIZE = 50


# Pydantic models for request/response
class CreateNoteRequest(BaseModel):
    """Request model for creating a note."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    release_at: datetime = Field(alias="releaseAt")
    webhook_url: AnyHttpUrl = Field(alias="webhookUrl")


class AttemptResponse(BaseModel):
    at: str
    statusCode: int
    ok: bool
    error: str | None = None


class NoteResponse(BaseModel):
    """Response model for a note."""
    id: str
    title: str
    body: str
    releaseAt: str
    webhookUrl: str
    status: str
    attempts: list[AttemptResponse] = []
    deliveredAt: str | None = None
    lockedAt: str | None = None
    createdAt: str | None = None


def attempt_to_response(attempt: NoteAttempt) -> AttemptResponse:
    return AttemptResponse(
        at=format_release_at(attempt.at),
        statusCode=attempt.status_code,
        ok=attempt.ok,
        error=attempt.error,
    )


def note_to_response(note: Note) -> NoteResponse:
    """Convert Note model to NoteResponse."""
    return NoteResponse(
        id=note.id,
        title=note.title,
        body=note.body,
        releaseAt=format_release_at(note.release_at),
        webhookUrl=note.webhook_url,
        status=note.status.value if isinstance(note.status, NoteStatus) else note.status,
        attempts=[attempt_to_response(a) for a in note.attempts],
        deliveredAt=format_release_at(note.delivered_at) if note.delivered_at else None,
        lockedAt=format_release_at(note.locked_at) if note.locked_at else None,
        createdAt=format_release_at(note.created_at) if note.created_at else None,
    )


@router.post("", response_model=dict)
async def create_note(
    request: CreateNoteRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Schedule a note for delivery.

    The note starts pending and is delivered at or after releaseAt.
    """
    note = await NoteStore(db).create_note(
        title=request.title,
        body=request.body,
        release_at=request.release_at,
        webhook_url=str(request.webhook_url),
    )
    track_note_created()
    get_logger(note_id=note.id).info("note_created", release_at=format_release_at(note.release_at))
    return {"id": note.id}


@router.get("", response_model=dict)
async def list_notes(
    status_filter: NoteStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_db)
):
    """List notes newest first, optionally filtered by status."""
    total, notes = await NoteStore(db).list_notes(
        status=status_filter,
        page=page,
        page_size=PAGE_SIZE,
    )
    return {
        "page": page,
        "total": total,
        "items": [note_to_response(n).model_dump() for n in notes],
    }


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Get a single note with its attempt history."""
    note = await NoteStore(db).get_note(note_id)
    if not note:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found"
        )
    return note_to_response(note)


@router.post("/{note_id}/replay", response_model=dict)
async def replay_note(
    note_id: str,
    db: AsyncSession = Depends(get_db)
):
    """
    Reset a note to pending for immediate redelivery.

    Works from any status, including delivered and dead.
    """
    note = await NoteStore(db).replay(note_id)
    if not note:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found"
        )
    track_note_replayed()
    get_logger(note_id=note_id).info("note_replayed")
    return {"ok": True, "id": note_id}
