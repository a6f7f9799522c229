"""
Sink routes.

Idempotent webhook receiver: one side effect per idempotency key.
"""
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from noterelay.config import settings
from noterelay.services.idempotency_guard import IdempotencyGuard
from noterelay.services.receiver import (
    ForcedFailure,
    IdempotentReceiver,
    MissingIdempotencyKey,
    log_note,
)


router = APIRouter(tags=["sink"])

_receiver: IdempotentReceiver | None = None


async def forced_failure(key: str, payload: dict) -> None:
    raise ForcedFailure("Forced failure (SINK_ALWAYS_FAIL=true)")


def get_receiver() -> IdempotentReceiver:
    """Get or create the process-wide receiver."""
    global _receiver
    if _receiver is None:
        side_effect = forced_failure if settings.SINK_ALWAYS_FAIL else log_note
        _receiver = IdempotentReceiver(IdempotencyGuard(), side_effect=side_effect)
    return _receiver


@router.post("/sink")
async def sink(
    request: Request,
    x_idempotency_key: str | None = Header(None),
    receiver: IdempotentReceiver = Depends(get_receiver)
):
    """
    Receive a note delivery.

    Responds {ok, duplicate} for a key seen before, {ok} on first
    processing and 500 when processing fails.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = {}

    try:
        result = await receiver.receive(x_idempotency_key, payload)
    except MissingIdempotencyKey as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    if result.duplicate:
        return {"ok": True, "duplicate": True}
    if not result.ok:
        content = {"ok": False, "error": result.error}
        if result.forced:
            content["forced"] = True
        return JSONResponse(status_code=500, content=content)
    return {"ok": True}
