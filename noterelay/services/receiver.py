"""
Idempotent receiver.

Collapses repeated deliveries carrying the same idempotency key into a
single side effect. A failed side effect keeps its reservation: the
sender's next retry round arrives with a new key.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from noterelay.logging_config import get_logger
from noterelay.routes.metrics import track_sink_received
from noterelay.services.idempotency_guard import IdempotencyGuard


SideEffect = Callable[[str, dict], Awaitable[Any]]


class MissingIdempotencyKey(ValueError):
    """Raised when a delivery arrives without an idempotency key."""


class ForcedFailure(RuntimeError):
    """Raised by the sink when it is configured to fail every delivery."""


@dataclass(frozen=True)
class ReceiveResult:
    ok: bool
    duplicate: bool = False
    error: str | None = None
    forced: bool = False


async def log_note(key: str, payload: dict) -> None:
    """Default side effect: record the processed note in the log."""
    get_logger(key=key).info("processed_note", body=payload)


class IdempotentReceiver:
    """Applies a side effect at most once per idempotency key."""

    def __init__(self, guard: IdempotencyGuard, side_effect: SideEffect = log_note):
        self.guard = guard
        self.side_effect = side_effect

    async def receive(self, key: str | None, payload: dict) -> ReceiveResult:
        if not key:
            raise MissingIdempotencyKey("Missing X-Idempotency-Key")

        log = get_logger(key=key)
        if not await self.guard.reserve(key):
            log.info("duplicate_received")
            track_sink_received("duplicate")
            return ReceiveResult(ok=True, duplicate=True)

        try:
            await self.side_effect(key, payload)
        except Exception as e:
            log.warning("side_effect_failed", error=str(e), error_type=type(e).__name__)
            track_sink_received("failed")
            return ReceiveResult(ok=False, error=str(e), forced=isinstance(e, ForcedFailure))

        track_sink_received("processed")
        return ReceiveResult(ok=True)
