"""
Delivery Service

Performs one webhook call for a claimed note and records the outcome.
"""
import time
import httpx

from noterelay.config import settings
from noterelay.logging_config import get_logger
from noterelay.models.base import utcnow
from noterelay.models.note import Note, NoteAttempt
from noterelay.routes.metrics import track_delivery
from noterelay.services.idempotency import format_release_at, idempotency_key
from noterelay.services.note_store import NoteStore
from noterelay.services.retry_policy import RetryPolicy


def build_delivery_request(note: Note) -> tuple[dict, dict]:
    """
    Build the JSON payload and headers for a note.

    The idempotency key is derived from release_at as it is when the
    attempt begins.
    """
    release_at = format_release_at(note.release_at)
    payload = {
        "title": note.title,
        "body": note.body,
        "releaseAt": release_at,
    }
    headers = {
        "Content-Type": "application/json",
        "X-Note-Id": str(note.id),
        "X-Idempotency-Key": idempotency_key(note.id, release_at),
    }
    return payload, headers


class DeliveryExecutor:
    """
    Delivers claimed notes to their webhooks.

    Delivery failures never raise: they become failed attempts and the
    retry policy decides between PENDING (with backoff) and DEAD.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: RetryPolicy | None = None,
        timeout: float | None = None
    ):
        self.client = client
        self.policy = policy or RetryPolicy.from_settings()
        self.timeout = timeout if timeout is not None else settings.DELIVERY_TIMEOUT_SECONDS

    async def send(self, note: Note) -> NoteAttempt:
        """Issue one POST for the note and describe the result as an attempt."""
        payload, headers = build_delivery_request(note)
        try:
            response = await self.client.post(
                note.webhook_url,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # Timeouts and transport errors carry no HTTP status
            return NoteAttempt(at=utcnow(), status_code=0, ok=False, error=str(e) or type(e).__name__)

        if 200 <= response.status_code < 300:
            return NoteAttempt(at=utcnow(), status_code=response.status_code, ok=True, error=None)
        return NoteAttempt(
            at=utcnow(),
            status_code=response.status_code,
            ok=False,
            error=f"HTTP {response.status_code}"
        )

    async def deliver(self, store: NoteStore, note: Note) -> Note:
        """
        Deliver a note already in PROCESSING and persist the outcome.

        Returns:
            The note as persisted after this attempt
        """
        log = get_logger(note_id=str(note.id))
        started = time.monotonic()

        attempt = await self.send(note)
        elapsed_ms = round((time.monotonic() - started) * 1000, 2)

        if attempt.ok:
            updated = await store.mark_delivered(note, attempt)
            track_delivery("delivered", elapsed_ms / 1000)
            log.info("delivered", ms=elapsed_ms, code=attempt.status_code)
            return updated

        failures = note.failure_count() + 1
        decision = self.policy.decide(failures)

        if decision.retry:
            release_at = attempt.at + decision.delay
            updated = await store.schedule_retry(note, attempt, release_at)
            track_delivery("retry", elapsed_ms / 1000)
            log.warning(
                "retry_scheduled",
                ms=elapsed_ms,
                code=attempt.status_code,
                error=attempt.error,
                failures=failures,
                next_in_ms=int(decision.delay.total_seconds() * 1000),
            )
            return updated

        updated = await store.mark_dead(note, attempt)
        track_delivery("dead", elapsed_ms / 1000)
        log.error(
            "gave_up",
            ms=elapsed_ms,
            code=attempt.status_code,
            error=attempt.error,
            failures=failures,
        )
        return updated
