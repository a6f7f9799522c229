"""
Idempotency key derivation for outbound deliveries.

The key binds to the note's release_at, so every retry round (which
advances release_at) carries a fresh key while duplicate sends within
one round share a key.
"""
import hashlib
from datetime import datetime, timezone


def format_release_at(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision and a Z suffix."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def idempotency_key(note_id: str, release_at: datetime | str) -> str:
    """Generate SHA-256 idempotency key from note id and release time."""
    if isinstance(release_at, datetime):
        release_at = format_release_at(release_at)
    data = f"{note_id}:{release_at}"
    return hashlib.sha256(data.encode()).hexdigest()
