"""Tests for note persistence and the atomic claim."""
import asyncio
from datetime import timedelta

import pytest

from noterelay.models.base import utcnow
from noterelay.models.note import NoteAttempt, NoteStatus
from noterelay.services.note_store import NoteStore


def failed_attempt(code: int = 500) -> NoteAttempt:
    return NoteAttempt(at=utcnow(), status_code=code, ok=False, error=f"HTTP {code}")


class TestCreateAndRead:

    @pytest.mark.asyncio
    async def test_create_note_is_pending(self, make_note):
        note = await make_note(title="T", body="B")
        assert note.status == NoteStatus.PENDING
        assert note.title == "T"
        assert note.body == "B"
        assert note.attempts == []
        assert note.locked_at is None
        assert note.delivered_at is None

    @pytest.mark.asyncio
    async def test_get_unknown_note(self, store):
        assert await store.get_note("missing") is None

    @pytest.mark.asyncio
    async def test_list_notes_filters_and_pages(self, store, make_note):
        first = await make_note(title="first")
        await make_note(title="second")
        claimed = await store.claim_one_due()
        assert claimed.id == first.id

        total, items = await store.list_notes()
        assert total == 2
        assert [n.title for n in items] == ["second", "first"]

        total, items = await store.list_notes(status=NoteStatus.PROCESSING)
        assert total == 1
        assert items[0].id == first.id

        total, items = await store.list_notes(page=2, page_size=1)
        assert total == 2
        assert [n.title for n in items] == ["first"]


class TestClaim:

    @pytest.mark.asyncio
    async def test_claim_due_note(self, store, make_note):
        note = await make_note()
        claimed = await store.claim_one_due()
        assert claimed.id == note.id
        assert claimed.status == NoteStatus.PROCESSING
        assert claimed.locked_at is not None

    @pytest.mark.asyncio
    async def test_nothing_due_returns_none(self, store, make_note):
        await make_note(release_in=timedelta(hours=1))
        assert await store.claim_one_due() is None

    @pytest.mark.asyncio
    async def test_claimed_note_not_claimed_again(self, store, make_note):
        await make_note()
        assert await store.claim_one_due() is not None
        assert await store.claim_one_due() is None

    @pytest.mark.asyncio
    async def test_earliest_due_first(self, store, make_note):
        later = await make_note(title="later", release_in=timedelta(seconds=-5))
        earlier = await make_note(title="earlier", release_in=timedelta(seconds=-10))
        assert (await store.claim_one_due()).id == earlier.id
        assert (await store.claim_one_due()).id == later.id

    @pytest.mark.asyncio
    async def test_insertion_order_breaks_ties(self, store):
        release_at = utcnow() - timedelta(seconds=3)
        first = await store.create_note("a", "a", release_at, "https://x.example/a")
        second = await store.create_note("b", "b", release_at, "https://x.example/b")
        assert (await store.claim_one_due()).id == first.id
        assert (await store.claim_one_due()).id == second.id

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_winner(self, session_factory, make_note):
        note = await make_note()

        async def claim():
            async with session_factory() as session:
                return await NoteStore(session).claim_one_due()

        results = await asyncio.gather(*(claim() for _ in range(6)))
        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].id == note.id

    @pytest.mark.asyncio
    async def test_concurrent_claims_get_distinct_notes(self, session_factory, make_note):
        notes = [await make_note(title=f"n{i}") for i in range(3)]

        async def claim():
            async with session_factory() as session:
                return await NoteStore(session).claim_one_due()

        results = await asyncio.gather(*(claim() for _ in range(6)))
        claimed_ids = [r.id for r in results if r is not None]
        assert sorted(claimed_ids) == sorted(n.id for n in notes)
        assert results.count(None) == 3


class TestOutcomes:

    @pytest.mark.asyncio
    async def test_mark_delivered(self, store, make_note):
        await make_note()
        note = await store.claim_one_due()
        attempt = NoteAttempt(at=utcnow(), status_code=200, ok=True)
        updated = await store.mark_delivered(note, attempt)
        assert updated.status == NoteStatus.DELIVERED
        assert updated.delivered_at == attempt.at
        assert updated.locked_at is None
        assert [a.ok for a in updated.attempts] == [True]
        assert updated.attempts[0].position == 1

    @pytest.mark.asyncio
    async def test_schedule_retry_advances_release_at(self, store, make_note):
        await make_note()
        note = await store.claim_one_due()
        attempt = failed_attempt()
        updated = await store.schedule_retry(note, attempt, attempt.at + timedelta(seconds=5))
        assert updated.status == NoteStatus.PENDING
        assert updated.locked_at is None
        assert updated.release_at == attempt.at + timedelta(seconds=5)
        assert updated.attempts[0].error == "HTTP 500"

    @pytest.mark.asyncio
    async def test_mark_dead(self, store, make_note):
        await make_note()
        note = await store.claim_one_due()
        updated = await store.mark_dead(note, failed_attempt(0))
        assert updated.status == NoteStatus.DEAD
        assert updated.locked_at is None
        assert updated.delivered_at is None

    @pytest.mark.asyncio
    async def test_attempts_append_in_order(self, store, make_note):
        await make_note()
        for _ in range(2):
            note = await store.claim_one_due(now=utcnow() + timedelta(minutes=5))
            await store.schedule_retry(note, failed_attempt(), utcnow())
        note = await store.claim_one_due(now=utcnow() + timedelta(minutes=5))
        updated = await store.mark_dead(note, failed_attempt(503))
        assert [a.position for a in updated.attempts] == [1, 2, 3]
        assert [a.status_code for a in updated.attempts] == [500, 500, 503]


class TestReplay:

    @pytest.mark.asyncio
    async def test_replay_unknown_note(self, store):
        assert await store.replay("missing") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", ["delivered", "dead"])
    async def test_replay_terminal_note(self, store, make_note, terminal):
        await make_note(release_in=timedelta(minutes=-10))
        note = await store.claim_one_due()
        if terminal == "delivered":
            note = await store.mark_delivered(note, NoteAttempt(at=utcnow(), status_code=200, ok=True))
        else:
            note = await store.mark_dead(note, failed_attempt())
        history = [(a.position, a.ok, a.status_code) for a in note.attempts]

        before = utcnow()
        replayed = await store.replay(note.id)

        assert replayed.status == NoteStatus.PENDING
        assert replayed.locked_at is None
        assert replayed.delivered_at is None
        assert replayed.release_at >= before
        assert replayed.release_at - before < timedelta(seconds=5)
        assert [(a.position, a.ok, a.status_code) for a in replayed.attempts] == history

    @pytest.mark.asyncio
    async def test_replay_keeps_failure_count(self, store, make_note):
        await make_note()
        note = await store.claim_one_due()
        note = await store.mark_dead(note, failed_attempt())
        assert note.failure_count() == 1

        replayed = await store.replay(note.id)
        assert replayed.failure_count() == 1
        assert len(replayed.attempts) == 1


class TestStaleLocks:

    @pytest.mark.asyncio
    async def test_reap_releases_only_stale_locks(self, store, make_note):
        stale = await make_note(title="stale", release_in=timedelta(minutes=-10))
        await store.claim_one_due(now=utcnow() - timedelta(minutes=5))
        fresh = await make_note(title="fresh")
        await store.claim_one_due()

        reaped = await store.reap_stale_locks(timedelta(minutes=1))

        assert reaped == [stale.id]
        stale_after = await store.get_note(stale.id)
        fresh_after = await store.get_note(fresh.id)
        assert stale_after.status == NoteStatus.PENDING
        assert stale_after.locked_at is None
        assert stale_after.release_at == stale.release_at
        assert fresh_after.status == NoteStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_late_outcome_after_reclaim_takes_next_position(self, session_factory, store, make_note):
        await make_note(release_in=timedelta(minutes=-10))
        first = await store.claim_one_due(now=utcnow() - timedelta(minutes=5))
        await store.reap_stale_locks(timedelta(minutes=1))

        async with session_factory() as other:
            other_store = NoteStore(other)
            second = await other_store.claim_one_due()
            assert second.id == first.id
            await store.schedule_retry(first, failed_attempt(), utcnow() + timedelta(minutes=1))
            await other_store.mark_delivered(second, NoteAttempt(at=utcnow(), status_code=200, ok=True))

        final = await store.get_note(first.id)
        assert final.status == NoteStatus.DELIVERED
        assert [(a.position, a.ok) for a in final.attempts] == [(1, False), (2, True)]
