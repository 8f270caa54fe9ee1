"""Tests for the reconciliation pass over transcript-only submissions."""
from __future__ import annotations

import json
import threading
import time
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from fuze.extractor import CollaboratorError
from fuze.reconcile import RateLimiter, find_unextracted, needs_extraction, reconcile
from fuze.services import SUBMISSION_FIELDS
from fuze.store import SqlRecordStore
from fuze.supabase_store import SupabaseRecordStore

LONG = "USER: " + "We build counter-UAS radar for forward operating bases. " * 4


def _transcript(tag: str) -> str:
    return f"{LONG} [{tag}]"


def _fake_client(replies: dict[str, object]) -> MagicMock:
    """Client whose ``complete`` answers according to the tag in the transcript."""

    async def complete(system, user):
        for tag, reply in replies.items():
            if f"[{tag}]" in user:
                if isinstance(reply, Exception):
                    raise reply
                return reply
        raise AssertionError("unexpected transcript")

    client = MagicMock()
    client.complete = AsyncMock(side_effect=complete)
    return client


@pytest.fixture()
def store():
    s = SqlRecordStore()
    s.open()
    try:
        yield s
    finally:
        s.close()


class TestNeedsExtraction:
    def test_long_transcript_without_company(self):
        assert needs_extraction({"conversation_transcript": LONG, "company_name": None})

    def test_short_transcript(self):
        assert not needs_extraction({"conversation_transcript": "x" * 100, "company_name": None})

    def test_exactly_over_threshold(self):
        assert needs_extraction({"conversation_transcript": "x" * 101, "company_name": None})

    def test_company_present(self):
        assert not needs_extraction({"conversation_transcript": LONG, "company_name": "Acme"})

    def test_custom_threshold(self):
        assert needs_extraction({"conversation_transcript": "x" * 11}, min_length=10)

    def test_find_unextracted(self, store):
        pending = store.create({"conversation_transcript": _transcript("a")})
        store.create({"conversation_transcript": _transcript("b"), "company_name": "Done"})
        store.create({"conversation_transcript": "short"})
        assert [r["id"] for r in find_unextracted(store)] == [pending]


class TestReconcile:
    @pytest.mark.asyncio
    async def test_fenced_reply_updates_record(self, store):
        sid = store.create({"conversation_transcript": _transcript("a")})
        client = _fake_client({"a": '```json\n{"company_name": "Acme", "trl_level": 6}\n```'})

        report = await reconcile(store, client, delay=0)

        assert report.candidates == [sid]
        assert report.extracted == [sid]
        record = store.get(sid)
        assert record["company_name"] == "Acme"
        assert record["trl_level"] == 6
        assert record["conversation_transcript"] == _transcript("a")
        assert record["extraction_status"] == "extracted"
        assert not needs_extraction(record)

    @pytest.mark.asyncio
    async def test_malformed_reply_does_not_stop_pass(self, store):
        bad = store.create({"conversation_transcript": _transcript("bad")})
        good = store.create({"conversation_transcript": _transcript("good")})
        client = _fake_client({
            "bad": "Sorry, I can't help with that.",
            "good": '{"company_name": "Good Co"}',
        })

        report = await reconcile(store, client, delay=0)

        assert report.extracted == [good]
        assert list(report.failed) == [bad]
        assert store.get(good)["company_name"] == "Good Co"
        failed = store.get(bad)
        assert failed["company_name"] is None
        assert failed["extraction_status"] == "extraction_failed"

    @pytest.mark.asyncio
    async def test_collaborator_error_is_soft_failure(self, store):
        first = store.create({"conversation_transcript": _transcript("down")})
        second = store.create({"conversation_transcript": _transcript("up")})
        client = _fake_client({
            "down": CollaboratorError("upstream 503", status_code=503),
            "up": '{"company_name": "Up Co"}',
        })

        report = await reconcile(store, client, delay=0)

        assert report.failed == {first: "upstream 503"}
        assert report.extracted == [second]

    @pytest.mark.asyncio
    async def test_reply_cannot_overwrite_transcript(self, store):
        sid = store.create({"conversation_transcript": _transcript("a")})
        client = _fake_client({"a": '{"company_name": "Acme", "conversation_transcript": "gone", "id": 42}'})

        await reconcile(store, client, delay=0)

        record = store.get(sid)
        assert record["conversation_transcript"] == _transcript("a")
        assert store.get(42) is None

    @pytest.mark.asyncio
    async def test_explicit_ids_bypass_predicate(self, store):
        done = store.create({"conversation_transcript": _transcript("redo"), "company_name": "Old"})
        empty = store.create({"company_name": "No transcript"})
        client = _fake_client({"redo": '{"company_name": "New"}'})

        report = await reconcile(store, client, delay=0, ids=[done, empty, 4242])

        assert report.candidates == [done]
        assert report.extracted == [done]
        assert report.skipped == [empty, 4242]
        assert store.get(done)["company_name"] == "New"

    @pytest.mark.asyncio
    async def test_dry_run_makes_no_calls(self, store):
        sid = store.create({"conversation_transcript": _transcript("a")})
        client = _fake_client({})

        report = await reconcile(store, client, delay=0, dry_run=True)

        assert report.candidates == [sid]
        assert report.extracted == []
        client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, store):
        store.create({"company_name": "Complete"})
        client = _fake_client({})
        report = await reconcile(store, client, delay=0)
        assert report.as_dict() == {"candidates": [], "extracted": [], "failed": {}, "skipped": []}
        client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_calls_are_spaced(self, store):
        for tag in ("a", "b", "c"):
            store.create({"conversation_transcript": _transcript(tag)})
        stamps: list[float] = []

        async def complete(system, user):
            stamps.append(time.monotonic())
            return '{"company_name": "X"}'

        client = MagicMock()
        client.complete = AsyncMock(side_effect=complete)

        await reconcile(store, client, delay=0.05, concurrency=3)

        assert len(stamps) == 3
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        assert all(gap >= 0.04 for gap in gaps)

    @pytest.mark.asyncio
    async def test_out_of_range_number_does_not_abort(self, store):
        huge = store.create({"conversation_transcript": _transcript("huge")})
        later = store.create({"conversation_transcript": _transcript("later")})
        client = _fake_client({
            "huge": '{"company_name": "Big Co", "team_size": 100000000000000000000}',
            "later": '{"company_name": "Later Co"}',
        })

        report = await reconcile(store, client, delay=0)

        assert sorted(report.extracted) == sorted([huge, later])
        assert report.failed == {}
        record = store.get(huge)
        assert record["company_name"] == "Big Co"
        assert record["team_size"] is None
        assert store.get(later)["company_name"] == "Later Co"

    @pytest.mark.asyncio
    async def test_store_writes_leave_event_loop_thread(self, store):
        sid = store.create({"conversation_transcript": _transcript("a")})
        client = _fake_client({"a": '{"company_name": "Acme"}'})
        threads: list[int] = []
        original_update = store.update

        def recording_update(submission_id, fields):
            threads.append(threading.get_ident())
            return original_update(submission_id, fields)

        store.update = recording_update

        report = await reconcile(store, client, delay=0)

        assert report.extracted == [sid]
        assert threads and threading.get_ident() not in threads


class StrictPostgrest:
    """PostgREST stand-in whose table lacks the extraction_status column."""

    columns = {"id", "created_at", "updated_at", *SUBMISSION_FIELDS} - {"extraction_status"}

    def __init__(self, rows: list[dict]):
        self.rows = rows

    def __call__(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if request.method == "GET":
            rows = list(self.rows)
            if "id" in params:
                rows = [r for r in rows if f"eq.{r['id']}" == params["id"]]
            return httpx.Response(200, json=rows)
        if request.method == "PATCH":
            body = json.loads(request.content)
            unknown = set(body) - self.columns
            if unknown:
                return httpx.Response(400, json={
                    "code": "PGRST204",
                    "message": f"Could not find the '{sorted(unknown)[0]}' column of 'submissions'",
                })
            rows = [r for r in self.rows if f"eq.{r['id']}" == params["id"]]
            for r in rows:
                r.update(body)
            return httpx.Response(200, json=rows)
        return httpx.Response(405)


class TestReconcileHostedStore:
    @pytest.mark.asyncio
    async def test_status_column_not_written(self):
        rows = [
            {"id": 1, "conversation_transcript": _transcript("ok"), "company_name": None,
             "created_at": "2026-01-02T00:00:00+00:00"},
            {"id": 2, "conversation_transcript": _transcript("bad"), "company_name": None,
             "created_at": "2026-01-01T00:00:00+00:00"},
        ]
        client = _fake_client({"ok": '{"company_name": "Hosted Co"}', "bad": "no json"})
        transport = httpx.MockTransport(StrictPostgrest(rows))

        with SupabaseRecordStore("https://demo.supabase.co", "k", transport=transport) as store:
            report = await reconcile(store, client, delay=0)

        assert report.extracted == [1]
        assert list(report.failed) == [2]
        assert rows[0]["company_name"] == "Hosted Co"
        assert "extraction_status" not in rows[0]
        assert "extraction_status" not in rows[1]


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_first_call_does_not_wait(self):
        limiter = RateLimiter(10.0)
        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start < 1.0

    @pytest.mark.asyncio
    async def test_second_call_waits(self):
        limiter = RateLimiter(0.05)
        await limiter.acquire()
        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start >= 0.04
