"""Reconciliation pass: fill in structured fields for transcript-only submissions.

A submission is *unextracted* when it carries a non-trivial transcript but no
company name. Each candidate's transcript is sent to the extraction
collaborator and the sanitized reply is merged in like a manual partial
update. Unparseable replies and upstream failures are logged and counted but
never stop the rest of the backlog.

Calls to the collaborator are spaced by a :class:`RateLimiter` and capped by a
semaphore; the defaults (2 s, concurrency 1) process one record at a time.
Store writes run in a worker thread so a slow backend does not hold up other
extractions in flight. The ``extraction_status`` marker is only written to
stores whose table has that column.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from fuze.extractor import CollaboratorError, LLMClient, MalformedExtraction, extract_fields
from fuze.models import ExtractionStatus
from fuze.store import RecordStore

log = logging.getLogger(__name__)

DEFAULT_MIN_TRANSCRIPT_LENGTH = 100
DEFAULT_DELAY = 2.0


def needs_extraction(record: dict[str, Any], min_length: int = DEFAULT_MIN_TRANSCRIPT_LENGTH) -> bool:
    transcript = record.get("conversation_transcript") or ""
    return len(transcript) > min_length and not record.get("company_name")


def find_unextracted(store: RecordStore, min_length: int = DEFAULT_MIN_TRANSCRIPT_LENGTH) -> list[dict[str, Any]]:
    return [r for r in store.list() if needs_extraction(r, min_length)]


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------


class RateLimiter:
    """Enforce a minimum interval between collaborator calls, across tasks."""

    def __init__(self, min_interval: float = DEFAULT_DELAY):
        self._lock = asyncio.Lock()
        self._min_interval = min_interval
        self._last_call: float | None = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                wait = self._min_interval - (time.monotonic() - self._last_call)
                if wait > 0:
                    log.debug("Rate limiter: waiting %.1fs", wait)
                    await asyncio.sleep(wait)
            self._last_call = time.monotonic()


# ---------------------------------------------------------------------------
# Pass
# ---------------------------------------------------------------------------


@dataclass
class ReconcileReport:
    candidates: list[int] = field(default_factory=list)
    extracted: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    skipped: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "candidates": list(self.candidates),
            "extracted": list(self.extracted),
            "failed": {str(k): v for k, v in self.failed.items()},
            "skipped": list(self.skipped),
        }


def _select_targets(
    store: RecordStore, ids: list[int] | None, min_length: int, report: ReconcileReport,
) -> list[tuple[int, str]]:
    if ids is None:
        return [(r["id"], r["conversation_transcript"]) for r in find_unextracted(store, min_length)]
    targets: list[tuple[int, str]] = []
    for submission_id in ids:
        record = store.get(submission_id)
        if record is None or not record.get("conversation_transcript"):
            log.warning("Submission %s has no transcript to extract, skipping", submission_id)
            report.skipped.append(submission_id)
            continue
        targets.append((submission_id, record["conversation_transcript"]))
    return targets


async def reconcile(
    store: RecordStore,
    client: LLMClient | None = None,
    *,
    delay: float = DEFAULT_DELAY,
    concurrency: int = 1,
    ids: list[int] | None = None,
    dry_run: bool = False,
    min_length: int = DEFAULT_MIN_TRANSCRIPT_LENGTH,
) -> ReconcileReport:
    """Extract and merge structured fields for pending submissions.

    Args:
        store: An open record store.
        client: Extraction client; a default :class:`LLMClient` is built if None.
        delay: Minimum seconds between collaborator calls.
        concurrency: Maximum extractions in flight.
        ids: Process exactly these submissions, bypassing the unextracted check.
        dry_run: Only report candidates, do not call the collaborator.
        min_length: Transcript length above which a record counts as non-trivial.
    """
    report = ReconcileReport()
    targets = _select_targets(store, ids, min_length, report)
    report.candidates = [sid for sid, _ in targets]
    log.info("Found %d submission(s) needing extraction", len(targets))
    if dry_run or not targets:
        return report

    if client is None:
        client = LLMClient()
    limiter = RateLimiter(delay)
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def process(submission_id: int, transcript: str) -> None:
        async with semaphore:
            await limiter.acquire()
            log.info("Processing submission %s (%d chars)", submission_id, len(transcript))
            try:
                fields = await extract_fields(client, transcript)
            except (MalformedExtraction, CollaboratorError) as exc:
                log.warning("Extraction failed for submission %s: %s", submission_id, exc)
                report.failed[submission_id] = str(exc)
                if store.supports_status:
                    await asyncio.to_thread(
                        store.update, submission_id,
                        {"extraction_status": ExtractionStatus.EXTRACTION_FAILED.value},
                    )
                return
            if store.supports_status:
                fields["extraction_status"] = ExtractionStatus.EXTRACTED.value
            if await asyncio.to_thread(store.update, submission_id, fields):
                log.info(
                    "Updated submission %s: %s - %s",
                    submission_id, fields.get("company_name") or "Unknown",
                    fields.get("technology_name") or "Unknown",
                )
                report.extracted.append(submission_id)
            else:
                log.warning("Submission %s disappeared before update", submission_id)
                report.skipped.append(submission_id)

    await asyncio.gather(*(process(sid, transcript) for sid, transcript in targets))
    log.info(
        "Reconciliation finished: %d extracted, %d failed, %d skipped",
        len(report.extracted), len(report.failed), len(report.skipped),
    )
    return report
