"""Submission store backed by a hosted Supabase table.

Talks to the PostgREST endpoint directly with httpx. Writes send
``Prefer: return=representation`` so the response body lists the affected
rows, which is how ``update``/``delete`` report their changed count.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from fuze import services
from fuze.models import utcnow
from fuze.store import RecordStore, StoreUnavailable

log = logging.getLogger(__name__)

_TIMEOUT = 15.0
_STATS_COLUMNS = "capability_score,sam_gov_registered,trl_level"


class SupabaseRecordStore(RecordStore):
    backend = "supabase"

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = "submissions",
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.table = table
        self._api_key = api_key
        self._transport = transport
        self._client: httpx.Client | None = None

    def open(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(_TIMEOUT),
            transport=self._transport,
            headers={
                "apikey": self._api_key,
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
        )
        log.info("Opened Supabase store at %s (table=%s)", self.base_url, self.table)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None

    def _request(self, method: str, *, params: dict[str, str] | None = None,
                 json: Any = None, returning: bool = False) -> list[dict[str, Any]]:
        if self._client is None:
            raise StoreUnavailable("Store is not open")
        headers = {"Prefer": "return=representation"} if returning else None
        try:
            resp = self._client.request(method, f"/{self.table}", params=params, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"Supabase request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise StoreUnavailable(
                f"Supabase {method} returned {resp.status_code}: {resp.text[:200]}"
            )
        if not resp.content:
            return []
        try:
            body = resp.json()
        except ValueError as exc:
            raise StoreUnavailable(f"Supabase returned a non-JSON body: {resp.text[:200]}") from exc
        return body if isinstance(body, list) else [body]

    def create(self, fields: dict[str, Any]) -> int:
        values = services.writable_fields(fields)
        now = utcnow().isoformat()
        rows = self._request("POST", json={**values, "created_at": now, "updated_at": now}, returning=True)
        if not rows or "id" not in rows[0]:
            raise StoreUnavailable("Supabase insert returned no row")
        return int(rows[0]["id"])

    def list(self) -> list[dict[str, Any]]:
        return self._request("GET", params={"select": "*", "order": "created_at.desc,id.desc"})

    def get(self, submission_id: int) -> dict[str, Any] | None:
        rows = self._request("GET", params={"select": "*", "id": f"eq.{submission_id}"})
        return rows[0] if rows else None

    def update(self, submission_id: int, fields: dict[str, Any]) -> int:
        values = services.writable_fields(fields)
        values["updated_at"] = utcnow().isoformat()
        rows = self._request("PATCH", params={"id": f"eq.{submission_id}"}, json=values, returning=True)
        return len(rows)

    def delete(self, submission_id: int) -> int:
        rows = self._request("DELETE", params={"id": f"eq.{submission_id}"}, returning=True)
        return len(rows)

    def statistics(self) -> dict[str, Any]:
        return services.summarize(self._request("GET", params={"select": _STATS_COLUMNS}))
