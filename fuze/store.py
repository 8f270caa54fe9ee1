"""Record store: the single contract the API and the reconciliation pass talk to.

Two backends implement it:

- :class:`SqlRecordStore`: embedded SQLite file via SQLAlchemy.
- :class:`fuze.supabase_store.SupabaseRecordStore`: hosted Supabase table
  via its PostgREST endpoint.

Records cross the boundary as plain dicts keyed by column name. A missing id
is reported as ``None`` (``get``) or ``0`` (``update``/``delete``), never as an
exception; :class:`StoreUnavailable` is reserved for backend failures.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, case, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fuze import services
from fuze.config import Settings
from fuze.db import create_sqlite_engine, init_schema, make_session_factory, session_scope
from fuze.models import Submission, utcnow

log = logging.getLogger(__name__)

# The sqlite3 driver raises OverflowError for integers outside 64 bits
_QUERY_ERRORS = (SQLAlchemyError, OverflowError)


class StoreUnavailable(Exception):
    """Backend connectivity or query failure."""


class RecordStore:
    """Abstract base for submission stores."""

    backend = "abstract"
    # Whether the table carries the extraction_status column
    supports_status = False

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self) -> RecordStore:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def create(self, fields: dict[str, Any]) -> int:
        raise NotImplementedError

    def list(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get(self, submission_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    def update(self, submission_id: int, fields: dict[str, Any]) -> int:
        raise NotImplementedError

    def delete(self, submission_id: int) -> int:
        raise NotImplementedError

    def statistics(self) -> dict[str, Any]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------


class SqlRecordStore(RecordStore):
    """Submission store backed by a SQLite file (or memory when no path is given)."""

    backend = "sqlite"
    supports_status = True

    def __init__(self, db_path: str | Path | None = None, engine: Engine | None = None):
        self.db_path = Path(db_path) if db_path is not None else None
        self._engine = engine
        self._factory: sessionmaker[Session] | None = None

    def open(self) -> None:
        if self._factory is not None:
            return
        try:
            if self._engine is None:
                self._engine = create_sqlite_engine(self.db_path)
            init_schema(self._engine)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Could not open database {self.db_path}: {exc}") from exc
        self._factory = make_session_factory(self._engine)
        log.info("Opened SQLite store at %s", self.db_path or ":memory:")

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._factory = None

    def _session(self):
        if self._factory is None:
            raise StoreUnavailable("Store is not open")
        return session_scope(self._factory)

    def create(self, fields: dict[str, Any]) -> int:
        values = services.writable_fields(fields)
        now = utcnow()
        try:
            with self._session() as session:
                sub = Submission(**values, created_at=now, updated_at=now)
                session.add(sub)
                session.commit()
                return sub.id
        except _QUERY_ERRORS as exc:
            raise StoreUnavailable(f"Insert failed: {exc}") from exc

    def list(self) -> list[dict[str, Any]]:
        query = select(Submission).order_by(Submission.created_at.desc(), Submission.id.desc())
        try:
            with self._session() as session:
                return [services.submission_to_dict(s) for s in session.execute(query).scalars()]
        except _QUERY_ERRORS as exc:
            raise StoreUnavailable(f"Select failed: {exc}") from exc

    def get(self, submission_id: int) -> dict[str, Any] | None:
        if not _valid_id(submission_id):
            return None
        try:
            with self._session() as session:
                sub = session.get(Submission, submission_id)
                return services.submission_to_dict(sub) if sub is not None else None
        except _QUERY_ERRORS as exc:
            raise StoreUnavailable(f"Select failed: {exc}") from exc

    def update(self, submission_id: int, fields: dict[str, Any]) -> int:
        if not _valid_id(submission_id):
            return 0
        values = services.writable_fields(fields)
        try:
            with self._session() as session:
                sub = session.get(Submission, submission_id)
                if sub is None:
                    return 0
                for key, value in values.items():
                    setattr(sub, key, value)
                now = utcnow()
                sub.updated_at = max(now, _as_aware(sub.updated_at)) if sub.updated_at else now
                session.commit()
                return 1
        except _QUERY_ERRORS as exc:
            raise StoreUnavailable(f"Update failed: {exc}") from exc

    def delete(self, submission_id: int) -> int:
        if not _valid_id(submission_id):
            return 0
        try:
            with self._session() as session:
                result = session.execute(delete(Submission).where(Submission.id == submission_id))
                session.commit()
                return result.rowcount or 0
        except _QUERY_ERRORS as exc:
            raise StoreUnavailable(f"Delete failed: {exc}") from exc

    def statistics(self) -> dict[str, Any]:
        query = select(
            func.count(Submission.id),
            func.avg(Submission.capability_score),
            func.count(case((Submission.sam_gov_registered.is_(True), 1))),
            func.count(case((Submission.trl_level >= 7, 1))),
        )
        try:
            with self._session() as session:
                total, avg_score, registered, high_trl = session.execute(query).one()
        except _QUERY_ERRORS as exc:
            raise StoreUnavailable(f"Statistics query failed: {exc}") from exc
        return {
            "total": total,
            "average_capability_score": float(avg_score) if avg_score is not None else 0,
            "registered_count": registered,
            "high_maturity_count": high_trl,
        }


def _valid_id(submission_id: int) -> bool:
    return services.INT_MIN <= submission_id <= services.INT_MAX


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_store(settings: Settings) -> RecordStore:
    """Construct (but do not open) the store selected by configuration."""
    if settings.store_backend == "sqlite":
        return SqlRecordStore(settings.database_path)
    if settings.store_backend == "supabase":
        from fuze.supabase_store import SupabaseRecordStore
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase store")
        return SupabaseRecordStore(
            settings.supabase_url, settings.supabase_key, table=settings.supabase_table,
        )
    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")
