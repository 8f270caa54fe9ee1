from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import Engine, create_engine, inspect as sa_inspect, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fuze.models import Base, Submission


def create_sqlite_engine(db_path: str | Path | None) -> Engine:
    """Create an engine for a SQLite file, or a shared in-memory database when *db_path* is None."""
    if db_path is None:
        return create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)
    _migrate_existing_db(engine)


def _migrate_existing_db(engine: Engine) -> None:
    """Add columns that may be missing in databases created by older portal versions."""
    inspector = sa_inspect(engine)
    if not inspector.has_table(Submission.__tablename__):
        return
    existing = {col["name"] for col in inspector.get_columns(Submission.__tablename__)}
    missing = [col for col in Submission.__table__.columns if col.name not in existing]
    if not missing:
        return
    with engine.begin() as conn:
        for col in missing:
            col_type = col.type.compile(dialect=engine.dialect)
            conn.execute(text(
                f"ALTER TABLE {Submission.__tablename__} ADD COLUMN {col.name} {col_type}"
            ))


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Context manager providing a transactional session scope.

    Usage::

        with session_scope(factory) as session:
            ...
            session.commit()
    """
    session = factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
