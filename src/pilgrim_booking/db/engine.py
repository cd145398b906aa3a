from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pilgrim_booking.config.settings import require_database_url

_ENGINE: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def get_engine() -> Engine:
    global _ENGINE, SessionLocal
    if _ENGINE is None:
        _ENGINE = create_engine(
            require_database_url(),
            pool_pre_ping=True,
        )
        SessionLocal = sessionmaker(
            bind=_ENGINE, autoflush=False, autocommit=False, expire_on_commit=False
        )
    return _ENGINE


@contextmanager
def get_session() -> Iterator[Session]:
    if SessionLocal is None:
        get_engine()

    assert SessionLocal is not None  # for type checkers
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine | None = None) -> None:
    """
    Creates every table known to the models' metadata (no-op for existing ones).

    Used by the `init-db` CLI command; production schemas are otherwise managed
    outside this package.
    """
    from pilgrim_booking.db import models
    from pilgrim_booking.db.base import Base

    target = engine or get_engine()
    if target.dialect.name == "postgresql":
        with target.begin() as conn:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {models.SCHEMA}"))

    Base.metadata.create_all(bind=target)
