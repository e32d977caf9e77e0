from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from orderdesk.core.config import get_settings


class Base(DeclarativeBase):
    pass


engine = create_engine(get_settings().database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Commit everything written inside the block, or nothing.

    Ledger postings, status writes and history rows of one operation share
    this transaction so a failure at any step leaves no partial effect.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
