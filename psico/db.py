from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import DATABASE_URL, SQL_ECHO

engine = create_engine(
    DATABASE_URL,
    echo=SQL_ECHO,           # SQL_ECHO=true nel .env per vedere le query
    future=True,
)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False
)


class Base(DeclarativeBase):
    """Base ORM per tutti i modelli."""
    pass


@contextmanager
def db_session() -> Iterator[Session]:
    """
    Context manager per gestire correttamente la sessione:
    - commit se tutto ok
    - rollback su eccezioni (nessuna scrittura parziale)
    - close sempre
    """
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
