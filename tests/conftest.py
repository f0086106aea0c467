"""
Fixture condivise.

Ogni test gira su un DB SQLite in memoria nuovo: `psico.db.SessionLocal`
viene puntato su quell'engine, quindi i service usano il DB di test.
"""
from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import psico.db
from psico import auth_models, models  # noqa: F401  registra le tabelle nel metadata
from psico.db import Base


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},  # TestClient usa un altro thread
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def session_factory(db_engine, monkeypatch):
    factory = sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )
    monkeypatch.setattr(psico.db, "SessionLocal", factory)
    return factory


@pytest.fixture
def db(session_factory):
    """Sessione diretta per verifiche sullo stato persistito."""
    s = session_factory()
    yield s
    s.close()
