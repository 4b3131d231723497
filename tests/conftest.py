"""
Pytest configuration and shared fixtures.

DATABASE_URL must point at a throwaway database before the app is imported,
since the engine is created at import time. Settings cache is cleared so the
test values are picked up.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_meshsync.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Clear settings cache before any app imports to ensure test env vars are used
from meshsync.config import get_settings
get_settings.cache_clear()

from meshsync.main import app
from meshsync.storage import Base, MessageStore, engine, init_db
from meshsync.sync import SyncOrchestrator


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    init_db()

    with TestClient(app) as test_client:
        yield test_client

    # Cleanup - drop all tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def isolated_engine():
    """In-memory database private to one test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(isolated_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=isolated_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db_session) -> MessageStore:
    return MessageStore(db_session)


@pytest.fixture
def orchestrator(store) -> SyncOrchestrator:
    return SyncOrchestrator(store)
