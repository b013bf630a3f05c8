"""
Test configuration and fixtures.

Provides:
- A throwaway SQLite database per test (file-backed so background runs
  can open their own sessions)
- A stored, valid PracticePanther token
- A FakePracticePanther router behind an httpx MockTransport
"""
import os
from typing import Generator

import httpx
import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Must be set before exchange_sync.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("PP_CLIENT_ID", "test-client")
os.environ.setdefault("PP_CLIENT_SECRET", "test-secret")

from exchange_sync.core.config import settings
from exchange_sync.db.base import Base
import exchange_sync.db.models  # noqa: F401
from exchange_sync.services import pp_token_service

from tests.fakes import FakePracticePanther


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture(autouse=True)
def fast_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    """No backoff sleeps in tests."""
    monkeypatch.setattr(settings, "PP_HTTP_RETRY_BASE_DELAY", 0.0)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'sync.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture(scope="function")
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def stored_token(db: Session):
    """An active token set valid for an hour."""
    return pp_token_service.store_token(
        db,
        {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "token_type": "bearer",
            "expires_in": 3600,
        },
        grant_type="authorization_code",
    )


# =============================================================================
# Fake PracticePanther
# =============================================================================

@pytest.fixture
def fake_pp() -> FakePracticePanther:
    return FakePracticePanther()


@pytest.fixture
def pp_client(fake_pp: FakePracticePanther) -> httpx.AsyncClient:
    # MockTransport holds no connections, so the client needs no closing
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_pp.handle))
