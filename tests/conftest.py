"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - settings: a Settings instance with a fixed secret and bcrypt at its
    minimum cost so hashing does not dominate the suite's runtime
  - store: an isolated UserStore on a named shared-memory SQLite DB
  - codec / verifier / issuer / coordinator: the auth core wired by hand
  - RecordingNotifier / FailingNotifier: notifier stand-ins
  - client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each fixture instance gets its own uuid-suffixed name.

The DEBUG env var must be set before any api/ import: api/main.py reads
get_settings() at import time to configure CORS.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_services
from auth.credentials import CredentialVerifier
from auth.gate import AccessGate
from auth.issuer import SessionIssuer
from auth.models import Identity
from auth.reset import ResetCoordinator
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import Settings
from notify.email import NotifierError

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"


# ---------------------------------------------------------------------------
# Collaborator stand-ins
# ---------------------------------------------------------------------------


@dataclass
class SentMessage:
    to_email: str
    subject: str
    body: str


@dataclass
class RecordingNotifier:
    """Notifier that keeps every message instead of sending it."""

    sent: list[SentMessage] = field(default_factory=list)

    def send(self, to_email: str, subject: str, body: str) -> None:
        self.sent.append(SentMessage(to_email, subject, body))


class FailingNotifier:
    """Notifier whose transport is always down."""

    def __init__(self) -> None:
        self.calls = 0

    def send(self, to_email: str, subject: str, body: str) -> None:
        self.calls += 1
        raise NotifierError("connection refused")


class FakeClock:
    """Injectable now() for ResetCoordinator. Starts at the real current time."""

    def __init__(self) -> None:
        self.current = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current += timedelta(**delta)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        bcrypt_rounds=4,
        token_expire_seconds=3600,
        reset_token_ttl_seconds=600,
        public_base_url="http://testserver",
    )


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(db_url=_memory_url("test_auth"))
    yield s
    s.close()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture
def codec(settings: Settings) -> TokenCodec:
    return TokenCodec(settings)


@pytest.fixture
def verifier(settings: Settings) -> CredentialVerifier:
    return CredentialVerifier(settings)


@pytest.fixture
def issuer(store: UserStore, verifier: CredentialVerifier, codec: TokenCodec) -> SessionIssuer:
    return SessionIssuer(store, verifier, codec)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def coordinator(store, codec, verifier, notifier, settings, clock) -> ResetCoordinator:
    return ResetCoordinator(store, codec, verifier, notifier, settings, now=clock)


@pytest.fixture
def gate(codec, verifier, store) -> AccessGate:
    return AccessGate(codec, verifier, store)


@pytest.fixture
def make_identity(store: UserStore, verifier: CredentialVerifier):
    """Factory: create and persist an identity with a known password."""

    def _make(
        email: str = "ana@x.com",
        password: str = "secret12",
        name: str = "Ana",
        role: str = "standard",
    ) -> Identity:
        return store.create(
            {"name": name, "email": email, "role": role, "password_hash": verifier.hash_credential(password)}
        )

    return _make


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: UserStore, notifier):
    """Return an async context manager that replaces the real lifespan.

    Wires the test settings, store and notifier into app.state so TestClient
    routes never touch the production database or a real SMTP relay.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, settings, store, notifier)
        yield

    return test_lifespan


@pytest.fixture
def client(settings, store, notifier) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated store and recording notifier."""
    app.router.lifespan_context = _patch_lifespan(settings, store, notifier)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def admin_headers(make_identity, codec) -> dict[str, str]:
    admin = make_identity(email="root@x.com", password="rootpass1", name="Root", role="admin")
    token = codec.issue_session(admin.id).token
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def failing_client(settings, store, failing_notifier) -> Generator[TestClient, None, None]:
    """TestClient whose notifier always fails -- exercises the 500 delivery path."""
    app.router.lifespan_context = _patch_lifespan(settings, store, failing_notifier)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def locked_signup_client(settings, store, notifier) -> Generator[TestClient, None, None]:
    """TestClient with SIGNUP_ROLE_SELECTION off -- public signup cannot pick a role."""
    locked = settings.model_copy(update={"signup_role_selection": False})
    app.router.lifespan_context = _patch_lifespan(locked, store, notifier)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
