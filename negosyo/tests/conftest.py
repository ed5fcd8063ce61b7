"""Shared test fixtures for the Negosyo test suite.

Uses an in-memory SQLite database with StaticPool so all sessions share the
same connection (committed data is visible across sessions).
"""

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from negosyo.config import settings
from negosyo.core.identity import Identity, create_identity_token
from negosyo.database import Base, get_db
from negosyo.main import app
from negosyo.models import *  # noqa: ensure all models are loaded for create_all
from negosyo.tests.factories import ADMIN_SUBJECT, business_fields, new_id, photo_keys, set_balance


# ---------------------------------------------------------------------------
# In-memory SQLite test engine (shared via StaticPool)
# ---------------------------------------------------------------------------

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)
TestSession = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@event.listens_for(test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Auto-use: create/drop tables for every test, isolate global state
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
async def _setup_db(monkeypatch, tmp_path):
    """Create all tables before each test, drop after. Also reset singletons."""
    import negosyo.database
    from negosyo.services import storage_service
    from negosyo.storage.local_blob import LocalBlobStore

    # Background jobs open their own sessions; point them at the test engine.
    monkeypatch.setattr(negosyo.database, "async_session", TestSession)
    monkeypatch.setattr(settings, "admin_identity_ids", ADMIN_SUBJECT)
    monkeypatch.setattr(settings, "notification_webhook_url", "")
    monkeypatch.setattr(settings, "enrichment_webhook_url", "")
    monkeypatch.setattr(settings, "transcription_api_key", "")
    storage_service.reset_storage(LocalBlobStore(str(tmp_path / "blobs"), settings.public_base_url))

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    storage_service.reset_storage(None)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def db():
    """Yield a fresh AsyncSession for direct service-layer tests."""
    async with TestSession() as session:
        yield session


@pytest.fixture
def session_factory():
    """The sessionmaker itself, for tests that need several independent sessions."""
    return TestSession


@pytest.fixture
async def client():
    """httpx AsyncClient wired to the FastAPI app with test DB override."""
    import httpx

    async def _override_get_db():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def auth_header():
    """Return a callable that builds an Authorization header from a JWT."""
    def _build(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}
    return _build


@pytest.fixture
def admin_token() -> str:
    return create_identity_token(ADMIN_SUBJECT, email="admin@negosyo.test")


@pytest.fixture
def make_creator(db: AsyncSession):
    """Factory fixture: register a creator through the service and return (creator, token)."""
    from negosyo.services import creator_service

    async def _make(
        first_name: str = "Juan",
        last_name: str = "Dela Cruz",
        referred_by_code: str | None = None,
        balance: float = 0,
    ):
        subject = f"idp|{new_id()[:12]}"
        email = f"{subject.split('|')[1]}@negosyo.test"
        creator = await creator_service.ensure_creator(
            db, Identity(subject=subject, email=email),
            first_name=first_name, last_name=last_name, referred_by_code=referred_by_code,
        )
        if balance:
            await set_balance(db, creator["id"], balance)
        return creator, create_identity_token(subject, email=email)

    return _make


@pytest.fixture
def make_submission(db: AsyncSession):
    """Factory fixture: create a draft with ``photos`` storage keys and an optional payout."""
    from negosyo.services import submission_service

    async def _make(creator_id: str, photos: int = 3, payout: float | None = None, **fields):
        data = business_fields(**fields)
        data["photos"] = photo_keys(photos)
        submission = await submission_service.create_submission(db, creator_id, data)
        if payout is not None:
            submission = await submission_service.set_payout(
                db, submission["id"], payout, actor_id=ADMIN_SUBJECT,
            )
        return submission

    return _make


@pytest.fixture
def advance(db: AsyncSession):
    """Drive a draft through the lifecycle up to (and including) ``target``."""
    from negosyo.services import ledger_service, submission_service

    steps = [
        ("submitted", lambda sid: submission_service.submit(db, sid)),
        ("approved", lambda sid: submission_service.approve(db, sid, actor_id=ADMIN_SUBJECT)),
        ("website_generated", lambda sid: submission_service.mark_website_generated(
            db, sid, "https://preview.negosyo.test/site", actor_id=ADMIN_SUBJECT)),
        ("deployed", lambda sid: submission_service.mark_deployed(
            db, sid, "https://site.negosyo.test", actor_id=ADMIN_SUBJECT)),
        ("paid", lambda sid: ledger_service.mark_paid(db, sid, actor_id=ADMIN_SUBJECT)),
    ]

    async def _advance(submission_id: str, target: str):
        result = None
        for status, step in steps:
            result = await step(submission_id)
            if status == target:
                return result
        raise ValueError(f"Unknown target status: {target}")

    return _advance
