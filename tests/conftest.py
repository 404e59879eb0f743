import asyncio
import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobcore.config.settings import Settings, get_settings
from jobcore.infra.database import Base, get_session, utcnow
from jobcore.main import create_app
from jobcore.v1.core.registries import JobRegistry
from jobcore.v1.infra.jobs.registry_init import (
    build_pipeline,
    get_pipeline,
    register_job_handlers,
)
from jobcore.v1.infra.jobs.service import JobQueue
from jobcore.v1.infra.outbox.service import OutboxService
from jobcore.v1.meetings.integrations import MeetingArtifacts
from jobcore.v1.meetings.models import Meeting

# Import models to ensure they're registered
from jobcore.v1.infra.jobs import models as jobs_models  # noqa: F401
from jobcore.v1.infra.lease import models as lease_models  # noqa: F401
from jobcore.v1.infra.outbox import models as outbox_models  # noqa: F401
from jobcore.v1.meetings import models as meetings_models  # noqa: F401

POSTGRES_URL = os.getenv("DATABASE_URL", "")
USING_POSTGRES = "postgresql" in POSTGRES_URL


def pytest_collection_modifyitems(config, items):
    """Row-locking tests only mean something on PostgreSQL."""
    if USING_POSTGRES:
        return
    skip_postgres = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_postgres)


def make_transcript(words: int) -> str:
    """A WebVTT transcript with ``words`` spoken words."""
    spoken = " ".join(f"word{i}" for i in range(words))
    return (
        "WEBVTT\n\n"
        "1\n"
        "00:00:01.000 --> 00:00:05.000\n"
        f"<v Alice>{spoken}</v>\n"
    )


class FakeArtifactClient:
    """Returns canned artifacts, raising queued errors first."""

    def __init__(
        self,
        artifacts: MeetingArtifacts | None = None,
        errors: list[Exception] | None = None,
        always_raise: Exception | None = None,
        delay: float = 0,
    ):
        started = datetime(2026, 1, 5, 10, 0, tzinfo=UTC)
        self.artifacts = artifacts or MeetingArtifacts(
            recording_url="https://files.example.com/recording.mp4",
            transcript_url="https://files.example.com/transcript.vtt",
            transcript_content=make_transcript(60),
            call_started_at=started,
            call_ended_at=started + timedelta(minutes=30),
        )
        self.errors = list(errors or [])
        self.always_raise = always_raise
        self.delay = delay
        self.calls: list[tuple[str, str | None, str | None]] = []

    async def fetch_artifacts(self, online_meeting_id, organizer_id, call_record_id):
        self.calls.append((online_meeting_id, organizer_id, call_record_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_raise is not None:
            raise self.always_raise
        if self.errors:
            raise self.errors.pop(0)
        return self.artifacts


class FakeServices:
    """Minutes generator, email sender and archive uploader in one."""

    def __init__(self):
        self.generated: list[dict[str, Any]] = []
        self.emailed: list[dict[str, Any]] = []
        self.archived: list[dict[str, Any]] = []
        self.generate_error: Exception | None = None

    async def generate(self, meeting: dict[str, Any]) -> dict[str, Any]:
        if self.generate_error is not None:
            raise self.generate_error
        self.generated.append(meeting)
        return {"summary": "Agreed on the roadmap", "content": {"actions": ["ship it"]}}

    async def send_minutes(self, minutes: dict[str, Any]) -> None:
        self.emailed.append(minutes)

    async def upload(self, minutes: dict[str, Any]) -> str:
        self.archived.append(minutes)
        return f"https://archive.example.com/{minutes['minutes_id']}"


class RecordingChannel:
    """Notification channel that records deliveries and raises queued failures."""

    def __init__(self, failures: list[Exception] | None = None):
        self.failures = list(failures or [])
        self.delivered: list[tuple[dict[str, Any], dict[str, Any]]] = []
        self.attempts = 0

    async def deliver(self, destination_reference, payload):
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        self.delivered.append((destination_reference, payload))


@pytest.fixture
def database_url(tmp_path) -> str:
    if USING_POSTGRES:
        return POSTGRES_URL
    return f"sqlite+aiosqlite:///{tmp_path / 'jobcore.db'}"


@pytest.fixture
def settings(database_url) -> Settings:
    """Settings with short intervals so worker tests run quickly."""
    return Settings(
        _env_file=None,
        environment="testing",
        debug=False,
        database_url=database_url,
        instance_id="worker-a",
        poll_interval_s=0.02,
        standby_poll_interval_s=0.02,
        job_timeout_s=5.0,
        services_base_url="http://services.test",
        graph_base_url="https://graph.test/v1.0",
    )


@pytest.fixture
async def test_engine(database_url):
    """Create a test database engine with a fresh schema."""
    engine = create_async_engine(database_url, echo=False)
    async with engine.begin() as conn:
        if USING_POSTGRES:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    if USING_POSTGRES:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def now() -> datetime:
    return utcnow()


@pytest.fixture
def queue(settings) -> JobQueue:
    return JobQueue(settings)


@pytest.fixture
def outbox(settings) -> OutboxService:
    return OutboxService(settings)


@pytest.fixture
def artifacts() -> FakeArtifactClient:
    return FakeArtifactClient()


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def pipeline(settings, artifacts, services):
    return build_pipeline(
        settings,
        artifacts=artifacts,
        generator=services,
        email=services,
        archive=services,
    )


@pytest.fixture
def registry(pipeline) -> JobRegistry:
    return register_job_handlers(pipeline, JobRegistry())


@pytest.fixture
async def sample_meeting(db_session: AsyncSession, now) -> Meeting:
    """A scheduled meeting that can be matched and enriched."""
    meeting = Meeting(
        title="Quarterly planning",
        organizer_id="organizer-1",
        join_url="https://meet.example.com/join/abc",
        online_meeting_id="online-meeting-1",
        created_at=now,
        updated_at=now,
    )
    db_session.add(meeting)
    await db_session.commit()
    await db_session.refresh(meeting)
    return meeting


@pytest.fixture
def app(settings, session_factory, pipeline):
    """Create a test FastAPI application with test database."""
    app = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_pipeline] = lambda: pipeline

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_channel():
    """Build a RecordingChannel with queued failures."""
    return RecordingChannel


@pytest.fixture
def make_artifacts():
    """Build a FakeArtifactClient with custom artifacts or errors."""
    return FakeArtifactClient
