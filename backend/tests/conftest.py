"""pytest fixtures for adgen backend tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance
- utc_timezone: Autouse fixture enforcing UTC timezone
- session: Function-scoped database session with table truncation
- uow_factory: Function-scoped UnitOfWork factory
- job_store: JobStore on top of uow_factory
- fake_comet: Scriptable CometAPI / n8n endpoints behind httpx.MockTransport
- settings / services: Service graph wired against the fakes
"""

import itertools
import json
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import AsyncGenerator

# Must be set before adgen.app is imported by route tests
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="adgen-media-"))

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402
from testcontainers.postgres import PostgresContainer  # noqa: E402

from adgen.container import build_services  # noqa: E402
from adgen.core.config import Settings  # noqa: E402
from adgen.core.database import dispose_db_session, setup_db_session  # noqa: E402
from adgen.services.job_store import JobStore  # noqa: E402

BACKEND_DIR = Path(__file__).resolve().parent.parent

COMET_URL = "https://comet.test/v1"
CDN_HOST = "cdn.comet.test"
N8N_WEBHOOK_URL = "https://n8n.test/webhook/campaign"
N8N_SECRET = "test-n8n-secret"


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_adgen",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        # alembic/env.py reads DATABASE_URL
        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            cwd=BACKEND_DIR,
            check=True,
            capture_output=True,
            text=True,
            env=env,
        )

        yield container


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session(postgres_container) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session with table truncation.

    Each test gets a fresh session with an empty ad_jobs table.
    """
    db_url = postgres_container.get_connection_url(driver="psycopg")
    session_factory = setup_db_session(db_url, pool_size=5)

    async with session_factory() as session:
        yield session

        await session.rollback()
        await session.execute(text("DELETE FROM ad_jobs"))
        await session.commit()

    await dispose_db_session(session_factory)


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session: AsyncSession):
    """Provide function-scoped UnitOfWork factory.

    Every UoW gets its own session (and connection) from the test engine,
    so concurrent writers really race each other.
    """
    from sqlalchemy.ext.asyncio import async_sessionmaker

    from adgen.uow import create_uow_factory

    session_factory = async_sessionmaker(
        bind=session.bind,
        expire_on_commit=False,
    )
    return create_uow_factory(session_factory)


@pytest.fixture
def job_store(uow_factory) -> JobStore:
    return JobStore(uow_factory, max_retries=5)


class FakeComet:
    """Scriptable stand-in for the CometAPI and n8n HTTP endpoints.

    - POST /videos returns a fresh video id (500 if the prompt contains FAIL)
    - GET /videos/{id}/content answers 202 `pending_polls` times, then the video
    - POST /images returns a CDN url; GET on the CDN returns PNG bytes
    - POST to the n8n webhook answers `n8n_status`
    """

    def __init__(self):
        self.pending_polls = 0
        self.never_ready = False
        self.video_bytes = b"\x00\x00\x00\x18ftypmp42fake-video"
        self.image_bytes = b"\x89PNG\r\n\x1a\nfake-image"
        self.n8n_status = 200
        self.video_submissions: list[bytes] = []
        self.image_requests: list[dict] = []
        self.n8n_requests: list[httpx.Request] = []
        self._ids = itertools.count(1)
        self._polls: dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if request.url.host == "n8n.test":
            self.n8n_requests.append(request)
            return httpx.Response(self.n8n_status, json={"ok": self.n8n_status < 400})

        if request.url.host == CDN_HOST:
            return httpx.Response(
                200, content=self.image_bytes, headers={"content-type": "image/png"}
            )

        if request.method == "POST" and path == "/v1/videos":
            self.video_submissions.append(request.content)
            if b"FAIL" in request.content:
                return httpx.Response(500, text="provider exploded")
            return httpx.Response(200, json={"id": f"video_{next(self._ids)}"})

        if request.method == "GET" and path.startswith("/v1/videos/") and path.endswith("/content"):
            video_id = path.split("/")[-2]
            self._polls[video_id] = self._polls.get(video_id, 0) + 1
            if self.never_ready or self._polls[video_id] <= self.pending_polls:
                return httpx.Response(202, json={"status": "in_progress"})
            return httpx.Response(
                200, content=self.video_bytes, headers={"content-type": "video/mp4"}
            )

        if request.method == "POST" and path == "/v1/images":
            body = json.loads(request.content)
            self.image_requests.append(body)
            return httpx.Response(
                200, json={"data": [{"url": f"https://{CDN_HOST}/img/{next(self._ids)}.png"}]}
            )

        return httpx.Response(404, text=f"unexpected request {request.method} {request.url}")

    @property
    def poll_count(self) -> int:
        return sum(self._polls.values())


@pytest.fixture
def fake_comet() -> FakeComet:
    return FakeComet()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings: no poll delay, media under tmp_path, fake endpoints."""
    return Settings(
        **{
            "APP_ENV": "test",
            "COMET_API_KEY": "test-comet-key",
            "COMET_API_URL": COMET_URL,
            "N8N_WEBHOOK_URL": N8N_WEBHOOK_URL,
            "N8N_CALLBACK_SECRET": N8N_SECRET,
            "POLL_INTERVAL_SECONDS": 0,
            "VIDEO_POLL_MAX_ATTEMPTS": 5,
            "CALLBACK_POLL_MAX_ATTEMPTS": 5,
            "MAX_VIDEOS_TO_GENERATE": 1,
            "MEDIA_ROOT": str(tmp_path / "media"),
            "MEDIA_URL_PREFIX": "/media",
            "SUBMISSION_MODE": "workflow",
            "RECOVER_ORPHANED_JOBS": False,
        }
    )


@pytest_asyncio.fixture
async def http_client(fake_comet) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_comet.handler)) as client:
        yield client


@pytest_asyncio.fixture
async def services(settings, uow_factory, http_client):
    """Service graph against the test database and the fake endpoints."""
    services = build_services(settings, uow_factory, http_client)
    yield services
    await services.supervisor.shutdown(timeout=5.0)
