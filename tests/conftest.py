import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

# Ensure we can import the backend package located under fastapi-backend/
REPO_ROOT = Path(__file__).resolve().parents[1]
BACKEND_PATH = REPO_ROOT / "fastapi-backend"
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))

# Set environment variables BEFORE importing grievance modules (settings are cached)
os.environ["JWT_SECRET"] = "test-secret-key-for-pytest-only-12345"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["APP_ENV"] = "test"
os.environ["INSTITUTE_EMAIL_DOMAIN"] = "students.vnit.ac.in"
os.environ["ALLOWED_HOSTS"] = "*"
os.environ["TWILIO_AUTH_TOKEN"] = "test-twilio-auth-token"
for _key in (
    "OPENAI_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_WHATSAPP_FROM",
    "TWILIO_WEBHOOK_URL",
    "METRICS_NAMESPACE",
    "SENTRY_DSN",
    "ADMIN_TOKEN_REQUIRED",
    "OTP_MAX_ATTEMPTS",
    "OTP_EXPIRY_MINUTES",
):
    os.environ.pop(_key, None)

from grievance import auth  # noqa: E402
from grievance import otp_utils  # noqa: E402
from grievance.config import get_settings  # noqa: E402
from grievance.database import build_engine, get_session  # noqa: E402
from grievance.dependencies import Services, get_services  # noqa: E402
from grievance.models import (  # noqa: E402
    PRIORITY_NORMAL,
    STATUS_PENDING,
    WORKER_AVAILABLE,
    Complaint,
    Identity,
    Worker,
)
from grievance.storage import EvidenceStorage  # noqa: E402

STUDENT_EMAIL = "a@students.vnit.ac.in"
HOSTEL = "HB1"


class ScriptedClassifier:
    """Stands in for PriorityClassifier; answers whatever the test sets."""

    def __init__(self, answer: str = PRIORITY_NORMAL):
        self.answer = answer
        self.calls = []

    async def classify(self, description: str) -> str:
        self.calls.append(description)
        return self.answer


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    # A file database per test; NullPool connections are safe across event loops.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def services(tmp_path):
    mailer = AsyncMock()
    mailer.send_otp_email.return_value = True
    mailer.send_resolution_email.return_value = True

    messenger = AsyncMock()
    messenger.send_assignment_notice.return_value = True
    messenger.fetch_media.return_value = b"\x89PNG proof"

    return Services(
        mailer=mailer,
        messenger=messenger,
        classifier=ScriptedClassifier(),
        storage=EvidenceStorage(get_settings(), local_path=tmp_path / "storage"),
    )


@pytest_asyncio.fixture
async def client(session_factory, services):
    from grievance.main import app

    async def _session_override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_services] = lambda: services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


@pytest.fixture
def otp_codes(monkeypatch):
    """Make generate_otp_code hand out a known sequence of codes."""
    issued = []

    def _install(*codes: str):
        queue = list(codes)

        def _next_code() -> str:
            code = queue.pop(0) if len(queue) > 1 else queue[0]
            issued.append(code)
            return code

        monkeypatch.setattr(otp_utils, "generate_otp_code", _next_code)
        return issued

    return _install


@pytest.fixture
def login_student(client, otp_codes):
    """Return a coroutine that runs the OTP flow and leaves the session cookie on the client."""

    async def _login(email: str = STUDENT_EMAIL, name: Optional[str] = "Student A", code: str = "123456"):
        otp_codes(code)
        r = await client.post("/login", json={"email": email, "name": name})
        assert r.status_code == 200, r.text
        if r.json()["otp_required"]:
            r = await client.post("/verify-otp", json={"email": email, "otp": code})
            assert r.status_code == 200, r.text
        return r

    return _login


@pytest.fixture
def make_identity(session_factory):
    async def _create(email: str = STUDENT_EMAIL, name: Optional[str] = "Student A", verified: bool = True) -> Identity:
        async with session_factory() as session:
            identity = Identity(email=email, name=name, verified=verified)
            session.add(identity)
            await session.commit()
            await session.refresh(identity)
            return identity

    return _create


@pytest.fixture
def make_worker(session_factory):
    async def _create(
        name: str = "Raju",
        phone: str = "+919876543210",
        hostel: str = HOSTEL,
        work_type: str = "Electrical",
        availability: str = WORKER_AVAILABLE,
    ) -> Worker:
        async with session_factory() as session:
            worker = Worker(name=name, phone=phone, hostel=hostel, work_type=work_type, availability=availability)
            session.add(worker)
            await session.commit()
            await session.refresh(worker)
            return worker

    return _create


@pytest.fixture
def make_complaint(session_factory):
    """Insert a complaint directly, bypassing the classifier."""
    base_time = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    async def _create(user_id: int, minutes: int = 0, **overrides) -> Complaint:
        values = dict(
            user_id=user_id,
            type="Electrical",
            description="fan not working",
            hostel_name=HOSTEL,
            room_no="204",
            floor_no="2",
            phone_number="9123456789",
            status=STATUS_PENDING,
            priority=PRIORITY_NORMAL,
            created_at=base_time + timedelta(minutes=minutes),
        )
        values.update(overrides)
        async with session_factory() as session:
            complaint = Complaint(**values)
            session.add(complaint)
            await session.commit()
            await session.refresh(complaint)
            return complaint

    return _create


@pytest.fixture
def fetch(session_factory):
    """Read a row through a fresh session so assertions see committed state."""

    async def _get(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _get


@pytest.fixture
def make_admin(session_factory):
    async def _create(username: str = "hb1admin", password: str = "adminpass123", hostel: str = HOSTEL):
        async with session_factory() as session:
            return await auth.create_hostel_admin(session, username, password, hostel)

    return _create
