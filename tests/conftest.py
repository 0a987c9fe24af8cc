"""Shared test fixtures.

Tests run against an in-memory SQLite database (aiosqlite) shared through
a StaticPool, with tables created and dropped around every test. The
environment is set before the application is imported so settings pick up
fast bcrypt, disabled rate limiting and a non-Secure cookie over http.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["EMAIL_BACKEND"] = "console"
os.environ["FRONTEND_URL"] = "http://portal.test"

from collections.abc import AsyncGenerator  # noqa: E402
from datetime import date  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from patient_portal.core.auth import hash_password  # noqa: E402
from patient_portal.core.config import settings  # noqa: E402
from patient_portal.core.email import Notification  # noqa: E402
from patient_portal.core.tokens import encode_token  # noqa: E402
from patient_portal.models import Base, Patient  # noqa: E402
from patient_portal.repositories.patient_repository import (  # noqa: E402
    PatientRepository,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_PASSWORD = "hello world!"  # nosec B105  # gitleaks:allow

_patient_counter = 0


class RecordingNotifier:
    """Notifier that keeps every delivered notification in memory."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def deliver(self, notification: Notification) -> None:
        self.sent.append(notification)

    @property
    def last(self) -> Notification:
        return self.sent[-1]


def extract_token(notification: Notification) -> str:
    """Pull the encoded token out of a link in a notification body."""
    for line in notification.body.splitlines():
        if line.startswith(settings.frontend_url):
            return line.rsplit("/", 1)[-1]
    msg = f"No link in notification {notification.subject!r}"
    raise AssertionError(msg)


async def make_patient(
    db: AsyncSession,
    *,
    email: str | None = None,
    phone_number: str | None = None,
    password: str = TEST_PASSWORD,
) -> Patient:
    """Insert and commit a patient with unique email, username and phone."""
    global _patient_counter
    _patient_counter += 1
    n = _patient_counter
    patient = await PatientRepository.create(
        db,
        email=email or f"patient{n}@example.com",
        hashed_password=hash_password(password),
        first_name="Jane",
        middle_name="Wanjiru",
        last_name="Doe",
        username=f"patient{n}",
        phone_number=phone_number or f"07{n:08d}",
        date_of_birth=date(1990, 5, 17),
        gender="female",
    )
    await db.commit()
    return patient


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with the schema created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Session bound to the test engine."""
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def patient(db_session: AsyncSession) -> Patient:
    """A committed, unconfirmed patient."""
    return await make_patient(db_session)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    notifier: RecordingNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client sharing the test session and notifier."""
    from patient_portal.core.database import get_db
    from patient_portal.core.email import get_notifier
    from patient_portal.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_client(
    db_session: AsyncSession,
    patient: Patient,
    notifier: RecordingNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """Client carrying a live session cookie for ``patient``."""
    from patient_portal.core.database import get_db
    from patient_portal.core.email import get_notifier
    from patient_portal.main import app
    from patient_portal.services.token_authority import issue_session_token

    raw = await issue_session_token(db_session, patient)
    await db_session.commit()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        cookies={settings.session_cookie_name: encode_token(raw)},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
