"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime, timedelta
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from tripshare.app.main import app
from tripshare.app.db.session import get_db, Base
from tripshare.app.core.approval_tokens import ApprovalTokenService
from tripshare.app.core.config import Settings
from tripshare.app.core.dependencies import get_notifier
from tripshare.app.core.jwt import create_access_token
from tripshare.app.core.redis_client import get_redis
from tripshare.app.domain.approval.approval_service import ApprovalService
from tripshare.app.domain.consolidation.constraints import ConsolidationConstraints
from tripshare.app.domain.consolidation.engine import ConsolidationEngine
from tripshare.app.domain.join_requests.join_request_service import JoinRequestService
from tripshare.app.domain.proposals.lifecycle import ProposalLifecycleService
from tripshare.app.models.enums import UserRole
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import ManagerApprovalStatus, TripDataType, TripStatus, VehicleType
from tripshare.app.models.user import User
from tripshare.app.services.notifier import NotificationDispatcher
from tripshare.app.services.trip_store import TripStore

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)

# Monday 09:00 UTC; service tests run on this frozen clock
NOW = datetime(2026, 3, 2, 9, 0)
TEST_APPROVAL_SECRET = "test-approval-secret-with-at-least-32-chars"


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self._closed = False
        self.broken = False

    def _check(self):
        if self.broken:
            raise ConnectionError("Redis connection refused")

    async def ping(self):
        self._check()
        return not self._closed

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        self._check()
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        self._check()
        return 1 if key in self.store else 0

    async def flushdb(self):
        self.store = {}
        self.ttls = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakeNotifier:
    """Records outgoing mail; can pretend to be unconfigured or failing."""

    def __init__(self):
        self.sent = []
        self.configured = True
        self.fail = False

    def is_configured(self):
        return self.configured

    async def send(self, to, subject, html_body, text_body, cc=None):
        if self.fail:
            raise ConnectionError("Mail API unreachable")
        self.sent.append({
            "to": list(to),
            "cc": list(cc or []),
            "subject": subject,
            "text_body": text_body,
        })

    def sent_to(self, email):
        return [m for m in self.sent if email in m["to"]]


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def test_settings():
    return Settings(
        public_base_url="http://test",
        approval_token_secret=TEST_APPROVAL_SECRET,
        admin_emails=["ops@tripshare.test"],
        suggestion_api_url=None,
        mail_api_key=None,
    )


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def setup_session():
    """
    Session for fixture data only.

    Kept apart from the service session so a rolled back service call
    never expires the users and trips a test is holding.
    """
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def fresh_session():
    """Independent session for checking what was actually committed."""
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def reload(db_session):
    """Re-read a row through the service session, discarding stale state."""
    async def fetch(model, obj_id):
        return await db_session.get(model, obj_id, populate_existing=True)
    return fetch


# Services bound to the frozen clock

@pytest.fixture
def store(db_session):
    return TripStore(db_session)


@pytest.fixture
def token_service(redis_client, clock):
    return ApprovalTokenService(TEST_APPROVAL_SECRET, redis_client=redis_client, clock=clock)


@pytest.fixture
def dispatcher(notifier, db_session, clock):
    return NotificationDispatcher(notifier, db_session, clock)


@pytest.fixture
def approval_service(store, token_service, dispatcher, test_settings, clock):
    return ApprovalService(store, token_service, dispatcher, test_settings, clock)


@pytest.fixture
def consolidation_engine():
    return ConsolidationEngine(ConsolidationConstraints())


@pytest.fixture
def proposal_service(store, consolidation_engine, dispatcher, clock):
    return ProposalLifecycleService(store, consolidation_engine, dispatcher, clock)


@pytest.fixture
def join_service(store, approval_service, dispatcher, clock):
    return JoinRequestService(store, approval_service, dispatcher, clock)


# Users and trips

@pytest.fixture
def user_factory(setup_session):
    async def create(email, full_name=None, role=UserRole.EMPLOYEE, manager_email=None, department="Operations"):
        user = User(
            email=email,
            full_name=full_name or email.split("@")[0].title(),
            department=department,
            role=role,
            is_active=True,
            manager_email=manager_email,
            manager_name="Manager" if manager_email else None,
        )
        setup_session.add(user)
        await setup_session.commit()
        return user
    return create


@pytest.fixture
async def employee(user_factory):
    return await user_factory("an.nguyen@tripshare.test", "An Nguyen", manager_email="boss@tripshare.test")


@pytest.fixture
async def colleague(user_factory):
    return await user_factory("binh.tran@tripshare.test", "Binh Tran", manager_email="boss@tripshare.test")


@pytest.fixture
async def solo_employee(user_factory):
    """An employee without a manager; trips are auto-approved."""
    return await user_factory("chi.le@tripshare.test", "Chi Le")


@pytest.fixture
async def admin_user(user_factory):
    return await user_factory("admin@tripshare.test", "Admin", role=UserRole.ADMIN)


@pytest.fixture
def trip_factory(setup_session):
    """Insert a trip directly, bypassing the approval flow."""
    async def create(
        requester,
        departure_at,
        origin="HCM Office",
        destination="Phan Thiet Factory",
        status=TripStatus.APPROVED,
        passenger_count=1,
        vehicle_type=VehicleType.CAR_4,
        **fields,
    ):
        trip = Trip(
            requester_id=requester.id,
            requester_email=requester.email,
            requester_name=requester.full_name,
            origin=origin,
            destination=destination,
            departure_at=departure_at,
            status=status,
            data_type=TripDataType.RAW,
            passenger_count=passenger_count,
            vehicle_type=vehicle_type,
            manager_email=requester.manager_email,
            manager_approval_status=ManagerApprovalStatus.APPROVED,
            **fields,
        )
        setup_session.add(trip)
        await setup_session.commit()
        return trip
    return create


# HTTP client

@pytest.fixture
def auth_headers():
    def build(user):
        token = create_access_token(user)
        return {"Authorization": f"Bearer {token}"}
    return build


@pytest.fixture
async def client(redis_client, notifier):
    """Async client for testing."""
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.state.redis = redis_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}
