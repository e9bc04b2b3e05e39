"""Shared test fixtures: in-memory database, Stripe double, app client."""

from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from app.billing.container import build_billing_services
from app.core.auth import AuthUser, require_auth
from app.core.config import Settings
from app.db.base import Base, create_session_factory
from app.db.models import ActivityLog, Subscription, User
from app.integrations.stripe_gateway import StripeGateway
from billing_factories import PRICE_ID, WEBHOOK_SECRET

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine() -> AsyncEngine:
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    import app.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def make_user(session_factory):
    """Insert a user row; returns the user id."""

    async def _make_user(
        user_id: str = "user_123",
        email: str = "owner@acme.test",
        stripe_customer_id: str | None = "cus_123",
    ) -> str:
        async with session_factory() as session:
            session.add(User(id=user_id, email=email, stripe_customer_id=stripe_customer_id))
            await session.commit()
        return user_id

    return _make_user


@pytest.fixture
def db(session_factory):
    """Read helpers for assertions."""

    class _Db:
        async def subscription(self, stripe_subscription_id: str) -> Subscription | None:
            async with session_factory() as session:
                result = await session.execute(
                    select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
                )
                return result.scalar_one_or_none()

        async def subscription_count(self) -> int:
            async with session_factory() as session:
                return (await session.execute(select(func.count(Subscription.id)))).scalar_one()

        async def audit_entries(self, action: str | None = None) -> list[ActivityLog]:
            async with session_factory() as session:
                stmt = select(ActivityLog).order_by(ActivityLog.id)
                if action is not None:
                    stmt = stmt.where(ActivityLog.action == action)
                return list((await session.execute(stmt)).scalars().all())

        async def user(self, user_id: str) -> User | None:
            async with session_factory() as session:
                return await session.get(User, user_id)

    return _Db()


# ---------------------------------------------------------------------------
# Stripe and services
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway():
    """StripeGateway double; its async methods are AsyncMocks."""
    fake = MagicMock(spec=StripeGateway)
    fake.configured = True
    return fake


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        debug=True,
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_plan_names={PRICE_ID: "Premium"},
        frontend_url="http://localhost:5173",
        cors_allowed_origins=["http://localhost:5173"],
    )


@pytest.fixture
def services(settings, session_factory, gateway):
    return build_billing_services(settings, session_factory, gateway=gateway)



# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_user() -> AuthUser:
    return AuthUser(user_id="user_123", email="owner@acme.test", claims={"sub": "user_123"})


@pytest.fixture
def app(services):
    """Application with the test container installed (lifespan is not run)."""
    from app.main import create_app

    application = create_app()
    application.state.billing = services
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def authenticated(app, auth_user):
    """Bypass token validation for routes guarded by require_auth."""

    async def _override():
        return auth_user

    app.dependency_overrides[require_auth] = _override
    return auth_user


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
