"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.background import BackgroundTaskRunner
from app.persistence.database import Base
from app.persistence.models import *  # noqa: F401, F403
from app.persistence.models.human_agent import HumanAgent
from app.persistence.models.tenant import Tenant, User
from app.persistence.models.webhook import WebhookRegistration


@pytest.fixture
async def engine(tmp_path):
    """Create a test database engine.

    A file database (not :memory:) so that concurrent deliveries get
    separate connections, as they do against Postgres.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def background():
    runner = BackgroundTaskRunner()
    yield runner
    await runner.drain()


@pytest.fixture
async def tenant(db_session):
    tenant = Tenant(name="Acme Salon", subdomain="acme")
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)
    return tenant


@pytest.fixture
async def other_tenant(db_session):
    tenant = Tenant(name="Other Co", subdomain="other")
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)
    return tenant


@pytest.fixture
async def agents(db_session, tenant):
    """Two available agents for the tenant."""
    alice = HumanAgent(tenant_id=tenant.id, name="Alice", email="alice@acme.test", status="available")
    bob = HumanAgent(tenant_id=tenant.id, name="Bob", email="bob@acme.test", status="available")
    db_session.add_all([alice, bob])
    await db_session.commit()
    await db_session.refresh(alice)
    await db_session.refresh(bob)
    return alice, bob


@pytest.fixture
async def user(db_session, tenant):
    """Dashboard user whose email matches agent Alice."""
    user = User(
        tenant_id=tenant.id,
        email="alice@acme.test",
        hashed_password="not-used",
        role="tenant_admin",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def make_webhook(db_session, tenant):
    """Factory for webhook registrations."""

    async def _make(
        workflow_name: str = "handoff_requested",
        url: str = "https://n8n.test/webhook/handoff",
        auth_token: str | None = None,
        is_active: bool = True,
        tenant_id: int | None = None,
    ) -> WebhookRegistration:
        webhook = WebhookRegistration(
            tenant_id=tenant_id or tenant.id,
            workflow_name=workflow_name,
            webhook_url=url,
            auth_token=auth_token,
            is_active=is_active,
        )
        db_session.add(webhook)
        await db_session.commit()
        await db_session.refresh(webhook)
        return webhook

    return _make


@pytest.fixture
async def client(session_factory, user):
    """Async HTTP client bound to the app with the test database."""
    import httpx

    from app.core.auth import create_access_token
    from app.core.background import background_tasks
    from app.main import app
    from app.persistence.database import get_db, get_session_factory

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    token = create_access_token({"sub": str(user.id)})
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as test_client:
        yield test_client

    await background_tasks.drain()
    app.dependency_overrides.clear()
