"""
Shared pytest fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without a
live Postgres instance.  JSONB columns fall back to JSON and UUID columns are
stored as strings.

Environment overrides are applied before importing app modules so that
Settings() picks up the test identity.
"""
import os

# Set test environment BEFORE importing any app module
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("AWS_ACCOUNT_ID", "123456789012")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("DEFAULT_BACKEND", "aws")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from auditledger.core.config import Settings
from auditledger.models.base import Base
from auditledger.models.provisioning import ProvisioningRecord  # noqa: F401  registers model

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ACCOUNT_ID = "123456789012"
INGEST_ROLE = f"arn:aws:iam::{ACCOUNT_ID}:role/audit-ingest"
READER_ROLE = f"arn:aws:iam::{ACCOUNT_ID}:role/audit-reader"
REPLICA_BUCKET = "arn:aws:s3:::acme-audit-logs-replica"
REPLICATION_ROLE = f"arn:aws:iam::{ACCOUNT_ID}:role/s3-replication"

AZURE_SUBSCRIPTION = "11111111-2222-3333-4444-555555555555"
AZURE_PRINCIPAL = "9f3c1c52-6d0b-4d7a-8a8e-2b1f0c7d9e11"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        aws_account_id=ACCOUNT_ID,
        aws_region="us-east-1",
        azure_subscription_id=AZURE_SUBSCRIPTION,
        default_backend="aws",
    )


@pytest.fixture
def aws_request():
    """Factory for a minimal valid aws request with overrides."""

    def _make(**overrides) -> dict:
        raw = {"bucket_name": "acme-audit-logs", "principal_arns": [INGEST_ROLE]}
        raw.update(overrides)
        return raw

    return _make


@pytest.fixture
def azure_request():
    """Factory for a minimal valid azure request with overrides."""

    def _make(**overrides) -> dict:
        raw = {
            "backend": "azure",
            "storage_account_name": "acmeauditlogs",
            "resource_group_name": "rg-audit",
            "principals": [AZURE_PRINCIPAL],
        }
        raw.update(overrides)
        return raw

    return _make


@pytest_asyncio.fixture
async def engine():
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
async def db_session(engine):
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession):
    """AsyncClient for the FastAPI app with the DB dependency overridden."""
    from auditledger.core.db import get_db
    from auditledger.main import app

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
