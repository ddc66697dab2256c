"""
Provisioning-records store: async engine, request-scoped sessions and a status check.

Only the reconcile and records endpoints touch the database; planning is pure
and keeps working when the store is down.
"""
import logging
from collections.abc import AsyncGenerator
from enum import Enum

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from auditledger.core.config import get_settings
from auditledger.models.provisioning import ProvisioningRecord

logger = logging.getLogger(__name__)

_settings = get_settings()

engine = create_async_engine(
    _settings.database_url,
    pool_size=5,
    max_overflow=2,
    pool_pre_ping=True,
    echo=_settings.is_development,
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class StoreStatus(str, Enum):
    OK = "ok"
    UNMIGRATED = "unmigrated"
    ERROR = "error"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Session for one request; uncommitted work is rolled back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except SQLAlchemyError:
            await session.rollback()
            raise


async def store_status(bind: AsyncEngine | None = None) -> StoreStatus:
    """Reachability of the store and presence of the provisioning_records table."""
    bind = bind or engine
    table = ProvisioningRecord.__tablename__
    try:
        async with bind.connect() as conn:
            migrated = await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(table))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Provisioning store unreachable: %s", exc)
        return StoreStatus.ERROR
    if not migrated:
        logger.warning("Provisioning store reachable but %s is missing; run alembic upgrade head", table)
        return StoreStatus.UNMIGRATED
    return StoreStatus.OK


async def dispose_engine() -> None:
    await engine.dispose()
