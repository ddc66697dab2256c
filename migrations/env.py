"""
Alembic env.py — provisioning-records schema.

The connection URL comes from the backend's own Settings so migrations and the
API always agree on the target database:
  1. LOCAL_DB_* variables  (when ENVIRONMENT=development)
  2. DB_HOST + DB_PASSWORD env vars
  3. AWS Secrets Manager at /auditledger/db/credentials (DB_HOST set, no password)

Usage:
  ENVIRONMENT=development alembic upgrade head
  ENVIRONMENT=production alembic upgrade head
  alembic upgrade head --sql      # offline: print the DDL only
"""
import logging
import sys
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

_repo_root = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=_repo_root / ".env", override=False)
sys.path.insert(0, str(_repo_root / "backend"))

from auditledger.core.config import get_settings  # noqa: E402
from auditledger.models.base import Base  # noqa: E402
from auditledger.models.provisioning import ProvisioningRecord  # noqa: E402,F401

logger = logging.getLogger("alembic.env")

config = context.config

try:
    config.set_main_option("sqlalchemy.url", get_settings().database_url_sync)
except RuntimeError as exc:
    logger.error("Cannot resolve database URL: %s", exc)
    sys.exit(1)

if config.config_file_name is not None:
    import logging.config
    logging.config.fileConfig(config.config_file_name)

# Revisions are raw SQL; metadata is only used by `alembic check`
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
