"""
Application settings loaded from environment variables or .env file.

Priority:
  1. Environment variables (always win)
  2. .env file in project root (local dev)
  3. Defaults

The engine itself only reads the AWS / Azure identity fields (used to derive
ARNs and resource IDs) and the default lifecycle thresholds.  Database fields
are used by the API layer that records the last resolved lock state.

When ENVIRONMENT != development and DB_PASSWORD is not set, credentials are
fetched from AWS Secrets Manager at /auditledger/db/credentials.
"""
import json
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_repo_root = Path(__file__).resolve().parents[3]  # backend/auditledger/core → project root


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_repo_root / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    environment: str = "development"

    # ------------------------------------------------------------------ #
    # Database (provisioning records)
    # ------------------------------------------------------------------ #
    db_host: str = ""
    db_port: int = 5432
    db_name: str = "auditledger"
    db_user: str = "postgres"
    db_password: str = ""

    # Local dev overrides (used when ENVIRONMENT=development)
    local_db_host: str = "localhost"
    local_db_port: int = 5433
    local_db_name: str = "auditledger_dev"
    local_db_user: str = "postgres"
    local_db_password: str = "localpassword"

    # ------------------------------------------------------------------ #
    # AWS identity (ARN derivation)
    # ------------------------------------------------------------------ #
    aws_region: str = "us-east-1"
    aws_account_id: str = "000000000000"  # LocalStack default account
    aws_partition: str = "aws"

    # ------------------------------------------------------------------ #
    # Azure identity (resource ID derivation)
    # ------------------------------------------------------------------ #
    azure_subscription_id: str = "00000000-0000-0000-0000-000000000000"

    # ------------------------------------------------------------------ #
    # Engine defaults
    # ------------------------------------------------------------------ #
    default_backend: str = "aws"
    default_transition_to_ia_days: int = 90
    default_transition_to_archive_days: int = 180

    # ------------------------------------------------------------------ #
    # Computed properties
    # ------------------------------------------------------------------ #

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def database_url(self) -> str:
        """Async asyncpg URL."""
        host, port, name, user, password = self._resolve_db_credentials()
        return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"

    @property
    def database_url_sync(self) -> str:
        """Sync psycopg2 URL (Alembic)."""
        host, port, name, user, password = self._resolve_db_credentials()
        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"

    def _resolve_db_credentials(self) -> tuple[str, int, str, str, str]:
        if self.is_development:
            return (
                self.local_db_host,
                self.local_db_port,
                self.local_db_name,
                self.local_db_user,
                self.local_db_password,
            )

        host = self.db_host
        password = self.db_password
        user = self.db_user

        if host and not password:
            password, user = self._fetch_db_credentials_from_secrets_manager(user)

        if not host:
            raise RuntimeError("DB_HOST is not set. Update your .env or environment.")

        return host, self.db_port, self.db_name, user, password

    def _fetch_db_credentials_from_secrets_manager(
        self, default_user: str
    ) -> tuple[str, str]:
        try:
            import boto3

            client = boto3.client("secretsmanager", region_name=self.aws_region)
            secret = client.get_secret_value(SecretId="/auditledger/db/credentials")
            creds = json.loads(secret["SecretString"])
            return creds.get("password", ""), creds.get("username", default_user)
        except Exception as exc:
            logger.error("Failed to retrieve DB credentials from Secrets Manager: %s", exc)
            raise RuntimeError("Cannot connect to database: missing credentials") from exc

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of {allowed}")
        return v.lower()

    @field_validator("aws_account_id")
    @classmethod
    def validate_account_id(cls, v: str) -> str:
        if not (len(v) == 12 and v.isdigit()):
            raise ValueError("AWS_ACCOUNT_ID must be a 12-digit account number")
        return v

    @field_validator("default_backend")
    @classmethod
    def validate_default_backend(cls, v: str) -> str:
        allowed = {"aws", "azure"}
        if v.lower() not in allowed:
            raise ValueError(f"DEFAULT_BACKEND must be one of {allowed}")
        return v.lower()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
