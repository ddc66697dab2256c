"""
Provisioning request schemas.

ProvisioningInput   raw shape accepted from callers (API body, CDK request file)
ValidatedRequest    immutable output of the validator; the only input the
                    resolvers ever see
"""
from enum import Enum

from pydantic import AliasChoices, BaseModel, Field

MINIMUM_RETENTION_DAYS = 365
DEFAULT_RETENTION_DAYS = 2555  # 7 years
DEFAULT_LOCK_MODE = "COMPLIANCE"
DEFAULT_CONTAINER_NAME = "audit-logs"


class LockMode(str, Enum):
    GOVERNANCE = "GOVERNANCE"
    COMPLIANCE = "COMPLIANCE"


class StorageTier(str, Enum):
    """Backend-neutral storage tiers, declared warm → cold."""

    STANDARD = "STANDARD"
    INFREQUENT_ACCESS = "INFREQUENT_ACCESS"
    COLD = "COLD"
    ARCHIVE = "ARCHIVE"
    DEEP_ARCHIVE = "DEEP_ARCHIVE"

    @property
    def rank(self) -> int:
        return list(StorageTier).index(self)


# ---------------------------------------------------------------------------
# Raw input
# ---------------------------------------------------------------------------

class TransitionInput(BaseModel):
    days: int
    tier: str

    model_config = {"extra": "forbid"}


class ProvisioningInput(BaseModel):
    backend: str | None = None
    name: str = Field(
        default="",
        validation_alias=AliasChoices("name", "bucket_name", "storage_account_name"),
    )
    retention_days: int = DEFAULT_RETENTION_DAYS
    object_lock_enabled: bool = True
    object_lock_mode: str = DEFAULT_LOCK_MODE
    principal_arns: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("principal_arns", "principals", "auditledger_role_arns"),
    )
    admin_principal_arns: list[str] = Field(default_factory=list)
    kms_key_id: str | None = None
    enable_lifecycle_rules: bool = True
    transition_to_ia_days: int | None = None
    transition_to_glacier_days: int | None = None
    lifecycle_transitions: list[TransitionInput] = Field(default_factory=list)
    replication_bucket_arn: str | None = Field(
        default=None,
        validation_alias=AliasChoices("replication_bucket_arn", "replication_destination"),
    )
    replication_role_arn: str | None = None
    replication_storage_class: str = StorageTier.STANDARD.value
    create_iam_role: bool = False
    resource_group_name: str | None = None
    container_name: str = DEFAULT_CONTAINER_NAME
    tags: dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "forbid", "populate_by_name": True}


# ---------------------------------------------------------------------------
# Validated request
# ---------------------------------------------------------------------------

class TransitionThreshold(BaseModel):
    after_days: int
    tier: StorageTier

    model_config = {"frozen": True}


class ValidatedRequest(BaseModel):
    backend: str
    name: str
    retention_days: int
    object_lock_enabled: bool = True
    lock_mode: LockMode
    principals: tuple[str, ...]
    admin_principals: tuple[str, ...] = ()
    kms_key_id: str | None = None
    enable_lifecycle_rules: bool = True
    transitions: tuple[TransitionThreshold, ...] = ()
    replication_target: str | None = None
    replication_role: str | None = None
    replication_storage_class: StorageTier = StorageTier.STANDARD
    create_iam_role: bool = False
    resource_group_name: str | None = None
    container_name: str = DEFAULT_CONTAINER_NAME
    tags: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def replication_requested(self) -> bool:
        return self.replication_target is not None
