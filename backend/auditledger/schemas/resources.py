"""
Derived entities produced by the resolvers and the assembler.

All models are frozen: a changed input produces a whole new set of entities,
nothing is patched in place.
"""
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, computed_field, model_validator

from auditledger.core.errors import UnverifiedDependencyError, Violation
from auditledger.schemas.request import (
    MINIMUM_RETENTION_DAYS,
    LockMode,
    StorageTier,
    ValidatedRequest,
)

UNVERIFIED_DEPENDENCY = "unverified_dependency"


class RetentionUnit(str, Enum):
    DAYS = "Days"
    YEARS = "Years"


# ---------------------------------------------------------------------------
# Lock
# ---------------------------------------------------------------------------

class LockConfiguration(BaseModel):
    enabled: bool
    mode: LockMode
    retention_days: int
    unit: RetentionUnit = RetentionUnit.DAYS

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_retention(self) -> "LockConfiguration":
        if self.enabled and self.retention_days < MINIMUM_RETENTION_DAYS:
            raise ValueError(
                f"Retention period must be at least {MINIMUM_RETENTION_DAYS} days "
                f"when the lock is enabled (got {self.retention_days})"
            )
        if self.unit is RetentionUnit.YEARS and self.retention_days % 365:
            raise ValueError("Year-based retention must be a whole number of years")
        return self

    @property
    def retention_period(self) -> int:
        """Retention expressed in ``unit``."""
        if self.unit is RetentionUnit.YEARS:
            return self.retention_days // 365
        return self.retention_days


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TransitionRule(BaseModel):
    kind: Literal["transition"] = "transition"
    after_days: int
    tier: StorageTier

    model_config = {"frozen": True}


class ExpirationRule(BaseModel):
    """Expire non-current object versions."""

    kind: Literal["expire_noncurrent_versions"] = "expire_noncurrent_versions"
    after_days: int

    model_config = {"frozen": True}


LifecycleRule = Annotated[Union[TransitionRule, ExpirationRule], Field(discriminator="kind")]


class LifecyclePlan(BaseModel):
    rules: tuple[LifecycleRule, ...] = ()

    model_config = {"frozen": True}

    @property
    def transitions(self) -> tuple[TransitionRule, ...]:
        return tuple(r for r in self.rules if isinstance(r, TransitionRule))

    @property
    def expiration(self) -> ExpirationRule | None:
        for rule in self.rules:
            if isinstance(rule, ExpirationRule):
                return rule
        return None


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

class PolicyStatement(BaseModel):
    sid: str
    effect: Literal["Allow"] = "Allow"
    actions: tuple[str, ...]
    principal: str
    resources: tuple[str, ...]

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _no_wildcards(self) -> "PolicyStatement":
        if self.principal.strip() in ("", "*"):
            raise ValueError("Policy statements must name a concrete principal")
        if not self.resources or any(r.strip() in ("", "*") for r in self.resources):
            raise ValueError("Policy statements must name concrete resources")
        return self


class AccessPolicy(BaseModel):
    statements: tuple[PolicyStatement, ...] = ()

    model_config = {"frozen": True}

    @property
    def principals(self) -> tuple[str, ...]:
        return tuple(s.principal for s in self.statements)

    def statements_granting(self, actions: frozenset[str]) -> list[PolicyStatement]:
        """Statements that grant at least one of ``actions``."""
        return [s for s in self.statements if actions.intersection(s.actions)]


# ---------------------------------------------------------------------------
# Replication / encryption / role
# ---------------------------------------------------------------------------

class ReplicationConfig(BaseModel):
    destination: str
    role: str
    storage_class: StorageTier
    native_storage_class: str
    status: Literal["declared"] = "declared"
    existence_verified: bool = False
    replicate_kms_encrypted: bool = False

    model_config = {"frozen": True}


class EncryptionConfig(BaseModel):
    algorithm: str
    kms_key_id: str | None = None
    bucket_key_enabled: bool = False

    model_config = {"frozen": True}


class RoleConfig(BaseModel):
    name: str
    identifier: str
    trusted_principals: tuple[str, ...]

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

def _flag(value: bool) -> str:
    return "true" if value else "false"


class OutputSummary(BaseModel):
    backend: str
    resource_name: str
    resource_id: str
    resource_arn: str
    domain_name: str
    regional_domain_name: str
    versioning_enabled: bool
    lock: LockConfiguration
    access_policy_name: str
    access_policy_id: str
    role_id: str | None = None
    replication_destination: str | None = None
    container_name: str | None = None
    resource_group_name: str | None = None

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def immutability_verified(self) -> bool:
        return (
            self.lock.enabled
            and self.lock.retention_days >= MINIMUM_RETENTION_DAYS
            and self.versioning_enabled
        )

    @property
    def object_lock_configuration(self) -> dict[str, str]:
        return {
            "enabled": _flag(self.lock.enabled),
            "mode": self.lock.mode.value,
            "retention_days": str(self.lock.retention_days),
        }

    @property
    def immutability_verified_flag(self) -> str:
        return _flag(self.immutability_verified)


class ResourceGraph(BaseModel):
    request: ValidatedRequest
    versioning_enabled: bool
    encryption: EncryptionConfig
    lock: LockConfiguration
    lifecycle: LifecyclePlan
    access_policy: AccessPolicy
    replication: ReplicationConfig | None = None
    role: RoleConfig | None = None
    summary: OutputSummary
    outputs: dict[str, Any]
    native: dict[str, Any]
    warnings: tuple[Violation, ...] = ()

    model_config = {"frozen": True}

    @property
    def backend(self) -> str:
        return self.request.backend

    def unverified_dependencies(self) -> list[Violation]:
        return [w for w in self.warnings if w.rule == UNVERIFIED_DEPENDENCY]

    def raise_for_unverified(self) -> None:
        pending = self.unverified_dependencies()
        if pending:
            raise UnverifiedDependencyError(pending)
