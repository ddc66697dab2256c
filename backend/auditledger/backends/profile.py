"""
Backend profiles.

A profile is a plain bundle of the rules and renderers one storage backend
needs: naming constraints, reference formats, retention limits, capability
tokens, its lock resolver, identifier derivation and output rendering.  The
engine looks a profile up by backend tag; there is no class hierarchy.
"""
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from auditledger.core.config import Settings
from auditledger.core.errors import Violation
from auditledger.schemas.request import ProvisioningInput, StorageTier, ValidatedRequest
from auditledger.schemas.resources import (
    EncryptionConfig,
    LockConfiguration,
    OutputSummary,
    ResourceGraph,
)


@dataclass(frozen=True)
class CapabilitySet:
    """Capability tokens (IAM actions / RBAC data actions) for one backend."""

    read: tuple[str, ...]
    append: tuple[str, ...]
    bypass: tuple[str, ...]
    destructive: frozenset[str]
    kms: tuple[str, ...] = ()


@dataclass(frozen=True)
class TagLimits:
    max_tags: int
    max_key_length: int
    max_value_length: int
    reserved_prefixes: tuple[str, ...] = ()
    forbidden_characters: str = ""


@dataclass(frozen=True)
class Identifiers:
    resource_id: str
    resource_arn: str
    domain_name: str
    regional_domain_name: str
    policy_name: str
    policy_id: str
    role_name: str
    role_id: str


@dataclass(frozen=True)
class BackendProfile:
    name: str
    max_retention_days: int
    tier_names: Mapping[StorageTier, str]
    tag_limits: TagLimits
    capabilities: CapabilitySet
    check_names: Callable[[ProvisioningInput], list[Violation]]
    check_kms_key: Callable[[str], bool]
    check_replication: Callable[[str, str, str], list[Violation]]
    resolve_lock: Callable[[ValidatedRequest, LockConfiguration | None], LockConfiguration]
    identifiers: Callable[[ValidatedRequest, Settings], Identifiers]
    resource_references: Callable[[ValidatedRequest, Settings], tuple[str, ...]]
    kms_key_reference: Callable[[str, Settings], str]
    encryption: Callable[[ValidatedRequest], EncryptionConfig]
    render_outputs: Callable[[OutputSummary], dict[str, Any]]
    render_native: Callable[[ResourceGraph], dict[str, Any]]
    min_transition_days: Mapping[StorageTier, int] = field(default_factory=dict)

    def parse_tier(self, token: str) -> StorageTier | None:
        """Accept a neutral tier token or this backend's native storage-class name."""
        try:
            return StorageTier(token)
        except ValueError:
            pass
        for tier, native in self.tier_names.items():
            if native == token:
                return tier
        return None

    def native_tier(self, tier: StorageTier) -> str:
        return self.tier_names[tier]
