"""
Azure Blob Storage backend — container immutability policy + custom RBAC role.

GOVERNANCE maps to an Unlocked immutability policy (retention can still be
managed by privileged principals); COMPLIANCE maps to a Locked policy.
Native documents use ARM property names (camelCase).
"""
import logging
import re
import uuid
from typing import Any

from auditledger.backends.profile import BackendProfile, CapabilitySet, Identifiers, TagLimits
from auditledger.core.config import Settings
from auditledger.core.errors import Violation
from auditledger.engine.lock_rules import check_minimum_retention, enforce_ratchet
from auditledger.schemas.request import (
    LockMode,
    ProvisioningInput,
    StorageTier,
    ValidatedRequest,
)
from auditledger.schemas.resources import (
    EncryptionConfig,
    LifecyclePlan,
    LockConfiguration,
    OutputSummary,
    ResourceGraph,
    RetentionUnit,
)

logger = logging.getLogger(__name__)

MAX_RETENTION_DAYS = 146000

_SUBSCRIPTION = r"/subscriptions/[0-9a-fA-F-]{36}"
_RESOURCE_GROUP = r"/resourceGroups/[\w().-]{1,90}"
STORAGE_ACCOUNT_ID_RE = re.compile(
    rf"^{_SUBSCRIPTION}{_RESOURCE_GROUP}"
    r"/providers/Microsoft\.Storage/storageAccounts/(?P<account>[a-z0-9]{3,24})$"
)
IDENTITY_ID_RE = re.compile(
    rf"^{_SUBSCRIPTION}{_RESOURCE_GROUP}"
    r"/providers/Microsoft\.ManagedIdentity/userAssignedIdentities/[\w-]{3,128}$"
)
KEY_VAULT_KEY_RE = re.compile(
    r"^https://[a-zA-Z0-9-]{3,24}\.vault\.azure\.net/keys/[a-zA-Z0-9-]{1,127}(/[0-9a-fA-F]{32})?$"
)

_CONTAINERS = "Microsoft.Storage/storageAccounts/blobServices/containers"

CAPABILITIES = CapabilitySet(
    read=(f"{_CONTAINERS}/blobs/read", f"{_CONTAINERS}/read"),
    append=(f"{_CONTAINERS}/blobs/add/action",),
    bypass=(f"{_CONTAINERS}/immutabilityPolicies/write",),
    destructive=frozenset(
        {
            "*",
            "Microsoft.Storage/*",
            f"{_CONTAINERS}/delete",
            f"{_CONTAINERS}/blobs/delete",
            f"{_CONTAINERS}/blobs/deleteBlobVersion/action",
            f"{_CONTAINERS}/blobs/write",
            f"{_CONTAINERS}/immutabilityPolicies/delete",
            f"{_CONTAINERS}/immutabilityPolicies/write",
        }
    ),
)

TIER_NAMES = {
    StorageTier.STANDARD: "Hot",
    StorageTier.INFREQUENT_ACCESS: "Cool",
    StorageTier.COLD: "Cold",
    StorageTier.ARCHIVE: "Archive",
    StorageTier.DEEP_ARCHIVE: "Archive",
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def storage_account_name_problems(name: str) -> list[str]:
    problems: list[str] = []
    if not 3 <= len(name) <= 24:
        problems.append("Storage account name must be between 3 and 24 characters long")
    if not re.fullmatch(r"[a-z0-9]*", name):
        problems.append("Storage account name may only contain lowercase letters and numbers")
    return problems


def container_name_problems(name: str) -> list[str]:
    problems: list[str] = []
    if not 3 <= len(name) <= 63:
        problems.append("Container name must be between 3 and 63 characters long")
    if not re.fullmatch(r"[a-z0-9-]*", name):
        problems.append("Container name may only contain lowercase letters, numbers and hyphens")
    if name and not (name[0].isalnum() and name[-1].isalnum()):
        problems.append("Container name must begin and end with a letter or number")
    if "--" in name:
        problems.append("Container name must not contain consecutive hyphens")
    return problems


def check_names(data: ProvisioningInput) -> list[Violation]:
    violations = [
        Violation(field="name", rule="naming", message=problem)
        for problem in storage_account_name_problems(data.name)
    ]
    violations.extend(
        Violation(field="container_name", rule="naming", message=problem)
        for problem in container_name_problems(data.container_name)
    )

    group = data.resource_group_name
    if not group:
        violations.append(
            Violation(
                field="resource_group_name",
                rule="required",
                message="resource_group_name is required for the azure backend",
            )
        )
    elif not re.fullmatch(r"[\w().-]{1,90}", group) or group.endswith("."):
        violations.append(
            Violation(
                field="resource_group_name",
                rule="naming",
                message=(
                    "Resource group name must be 1-90 letters, numbers, underscores, "
                    "parentheses, hyphens or periods and must not end with a period"
                ),
            )
        )
    return violations


def check_kms_key(key: str) -> bool:
    return bool(KEY_VAULT_KEY_RE.match(key))


def check_replication(destination: str, role: str, source_name: str) -> list[Violation]:
    violations: list[Violation] = []
    match = STORAGE_ACCOUNT_ID_RE.match(destination)
    if match is None:
        violations.append(
            Violation(
                field="replication_bucket_arn",
                rule="format",
                message=(
                    "Replication destination must be a storage account resource ID "
                    f"(got {destination!r})"
                ),
            )
        )
    elif match["account"] == source_name:
        violations.append(
            Violation(
                field="replication_bucket_arn",
                rule="distinct",
                message="Replication destination must be a different storage account than the source",
            )
        )
    if not IDENTITY_ID_RE.match(role):
        violations.append(
            Violation(
                field="replication_role_arn",
                rule="format",
                message=f"Replication role must be a user-assigned identity resource ID (got {role!r})",
            )
        )
    return violations


# ---------------------------------------------------------------------------
# Lock resolver
# ---------------------------------------------------------------------------

def resolve_lock(
    request: ValidatedRequest, prior_state: LockConfiguration | None = None
) -> LockConfiguration:
    """Immutability policies are always expressed in days."""
    check_minimum_retention(request)
    enforce_ratchet(request, prior_state)

    config = LockConfiguration(
        enabled=request.object_lock_enabled,
        mode=request.lock_mode,
        retention_days=request.retention_days,
        unit=RetentionUnit.DAYS,
    )
    logger.debug(
        "Azure immutability for %s: enabled=%s state=%s days=%s",
        request.name, config.enabled, policy_state(config), config.retention_days,
    )
    return config


def policy_state(lock: LockConfiguration) -> str:
    return "Locked" if lock.mode is LockMode.COMPLIANCE else "Unlocked"


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

def _account_id(request: ValidatedRequest, settings: Settings) -> str:
    return (
        f"/subscriptions/{settings.azure_subscription_id}"
        f"/resourceGroups/{request.resource_group_name}"
        f"/providers/Microsoft.Storage/storageAccounts/{request.name}"
    )


def _container_scope(request: ValidatedRequest, settings: Settings) -> str:
    return f"{_account_id(request, settings)}/blobServices/default/containers/{request.container_name}"


def identity_principal_id(account_id: str) -> str:
    """Principal of the storage account's system-assigned identity, derived from its resource ID."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{account_id}/identity"))


def identifiers(request: ValidatedRequest, settings: Settings) -> Identifiers:
    account_id = _account_id(request, settings)
    policy_name = f"{request.name}-auditledger-access"
    # Role definition IDs are GUIDs; derive one deterministically from the scope
    definition_guid = uuid.uuid5(uuid.NAMESPACE_URL, f"{account_id}/{policy_name}")
    role_name = f"{request.name}-writer"
    domain = f"{request.name}.blob.core.windows.net"
    return Identifiers(
        resource_id=account_id,
        resource_arn=_container_scope(request, settings),
        domain_name=domain,
        regional_domain_name=domain,
        policy_name=policy_name,
        policy_id=(
            f"/subscriptions/{settings.azure_subscription_id}"
            f"/providers/Microsoft.Authorization/roleDefinitions/{definition_guid}"
        ),
        role_name=role_name,
        role_id=(
            f"/subscriptions/{settings.azure_subscription_id}"
            f"/resourceGroups/{request.resource_group_name}"
            f"/providers/Microsoft.ManagedIdentity/userAssignedIdentities/{role_name}"
        ),
    )


def resource_references(request: ValidatedRequest, settings: Settings) -> tuple[str, ...]:
    return (_container_scope(request, settings),)


def kms_key_reference(key: str, settings: Settings) -> str:
    return key


def encryption(request: ValidatedRequest) -> EncryptionConfig:
    if request.kms_key_id:
        return EncryptionConfig(algorithm="Microsoft.Keyvault", kms_key_id=request.kms_key_id)
    return EncryptionConfig(algorithm="Microsoft.Storage")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_outputs(summary: OutputSummary) -> dict[str, Any]:
    immutability = dict(summary.object_lock_configuration)
    immutability["state"] = policy_state(summary.lock)
    outputs: dict[str, Any] = {
        "storage_account_id": summary.resource_id,
        "storage_account_name": summary.resource_name,
        "primary_blob_endpoint": f"https://{summary.domain_name}/",
        "container_name": summary.container_name,
        "resource_group_name": summary.resource_group_name,
        "managed_identity_principal_id": identity_principal_id(summary.resource_id),
        "immutability_configuration": immutability,
        "immutability_verified": summary.immutability_verified_flag,
        "role_definition_id": summary.access_policy_id,
        "role_definition_name": summary.access_policy_name,
    }
    if summary.role_id:
        outputs["managed_identity_id"] = summary.role_id
    if summary.replication_destination:
        outputs["replication_destination"] = summary.replication_destination
    return outputs


def management_policy(plan: LifecyclePlan, container: str) -> dict[str, Any] | None:
    rules: list[dict[str, Any]] = []
    filters = {"blobTypes": ["blockBlob"], "prefixMatch": [f"{container}/"]}
    if plan.transitions:
        base_blob: dict[str, Any] = {}
        for t in plan.transitions:
            base_blob[f"tierTo{TIER_NAMES[t.tier]}"] = {"daysAfterModificationGreaterThan": t.after_days}
        rules.append(
            {
                "enabled": True,
                "name": "audit-log-tiering",
                "type": "Lifecycle",
                "definition": {"filters": filters, "actions": {"baseBlob": base_blob}},
            }
        )
    if plan.expiration is not None:
        rules.append(
            {
                "enabled": True,
                "name": "audit-log-noncurrent-expiration",
                "type": "Lifecycle",
                "definition": {
                    "filters": filters,
                    "actions": {
                        "version": {
                            "delete": {"daysAfterCreationGreaterThan": plan.expiration.after_days}
                        }
                    },
                },
            }
        )
    return {"policy": {"rules": rules}} if rules else None


def render_native(graph: ResourceGraph) -> dict[str, Any]:
    request = graph.request
    scope = graph.summary.resource_arn
    caps = CAPABILITIES

    native: dict[str, Any] = {
        "storage_account_name": request.name,
        "resource_group_name": request.resource_group_name,
        "container_name": request.container_name,
        "identity": {
            "type": "SystemAssigned",
            "principalId": identity_principal_id(graph.summary.resource_id),
        },
        "immutability_policy": (
            {
                "immutabilityPeriodSinceCreationInDays": graph.lock.retention_days,
                "allowProtectedAppendWrites": True,
                "state": policy_state(graph.lock),
            }
            if graph.lock.enabled
            else None
        ),
        "blob_properties": {"isVersioningEnabled": graph.versioning_enabled},
        "encryption": {"keySource": graph.encryption.algorithm},
        "management_policy": management_policy(graph.lifecycle, request.container_name),
        "role_definition": {
            "id": graph.summary.access_policy_id,
            "roleName": graph.summary.access_policy_name,
            "assignableScopes": [scope],
            "permissions": [{"actions": [], "dataActions": sorted(caps.read + caps.append)}],
        },
        "role_assignments": [
            {"principalId": s.principal, "scope": s.resources[0], "actions": list(s.actions)}
            for s in graph.access_policy.statements
        ],
        "managed_identity": (
            {"name": graph.role.name, "id": graph.role.identifier} if graph.role else None
        ),
        "object_replication_policy": (
            {
                "sourceAccount": graph.summary.resource_id,
                "destinationAccount": graph.replication.destination,
                "identity": graph.replication.role,
                "rules": [
                    {
                        "sourceContainer": request.container_name,
                        "destinationContainer": request.container_name,
                        "destinationTier": graph.replication.native_storage_class,
                    }
                ],
            }
            if graph.replication
            else None
        ),
        "tags": dict(request.tags),
    }
    if graph.encryption.kms_key_id:
        native["encryption"]["keyVaultProperties"] = {"keyIdentifier": graph.encryption.kms_key_id}
    return native


PROFILE = BackendProfile(
    name="azure",
    max_retention_days=MAX_RETENTION_DAYS,
    tier_names=TIER_NAMES,
    tag_limits=TagLimits(
        max_tags=50,
        max_key_length=512,
        max_value_length=256,
        forbidden_characters="<>%&\\?/",
    ),
    capabilities=CAPABILITIES,
    check_names=check_names,
    check_kms_key=check_kms_key,
    check_replication=check_replication,
    resolve_lock=resolve_lock,
    identifiers=identifiers,
    resource_references=resource_references,
    kms_key_reference=kms_key_reference,
    encryption=encryption,
    render_outputs=render_outputs,
    render_native=render_native,
)
