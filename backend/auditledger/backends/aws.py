"""
Amazon S3 backend — Object Lock bucket + IAM managed policy.

Native documents use the S3 / IAM API shapes (PascalCase keys) so they can be
handed to CloudFormation or boto3 unchanged.
"""
import ipaddress
import logging
import re
from typing import Any

from auditledger.backends.profile import BackendProfile, CapabilitySet, Identifiers, TagLimits
from auditledger.core.config import Settings
from auditledger.core.errors import Violation
from auditledger.engine.lock_rules import check_minimum_retention, enforce_ratchet
from auditledger.schemas.request import ProvisioningInput, StorageTier, ValidatedRequest
from auditledger.schemas.resources import (
    AccessPolicy,
    EncryptionConfig,
    LifecyclePlan,
    LockConfiguration,
    OutputSummary,
    ReplicationConfig,
    ResourceGraph,
    RetentionUnit,
    RoleConfig,
)

logger = logging.getLogger(__name__)

POLICY_VERSION = "2012-10-17"
MAX_RETENTION_DAYS = 36500
MAX_RETENTION_YEARS = 100

BUCKET_ARN_RE = re.compile(r"^arn:aws[a-z-]*:s3:::(?P<bucket>[a-z0-9][a-z0-9.-]{1,61}[a-z0-9])$")
ROLE_ARN_RE = re.compile(r"^arn:aws[a-z-]*:iam::\d{12}:role/[\w+=,.@/-]{1,512}$")
KMS_ARN_RE = re.compile(r"^arn:aws[a-z-]*:kms:[a-z0-9-]+:\d{12}:(key|alias)/[\w/+=,.@-]+$")
KMS_ALIAS_RE = re.compile(r"^alias/[\w/+=,.@-]+$")
KMS_KEY_ID_RE = re.compile(r"^[A-Za-z0-9-]{1,256}$")

_RESERVED_PREFIXES = ("xn--", "sthree-", "amzn-s3-demo-")
_RESERVED_SUFFIXES = ("-s3alias", "--ol-s3", ".mrap", "--x-s3")

CAPABILITIES = CapabilitySet(
    read=(
        "s3:GetBucketLocation",
        "s3:GetBucketObjectLockConfiguration",
        "s3:GetBucketVersioning",
        "s3:GetObject",
        "s3:GetObjectLegalHold",
        "s3:GetObjectRetention",
        "s3:GetObjectVersion",
        "s3:ListBucket",
        "s3:ListBucketVersions",
    ),
    append=("s3:PutObject",),
    bypass=("s3:BypassGovernanceRetention",),
    destructive=frozenset(
        {
            "s3:*",
            "s3:Delete*",
            "s3:DeleteBucket",
            "s3:DeleteObject",
            "s3:DeleteObjectVersion",
            "s3:BypassGovernanceRetention",
            "s3:PutBucketObjectLockConfiguration",
            "s3:PutBucketVersioning",
            "s3:PutLifecycleConfiguration",
            "s3:PutObjectRetention",
        }
    ),
    kms=("kms:Decrypt", "kms:GenerateDataKey"),
)

TIER_NAMES = {
    StorageTier.STANDARD: "STANDARD",
    StorageTier.INFREQUENT_ACCESS: "STANDARD_IA",
    StorageTier.COLD: "GLACIER_IR",
    StorageTier.ARCHIVE: "GLACIER",
    StorageTier.DEEP_ARCHIVE: "DEEP_ARCHIVE",
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def bucket_name_problems(name: str) -> list[str]:
    """S3 general-purpose bucket naming rules."""
    problems: list[str] = []
    if not 3 <= len(name) <= 63:
        problems.append("Bucket name must be between 3 and 63 characters long")
    if name != name.lower():
        problems.append("Bucket name must be lowercase")
    if not re.fullmatch(r"[A-Za-z0-9.-]*", name):
        problems.append("Bucket name may only contain letters, numbers, dots and hyphens")
    if name and not (name[0].isalnum() and name[-1].isalnum()):
        problems.append("Bucket name must begin and end with a letter or number")
    if ".." in name:
        problems.append("Bucket name must not contain two adjacent periods")
    try:
        ipaddress.IPv4Address(name)
        problems.append("Bucket name must not be formatted as an IP address")
    except ValueError:
        pass
    if name.startswith(_RESERVED_PREFIXES):
        problems.append(f"Bucket name must not start with any of {list(_RESERVED_PREFIXES)}")
    if name.endswith(_RESERVED_SUFFIXES):
        problems.append(f"Bucket name must not end with any of {list(_RESERVED_SUFFIXES)}")
    return problems


def check_names(data: ProvisioningInput) -> list[Violation]:
    return [
        Violation(field="name", rule="naming", message=problem)
        for problem in bucket_name_problems(data.name)
    ]


def check_kms_key(key: str) -> bool:
    return bool(KMS_ARN_RE.match(key) or KMS_ALIAS_RE.match(key) or KMS_KEY_ID_RE.match(key))


def check_replication(destination: str, role: str, source_name: str) -> list[Violation]:
    violations: list[Violation] = []
    match = BUCKET_ARN_RE.match(destination)
    if match is None:
        violations.append(
            Violation(
                field="replication_bucket_arn",
                rule="format",
                message=f"Replication destination must be an S3 bucket ARN (got {destination!r})",
            )
        )
    elif match["bucket"] == source_name:
        violations.append(
            Violation(
                field="replication_bucket_arn",
                rule="distinct",
                message="Replication destination must be a different bucket than the source",
            )
        )
    if not ROLE_ARN_RE.match(role):
        violations.append(
            Violation(
                field="replication_role_arn",
                rule="format",
                message=f"Replication role must be an IAM role ARN (got {role!r})",
            )
        )
    return violations


# ---------------------------------------------------------------------------
# Lock resolver
# ---------------------------------------------------------------------------

def resolve_lock(
    request: ValidatedRequest, prior_state: LockConfiguration | None = None
) -> LockConfiguration:
    """S3 default retention is expressed in whole years when possible."""
    check_minimum_retention(request)
    enforce_ratchet(request, prior_state)

    days = request.retention_days
    unit = RetentionUnit.DAYS
    if (
        request.object_lock_enabled
        and days % 365 == 0
        and days // 365 <= MAX_RETENTION_YEARS
    ):
        unit = RetentionUnit.YEARS

    config = LockConfiguration(
        enabled=request.object_lock_enabled,
        mode=request.lock_mode,
        retention_days=days,
        unit=unit,
    )
    logger.debug(
        "S3 lock for %s: enabled=%s mode=%s %s %s",
        request.name, config.enabled, config.mode.value, config.retention_period, unit.value,
    )
    return config


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

def identifiers(request: ValidatedRequest, settings: Settings) -> Identifiers:
    partition = settings.aws_partition
    account = settings.aws_account_id
    name = request.name
    policy_name = f"{name}-auditledger-access"
    role_name = f"{name[:57]}-writer"  # IAM role names are capped at 64 characters
    return Identifiers(
        resource_id=name,
        resource_arn=f"arn:{partition}:s3:::{name}",
        domain_name=f"{name}.s3.amazonaws.com",
        regional_domain_name=f"{name}.s3.{settings.aws_region}.amazonaws.com",
        policy_name=policy_name,
        policy_id=f"arn:{partition}:iam::{account}:policy/{policy_name}",
        role_name=role_name,
        role_id=f"arn:{partition}:iam::{account}:role/{role_name}",
    )


def resource_references(request: ValidatedRequest, settings: Settings) -> tuple[str, ...]:
    bucket_arn = f"arn:{settings.aws_partition}:s3:::{request.name}"
    return bucket_arn, f"{bucket_arn}/*"


def kms_key_reference(key: str, settings: Settings) -> str:
    if KMS_ARN_RE.match(key):
        return key
    prefix = f"arn:{settings.aws_partition}:kms:{settings.aws_region}:{settings.aws_account_id}"
    if KMS_ALIAS_RE.match(key):
        return f"{prefix}:{key}"
    return f"{prefix}:key/{key}"


def encryption(request: ValidatedRequest) -> EncryptionConfig:
    if request.kms_key_id:
        return EncryptionConfig(
            algorithm="aws:kms", kms_key_id=request.kms_key_id, bucket_key_enabled=True
        )
    return EncryptionConfig(algorithm="AES256")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_outputs(summary: OutputSummary) -> dict[str, Any]:
    outputs: dict[str, Any] = {
        "bucket_id": summary.resource_id,
        "bucket_arn": summary.resource_arn,
        "bucket_domain_name": summary.domain_name,
        "bucket_regional_domain_name": summary.regional_domain_name,
        "object_lock_configuration": summary.object_lock_configuration,
        "immutability_verified": summary.immutability_verified_flag,
        "iam_policy_arn": summary.access_policy_id,
        "iam_policy_name": summary.access_policy_name,
    }
    if summary.role_id:
        outputs["iam_role_arn"] = summary.role_id
    if summary.replication_destination:
        outputs["replication_destination"] = summary.replication_destination
    return outputs


def object_lock_document(lock: LockConfiguration) -> dict[str, Any] | None:
    if not lock.enabled:
        return None
    return {
        "ObjectLockEnabled": "Enabled",
        "Rule": {
            "DefaultRetention": {
                "Mode": lock.mode.value,
                lock.unit.value: lock.retention_period,
            }
        },
    }


def encryption_document(config: EncryptionConfig) -> dict[str, Any]:
    default: dict[str, Any] = {"SSEAlgorithm": config.algorithm}
    if config.kms_key_id:
        default["KMSMasterKeyID"] = config.kms_key_id
    return {
        "Rules": [
            {
                "ApplyServerSideEncryptionByDefault": default,
                "BucketKeyEnabled": config.bucket_key_enabled,
            }
        ]
    }


def lifecycle_document(plan: LifecyclePlan) -> dict[str, Any] | None:
    rules: list[dict[str, Any]] = []
    if plan.transitions:
        rules.append(
            {
                "ID": "audit-log-tiering",
                "Status": "Enabled",
                "Filter": {"Prefix": ""},
                "Transitions": [
                    {"Days": t.after_days, "StorageClass": TIER_NAMES[t.tier]}
                    for t in plan.transitions
                ],
            }
        )
    if plan.expiration is not None:
        rules.append(
            {
                "ID": "audit-log-noncurrent-expiration",
                "Status": "Enabled",
                "Filter": {"Prefix": ""},
                "NoncurrentVersionExpiration": {"NoncurrentDays": plan.expiration.after_days},
            }
        )
    return {"Rules": rules} if rules else None


def replication_document(
    replication: ReplicationConfig | None, encryption_config: EncryptionConfig
) -> dict[str, Any] | None:
    if replication is None:
        return None
    rule: dict[str, Any] = {
        "ID": "audit-log-replication",
        "Status": "Enabled",
        "Priority": 1,
        "Filter": {"Prefix": ""},
        "DeleteMarkerReplication": {"Status": "Disabled"},
        "Destination": {
            "Bucket": replication.destination,
            "StorageClass": replication.native_storage_class,
        },
    }
    if replication.replicate_kms_encrypted and encryption_config.kms_key_id:
        rule["SourceSelectionCriteria"] = {"SseKmsEncryptedObjects": {"Status": "Enabled"}}
        rule["Destination"]["EncryptionConfiguration"] = {
            "ReplicaKmsKeyID": encryption_config.kms_key_id
        }
    return {"Role": replication.role, "Rules": [rule]}


def iam_policy_document(policy: AccessPolicy) -> dict[str, Any]:
    """Identity-based policy: one statement per principal, no Principal element."""
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Sid": s.sid,
                "Effect": s.effect,
                "Action": list(s.actions),
                "Resource": list(s.resources),
            }
            for s in policy.statements
        ],
    }


def bucket_policy_document(policy: AccessPolicy, bucket_arn: str) -> dict[str, Any]:
    """Resource-based policy: S3 actions only, scoped to this bucket."""
    statements = []
    for s in policy.statements:
        actions = [a for a in s.actions if a.startswith("s3:")]
        resources = [r for r in s.resources if r == bucket_arn or r.startswith(f"{bucket_arn}/")]
        statements.append(
            {
                "Sid": s.sid,
                "Effect": s.effect,
                "Principal": {"AWS": s.principal},
                "Action": actions,
                "Resource": resources,
            }
        )
    return {"Version": POLICY_VERSION, "Statement": statements}


def trust_policy_document(role: RoleConfig) -> dict[str, Any]:
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Sid": "TrustDeclaredPrincipals",
                "Effect": "Allow",
                "Principal": {"AWS": list(role.trusted_principals)},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def render_native(graph: ResourceGraph) -> dict[str, Any]:
    return {
        "bucket_name": graph.request.name,
        "object_lock_enabled": graph.lock.enabled,
        "object_lock_configuration": object_lock_document(graph.lock),
        "versioning_configuration": {
            "Status": "Enabled" if graph.versioning_enabled else "Suspended"
        },
        "server_side_encryption_configuration": encryption_document(graph.encryption),
        "public_access_block_configuration": {
            "BlockPublicAcls": True,
            "BlockPublicPolicy": True,
            "IgnorePublicAcls": True,
            "RestrictPublicBuckets": True,
        },
        "lifecycle_configuration": lifecycle_document(graph.lifecycle),
        "replication_configuration": replication_document(graph.replication, graph.encryption),
        "iam_policy_name": graph.summary.access_policy_name,
        "iam_policy_document": iam_policy_document(graph.access_policy),
        "bucket_policy_document": bucket_policy_document(
            graph.access_policy, graph.summary.resource_arn
        ),
        "iam_role": (
            {
                "RoleName": graph.role.name,
                "AssumeRolePolicyDocument": trust_policy_document(graph.role),
            }
            if graph.role
            else None
        ),
        "tags": [{"Key": k, "Value": v} for k, v in graph.request.tags.items()],
    }


PROFILE = BackendProfile(
    name="aws",
    max_retention_days=MAX_RETENTION_DAYS,
    tier_names=TIER_NAMES,
    min_transition_days={StorageTier.INFREQUENT_ACCESS: 30},
    tag_limits=TagLimits(
        max_tags=50,
        max_key_length=128,
        max_value_length=256,
        reserved_prefixes=("aws:",),
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
