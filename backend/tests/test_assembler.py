"""
Tests for resource graph assembly: outputs, native documents and cross-checks.
"""
import uuid

import pytest

from auditledger.core.errors import PolicyConflictError
from auditledger.engine import access, assembler, lifecycle, lock, replication
from auditledger.engine.validator import validate
from auditledger.schemas.resources import (
    UNVERIFIED_DEPENDENCY,
    AccessPolicy,
    ExpirationRule,
    LifecyclePlan,
    PolicyStatement,
)
from conftest import AZURE_SUBSCRIPTION, INGEST_ROLE, REPLICA_BUCKET, REPLICATION_ROLE


def _graph(raw, settings):
    request = validate(raw, settings)
    config = lock.resolve(request)
    return assembler.assemble(
        request,
        config,
        lifecycle.plan(request, settings),
        access.synthesize(request, config, settings),
        replication.resolve(request),
        settings,
    )


# ---------------------------------------------------------------------------
# AWS outputs
# ---------------------------------------------------------------------------

def test_aws_outputs(aws_request, settings):
    outputs = _graph(aws_request(), settings).outputs
    assert outputs == {
        "bucket_id": "acme-audit-logs",
        "bucket_arn": "arn:aws:s3:::acme-audit-logs",
        "bucket_domain_name": "acme-audit-logs.s3.amazonaws.com",
        "bucket_regional_domain_name": "acme-audit-logs.s3.us-east-1.amazonaws.com",
        "object_lock_configuration": {
            "enabled": "true",
            "mode": "COMPLIANCE",
            "retention_days": "2555",
        },
        "immutability_verified": "true",
        "iam_policy_arn": "arn:aws:iam::123456789012:policy/acme-audit-logs-auditledger-access",
        "iam_policy_name": "acme-audit-logs-auditledger-access",
    }


def test_role_output_only_when_requested(aws_request, settings):
    graph = _graph(aws_request(create_iam_role=True), settings)
    assert graph.outputs["iam_role_arn"] == "arn:aws:iam::123456789012:role/acme-audit-logs-writer"
    assert graph.role.trusted_principals == (INGEST_ROLE,)
    assert "iam_role_arn" not in _graph(aws_request(), settings).outputs


def test_unlocked_bucket_not_verified(aws_request, settings):
    graph = _graph(aws_request(object_lock_enabled=False, retention_days=0), settings)
    assert graph.summary.immutability_verified is False
    assert graph.outputs["immutability_verified"] == "false"
    assert graph.native["object_lock_configuration"] is None


def test_replication_declared_with_warning(aws_request, settings):
    graph = _graph(
        aws_request(replication_bucket_arn=REPLICA_BUCKET, replication_role_arn=REPLICATION_ROLE),
        settings,
    )
    assert graph.outputs["replication_destination"] == REPLICA_BUCKET
    (warning,) = graph.warnings
    assert warning.rule == UNVERIFIED_DEPENDENCY
    assert graph.unverified_dependencies() == [warning]


def test_no_replication_claimed_without_target(aws_request, settings):
    graph = _graph(aws_request(), settings)
    assert graph.replication is None
    assert "replication_destination" not in graph.outputs
    assert graph.native["replication_configuration"] is None
    assert graph.warnings == ()


# ---------------------------------------------------------------------------
# AWS native documents
# ---------------------------------------------------------------------------

def test_aws_native_lock_and_bucket_settings(aws_request, settings):
    native = _graph(aws_request(), settings).native
    assert native["object_lock_enabled"] is True
    assert native["object_lock_configuration"] == {
        "ObjectLockEnabled": "Enabled",
        "Rule": {"DefaultRetention": {"Mode": "COMPLIANCE", "Years": 7}},
    }
    assert native["versioning_configuration"] == {"Status": "Enabled"}
    assert all(native["public_access_block_configuration"].values())
    assert native["server_side_encryption_configuration"]["Rules"][0][
        "ApplyServerSideEncryptionByDefault"
    ] == {"SSEAlgorithm": "AES256"}


def test_aws_native_kms_encryption_and_replication(aws_request, settings):
    native = _graph(
        aws_request(
            kms_key_id="alias/audit-logs",
            replication_bucket_arn=REPLICA_BUCKET,
            replication_role_arn=REPLICATION_ROLE,
        ),
        settings,
    ).native
    rule = native["server_side_encryption_configuration"]["Rules"][0]
    assert rule["ApplyServerSideEncryptionByDefault"] == {
        "SSEAlgorithm": "aws:kms",
        "KMSMasterKeyID": "alias/audit-logs",
    }
    assert rule["BucketKeyEnabled"] is True

    replication_doc = native["replication_configuration"]
    assert replication_doc["Role"] == REPLICATION_ROLE
    (repl_rule,) = replication_doc["Rules"]
    assert repl_rule["Destination"]["Bucket"] == REPLICA_BUCKET
    assert repl_rule["Destination"]["EncryptionConfiguration"] == {"ReplicaKmsKeyID": "alias/audit-logs"}


def test_aws_native_lifecycle(aws_request, settings):
    native = _graph(aws_request(retention_days=365), settings).native
    tiering, expiration = native["lifecycle_configuration"]["Rules"]
    assert tiering["Transitions"] == [
        {"Days": 90, "StorageClass": "STANDARD_IA"},
        {"Days": 180, "StorageClass": "GLACIER"},
    ]
    assert expiration["NoncurrentVersionExpiration"] == {"NoncurrentDays": 366}


def test_aws_native_policies(aws_request, settings):
    native = _graph(aws_request(create_iam_role=True), settings).native
    (statement,) = native["bucket_policy_document"]["Statement"]
    assert statement["Principal"] == {"AWS": INGEST_ROLE}
    assert "Principal" not in native["iam_policy_document"]["Statement"][0]
    trust = native["iam_role"]["AssumeRolePolicyDocument"]["Statement"][0]
    assert trust["Principal"] == {"AWS": [INGEST_ROLE]}
    assert trust["Action"] == "sts:AssumeRole"


# ---------------------------------------------------------------------------
# Azure
# ---------------------------------------------------------------------------

def test_azure_outputs(azure_request, settings):
    outputs = _graph(azure_request(retention_days=365), settings).outputs
    account_id = (
        f"/subscriptions/{AZURE_SUBSCRIPTION}/resourceGroups/rg-audit"
        "/providers/Microsoft.Storage/storageAccounts/acmeauditlogs"
    )
    assert outputs["storage_account_id"] == account_id
    assert outputs["storage_account_name"] == "acmeauditlogs"
    assert outputs["primary_blob_endpoint"] == "https://acmeauditlogs.blob.core.windows.net/"
    assert outputs["container_name"] == "audit-logs"
    assert outputs["resource_group_name"] == "rg-audit"
    assert outputs["managed_identity_principal_id"] == str(
        uuid.uuid5(uuid.NAMESPACE_URL, f"{account_id}/identity")
    )
    assert "managed_identity_id" not in outputs
    assert outputs["immutability_configuration"] == {
        "enabled": "true",
        "mode": "COMPLIANCE",
        "retention_days": "365",
        "state": "Locked",
    }
    assert outputs["immutability_verified"] == "true"
    assert outputs["role_definition_id"].startswith(
        f"/subscriptions/{AZURE_SUBSCRIPTION}/providers/Microsoft.Authorization/roleDefinitions/"
    )


def test_azure_identity_outputs_with_role(azure_request, settings):
    graph = _graph(azure_request(create_iam_role=True), settings)
    assert graph.outputs["managed_identity_id"].endswith(
        "/providers/Microsoft.ManagedIdentity/userAssignedIdentities/acmeauditlogs-writer"
    )
    assert graph.native["identity"] == {
        "type": "SystemAssigned",
        "principalId": graph.outputs["managed_identity_principal_id"],
    }


def test_azure_governance_is_unlocked_policy(azure_request, settings):
    native = _graph(azure_request(object_lock_mode="GOVERNANCE", retention_days=365), settings).native
    assert native["immutability_policy"] == {
        "immutabilityPeriodSinceCreationInDays": 365,
        "allowProtectedAppendWrites": True,
        "state": "Unlocked",
    }
    assert native["blob_properties"] == {"isVersioningEnabled": True}


def test_azure_management_policy(azure_request, settings):
    native = _graph(azure_request(retention_days=365), settings).native
    tiering, expiration = native["management_policy"]["policy"]["rules"]
    assert tiering["definition"]["actions"]["baseBlob"] == {
        "tierToCool": {"daysAfterModificationGreaterThan": 90},
        "tierToArchive": {"daysAfterModificationGreaterThan": 180},
    }
    assert expiration["definition"]["actions"]["version"]["delete"] == {
        "daysAfterCreationGreaterThan": 366
    }


def test_azure_management_policy_matches_plan(azure_request, settings):
    graph = _graph(
        azure_request(
            lifecycle_transitions=[
                {"days": 180, "tier": "ARCHIVE"},
                {"days": 365, "tier": "DEEP_ARCHIVE"},
            ]
        ),
        settings,
    )
    tiering = graph.native["management_policy"]["policy"]["rules"][0]
    base_blob = tiering["definition"]["actions"]["baseBlob"]
    assert len(base_blob) == len(graph.lifecycle.transitions)
    assert base_blob == {"tierToArchive": {"daysAfterModificationGreaterThan": 180}}


def test_azure_role_definition_is_deterministic(azure_request, settings):
    first = _graph(azure_request(), settings).native["role_definition"]
    second = _graph(azure_request(), settings).native["role_definition"]
    assert first == second
    assert first["assignableScopes"][0].endswith("/containers/audit-logs")


# ---------------------------------------------------------------------------
# Cross-checks
# ---------------------------------------------------------------------------

def test_expiration_before_retention_rejected(aws_request, settings):
    request = validate(aws_request(), settings)
    config = lock.resolve(request)
    early = LifecyclePlan(rules=(ExpirationRule(after_days=30),))
    with pytest.raises(PolicyConflictError) as exc:
        assembler.assemble(
            request, config, early, access.synthesize(request, config, settings), None, settings
        )
    assert exc.value.rules() == {"expiration_before_retention"}


def test_destructive_grant_rejected_under_compliance(aws_request, settings):
    request = validate(aws_request(), settings)
    config = lock.resolve(request)
    risky = AccessPolicy(
        statements=(
            PolicyStatement(
                sid="Risky1",
                actions=("s3:GetObject", "s3:PutObjectRetention"),
                principal=INGEST_ROLE,
                resources=("arn:aws:s3:::acme-audit-logs/*",),
            ),
        )
    )
    with pytest.raises(PolicyConflictError) as exc:
        assembler.assemble(request, config, lifecycle.plan(request, settings), risky, None, settings)
    assert exc.value.rules() == {"destructive_grant"}
