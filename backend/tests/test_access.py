"""
Tests for access policy synthesis.
"""
import pydantic
import pytest

from auditledger.backends import aws as aws_backend
from auditledger.core.errors import PolicyConflictError
from auditledger.engine import access, lock
from auditledger.engine.validator import validate
from auditledger.schemas.resources import AccessPolicy, PolicyStatement
from conftest import AZURE_SUBSCRIPTION, INGEST_ROLE, READER_ROLE

BUCKET_ARN = "arn:aws:s3:::acme-audit-logs"


def _synthesize(raw, settings):
    request = validate(raw, settings)
    return access.synthesize(request, lock.resolve(request), settings)


def test_one_statement_per_principal_in_order(aws_request, settings):
    policy = _synthesize(aws_request(principal_arns=[READER_ROLE, INGEST_ROLE]), settings)
    assert policy.principals == (READER_ROLE, INGEST_ROLE)
    assert [s.sid for s in policy.statements] == ["AuditLedgerReadAppend1", "AuditLedgerReadAppend2"]
    assert all(s.sid.isalnum() for s in policy.statements)


def test_read_and_append_only(aws_request, settings):
    (statement,) = _synthesize(aws_request(), settings).statements
    assert statement.effect == "Allow"
    assert statement.actions == tuple(sorted(statement.actions))
    assert "s3:PutObject" in statement.actions
    assert "s3:GetObject" in statement.actions
    assert "s3:ListBucket" in statement.actions
    assert not aws_backend.CAPABILITIES.destructive.intersection(statement.actions)
    assert statement.resources == (BUCKET_ARN, f"{BUCKET_ARN}/*")


def test_kms_alias_grant(aws_request, settings):
    (statement,) = _synthesize(aws_request(kms_key_id="alias/audit-logs"), settings).statements
    assert {"kms:Decrypt", "kms:GenerateDataKey"} <= set(statement.actions)
    assert statement.resources[-1] == "arn:aws:kms:us-east-1:123456789012:alias/audit-logs"


def test_kms_key_id_grant(aws_request, settings):
    key_id = "1234abcd-12ab-34cd-56ef-1234567890ab"
    (statement,) = _synthesize(aws_request(kms_key_id=key_id), settings).statements
    assert statement.resources[-1] == f"arn:aws:kms:us-east-1:123456789012:key/{key_id}"


def test_kms_arn_passed_through(aws_request, settings):
    key_arn = "arn:aws:kms:eu-west-1:210987654321:key/1234abcd-12ab-34cd-56ef-1234567890ab"
    (statement,) = _synthesize(aws_request(kms_key_id=key_arn), settings).statements
    assert statement.resources[-1] == key_arn


def test_governance_bypass_only_for_admins(aws_request, settings):
    policy = _synthesize(
        aws_request(
            object_lock_mode="GOVERNANCE",
            retention_days=365,
            principal_arns=[INGEST_ROLE, READER_ROLE],
            admin_principal_arns=[READER_ROLE],
        ),
        settings,
    )
    ingest, reader = policy.statements
    assert "s3:BypassGovernanceRetention" not in ingest.actions
    assert "s3:BypassGovernanceRetention" in reader.actions


def test_governance_without_admins_has_no_bypass(aws_request, settings):
    policy = _synthesize(aws_request(object_lock_mode="GOVERNANCE", retention_days=365), settings)
    assert not policy.statements_granting(frozenset(aws_backend.CAPABILITIES.bypass))


def test_no_bypass_when_lock_disabled(aws_request, settings):
    policy = _synthesize(
        aws_request(
            object_lock_mode="GOVERNANCE",
            object_lock_enabled=False,
            retention_days=0,
            admin_principal_arns=[INGEST_ROLE],
        ),
        settings,
    )
    assert not policy.statements_granting(frozenset(aws_backend.CAPABILITIES.bypass))


def test_compliance_has_no_destructive_capabilities(aws_request, settings):
    policy = _synthesize(aws_request(principal_arns=[INGEST_ROLE, READER_ROLE]), settings)
    assert policy.statements_granting(aws_backend.CAPABILITIES.destructive) == []


def test_destructive_grant_detected():
    policy = AccessPolicy(
        statements=(
            PolicyStatement(
                sid="Danger1",
                actions=("s3:DeleteObject", "s3:GetObject"),
                principal=INGEST_ROLE,
                resources=(BUCKET_ARN,),
            ),
        )
    )
    with pytest.raises(PolicyConflictError) as exc:
        access.check_no_destructive(policy, aws_backend.CAPABILITIES.destructive)
    assert exc.value.rules() == {"destructive_grant"}


@pytest.mark.parametrize("principal, resources", [("*", (BUCKET_ARN,)), (INGEST_ROLE, ("*",)), (INGEST_ROLE, ())])
def test_wildcards_unrepresentable(principal, resources):
    with pytest.raises(pydantic.ValidationError):
        PolicyStatement(sid="Bad1", actions=("s3:GetObject",), principal=principal, resources=resources)


def test_azure_scope_and_data_actions(azure_request, settings):
    (statement,) = _synthesize(azure_request(), settings).statements
    assert statement.resources == (
        f"/subscriptions/{AZURE_SUBSCRIPTION}/resourceGroups/rg-audit"
        "/providers/Microsoft.Storage/storageAccounts/acmeauditlogs"
        "/blobServices/default/containers/audit-logs",
    )
    assert (
        "Microsoft.Storage/storageAccounts/blobServices/containers/blobs/add/action"
        in statement.actions
    )
    assert not any(a.endswith("/delete") for a in statement.actions)


def test_azure_key_vault_key_adds_no_kms_actions(azure_request, settings):
    (statement,) = _synthesize(
        azure_request(kms_key_id="https://acme-vault.vault.azure.net/keys/audit"), settings
    ).statements
    assert not any(a.startswith("kms:") for a in statement.actions)
    assert len(statement.resources) == 1


def test_synthesis_is_idempotent(aws_request, settings):
    request = validate(aws_request(principal_arns=[INGEST_ROLE, READER_ROLE]), settings)
    config = lock.resolve(request)
    first = access.synthesize(request, config, settings)
    second = access.synthesize(request, config, settings)
    assert first.model_dump_json() == second.model_dump_json()
