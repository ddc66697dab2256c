"""
Tests for replication wiring.
"""
import pytest

from auditledger.core.errors import ValidationError
from auditledger.engine import replication
from auditledger.engine.validator import validate
from auditledger.schemas.request import LockMode, StorageTier, ValidatedRequest
from conftest import AZURE_SUBSCRIPTION, INGEST_ROLE, REPLICA_BUCKET, REPLICATION_ROLE

AZURE_REPLICA = (
    f"/subscriptions/{AZURE_SUBSCRIPTION}/resourceGroups/rg-audit-dr"
    "/providers/Microsoft.Storage/storageAccounts/acmeauditdr"
)
AZURE_IDENTITY = (
    f"/subscriptions/{AZURE_SUBSCRIPTION}/resourceGroups/rg-audit"
    "/providers/Microsoft.ManagedIdentity/userAssignedIdentities/audit-replicator"
)


def test_no_target_means_no_replication(aws_request, settings):
    assert replication.resolve(validate(aws_request(), settings)) is None


def test_declared_and_unverified(aws_request, settings):
    config = replication.resolve(
        validate(
            aws_request(replication_bucket_arn=REPLICA_BUCKET, replication_role_arn=REPLICATION_ROLE),
            settings,
        )
    )
    assert config.destination == REPLICA_BUCKET
    assert config.role == REPLICATION_ROLE
    assert config.status == "declared"
    assert config.existence_verified is False
    assert config.storage_class is StorageTier.STANDARD
    assert config.native_storage_class == "STANDARD"
    assert config.replicate_kms_encrypted is False


def test_replica_storage_class(aws_request, settings):
    config = replication.resolve(
        validate(
            aws_request(
                replication_bucket_arn=REPLICA_BUCKET,
                replication_role_arn=REPLICATION_ROLE,
                replication_storage_class="GLACIER",
            ),
            settings,
        )
    )
    assert config.storage_class is StorageTier.ARCHIVE
    assert config.native_storage_class == "GLACIER"


def test_kms_encrypted_objects_replicated(aws_request, settings):
    config = replication.resolve(
        validate(
            aws_request(
                replication_bucket_arn=REPLICA_BUCKET,
                replication_role_arn=REPLICATION_ROLE,
                kms_key_id="alias/audit-logs",
            ),
            settings,
        )
    )
    assert config.replicate_kms_encrypted is True


def test_azure_object_replication(azure_request, settings):
    config = replication.resolve(
        validate(
            azure_request(
                replication_destination=AZURE_REPLICA,
                replication_role_arn=AZURE_IDENTITY,
                replication_storage_class="INFREQUENT_ACCESS",
            ),
            settings,
        )
    )
    assert config.destination == AZURE_REPLICA
    assert config.native_storage_class == "Cool"


def test_fails_closed_on_unvalidated_self_replication():
    request = ValidatedRequest(
        backend="aws",
        name="acme-audit-logs",
        retention_days=365,
        lock_mode=LockMode.COMPLIANCE,
        principals=(INGEST_ROLE,),
        replication_target="arn:aws:s3:::acme-audit-logs",
        replication_role=REPLICATION_ROLE,
    )
    with pytest.raises(ValidationError) as exc:
        replication.resolve(request)
    assert exc.value.rules() == {"distinct"}
