"""
AuditStorageStack — realizes a resolved `aws` ResourceGraph as CloudFormation.

Resources
  AuditBucket        S3 bucket, Object Lock + versioning + encryption + lifecycle
  AuditBucketPolicy  resource policy for the declared principals
  AccessPolicy       IAM managed policy (read + append, optional KMS / bypass)
  WriterRole         optional IAM role trusted by the declared principals

Object Lock must be enabled at bucket creation, so L1 constructs are used
throughout; every property comes from the graph, nothing is re-derived here.
"""
import json

import aws_cdk as cdk
from aws_cdk import aws_iam as iam
from aws_cdk import aws_s3 as s3
from constructs import Construct

from auditledger.backends import aws as aws_backend
from auditledger.schemas.resources import (
    EncryptionConfig,
    LifecyclePlan,
    LockConfiguration,
    ReplicationConfig,
    ResourceGraph,
    RetentionUnit,
)


def _output_id(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_"))


def _object_lock(lock: LockConfiguration) -> s3.CfnBucket.ObjectLockConfigurationProperty | None:
    if not lock.enabled:
        return None
    years = lock.retention_period if lock.unit is RetentionUnit.YEARS else None
    days = lock.retention_period if lock.unit is RetentionUnit.DAYS else None
    return s3.CfnBucket.ObjectLockConfigurationProperty(
        object_lock_enabled="Enabled",
        rule=s3.CfnBucket.ObjectLockRuleProperty(
            default_retention=s3.CfnBucket.DefaultRetentionProperty(
                mode=lock.mode.value,
                years=years,
                days=days,
            )
        ),
    )


def _encryption(config: EncryptionConfig) -> s3.CfnBucket.BucketEncryptionProperty:
    return s3.CfnBucket.BucketEncryptionProperty(
        server_side_encryption_configuration=[
            s3.CfnBucket.ServerSideEncryptionRuleProperty(
                bucket_key_enabled=config.bucket_key_enabled,
                server_side_encryption_by_default=s3.CfnBucket.ServerSideEncryptionByDefaultProperty(
                    sse_algorithm=config.algorithm,
                    kms_master_key_id=config.kms_key_id,
                ),
            )
        ]
    )


def _lifecycle(plan: LifecyclePlan) -> s3.CfnBucket.LifecycleConfigurationProperty | None:
    rules = []
    if plan.transitions:
        rules.append(
            s3.CfnBucket.RuleProperty(
                id="audit-log-tiering",
                status="Enabled",
                transitions=[
                    s3.CfnBucket.TransitionProperty(
                        storage_class=aws_backend.TIER_NAMES[t.tier],
                        transition_in_days=t.after_days,
                    )
                    for t in plan.transitions
                ],
            )
        )
    if plan.expiration is not None:
        rules.append(
            s3.CfnBucket.RuleProperty(
                id="audit-log-noncurrent-expiration",
                status="Enabled",
                noncurrent_version_expiration=s3.CfnBucket.NoncurrentVersionExpirationProperty(
                    noncurrent_days=plan.expiration.after_days,
                ),
            )
        )
    return s3.CfnBucket.LifecycleConfigurationProperty(rules=rules) if rules else None


def _replication(
    replication: ReplicationConfig | None, encryption: EncryptionConfig
) -> s3.CfnBucket.ReplicationConfigurationProperty | None:
    if replication is None:
        return None
    kms = replication.replicate_kms_encrypted and encryption.kms_key_id
    return s3.CfnBucket.ReplicationConfigurationProperty(
        role=replication.role,
        rules=[
            s3.CfnBucket.ReplicationRuleProperty(
                id="audit-log-replication",
                status="Enabled",
                priority=1,
                filter=s3.CfnBucket.ReplicationRuleFilterProperty(prefix=""),
                delete_marker_replication=s3.CfnBucket.DeleteMarkerReplicationProperty(
                    status="Disabled"
                ),
                destination=s3.CfnBucket.ReplicationDestinationProperty(
                    bucket=replication.destination,
                    storage_class=replication.native_storage_class,
                    encryption_configuration=(
                        s3.CfnBucket.EncryptionConfigurationProperty(
                            replica_kms_key_id=encryption.kms_key_id
                        )
                        if kms
                        else None
                    ),
                ),
                source_selection_criteria=(
                    s3.CfnBucket.SourceSelectionCriteriaProperty(
                        sse_kms_encrypted_objects=s3.CfnBucket.SseKmsEncryptedObjectsProperty(
                            status="Enabled"
                        )
                    )
                    if kms
                    else None
                ),
            )
        ],
    )


class AuditStorageStack(cdk.Stack):
    def __init__(self, scope: Construct, construct_id: str, *, graph: ResourceGraph, **kwargs) -> None:
        if graph.backend != "aws":
            raise ValueError(
                f"AuditStorageStack only realizes the aws backend (got {graph.backend!r})"
            )
        super().__init__(scope, construct_id, **kwargs)

        request = graph.request
        native = graph.native

        # ------------------------------------------------------------------ #
        # Bucket                                                              #
        # ------------------------------------------------------------------ #
        self.bucket = s3.CfnBucket(
            self,
            "AuditBucket",
            bucket_name=request.name,
            object_lock_enabled=graph.lock.enabled,
            object_lock_configuration=_object_lock(graph.lock),
            versioning_configuration=s3.CfnBucket.VersioningConfigurationProperty(
                status=native["versioning_configuration"]["Status"]
            ),
            bucket_encryption=_encryption(graph.encryption),
            public_access_block_configuration=s3.CfnBucket.PublicAccessBlockConfigurationProperty(
                block_public_acls=True,
                block_public_policy=True,
                ignore_public_acls=True,
                restrict_public_buckets=True,
            ),
            lifecycle_configuration=_lifecycle(graph.lifecycle),
            replication_configuration=_replication(graph.replication, graph.encryption),
            tags=[cdk.CfnTag(key=k, value=v) for k, v in request.tags.items()],
        )
        # A WORM bucket must outlive the stack
        self.bucket.apply_removal_policy(cdk.RemovalPolicy.RETAIN)

        self.bucket_policy = s3.CfnBucketPolicy(
            self,
            "AuditBucketPolicy",
            bucket=self.bucket.ref,
            policy_document=native["bucket_policy_document"],
        )

        # ------------------------------------------------------------------ #
        # IAM                                                                 #
        # ------------------------------------------------------------------ #
        self.access_policy = iam.CfnManagedPolicy(
            self,
            "AccessPolicy",
            managed_policy_name=native["iam_policy_name"],
            description=f"Read + append access to audit bucket {request.name}",
            policy_document=native["iam_policy_document"],
        )

        self.role = None
        if native["iam_role"] is not None:
            self.role = iam.CfnRole(
                self,
                "WriterRole",
                role_name=native["iam_role"]["RoleName"],
                assume_role_policy_document=native["iam_role"]["AssumeRolePolicyDocument"],
                managed_policy_arns=[self.access_policy.ref],
            )

        # ------------------------------------------------------------------ #
        # Outputs                                                             #
        # ------------------------------------------------------------------ #
        for name, value in graph.outputs.items():
            cdk.CfnOutput(
                self,
                _output_id(name),
                value=value if isinstance(value, str) else json.dumps(value, sort_keys=True),
            )
