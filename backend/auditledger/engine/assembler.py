"""
Resource Graph Assembler.

Aggregates the resolver outputs into one ResourceGraph, cross-checks them and
renders the backend's named outputs and native documents.  Any failed check
aborts the whole graph.
"""
import logging

from auditledger.backends.registry import get_backend
from auditledger.core.config import Settings, get_settings
from auditledger.core.errors import PolicyConflictError, Violation
from auditledger.engine.access import check_no_destructive
from auditledger.schemas.request import LockMode, ValidatedRequest
from auditledger.schemas.resources import (
    UNVERIFIED_DEPENDENCY,
    AccessPolicy,
    LifecyclePlan,
    LockConfiguration,
    OutputSummary,
    ReplicationConfig,
    ResourceGraph,
    RoleConfig,
)

logger = logging.getLogger(__name__)


def assemble(
    request: ValidatedRequest,
    lock: LockConfiguration,
    lifecycle: LifecyclePlan,
    access: AccessPolicy,
    replication: ReplicationConfig | None,
    settings: Settings | None = None,
) -> ResourceGraph:
    settings = settings or get_settings()
    profile = get_backend(request.backend)

    # Object lock cannot exist without versioning; audit storage always keeps it on.
    versioning_enabled = True

    _cross_check(lock, lifecycle, access, replication, versioning_enabled, profile.capabilities.destructive)

    ids = profile.identifiers(request, settings)
    role = (
        RoleConfig(name=ids.role_name, identifier=ids.role_id, trusted_principals=request.principals)
        if request.create_iam_role
        else None
    )

    azure = request.backend == "azure"
    summary = OutputSummary(
        backend=request.backend,
        resource_name=request.name,
        resource_id=ids.resource_id,
        resource_arn=ids.resource_arn,
        domain_name=ids.domain_name,
        regional_domain_name=ids.regional_domain_name,
        versioning_enabled=versioning_enabled,
        lock=lock,
        access_policy_name=ids.policy_name,
        access_policy_id=ids.policy_id,
        role_id=role.identifier if role else None,
        replication_destination=replication.destination if replication else None,
        container_name=request.container_name if azure else None,
        resource_group_name=request.resource_group_name if azure else None,
    )

    warnings: list[Violation] = []
    if replication is not None and not replication.existence_verified:
        warnings.append(
            Violation(
                field="replication_bucket_arn",
                rule=UNVERIFIED_DEPENDENCY,
                message=(
                    f"Replication destination {replication.destination} has not been "
                    "confirmed to exist; replication is declared only"
                ),
            )
        )

    graph = ResourceGraph(
        request=request,
        versioning_enabled=versioning_enabled,
        encryption=profile.encryption(request),
        lock=lock,
        lifecycle=lifecycle,
        access_policy=access,
        replication=replication,
        role=role,
        summary=summary,
        outputs=profile.render_outputs(summary),
        native={},
        warnings=tuple(warnings),
    )
    return graph.model_copy(update={"native": profile.render_native(graph)})


def _cross_check(
    lock: LockConfiguration,
    lifecycle: LifecyclePlan,
    access: AccessPolicy,
    replication: ReplicationConfig | None,
    versioning_enabled: bool,
    destructive: frozenset[str],
) -> None:
    conflicts: list[Violation] = []

    expiration = lifecycle.expiration
    if lock.enabled and expiration is not None and expiration.after_days < lock.retention_days:
        conflicts.append(
            Violation(
                field="lifecycle",
                rule="expiration_before_retention",
                message=(
                    f"Non-current versions would expire after {expiration.after_days} days, "
                    f"before the {lock.retention_days}-day retention ends"
                ),
            )
        )

    if lock.mode is LockMode.COMPLIANCE:
        try:
            check_no_destructive(access, destructive)
        except PolicyConflictError as exc:
            conflicts.extend(exc.violations)

    if replication is not None and not versioning_enabled:
        conflicts.append(
            Violation(
                field="replication_bucket_arn",
                rule="versioning_required",
                message="Replication requires versioning on the source",
            )
        )

    if conflicts:
        logger.warning("Resource graph rejected: %d conflict(s)", len(conflicts))
        raise PolicyConflictError(conflicts)
