"""
Rules shared by every backend's lock resolver.

The prior state is the lock configuration a previous reconciliation pass
resolved for the same resource.  It is always passed in explicitly; nothing
here reads live account state.
"""
from auditledger.core.errors import PolicyConflictError, ValidationError, Violation
from auditledger.schemas.request import MINIMUM_RETENTION_DAYS, LockMode, ValidatedRequest
from auditledger.schemas.resources import LockConfiguration


def retention_minimum_message(retention_days: int) -> str:
    return (
        f"Retention period must be at least {MINIMUM_RETENTION_DAYS} days "
        f"for compliance (got {retention_days})"
    )


def check_minimum_retention(request: ValidatedRequest) -> None:
    if request.object_lock_enabled and request.retention_days < MINIMUM_RETENTION_DAYS:
        raise ValidationError.single(
            "retention_days",
            "minimum_retention",
            retention_minimum_message(request.retention_days),
        )


def enforce_ratchet(request: ValidatedRequest, prior_state: LockConfiguration | None) -> None:
    """Reject transitions a WORM lock cannot make once applied.

    GOVERNANCE → COMPLIANCE is allowed, never the reverse.  An enabled lock
    cannot be switched off, and a COMPLIANCE retention can only grow.
    """
    if prior_state is None or not prior_state.enabled:
        return

    conflicts: list[Violation] = []

    if prior_state.mode is LockMode.COMPLIANCE and request.lock_mode is LockMode.GOVERNANCE:
        conflicts.append(
            Violation(
                field="object_lock_mode",
                rule="mode_downgrade",
                message="Illegal mode downgrade: COMPLIANCE lock cannot be changed to GOVERNANCE",
            )
        )

    if not request.object_lock_enabled:
        conflicts.append(
            Violation(
                field="object_lock_enabled",
                rule="lock_disable",
                message="Object lock cannot be disabled once it has been enabled",
            )
        )
    elif (
        prior_state.mode is LockMode.COMPLIANCE
        and request.retention_days < prior_state.retention_days
    ):
        conflicts.append(
            Violation(
                field="retention_days",
                rule="retention_reduction",
                message=(
                    f"COMPLIANCE retention cannot be shortened "
                    f"({prior_state.retention_days} -> {request.retention_days} days)"
                ),
            )
        )

    if conflicts:
        raise PolicyConflictError(conflicts)
