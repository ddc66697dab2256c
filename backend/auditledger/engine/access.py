"""
Access Policy Synthesizer.

Every declared principal gets read + append on the storage resource and
nothing else.  Only administrators named explicitly may bypass a GOVERNANCE
lock; under COMPLIANCE no statement may carry a destructive capability.
"""
import logging
import re

from auditledger.backends.registry import get_backend
from auditledger.core.config import Settings, get_settings
from auditledger.core.errors import PolicyConflictError, Violation
from auditledger.schemas.request import LockMode, ValidatedRequest
from auditledger.schemas.resources import AccessPolicy, LockConfiguration, PolicyStatement

logger = logging.getLogger(__name__)

SID_PREFIX = "AuditLedgerReadAppend"


def synthesize(
    request: ValidatedRequest,
    lock: LockConfiguration,
    settings: Settings | None = None,
) -> AccessPolicy:
    settings = settings or get_settings()
    profile = get_backend(request.backend)
    caps = profile.capabilities

    resources = profile.resource_references(request, settings)
    kms_reference = (
        profile.kms_key_reference(request.kms_key_id, settings)
        if request.kms_key_id and caps.kms
        else None
    )
    bypass_allowed = lock.enabled and lock.mode is LockMode.GOVERNANCE

    statements: list[PolicyStatement] = []
    for index, principal in enumerate(request.principals, start=1):
        actions = set(caps.read) | set(caps.append)
        if bypass_allowed and principal in request.admin_principals:
            actions |= set(caps.bypass)
        statement_resources = resources
        if kms_reference:
            actions |= set(caps.kms)
            statement_resources = (*resources, kms_reference)
        statements.append(
            PolicyStatement(
                sid=_sid(index),
                actions=tuple(sorted(actions)),
                principal=principal,
                resources=statement_resources,
            )
        )

    policy = AccessPolicy(statements=tuple(statements))
    if lock.mode is LockMode.COMPLIANCE:
        check_no_destructive(policy, caps.destructive)

    logger.debug(
        "Access policy for %s: %d statement(s), bypass=%s",
        request.name,
        len(statements),
        bypass_allowed and bool(request.admin_principals),
    )
    return policy


def check_no_destructive(policy: AccessPolicy, destructive: frozenset[str]) -> None:
    offending = policy.statements_granting(destructive)
    if offending:
        raise PolicyConflictError(
            Violation(
                field="principal_arns",
                rule="destructive_grant",
                message=(
                    f"Statement {s.sid} grants "
                    f"{sorted(destructive.intersection(s.actions))} to {s.principal} "
                    "under a COMPLIANCE lock"
                ),
            )
            for s in offending
        )


def _sid(index: int) -> str:
    # IAM Sids are alphanumeric only
    return re.sub(r"[^A-Za-z0-9]", "", f"{SID_PREFIX}{index}")
