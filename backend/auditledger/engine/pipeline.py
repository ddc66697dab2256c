"""
Provisioning pipeline.

  raw input → validate → {lock, lifecycle, access, replication} → assemble

Pure: no I/O and no shared state, so independent requests may be resolved
concurrently.  The prior lock state, when there is one, must be passed in.
"""
import logging
from collections.abc import Mapping
from typing import Any

from auditledger.core.config import Settings, get_settings
from auditledger.core.errors import ProvisioningError
from auditledger.engine import access, assembler, lifecycle, lock, replication
from auditledger.engine.validator import validate
from auditledger.schemas.request import ProvisioningInput
from auditledger.schemas.resources import LockConfiguration, ResourceGraph

logger = logging.getLogger(__name__)


def resolve_request(
    raw: ProvisioningInput | Mapping[str, Any],
    prior_state: LockConfiguration | None = None,
    *,
    settings: Settings | None = None,
    strict: bool = False,
) -> ResourceGraph:
    """Resolve one provisioning request into a complete resource graph.

    Raises ValidationError / PolicyConflictError without producing any
    partial graph.  With ``strict`` an unverified replication destination
    raises UnverifiedDependencyError instead of being reported as a warning.
    """
    settings = settings or get_settings()
    try:
        request = validate(raw, settings)
        lock_config = lock.resolve(request, prior_state)
        plan = lifecycle.plan(request, settings)
        policy = access.synthesize(request, lock_config, settings)
        wiring = replication.resolve(request)
        graph = assembler.assemble(request, lock_config, plan, policy, wiring, settings)
        if strict:
            graph.raise_for_unverified()
    except ProvisioningError as exc:
        logger.warning(
            "%s resolving provisioning request: %d violation(s) (%s)",
            type(exc).__name__,
            len(exc.violations),
            ", ".join(sorted(exc.rules())),
        )
        raise

    for warning in graph.warnings:
        logger.warning("%s: %s", request.name, warning.message)
    logger.info(
        "Resolved %s/%s: lock=%s mode=%s retention=%d immutability_verified=%s",
        request.backend,
        request.name,
        lock_config.enabled,
        lock_config.mode.value,
        lock_config.retention_days,
        graph.summary.immutability_verified,
    )
    return graph
