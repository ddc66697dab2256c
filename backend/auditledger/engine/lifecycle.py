"""
Lifecycle Planner.

Produces an ordered plan of storage-tier transitions followed by a single
rule that expires non-current versions once every locked version is past its
retention.  Tiers only ever get colder along the plan.
"""
import logging

from auditledger.backends.profile import BackendProfile
from auditledger.backends.registry import get_backend
from auditledger.core.config import Settings, get_settings
from auditledger.core.errors import PolicyConflictError, Violation
from auditledger.schemas.request import (
    MINIMUM_RETENTION_DAYS,
    StorageTier,
    TransitionThreshold,
    ValidatedRequest,
)
from auditledger.schemas.resources import ExpirationRule, LifecyclePlan, TransitionRule

logger = logging.getLogger(__name__)


def plan(request: ValidatedRequest, settings: Settings | None = None) -> LifecyclePlan:
    if not request.enable_lifecycle_rules:
        logger.debug("Lifecycle rules disabled for %s", request.name)
        return LifecyclePlan()

    settings = settings or get_settings()
    thresholds = list(request.transitions)
    if (
        not thresholds
        and request.object_lock_enabled
        and request.retention_days >= MINIMUM_RETENTION_DAYS
    ):
        thresholds = [
            TransitionThreshold(
                after_days=settings.default_transition_to_ia_days,
                tier=StorageTier.INFREQUENT_ACCESS,
            ),
            TransitionThreshold(
                after_days=settings.default_transition_to_archive_days,
                tier=StorageTier.ARCHIVE,
            ),
        ]

    transitions = _order(thresholds, get_backend(request.backend))
    _check_monotonic(transitions)

    last_day = max((t.after_days for t in transitions), default=0)
    expiration = ExpirationRule(after_days=max(request.retention_days, last_day) + 1)

    result = LifecyclePlan(rules=(*transitions, expiration))
    logger.debug(
        "Lifecycle plan for %s: %s, expire non-current after %d days",
        request.name,
        [(t.after_days, t.tier.value) for t in transitions] or "no transitions",
        expiration.after_days,
    )
    return result


def _order(thresholds: list[TransitionThreshold], profile: BackendProfile) -> list[TransitionRule]:
    """Sort by day (warm tier first on ties) and collapse repeats of the same native tier."""
    ordered = sorted(thresholds, key=lambda t: (t.after_days, t.tier.rank))
    rules: list[TransitionRule] = []
    for threshold in ordered:
        if rules and profile.native_tier(rules[-1].tier) == profile.native_tier(threshold.tier):
            continue
        rules.append(TransitionRule(after_days=threshold.after_days, tier=threshold.tier))
    return rules


def _check_monotonic(transitions: list[TransitionRule]) -> None:
    conflicts: list[Violation] = []
    for previous, current in zip(transitions, transitions[1:]):
        if current.after_days == previous.after_days:
            conflicts.append(
                Violation(
                    field="lifecycle_transitions",
                    rule="transition_order",
                    message=(
                        f"Conflicting transitions on day {current.after_days}: "
                        f"{previous.tier.value} and {current.tier.value}"
                    ),
                )
            )
        elif current.tier.rank < previous.tier.rank:
            conflicts.append(
                Violation(
                    field="lifecycle_transitions",
                    rule="transition_order",
                    message=(
                        f"Transition to {current.tier.value} on day {current.after_days} is warmer "
                        f"than {previous.tier.value} on day {previous.after_days}"
                    ),
                )
            )
    if conflicts:
        raise PolicyConflictError(conflicts)
