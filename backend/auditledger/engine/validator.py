"""
Policy Validator — turns a raw provisioning request into a ValidatedRequest.

Two passes:
  1. shape   pydantic parses the raw mapping; type / unknown-field errors are
             converted to violations and reported together
  2. values  every rule below is evaluated independently so one report lists
             all problems with the request

Nothing is derived and nothing is touched until both passes are clean.
"""
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from auditledger.backends.profile import BackendProfile
from auditledger.backends.registry import BACKENDS
from auditledger.core.config import Settings, get_settings
from auditledger.core.errors import ValidationError, Violation
from auditledger.engine.lock_rules import retention_minimum_message
from auditledger.schemas.request import (
    MINIMUM_RETENTION_DAYS,
    LockMode,
    ProvisioningInput,
    StorageTier,
    TransitionThreshold,
    ValidatedRequest,
)

logger = logging.getLogger(__name__)

_LOCK_MODES = sorted(m.value for m in LockMode)


def validate(
    raw: ProvisioningInput | Mapping[str, Any], settings: Settings | None = None
) -> ValidatedRequest:
    settings = settings or get_settings()
    data = _parse(raw, settings)

    backend = data.backend or settings.default_backend
    profile = BACKENDS.get(backend)

    violations: list[Violation] = []
    if profile is None:
        violations.append(
            Violation(
                field="backend",
                rule="backend",
                message=f"Unknown backend {backend!r}; expected one of {sorted(BACKENDS)}",
            )
        )

    violations.extend(_check_retention(data, profile))
    violations.extend(_check_lock_mode(data))

    principals = _dedupe(data.principal_arns)
    admins = _dedupe(data.admin_principal_arns)
    violations.extend(_check_principals(principals, admins, data.object_lock_mode))

    if not data.name.strip():
        violations.append(
            Violation(field="name", rule="required", message="A bucket / storage account name is required")
        )
    elif profile is not None:
        violations.extend(profile.check_names(data))

    target = _blank_to_none(data.replication_bucket_arn)
    role = _blank_to_none(data.replication_role_arn)
    violations.extend(_check_replication(target, role, data.name, profile))

    kms_key_id = _blank_to_none(data.kms_key_id)
    if kms_key_id is not None and profile is not None and not profile.check_kms_key(kms_key_id):
        violations.append(
            Violation(
                field="kms_key_id",
                rule="format",
                message=f"kms_key_id is not a valid {profile.name} key reference (got {kms_key_id!r})",
            )
        )

    transitions, transition_violations = _collect_transitions(data, profile)
    violations.extend(transition_violations)

    replica_tier = _parse_tier(data.replication_storage_class, profile)
    if replica_tier is None:
        violations.append(
            Violation(
                field="replication_storage_class",
                rule="tier",
                message=f"Unknown storage class {data.replication_storage_class!r}",
            )
        )

    if profile is not None:
        violations.extend(_check_tags(data.tags, profile))

    if violations:
        logger.warning(
            "Rejected provisioning request for %r: %d violation(s)", data.name, len(violations)
        )
        raise ValidationError(violations)

    return ValidatedRequest(
        backend=profile.name,
        name=data.name,
        retention_days=data.retention_days,
        object_lock_enabled=data.object_lock_enabled,
        lock_mode=LockMode(data.object_lock_mode),
        principals=tuple(principals),
        admin_principals=tuple(admins),
        kms_key_id=kms_key_id,
        enable_lifecycle_rules=data.enable_lifecycle_rules,
        transitions=tuple(transitions),
        replication_target=target,
        replication_role=role,
        replication_storage_class=replica_tier,
        create_iam_role=data.create_iam_role,
        resource_group_name=data.resource_group_name,
        container_name=data.container_name,
        tags=dict(sorted(data.tags.items())),
    )


# ---------------------------------------------------------------------------
# Shape
# ---------------------------------------------------------------------------

def _parse(raw: ProvisioningInput | Mapping[str, Any], settings: Settings) -> ProvisioningInput:
    if isinstance(raw, ProvisioningInput):
        return raw
    try:
        return ProvisioningInput.model_validate(raw)
    except PydanticValidationError as exc:
        errors = exc.errors()
        violations = [
            Violation(
                field=".".join(str(part) for part in err["loc"]) or "request",
                rule=err["type"],
                message=err["msg"],
            )
            for err in errors
        ]
        failed = {err["loc"][0] for err in errors if err["loc"]}
        violations.extend(_check_parsed_fields(raw, failed, settings))
        raise ValidationError(violations) from None


def _check_parsed_fields(raw: Any, failed: set[str], settings: Settings) -> list[Violation]:
    """Retention and lock-mode rules for a request whose other fields failed to parse."""
    if not isinstance(raw, Mapping):
        return []
    try:
        data = ProvisioningInput.model_validate({k: v for k, v in raw.items() if k not in failed})
    except PydanticValidationError:
        return []

    violations: list[Violation] = []
    if not failed & {"retention_days", "object_lock_enabled"}:
        profile = None if "backend" in failed else BACKENDS.get(data.backend or settings.default_backend)
        violations.extend(_check_retention(data, profile))
    if "object_lock_mode" not in failed:
        violations.extend(_check_lock_mode(data))
    return violations


# ---------------------------------------------------------------------------
# Value checks
# ---------------------------------------------------------------------------

def _check_retention(data: ProvisioningInput, profile: BackendProfile | None) -> list[Violation]:
    days = data.retention_days
    if days < 0:
        return [
            Violation(
                field="retention_days",
                rule="non_negative",
                message=f"retention_days must not be negative (got {days})",
            )
        ]
    if not data.object_lock_enabled:
        return []
    if days < MINIMUM_RETENTION_DAYS:
        return [
            Violation(
                field="retention_days",
                rule="minimum_retention",
                message=retention_minimum_message(days),
            )
        ]
    if profile is not None and days > profile.max_retention_days:
        return [
            Violation(
                field="retention_days",
                rule="maximum_retention",
                message=(
                    f"Retention period must not exceed {profile.max_retention_days} days "
                    f"on {profile.name} (got {days})"
                ),
            )
        ]
    return []


def _check_lock_mode(data: ProvisioningInput) -> list[Violation]:
    if data.object_lock_mode in _LOCK_MODES:
        return []
    return [
        Violation(
            field="object_lock_mode",
            rule="lock_mode",
            message=f"object_lock_mode must be one of {_LOCK_MODES} (got {data.object_lock_mode!r})",
        )
    ]


def _check_principals(principals: list[str], admins: list[str], mode: str) -> list[Violation]:
    violations: list[Violation] = []
    if not principals:
        violations.append(
            Violation(
                field="principal_arns",
                rule="required",
                message="At least one principal ARN must be granted access",
            )
        )
    if any(not p.strip() for p in principals):
        violations.append(
            Violation(
                field="principal_arns",
                rule="required",
                message="Principal references must not be blank",
            )
        )
    if any("*" in p for p in principals):
        violations.append(
            Violation(
                field="principal_arns",
                rule="no_wildcard",
                message="Wildcard principals are not allowed",
            )
        )

    unknown = [a for a in admins if a not in principals]
    if unknown:
        violations.append(
            Violation(
                field="admin_principal_arns",
                rule="subset",
                message=f"Administrator principals must also be listed in principal_arns: {unknown}",
            )
        )
    if admins and mode == LockMode.COMPLIANCE.value:
        violations.append(
            Violation(
                field="admin_principal_arns",
                rule="not_applicable",
                message="Administrator bypass is only available in GOVERNANCE mode",
            )
        )
    return violations


def _check_replication(
    target: str | None, role: str | None, source_name: str, profile: BackendProfile | None
) -> list[Violation]:
    if target is None and role is None:
        return []
    if target is None or role is None:
        missing = "replication_role_arn" if target else "replication_bucket_arn"
        return [
            Violation(
                field=missing,
                rule="both_or_neither",
                message="replication_bucket_arn and replication_role_arn must be set together",
            )
        ]
    if profile is None:
        return []
    return profile.check_replication(target, role, source_name)


def _collect_transitions(
    data: ProvisioningInput, profile: BackendProfile | None
) -> tuple[list[TransitionThreshold], list[Violation]]:
    configured: list[tuple[str, int, str]] = []
    if data.transition_to_ia_days is not None:
        configured.append(
            ("transition_to_ia_days", data.transition_to_ia_days, StorageTier.INFREQUENT_ACCESS.value)
        )
    if data.transition_to_glacier_days is not None:
        configured.append(
            ("transition_to_glacier_days", data.transition_to_glacier_days, StorageTier.ARCHIVE.value)
        )
    for index, item in enumerate(data.lifecycle_transitions):
        configured.append((f"lifecycle_transitions.{index}", item.days, item.tier))

    thresholds: list[TransitionThreshold] = []
    violations: list[Violation] = []
    for field, days, token in configured:
        tier = _parse_tier(token, profile)
        valid = True
        if days < 0:
            violations.append(
                Violation(field=field, rule="non_negative", message=f"Transition day must not be negative (got {days})")
            )
            valid = False
        if tier is None or tier is StorageTier.STANDARD:
            violations.append(
                Violation(field=field, rule="tier", message=f"{token!r} is not a valid transition target tier")
            )
            continue
        minimum = profile.min_transition_days.get(tier, 0) if profile else 0
        if valid and days < minimum:
            violations.append(
                Violation(
                    field=field,
                    rule="minimum_transition_days",
                    message=f"Transitions to {tier.value} must be at least {minimum} days after creation",
                )
            )
        elif valid:
            thresholds.append(TransitionThreshold(after_days=days, tier=tier))
    return thresholds, violations


def _check_tags(tags: Mapping[str, str], profile: BackendProfile) -> list[Violation]:
    limits = profile.tag_limits
    violations: list[Violation] = []
    if len(tags) > limits.max_tags:
        violations.append(
            Violation(
                field="tags",
                rule="tag_limits",
                message=f"At most {limits.max_tags} tags are allowed (got {len(tags)})",
            )
        )
    for key, value in tags.items():
        if not key or len(key) > limits.max_key_length:
            violations.append(
                Violation(
                    field=f"tags.{key}",
                    rule="tag_limits",
                    message=f"Tag keys must be 1-{limits.max_key_length} characters",
                )
            )
        if len(value) > limits.max_value_length:
            violations.append(
                Violation(
                    field=f"tags.{key}",
                    rule="tag_limits",
                    message=f"Tag values must be at most {limits.max_value_length} characters",
                )
            )
        if key.lower().startswith(limits.reserved_prefixes):
            violations.append(
                Violation(
                    field=f"tags.{key}",
                    rule="tag_limits",
                    message=f"Tag keys must not start with {list(limits.reserved_prefixes)}",
                )
            )
        if any(ch in limits.forbidden_characters for ch in key):
            violations.append(
                Violation(
                    field=f"tags.{key}",
                    rule="tag_limits",
                    message=f"Tag keys must not contain any of {limits.forbidden_characters!r}",
                )
            )
    return violations


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_tier(token: str, profile: BackendProfile | None) -> StorageTier | None:
    if profile is not None:
        return profile.parse_tier(token)
    try:
        return StorageTier(token)
    except ValueError:
        return None


def _dedupe(items: Iterable[str]) -> list[str]:
    """Order-preserving de-duplication."""
    return list(dict.fromkeys(items))


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value
