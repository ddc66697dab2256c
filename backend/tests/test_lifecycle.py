"""
Tests for the lifecycle planner.
"""
import pytest

from auditledger.core.errors import PolicyConflictError
from auditledger.engine import lifecycle
from auditledger.engine.validator import validate
from auditledger.schemas.request import StorageTier


def _plan(raw, settings):
    return lifecycle.plan(validate(raw, settings), settings)


def _pairs(plan):
    return [(t.after_days, t.tier) for t in plan.transitions]


def test_ia_then_glacier(aws_request, settings):
    plan = _plan(
        aws_request(transition_to_ia_days=90, transition_to_glacier_days=180, retention_days=365),
        settings,
    )
    assert _pairs(plan) == [(90, StorageTier.INFREQUENT_ACCESS), (180, StorageTier.ARCHIVE)]
    assert plan.expiration is not None
    assert plan.expiration.after_days >= 366
    assert len(plan.rules) == 3
    assert plan.rules[-1] == plan.expiration


def test_default_pair_when_nothing_configured(aws_request, settings):
    plan = _plan(aws_request(retention_days=365), settings)
    assert _pairs(plan) == [(90, StorageTier.INFREQUENT_ACCESS), (180, StorageTier.ARCHIVE)]
    assert plan.expiration.after_days == 366


def test_default_pair_from_settings(aws_request, settings):
    custom = settings.model_copy(
        update={"default_transition_to_ia_days": 60, "default_transition_to_archive_days": 120}
    )
    plan = _plan(aws_request(), custom)
    assert _pairs(plan) == [(60, StorageTier.INFREQUENT_ACCESS), (120, StorageTier.ARCHIVE)]


def test_no_default_pair_without_lock(aws_request, settings):
    plan = _plan(aws_request(object_lock_enabled=False, retention_days=30), settings)
    assert plan.transitions == ()
    assert plan.expiration.after_days == 31


def test_lifecycle_disabled(aws_request, settings):
    plan = _plan(aws_request(enable_lifecycle_rules=False, transition_to_ia_days=90), settings)
    assert plan.rules == ()
    assert plan.expiration is None


def test_thresholds_sorted(aws_request, settings):
    plan = _plan(
        aws_request(
            lifecycle_transitions=[
                {"days": 400, "tier": "DEEP_ARCHIVE"},
                {"days": 30, "tier": "STANDARD_IA"},
                {"days": 120, "tier": "GLACIER_IR"},
            ]
        ),
        settings,
    )
    assert _pairs(plan) == [
        (30, StorageTier.INFREQUENT_ACCESS),
        (120, StorageTier.COLD),
        (400, StorageTier.DEEP_ARCHIVE),
    ]


def test_repeated_tier_keeps_earliest(aws_request, settings):
    plan = _plan(
        aws_request(
            transition_to_ia_days=60,
            lifecycle_transitions=[
                {"days": 30, "tier": "INFREQUENT_ACCESS"},
                {"days": 200, "tier": "ARCHIVE"},
            ],
        ),
        settings,
    )
    assert _pairs(plan) == [(30, StorageTier.INFREQUENT_ACCESS), (200, StorageTier.ARCHIVE)]


def test_same_day_different_tiers_conflict(aws_request, settings):
    with pytest.raises(PolicyConflictError) as exc:
        _plan(aws_request(transition_to_ia_days=90, transition_to_glacier_days=90), settings)
    assert exc.value.rules() == {"transition_order"}


def test_warmer_after_colder_conflict(aws_request, settings):
    with pytest.raises(PolicyConflictError, match="warmer"):
        _plan(aws_request(transition_to_glacier_days=90, transition_to_ia_days=200), settings)


def test_expiration_after_last_transition(aws_request, settings):
    plan = _plan(
        aws_request(retention_days=365, lifecycle_transitions=[{"days": 500, "tier": "DEEP_ARCHIVE"}]),
        settings,
    )
    assert plan.expiration.after_days == 501


def test_expiration_after_retention(aws_request, settings):
    plan = _plan(aws_request(), settings)
    assert plan.expiration.after_days == 2556


def test_days_and_tiers_strictly_increasing(aws_request, settings):
    plan = _plan(
        aws_request(
            transition_to_ia_days=30,
            transition_to_glacier_days=365,
            lifecycle_transitions=[
                {"days": 90, "tier": "COLD"},
                {"days": 730, "tier": "DEEP_ARCHIVE"},
            ],
        ),
        settings,
    )
    rules = plan.transitions
    for previous, current in zip(rules, rules[1:]):
        assert current.after_days > previous.after_days
        assert current.tier.rank > previous.tier.rank


def test_azure_plan(azure_request, settings):
    plan = _plan(azure_request(lifecycle_transitions=[{"days": 30, "tier": "Cool"}]), settings)
    assert _pairs(plan) == [(30, StorageTier.INFREQUENT_ACCESS)]


def test_azure_archive_tiers_collapse(azure_request, settings):
    plan = _plan(
        azure_request(
            lifecycle_transitions=[
                {"days": 180, "tier": "ARCHIVE"},
                {"days": 365, "tier": "DEEP_ARCHIVE"},
            ]
        ),
        settings,
    )
    assert _pairs(plan) == [(180, StorageTier.ARCHIVE)]


def test_aws_keeps_distinct_archive_tiers(aws_request, settings):
    plan = _plan(
        aws_request(
            lifecycle_transitions=[
                {"days": 180, "tier": "ARCHIVE"},
                {"days": 365, "tier": "DEEP_ARCHIVE"},
            ]
        ),
        settings,
    )
    assert _pairs(plan) == [(180, StorageTier.ARCHIVE), (365, StorageTier.DEEP_ARCHIVE)]


def test_plan_is_idempotent(aws_request, settings):
    request = validate(aws_request(transition_to_ia_days=45), settings)
    assert lifecycle.plan(request, settings).model_dump_json() == lifecycle.plan(request, settings).model_dump_json()
