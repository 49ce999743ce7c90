"""
Tests for the plan catalog.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from pawfect.core.errors import PlanNotFoundError
from pawfect.features.plans.service import PlanCatalog, get_plan_catalog
from pawfect.models.plan import UNLIMITED, FeatureFlag, Plan, PlanTier


def test_default_catalog_plans():
    catalog = PlanCatalog()
    free = catalog.get_plan("free")
    assert free.is_default
    assert free.swipe_daily_cap == 5
    assert free.super_likes_per_day == 0
    assert free.boosts_per_week == 0
    assert free.adoption_listing_limit == 1
    assert free.features == frozenset()

    premium = catalog.get_plan("premium")
    assert premium.swipe_daily_cap == UNLIMITED
    assert FeatureFlag.SEE_WHO_LIKED_YOU in premium.features
    assert FeatureFlag.VIDEO_CALL not in premium.features

    elite = catalog.get_plan("elite")
    assert elite.super_likes_per_day == 10
    assert FeatureFlag.VIDEO_CALL in elite.features


def test_yearly_alias_shares_bundle():
    catalog = PlanCatalog()
    yearly = catalog.get_plan("premium_yearly")
    assert yearly.plan_id == "premium_yearly"
    assert yearly.tier == PlanTier.PREMIUM
    assert not yearly.is_default
    assert yearly.features == catalog.get_plan("premium").features


def test_unknown_plan_raises():
    with pytest.raises(PlanNotFoundError) as exc:
        PlanCatalog().get_plan("platinum")
    assert exc.value.message == "Plan platinum not found"
    assert not PlanCatalog().has_plan("platinum")


def test_plan_for_tier():
    catalog = PlanCatalog()
    assert catalog.plan_for_tier("elite").plan_id == "elite"
    assert catalog.plan_for_tier(PlanTier.FREE).is_default


def test_catalog_requires_single_default():
    plans = [
        Plan(plan_id="a", tier=PlanTier.FREE, name="A", is_default=True),
        Plan(plan_id="b", tier=PlanTier.FREE, name="B", is_default=True),
    ]
    with pytest.raises(ValueError):
        PlanCatalog(plans=plans)
    with pytest.raises(ValueError):
        PlanCatalog(plans=[Plan(plan_id="a", tier=PlanTier.FREE, name="A")])


def test_plan_rejects_invalid_caps():
    with pytest.raises(PydanticValidationError):
        Plan(plan_id="x", tier=PlanTier.FREE, name="X", swipe_daily_cap=-1)
    with pytest.raises(PydanticValidationError):
        Plan(plan_id="x", tier=PlanTier.FREE, name="X", swipe_daily_cap="lots")
    with pytest.raises(PydanticValidationError):
        Plan(plan_id="x", tier=PlanTier.FREE, name="X", boosts_per_week=-2)


def test_get_plan_catalog_is_shared():
    assert get_plan_catalog() is get_plan_catalog()
    assert {p.plan_id for p in get_plan_catalog().list_plans()} == {"free", "premium", "elite", "premium_yearly", "elite_yearly"}
