"""
Tests for usage accounting: caps, weekly boosts, consumables and exactly-once increments.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from pawfect.core.errors import StoreUnavailableError, ValidationError
from pawfect.features.entitlements.service import entitlements_key, resolve
from pawfect.features.usage.service import (
    MAX_RECORDED_OPERATIONS,
    check_usage_within_limits,
    operation_marker_key,
    recorded_operations,
    usage_key,
)
from pawfect.main import build_core
from pawfect.models.usage import MeteredAction, UsageCounter
from pawfect.tests.fakes import FlakyStore

MONDAY = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)


async def _assign(store, user_id, plan_id):
    await store.set(entitlements_key(user_id), {"plan": plan_id})


def _counter(**counts):
    return UsageCounter(user_id="u1", day="2024-01-10", week="2024-W02", updated_at=MONDAY, **counts)


def test_check_within_limits_under_and_at_cap(tight_catalog):
    ent = resolve(tight_catalog.get_plan("free"))

    decision = check_usage_within_limits(ent, _counter(swipes=3), "swipe")
    assert decision.allowed
    assert decision.limit == 10
    assert decision.remaining == 7

    decision = check_usage_within_limits(ent, _counter(swipes=10), MeteredAction.SWIPE)
    assert not decision.allowed
    assert decision.reason == "Daily swipe limit reached"
    assert decision.remaining == 0


def test_check_within_limits_remaining_uses_action_cap(tight_catalog):
    """Super like headroom comes from the super like cap, not the swipe cap."""
    ent = resolve(tight_catalog.get_plan("premium"))
    decision = check_usage_within_limits(ent, _counter(swipes=500, super_likes=1), "super_like")
    assert decision.allowed
    assert decision.limit == 2
    assert decision.remaining == 1


def test_check_within_limits_unlimited(tight_catalog):
    ent = resolve(tight_catalog.get_plan("premium"))
    decision = check_usage_within_limits(ent, _counter(swipes=10_000), "swipe")
    assert decision.allowed
    assert decision.limit is None
    assert decision.remaining is None


def test_check_within_limits_consumable_covers_cap(tight_catalog):
    ent = resolve(tight_catalog.get_plan("free"), consumables={"boosts": 1})
    decision = check_usage_within_limits(ent, _counter(boosts_this_week=1), "boost")
    assert decision.allowed
    assert decision.reason == "consumable"
    assert decision.remaining == 0


def test_check_within_limits_unknown_action(tight_catalog):
    ent = resolve(tight_catalog.get_plan("free"))
    with pytest.raises(ValidationError):
        check_usage_within_limits(ent, _counter(), "wink")


@pytest.mark.asyncio
async def test_counter_starts_empty(tight_core):
    counter = await tight_core.usage.get_usage_counter("u1")
    assert counter.day == "2024-01-10"
    assert counter.week == "2024-W02"
    assert (counter.swipes, counter.super_likes, counter.boosts_this_week) == (0, 0, 0)


@pytest.mark.asyncio
async def test_increment_until_cap_then_deny(tight_core):
    for expected_remaining in range(9, -1, -1):
        result = await tight_core.usage.increment_usage("u1", "swipe")
        assert result.success
        assert result.remaining == expected_remaining
        assert result.limit == 10

    denied = await tight_core.usage.increment_usage("u1", "swipe")
    assert denied.success is False
    assert denied.remaining == 0
    assert denied.limit == 10

    counter = await tight_core.usage.get_usage_counter("u1")
    assert counter.swipes == 10


@pytest.mark.asyncio
async def test_same_operation_id_counts_once(tight_core):
    first = await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-1")
    again = await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-1")

    assert first.success and not first.replayed
    assert again.replayed
    assert again.remaining == first.remaining
    assert (await tight_core.usage.get_usage_counter("u1")).swipes == 1


@pytest.mark.asyncio
async def test_replay_returns_original_result(tight_core):
    first = await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-1")
    await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-2")

    replay = await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-1")
    assert replay.replayed
    assert replay.remaining == first.remaining == 9
    assert (await tight_core.usage.get_usage_counter("u1")).swipes == 2


@pytest.mark.asyncio
async def test_replay_survives_marker_expiry(tight_core, store):
    await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-1")
    await store.delete(operation_marker_key("u1", "op-1"))

    replay = await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-1")
    assert replay.success
    assert replay.replayed
    assert replay.remaining == 9
    assert (await tight_core.usage.get_usage_counter("u1")).swipes == 1


@pytest.mark.asyncio
async def test_marker_expires_after_ttl(tight_core, store, clock):
    await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-1")
    assert operation_marker_key("u1", "op-1") in store.keys()

    clock.advance(seconds=24 * 60 * 60)
    assert operation_marker_key("u1", "op-1") not in store.keys()


@pytest.mark.asyncio
@pytest.mark.parametrize("operation_id", ["", "   ", "2024-01-10"])
async def test_invalid_operation_ids_rejected(tight_core, operation_id):
    with pytest.raises(ValidationError):
        await tight_core.usage.increment_usage("u1", "swipe", operation_id=operation_id)


@pytest.mark.asyncio
async def test_unknown_action_rejected(tight_core):
    with pytest.raises(ValidationError):
        await tight_core.usage.increment_usage("u1", "wink")


@pytest.mark.asyncio
async def test_daily_counts_reset_on_new_day(tight_core, clock):
    await tight_core.usage.increment_usage("u1", "swipe")
    await tight_core.usage.increment_usage("u1", "super_like")

    clock.advance(days=1)
    counter = await tight_core.usage.get_usage_counter("u1")
    assert counter.day == "2024-01-11"
    assert counter.swipes == 0
    assert counter.super_likes == 0


@pytest.mark.asyncio
async def test_stale_week_reads_as_zero_boosts(tight_core, store):
    await store.set(
        usage_key("u1", "2024-01-10"),
        {"day": "2024-01-10", "week": "2024-W01", "swipes": 2, "super_likes": 0, "boosts_this_week": 3},
    )
    counter = await tight_core.usage.get_usage_counter("u1")
    assert counter.week == "2024-W02"
    assert counter.boosts_this_week == 0
    assert counter.swipes == 2


@pytest.mark.asyncio
async def test_boosts_carry_across_days_of_the_week(tight_core, store, clock):
    await _assign(store, "u1", "premium")
    clock.set(MONDAY)
    await tight_core.usage.increment_usage("u1", "boost")
    await tight_core.usage.increment_usage("u1", "boost")

    clock.set(datetime(2024, 1, 10, 18, 0, tzinfo=timezone.utc))
    assert (await tight_core.usage.get_usage_counter("u1")).boosts_this_week == 2

    last = await tight_core.usage.increment_usage("u1", "boost")
    assert last.success
    assert last.remaining == 0
    assert last.limit == 3

    denied = await tight_core.usage.increment_usage("u1", "boost")
    assert not denied.success

    # next Monday starts a fresh week
    clock.set(datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc))
    counter = await tight_core.usage.get_usage_counter("u1")
    assert counter.week == "2024-W03"
    assert counter.boosts_this_week == 0


@pytest.mark.asyncio
async def test_unlimited_swipes_report_no_remaining(tight_core, store):
    await _assign(store, "u1", "premium")
    result = await tight_core.usage.increment_usage("u1", "swipe")
    assert result.success
    assert result.remaining is None
    assert result.limit is None


@pytest.mark.asyncio
async def test_consumable_redeemed_past_cap(tight_core):
    await tight_core.consumables.add("u1", "super_likes", 1)

    first = await tight_core.usage.increment_usage("u1", "super_like")
    assert first.success and not first.consumable_used

    second = await tight_core.usage.increment_usage("u1", "super_like")
    assert second.success
    assert second.consumable_used
    assert (await tight_core.consumables.balances("u1"))["super_likes"] == 0

    third = await tight_core.usage.increment_usage("u1", "super_like")
    assert not third.success


@pytest.mark.asyncio
async def test_concurrent_increments_near_cap_admit_one(tight_core):
    for _ in range(9):
        await tight_core.usage.increment_usage("u1", "swipe")

    results = await asyncio.gather(
        *[tight_core.usage.increment_usage("u1", "swipe") for _ in range(5)]
    )

    assert sum(1 for r in results if r.success) == 1
    assert (await tight_core.usage.get_usage_counter("u1")).swipes == 10


@pytest.mark.asyncio
async def test_concurrent_retries_of_one_operation_apply_once(tight_core):
    results = await asyncio.gather(
        *[tight_core.usage.increment_usage("u1", "swipe", operation_id="op-x") for _ in range(4)]
    )
    assert sum(1 for r in results if not r.replayed) == 1
    assert (await tight_core.usage.get_usage_counter("u1")).swipes == 1


@pytest.mark.asyncio
async def test_check_limit_reads_current_usage(tight_core):
    for _ in range(10):
        await tight_core.usage.increment_usage("u1", "swipe")
    decision = await tight_core.usage.check_limit("u1", "swipe")
    assert not decision.allowed
    assert decision.reason == "Daily swipe limit reached"


@pytest.mark.asyncio
async def test_operation_id_reused_for_other_action_rejected(tight_core, store):
    await _assign(store, "u1", "premium")
    await tight_core.usage.increment_usage("u1", "swipe", operation_id="op-1")

    with pytest.raises(ValidationError):
        await tight_core.usage.increment_usage("u1", "boost", operation_id="op-1")

    await store.delete(operation_marker_key("u1", "op-1"))
    with pytest.raises(ValidationError):
        await tight_core.usage.increment_usage("u1", "super_like", operation_id="op-1")

    counter = await tight_core.usage.get_usage_counter("u1")
    assert counter.swipes == 1
    assert counter.super_likes == 0
    assert counter.boosts_this_week == 0


@pytest.mark.asyncio
async def test_legacy_operation_list_still_replays(tight_core, store):
    await store.set(
        usage_key("u1", "2024-01-10"),
        {"day": "2024-01-10", "week": "2024-W02", "swipes": 1, "operations": ["op-old"]},
    )
    replay = await tight_core.usage.increment_usage("u1", "super_like", operation_id="op-old")
    assert replay.replayed
    assert (await tight_core.usage.get_usage_counter("u1")).super_likes == 0


@pytest.mark.asyncio
async def test_recorded_operations_are_capped(tight_core, store):
    await _assign(store, "u1", "premium")
    total = MAX_RECORDED_OPERATIONS + 5
    for i in range(total):
        await tight_core.usage.increment_usage("u1", "swipe", operation_id=f"op-{i}")

    record = await store.get(usage_key("u1", "2024-01-10"))
    operations = recorded_operations(record)
    assert len(operations) == MAX_RECORDED_OPERATIONS
    assert "op-0" not in operations
    assert f"op-{total - 1}" in operations
    assert record["swipes"] == total


@pytest.mark.asyncio
async def test_failed_usage_write_returns_consumable(test_settings, clock, tight_catalog):
    store = FlakyStore(clock, failing_prefixes=["usage:"], writes_only=True)
    core = build_core(settings_obj=test_settings, store=store, clock=clock, catalog=tight_catalog)
    await core.consumables.add("u1", "super_likes", 1)
    assert (await core.usage.increment_usage("u1", "super_like")).success

    store.down = True
    with pytest.raises(StoreUnavailableError):
        await core.usage.increment_usage("u1", "super_like")
    store.down = False

    assert (await core.consumables.balances("u1"))["super_likes"] == 1
    assert (await core.usage.get_usage_counter("u1")).super_likes == 1
