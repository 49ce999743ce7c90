"""Tests for per-key asyncio locks."""

import asyncio

import pytest

from pawfect.core.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold("u1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLock()
    async with locks.hold("u1"):
        await asyncio.wait_for(_enter(locks, "u2"), timeout=1)
    # released keys can be taken again
    await asyncio.wait_for(_enter(locks, "u1"), timeout=1)


async def _enter(locks, key):
    async with locks.hold(key):
        return True
