"""Unit tests for correlation ID tracking."""

from __future__ import annotations

import asyncio

import pytest

from esphome_native.correlation import (
    correlation_context,
    ensure_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)

# Test constants
FIXED_ID = "fixed-correlation-id"


def test_generated_ids_are_unique_hex() -> None:
    first, second = generate_correlation_id(), generate_correlation_id()
    assert first != second
    assert len(first) == 32
    int(first, 16)


def test_context_sets_and_restores() -> None:
    set_correlation_id(None)
    with correlation_context(FIXED_ID) as corr_id:
        assert corr_id == FIXED_ID
        assert get_correlation_id() == FIXED_ID
        with correlation_context() as inner:
            assert inner is not None
            assert get_correlation_id() == inner
        assert get_correlation_id() == FIXED_ID
    assert get_correlation_id() is None


def test_context_without_auto_generate() -> None:
    set_correlation_id(None)
    with correlation_context(auto_generate=False) as corr_id:
        assert corr_id is None


def test_ensure_keeps_existing() -> None:
    with correlation_context(FIXED_ID):
        assert ensure_correlation_id() == FIXED_ID


@pytest.mark.asyncio
async def test_tasks_get_their_own_ids() -> None:
    async def task_id() -> str:
        return ensure_correlation_id()

    set_correlation_id(None)
    first, second = await asyncio.gather(task_id(), task_id())
    assert first != second
    assert get_correlation_id() is None
