"""
Tests for the budget guard.
"""

import pytest

from agent_loop.agent.budget import (
    FREE_PRICING,
    HAIKU_PRICING,
    OPUS_PRICING,
    SONNET_PRICING,
    UNLIMITED_ITERATIONS,
    BudgetGuard,
    exceeds_ceiling,
    exceeds_iteration_cap,
    get_model_pricing,
    iteration_cost,
)


@pytest.mark.parametrize(
    "model,pricing",
    [
        ("claude-sonnet-4-20250514", SONNET_PRICING),
        ("claude-opus-4-20250514", OPUS_PRICING),
        ("claude-3-5-haiku-20241022", HAIKU_PRICING),
        ("claude-unknown", SONNET_PRICING),
        ("llama3.2", FREE_PRICING),
    ],
)
def test_model_pricing(model, pricing):
    assert get_model_pricing(model) == pricing


def test_iteration_cost():
    cost = iteration_cost(1_000_000, 1_000_000, SONNET_PRICING)
    assert cost == pytest.approx(18.0)


def test_cost_accumulation_is_associative():
    """Test that (100, 50) then (150, 75) costs the same as (250, 125) at once."""
    stepwise = BudgetGuard(max_cost=0, pricing=SONNET_PRICING)
    stepwise.add_iteration_cost(100, 50)
    total = stepwise.add_iteration_cost(150, 75)

    assert total == pytest.approx(iteration_cost(250, 125, SONNET_PRICING))
    assert stepwise.totals[:2] == (250, 125)


def test_ceiling():
    assert exceeds_ceiling(1.5, 1.0) is True
    assert exceeds_ceiling(0.5, 1.0) is False
    assert exceeds_ceiling(1000.0, 0) is False


def test_guard_ceiling_uses_accumulated_cost():
    guard = BudgetGuard(max_cost=0.001, pricing=SONNET_PRICING)
    guard.add_iteration_cost(100, 10)
    assert guard.exceeds_ceiling() is False

    guard.add_iteration_cost(1000, 100)
    assert guard.exceeds_ceiling() is True


def test_iteration_cap():
    assert exceeds_iteration_cap(2, 3) is False
    assert exceeds_iteration_cap(3, 3) is True


def test_zero_iteration_cap_is_bounded():
    guard = BudgetGuard(max_iterations=0)

    assert guard.effective_iteration_cap == UNLIMITED_ITERATIONS
    assert guard.exceeds_iteration_cap(UNLIMITED_ITERATIONS - 1) is False
    assert guard.exceeds_iteration_cap(UNLIMITED_ITERATIONS) is True


def test_reset_clears_totals():
    guard = BudgetGuard.for_model("claude-opus-4", max_cost=1.0, max_iterations=5)
    guard.add_iteration_cost(10, 10)
    guard.reset()

    assert guard.totals == (0, 0, 0.0)
    assert guard.pricing == OPUS_PRICING
