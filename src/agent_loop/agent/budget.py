"""
Budget Guard - per-turn cost ceiling and iteration cap.

Cost is computed from token usage and a per-model price table. A limit of
0 means unlimited; the iteration cap is still bounded at
UNLIMITED_ITERATIONS so a runaway loop always ends.
"""

from dataclasses import dataclass

from ..llm.factory import is_claude_model

UNLIMITED_ITERATIONS = 1000


@dataclass(frozen=True)
class ModelPricing:
    """Dollars per million tokens."""

    input_per_million: float
    output_per_million: float


SONNET_PRICING = ModelPricing(3.0, 15.0)
OPUS_PRICING = ModelPricing(15.0, 75.0)
HAIKU_PRICING = ModelPricing(0.80, 4.0)
FREE_PRICING = ModelPricing(0.0, 0.0)


def get_model_pricing(model: str) -> ModelPricing:
    """Price table lookup by model name; local models cost nothing."""
    if model and not is_claude_model(model):
        return FREE_PRICING
    if "sonnet" in model:
        return SONNET_PRICING
    if "opus" in model:
        return OPUS_PRICING
    if "haiku" in model:
        return HAIKU_PRICING
    return SONNET_PRICING


def iteration_cost(input_tokens: int, output_tokens: int, pricing: ModelPricing) -> float:
    return (
        input_tokens * pricing.input_per_million / 1_000_000
        + output_tokens * pricing.output_per_million / 1_000_000
    )


def exceeds_ceiling(cost: float, max_cost: float) -> bool:
    return max_cost > 0 and cost > max_cost


def effective_iteration_cap(max_iterations: int) -> int:
    if max_iterations <= 0:
        return UNLIMITED_ITERATIONS
    return min(max_iterations, UNLIMITED_ITERATIONS)


def exceeds_iteration_cap(count: int, max_iterations: int) -> bool:
    """True once ``count`` iterations have used up the cap."""
    return count >= effective_iteration_cap(max_iterations)


class BudgetGuard:
    """Accumulates token usage for one turn and checks it against limits."""

    def __init__(self, max_cost: float = 1.0, max_iterations: int = 15, pricing: ModelPricing | None = None):
        self.max_cost = max_cost
        self.max_iterations = max_iterations
        self.pricing = pricing or SONNET_PRICING
        self.reset()

    @classmethod
    def for_model(cls, model: str, max_cost: float, max_iterations: int) -> "BudgetGuard":
        return cls(max_cost=max_cost, max_iterations=max_iterations, pricing=get_model_pricing(model))

    def reset(self) -> None:
        self.cost = 0.0
        self.input_tokens = 0
        self.output_tokens = 0

    def add_iteration_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Add one provider call's usage; returns the cumulative cost."""
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.cost += iteration_cost(input_tokens, output_tokens, self.pricing)
        return self.cost

    def exceeds_ceiling(self, cost: float | None = None) -> bool:
        return exceeds_ceiling(self.cost if cost is None else cost, self.max_cost)

    def exceeds_iteration_cap(self, count: int) -> bool:
        return exceeds_iteration_cap(count, self.max_iterations)

    @property
    def effective_iteration_cap(self) -> int:
        return effective_iteration_cap(self.max_iterations)

    @property
    def totals(self) -> tuple[int, int, float]:
        return self.input_tokens, self.output_tokens, self.cost
