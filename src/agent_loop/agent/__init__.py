"""Agent module: orchestrator, budget and session management."""

from .budget import BudgetGuard, ModelPricing, get_model_pricing
from .core import SessionOrchestrator, TurnResult, TurnState, replay_turn
from .session import SessionManager, stats_report

__all__ = [
    "BudgetGuard",
    "ModelPricing",
    "get_model_pricing",
    "SessionOrchestrator",
    "TurnResult",
    "TurnState",
    "replay_turn",
    "SessionManager",
    "stats_report",
]
