"""
Error taxonomy for agent-loop.

Tool-level errors (ValidationError, SandboxViolation, ExecutionTimeout) are
raised inside tool handlers and turned into ``Error:`` tool results by the
sandbox, so the model can react to them. ProviderError, BudgetExceeded and
StorageError escape the session and end the run.
"""

from typing import Any


class AgentLoopError(Exception):
    """Base class for all agent-loop errors."""


class ValidationError(AgentLoopError):
    """Malformed tool arguments."""


class SandboxViolation(AgentLoopError):
    """Path escape or command denial."""


class ExecutionTimeout(AgentLoopError):
    """A sandboxed subprocess exceeded its wall-clock bound."""

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class ProviderError(AgentLoopError):
    """Non-success response, transport failure or error payload from a provider."""

    def __init__(self, message: str, payload: Any = None, status_code: int | None = None):
        super().__init__(message)
        self.payload = payload
        self.status_code = status_code


class BudgetExceeded(AgentLoopError):
    """Cost ceiling or iteration cap exceeded."""

    def __init__(self, message: str, iterations: int, cost: float):
        super().__init__(message)
        self.iterations = iterations
        self.cost = cost


class StorageError(AgentLoopError):
    """Disk I/O failure while persisting or loading conversation state."""
