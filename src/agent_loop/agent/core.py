"""
Session Orchestrator - the agentic loop for one conversation turn.

A turn starts with the request (history + new user message) written to
disk, then alternates between calling the provider and running the tools
it asks for:

    AWAIT_PROVIDER -> DONE            stop_reason == "end_turn"
    AWAIT_PROVIDER -> EXECUTE_TOOLS   stop_reason == "tool_use"
    EXECUTE_TOOLS  -> AWAIT_PROVIDER  tool results appended as a user message
    AWAIT_PROVIDER -> FAILED          provider error, budget exceeded,
                                      unexpected stop_reason

The response array is only written once the turn reaches DONE, so a failed
or interrupted turn leaves an orphaned request that history ignores.
"""

from dataclasses import dataclass, field
from enum import Enum

import structlog

from ..errors import AgentLoopError, BudgetExceeded, ProviderError, StorageError
from ..llm.base import BaseLLM, LLMRequest
from ..models import Message, ProviderResponse, TextBlock
from ..storage import ConversationStore
from ..tools import ToolSandbox
from .budget import BudgetGuard

logger = structlog.get_logger()


class TurnState(str, Enum):
    AWAIT_PROVIDER = "await_provider"
    EXECUTE_TOOLS = "execute_tools"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TurnResult:
    """Outcome of a finished turn."""

    turn_id: str
    text: str
    responses: list[ProviderResponse] = field(default_factory=list)
    iterations: int = 0
    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def final_response(self) -> ProviderResponse | None:
        return self.responses[-1] if self.responses else None


def last_user_text(messages: list[Message]) -> str | None:
    """Text of the most recent user message that carries any."""
    for message in reversed(messages):
        if message.role != "user":
            continue
        for block in message.content:
            if isinstance(block, TextBlock):
                return block.text
    return None


class SessionOrchestrator:
    """Drives the provider/tool loop and persists each turn."""

    def __init__(
        self,
        provider: BaseLLM,
        store: ConversationStore,
        sandbox: ToolSandbox,
        budget: BudgetGuard,
        model: str,
        system_prompt: str = "",
        max_tokens: int = 8192,
        wants_json: bool = False,
    ):
        self.provider = provider
        self.store = store
        self.sandbox = sandbox
        self.budget = budget
        self.model = model
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self.wants_json = wants_json
        self.state = TurnState.AWAIT_PROVIDER

    def _transition(self, state: TurnState, **kw) -> None:
        logger.debug("Turn state", previous=self.state.value, state=state.value, **kw)
        self.state = state

    def _fail(self, error: AgentLoopError) -> AgentLoopError:
        self._transition(TurnState.FAILED, error=str(error))
        return error

    async def run_turn(
        self,
        user_msg: str,
        history: list[Message] | None = None,
        turn_id: str | None = None,
    ) -> TurnResult:
        """Resolve one user message into a final assistant answer.

        Raises:
            ProviderError: provider failure or an unexpected stop_reason.
            BudgetExceeded: cost ceiling or iteration cap reached.
            StorageError: the request or response could not be saved.
        """
        if history is None:
            history = self.store.load_history()
        turn_id = turn_id or self.store.new_turn_id()

        messages = list(history) + [Message.user_text(user_msg)]
        self.store.save_request(turn_id, messages)

        self.sandbox.turn_id = turn_id
        self.budget.reset()
        tools = self.sandbox.get_definitions()
        responses: list[ProviderResponse] = []
        iteration = 0

        self._transition(TurnState.AWAIT_PROVIDER, turn_id=turn_id)

        while True:
            iteration += 1
            request = LLMRequest(
                model=self.model,
                messages=list(messages),
                tools=tools,
                max_tokens=self.max_tokens,
                system=self.system_prompt,
            )

            try:
                response = await self.provider.generate(request)
            except ProviderError as e:
                logger.error("Provider call failed", turn_id=turn_id, iteration=iteration, error=str(e))
                if not self.wants_json:
                    e.payload = None
                raise self._fail(e)

            cost = self.budget.add_iteration_cost(response.usage.input_tokens, response.usage.output_tokens)
            logger.info(
                "Provider replied",
                turn_id=turn_id,
                iteration=iteration,
                stop_reason=response.stop_reason,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                cost=round(cost, 6),
            )
            if self.budget.exceeds_ceiling(cost):
                raise self._fail(BudgetExceeded(
                    f"cost limit exceeded: ${cost:.4f} > ${self.budget.max_cost:.4f} "
                    f"after {iteration} iterations",
                    iterations=iteration,
                    cost=cost,
                ))

            messages.append(response.to_message())
            responses.append(response)

            if response.stop_reason == "end_turn":
                self.store.save_response(turn_id, responses)
                self._transition(TurnState.DONE, turn_id=turn_id, iterations=iteration)
                input_tokens, output_tokens, cost = self.budget.totals
                return TurnResult(
                    turn_id=turn_id,
                    text=response.first_text(),
                    responses=responses,
                    iterations=iteration,
                    cost=cost,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                )

            if response.stop_reason != "tool_use":
                raise self._fail(ProviderError(f"unexpected stop_reason: {response.stop_reason}"))

            tool_uses = response.to_message().tool_uses
            if not tool_uses:
                raise self._fail(ProviderError("tool_use stop_reason without tool_use blocks"))

            self._transition(TurnState.EXECUTE_TOOLS, tools=[t.name for t in tool_uses])
            results = await self.sandbox.execute_all(tool_uses)
            messages.append(Message(role="user", content=results))

            if self.budget.exceeds_iteration_cap(iteration):
                raise self._fail(BudgetExceeded(
                    f"max iterations ({self.budget.effective_iteration_cap}) reached, "
                    f"cost so far ${self.budget.cost:.4f}",
                    iterations=iteration,
                    cost=self.budget.cost,
                ))

            self._transition(TurnState.AWAIT_PROVIDER, iteration=iteration + 1)

    async def resume_last(self, history: list[Message] | None = None) -> TurnResult:
        """Re-run the newest user message under a fresh turn id.

        An orphaned request (one that never got a response) is used only when
        it is newer than every complete turn; otherwise the last user message
        of the completed history runs again.
        """
        user_msg = None

        pairs = self.store.list_complete_pairs()
        orphan = self.store.latest_orphan()
        if orphan is not None and pairs and orphan < pairs[-1]:
            logger.debug("Skipping stale orphaned request", turn_id=orphan, latest=pairs[-1])
            orphan = None
        if orphan is not None:
            try:
                user_msg = last_user_text(self.store.load_request(orphan).messages)
            except StorageError as e:
                logger.warning("Ignoring unreadable orphaned request", turn_id=orphan, error=str(e))
            else:
                logger.info("Resuming orphaned request", turn_id=orphan)

        if history is None:
            history = self.store.load_history()

        if user_msg is None:
            user_msg = last_user_text(history)
        if user_msg is None:
            raise AgentLoopError("no message to execute")

        return await self.run_turn(user_msg, history=history)

    async def replay(self, turn_id: str | None = None) -> int:
        """Re-execute every tool_use block of a stored turn; returns the count."""
        return await replay_turn(self.store, self.sandbox, turn_id)


async def replay_turn(store: ConversationStore, sandbox: ToolSandbox, turn_id: str | None = None) -> int:
    """Run the tools of a stored response array again under the current policy.

    Uses the latest complete turn when no id is given. No provider is needed.
    """
    if turn_id is None:
        pairs = store.list_complete_pairs()
        if not pairs:
            raise StorageError("no responses to replay")
        turn_id = pairs[-1]

    responses = store.load_responses(turn_id)
    if not responses:
        raise StorageError(f"no responses in {turn_id}")

    logger.info("Replaying response", turn_id=turn_id)
    sandbox.turn_id = turn_id

    count = 0
    for index, response in enumerate(responses):
        for block in response.to_message().tool_uses:
            logger.info("Replaying tool", iteration=index, tool_name=block.name)
            await sandbox.execute(block)
            count += 1

    logger.info("Replay finished", turn_id=turn_id, tools=count)
    return count
