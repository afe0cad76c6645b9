"""Conversation loop for a single chat turn.

    Idle -> AwaitingModel -> (ToolDispatch <-> AwaitingModel)* -> Done | Failed

The model is called at most ``max_tool_iterations`` times. Every tool call it
requests is dispatched through the registry and answered with a tool message
before the model is asked again, so a final answer never leaves a call
unresolved. Tool failures become "ERROR: ..." tool results the model can react
to; backend failures end the turn and propagate to the caller.

One Orchestrator is shared by all turns. It holds no per-turn state, so turns
from different clients can interleave freely.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

import structlog

from backend.agent.prompts import NO_RESPONSE_TEXT
from backend.agent.registry import ToolError, ToolRegistry
from backend.core.conversation import Conversation, Message, Role, ToolCallRequest, ToolCallResult
from backend.core.llm_adapter import BackendError, FinalAnswer, ModelGateway
from backend.core.observability import new_trace_id

logger = structlog.get_logger(__name__)

DEFAULT_MAX_TOOL_ITERATIONS = 5
DEFAULT_TIMEOUT = 30.0


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    TOOL_DISPATCH = "tool_dispatch"
    DONE = "done"
    FAILED = "failed"


class ToolLoopExceededError(BackendError):
    """The model kept requesting tools past the iteration bound."""

    def __init__(self, iterations: int):
        super().__init__(f"Model requested tools on all {iterations} allowed iterations without answering")
        self.iterations = iterations


@dataclass
class TurnResult:
    """Final answer of a completed turn plus what happened along the way."""
    text: str
    state: TurnState = TurnState.DONE
    tools_called: list[str] = field(default_factory=list)
    iterations: int = 0
    conversation: Conversation | None = None


def render_tool_output(value: Any) -> str:
    """Serialize a tool's return value for the model."""
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


class Orchestrator:
    """Drives request -> tool calls -> tool results -> final answer."""

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        system_prompt: str,
        max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if max_tool_iterations < 1:
            raise ValueError("max_tool_iterations must be at least 1")
        self.gateway = gateway
        self.registry = registry
        self.system_prompt = system_prompt
        self.max_tool_iterations = max_tool_iterations
        self.timeout = timeout

    def build_conversation(self, query: str, history: Sequence[Message] | None = None) -> Conversation:
        """System directive, then any retained history, then the new user message."""
        conversation = Conversation([Message.system(self.system_prompt)])
        for message in history or ():
            if message.role is not Role.SYSTEM:
                conversation.append(message)
        conversation.append(Message.user(query))
        return conversation

    def dispatch(self, call: ToolCallRequest) -> ToolCallResult:
        """Run one tool call. Tool failures are returned as error text, never raised."""
        try:
            output = self.registry.invoke(call.name, call.arguments)
        except ToolError as e:
            logger.warning("orchestrator.tool_error", tool=call.name, error=str(e),
                           error_type=e.__class__.__name__)
            return ToolCallResult(tool_call_id=call.id, content=f"ERROR: {e}", is_error=True)
        return ToolCallResult(tool_call_id=call.id, content=render_tool_output(output))

    async def run(
        self,
        query: str,
        history: Sequence[Message] | None = None,
        timeout: float | None = None,
    ) -> TurnResult:
        """Execute one orchestration turn.

        Args:
            query: The user's message.
            history: Earlier user/assistant messages to include, oldest first.
            timeout: Per model call deadline in seconds; defaults to the configured one.

        Returns:
            TurnResult with the final answer text.

        Raises:
            BackendUnavailableError, BackendProtocolError: From the model gateway.
            ToolLoopExceededError: If no final answer arrives within the iteration bound.
        """
        deadline = self.timeout if timeout is None else timeout
        log = logger.bind(turn_id=new_trace_id())
        conversation = self.build_conversation(query, history)
        catalog = self.registry.describe_all()
        tools_called: list[str] = []
        state = TurnState.IDLE

        log.info("orchestrator.turn_start", query_len=len(query), history=len(history or ()))

        for iteration in range(1, self.max_tool_iterations + 1):
            state = TurnState.AWAITING_MODEL
            try:
                outcome = await self.gateway.complete(conversation, catalog, deadline)
            except BackendError as e:
                state = TurnState.FAILED
                log.error("orchestrator.turn_failed", iteration=iteration, state=state.value,
                          error=str(e), error_type=e.__class__.__name__)
                raise

            if isinstance(outcome, FinalAnswer):
                text = outcome.text.strip() or NO_RESPONSE_TEXT
                conversation.append(Message.assistant(text))
                state = TurnState.DONE
                log.info("orchestrator.turn_done", iterations=iteration, tools=tools_called)
                return TurnResult(
                    text=text,
                    state=state,
                    tools_called=tools_called,
                    iterations=iteration,
                    conversation=conversation,
                )

            state = TurnState.TOOL_DISPATCH
            conversation.append(Message.assistant(outcome.text, tool_calls=outcome.calls))
            for call in outcome.calls:
                log.info("orchestrator.tool_dispatch", iteration=iteration, tool=call.name)
                tools_called.append(call.name)
                conversation.append(Message.tool(self.dispatch(call)))

        state = TurnState.FAILED
        log.error("orchestrator.tool_loop_exceeded", iterations=self.max_tool_iterations,
                  state=state.value, tools=tools_called)
        raise ToolLoopExceededError(self.max_tool_iterations)
