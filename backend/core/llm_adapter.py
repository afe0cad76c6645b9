"""Model gateway over LangChain chat models (Cerebras / Groq).

A gateway takes the conversation plus the tool catalog and returns exactly
one Outcome: a final answer or a batch of tool calls. Failures are reported
as BackendUnavailableError (connection, timeout, 5xx) or BackendProtocolError
(4xx rejection, malformed response). A single gateway never retries; the
provider SDKs are built with max_retries=0 for the same reason.

Failover between providers is a separate, caller-side layer
(FailoverGateway) and only fires on BackendUnavailableError.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

import structlog
from httpx import HTTPStatusError, TransportError
from langchain_cerebras import ChatCerebras
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_groq import ChatGroq

from backend.agent.registry import ToolDescriptor
from backend.core.config import Settings
from backend.core.conversation import Conversation, Role, ToolCallRequest

logger = structlog.get_logger(__name__)


class BackendError(Exception):
    """Base class for model backend failures. ``retryable`` tells callers whether to retry."""
    retryable = False


class BackendUnavailableError(BackendError):
    """Backend unreachable, timed out, or failed server-side."""
    retryable = True


class BackendProtocolError(BackendError):
    """Backend rejected the request or returned something unusable."""
    retryable = False


@dataclass(frozen=True)
class FinalAnswer:
    text: str


@dataclass(frozen=True)
class ToolCallsRequested:
    calls: tuple[ToolCallRequest, ...]
    text: str = ""


Outcome = FinalAnswer | ToolCallsRequested


class ModelGateway(ABC):
    """Abstract LLM backend with tool calling."""

    name: str = "model"

    @abstractmethod
    async def complete(
        self,
        conversation: Conversation,
        tool_catalog: Sequence[ToolDescriptor],
        timeout: float,
    ) -> Outcome:
        """Produce the next step of the conversation.

        Raises:
            BackendUnavailableError: Connection failure, 5xx, or ``timeout`` expired.
            BackendProtocolError: Request rejected or response malformed.
        """

    def is_healthy(self) -> bool:
        return True


def to_langchain_messages(conversation: Conversation) -> list[BaseMessage]:
    """Map our conversation onto LangChain message objects."""
    converted: list[BaseMessage] = []
    for message in conversation:
        if message.role is Role.SYSTEM:
            converted.append(SystemMessage(content=message.content))
        elif message.role is Role.USER:
            converted.append(HumanMessage(content=message.content))
        elif message.role is Role.ASSISTANT:
            converted.append(AIMessage(
                content=message.content,
                tool_calls=[
                    {"name": call.name, "args": dict(call.arguments), "id": call.id}
                    for call in message.tool_calls
                ],
            ))
        else:
            converted.append(ToolMessage(content=message.content, tool_call_id=message.tool_call_id or ""))
    return converted


def _content_text(content: Any) -> str:
    """Flatten string or content-block message content into plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    raise BackendProtocolError(f"Unsupported message content type: {type(content).__name__}")


def parse_response(response: Any) -> Outcome:
    """Turn a chat model reply into an Outcome.

    Raises:
        BackendProtocolError: Not an AI message, or tool calls could not be parsed.
    """
    if not isinstance(response, AIMessage):
        raise BackendProtocolError(f"Expected an AI message, got {type(response).__name__}")

    if response.invalid_tool_calls:
        names = [tc.get("name") for tc in response.invalid_tool_calls]
        raise BackendProtocolError(f"Backend returned malformed tool calls: {names}")

    text = _content_text(response.content)

    if response.tool_calls:
        calls = []
        for index, tc in enumerate(response.tool_calls):
            name = tc.get("name")
            if not name:
                raise BackendProtocolError("Backend returned a tool call without a name")
            args = tc.get("args") or {}
            if not isinstance(args, dict):
                raise BackendProtocolError(f"Tool call '{name}' arguments are not an object")
            calls.append(ToolCallRequest(id=tc.get("id") or f"call_{index}", name=name, arguments=dict(args)))
        return ToolCallsRequested(calls=tuple(calls), text=text)

    return FinalAnswer(text=text)


class LangChainGateway(ModelGateway):
    """Gateway backed by any LangChain chat model that supports ``bind_tools``."""

    def __init__(self, model: BaseChatModel, name: str = "model", configured: bool = True):
        self.model = model
        self.name = name
        self.configured = configured

    def is_healthy(self) -> bool:
        return self.configured

    async def complete(
        self,
        conversation: Conversation,
        tool_catalog: Sequence[ToolDescriptor],
        timeout: float,
    ) -> Outcome:
        runnable = self.model
        if tool_catalog:
            runnable = self.model.bind_tools([d.to_schema() for d in tool_catalog])

        messages = to_langchain_messages(conversation)
        logger.debug("llm.invoke", provider=self.name, messages=len(messages), tools=len(tool_catalog))

        try:
            response = await asyncio.wait_for(runnable.ainvoke(messages), timeout=timeout)

        except asyncio.TimeoutError:
            logger.warning("llm.timeout", provider=self.name, threshold=timeout)
            raise BackendUnavailableError(f"{self.name} did not respond within {timeout}s")

        except HTTPStatusError as e:
            raise _classify_status(self.name, e.response.status_code, e)

        except TransportError as e:
            logger.warning("llm.transport_error", provider=self.name, error=str(e))
            raise BackendUnavailableError(f"{self.name} unreachable: {e}") from e

        except Exception as e:
            # Provider SDK errors (groq / openai clients) carry status_code when HTTP-level
            status = getattr(e, "status_code", None)
            if isinstance(status, int):
                raise _classify_status(self.name, status, e)
            logger.warning("llm.unknown_error", provider=self.name, error=str(e),
                           error_type=e.__class__.__name__)
            raise BackendUnavailableError(f"{self.name} request failed: {e}") from e

        outcome = parse_response(response)
        logger.debug("llm.ok", provider=self.name, outcome=type(outcome).__name__)
        return outcome


# Client-side statuses that still mean "try again later"
_TRANSIENT_4XX = (408, 429)


def _classify_status(provider: str, status: int, error: Exception) -> BackendError:
    if 400 <= status < 500 and status not in _TRANSIENT_4XX:
        logger.error("llm.4xx", provider=provider, status=status)
        return BackendProtocolError(f"{provider} rejected request ({status}): {error}")
    logger.warning("llm.5xx", provider=provider, status=status)
    return BackendUnavailableError(f"{provider} server error ({status}): {error}")


class FailoverGateway(ModelGateway):
    """Retry on a second backend when the first is unavailable.

    Only BackendUnavailableError triggers the fallback; protocol errors are
    raised straight away. The fallback gets whatever remains of the deadline.
    """

    def __init__(self, primary: ModelGateway, fallback: ModelGateway):
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}->{fallback.name}"

    def is_healthy(self) -> bool:
        return self.primary.is_healthy() or self.fallback.is_healthy()

    async def complete(
        self,
        conversation: Conversation,
        tool_catalog: Sequence[ToolDescriptor],
        timeout: float,
    ) -> Outcome:
        start = time.monotonic()
        try:
            return await self.primary.complete(conversation, tool_catalog, timeout)
        except BackendUnavailableError as e:
            remaining = timeout - (time.monotonic() - start)
            if remaining <= 0:
                logger.error("llm.failover_no_time_left", primary=self.primary.name)
                raise
            logger.info("llm.failover", primary=self.primary.name, fallback=self.fallback.name,
                        error=str(e))

        try:
            return await self.fallback.complete(conversation, tool_catalog, remaining)
        except BackendUnavailableError as e:
            logger.error("llm.both_failed", error=str(e))
            raise BackendUnavailableError(f"Both primary and fallback backends failed: {e}") from e


def _chat_model(backend: str, settings: Settings) -> BaseChatModel:
    if backend == "cerebras":
        return ChatCerebras(
            api_key=settings.cerebras_api_key,
            model=settings.cerebras_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.llm_timeout,
            max_retries=0,
        )
    return ChatGroq(
        api_key=settings.groq_api_key,
        model=settings.groq_model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.llm_timeout,
        max_retries=0,
    )


def build_gateway(settings: Settings) -> ModelGateway:
    """Construct the configured gateway (with failover if a fallback backend is set)."""
    primary = LangChainGateway(
        _chat_model(settings.llm_backend, settings),
        name=settings.llm_backend,
        configured=bool(settings.api_key_for(settings.llm_backend)),
    )
    if settings.llm_fallback_backend is None:
        logger.info("llm.gateway_built", backend=settings.llm_backend)
        return primary

    fallback = LangChainGateway(
        _chat_model(settings.llm_fallback_backend, settings),
        name=settings.llm_fallback_backend,
        configured=bool(settings.api_key_for(settings.llm_fallback_backend)),
    )
    logger.info("llm.gateway_built", backend=settings.llm_backend,
                fallback=settings.llm_fallback_backend)
    return FailoverGateway(primary, fallback)
