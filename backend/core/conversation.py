"""Conversation data model shared by the orchestrator and the model gateway."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCallRequest:
    """A model's request to run one registered tool."""
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallResult:
    """Outcome of one dispatched tool call, rendered as text for the model."""
    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class Message:
    """Single immutable conversation entry.

    ``tool_calls`` is only set on assistant messages that requested tools;
    ``tool_call_id`` only on tool messages answering one of those calls.
    """
    role: Role
    content: str
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str, tool_calls: tuple[ToolCallRequest, ...] = ()) -> "Message":
        return cls(Role.ASSISTANT, content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, result: ToolCallResult) -> "Message":
        return cls(Role.TOOL, result.content, tool_call_id=result.tool_call_id)


class Conversation:
    """Append-only message sequence. A system directive may only come first."""

    def __init__(self, messages: list[Message] | None = None):
        self._messages: list[Message] = []
        for message in messages or []:
            self.append(message)

    def append(self, message: Message) -> None:
        if message.role is Role.SYSTEM and self._messages:
            raise ValueError("System directive must be the first message of a conversation")
        self._messages.append(message)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
