"""Pydantic models for the API layer.

REST request/response bodies plus the WebSocket hub vocabulary: commands the
client sends (discriminated by ``action``) and events the server broadcasts
(discriminated by ``event``). Wire names are camelCase; Python attributes are
snake_case and either can be used to construct a model.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ChatRequest(BaseModel):
    """Single question for the assistant."""
    query: str = Field(..., min_length=1, max_length=1000, pattern=r"\S", description="User question")


class ChatResponse(BaseModel):
    """Assistant answer."""
    response: str


class ErrorResponse(BaseModel):
    """Body of 400/500 replies."""
    error: str
    details: Any = None


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    components: dict[str, Any] = Field(default_factory=dict)


class FunctionParameterInfo(BaseModel):
    name: str
    type: str
    description: str
    required: bool
    default: Any = None


class FunctionInfo(BaseModel):
    name: str
    description: str
    parameters: list[FunctionParameterInfo] = Field(default_factory=list)


class FunctionsResponse(BaseModel):
    total_functions: int
    functions: list[FunctionInfo]


class FunctionTestResponse(BaseModel):
    function_name: str
    parameters: dict[str, Any]
    result: Any


# --- Real-time hub: server -> client events ---------------------------------

class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


MessageType = Literal["user", "bot", "system", "error"]
ConnectionState = Literal["Connected", "Reconnecting", "Disconnected", "Error"]


class ReceiveMessage(_WireModel):
    event: Literal["ReceiveMessage"] = "ReceiveMessage"
    user: str
    content: str
    type: MessageType


class UserTyping(_WireModel):
    event: Literal["UserTyping"] = "UserTyping"
    connection_id: str = Field(alias="connectionId")
    is_typing: bool = Field(alias="isTyping")


class UserJoined(_WireModel):
    event: Literal["UserJoined"] = "UserJoined"
    display_name: str = Field(alias="displayName")
    connection_id: str = Field(alias="connectionId")


class UserLeft(_WireModel):
    event: Literal["UserLeft"] = "UserLeft"
    connection_id: str = Field(alias="connectionId")


class ConnectionStateChanged(_WireModel):
    event: Literal["ConnectionStateChanged"] = "ConnectionStateChanged"
    state: ConnectionState


ChatEvent = Annotated[
    Union[ReceiveMessage, UserTyping, UserJoined, UserLeft, ConnectionStateChanged],
    Field(discriminator="event"),
]

chat_event_adapter: TypeAdapter[ChatEvent] = TypeAdapter(ChatEvent)


# --- Real-time hub: client -> server commands -------------------------------

class JoinChat(_WireModel):
    action: Literal["joinChat"]
    display_name: str = Field(alias="displayName", min_length=1, max_length=50, pattern=r"\S")


class SendMessage(_WireModel):
    action: Literal["sendMessage"]
    text: str = Field(min_length=1, max_length=1000, pattern=r"\S")


class SendTyping(_WireModel):
    action: Literal["sendTyping"]
    is_typing: bool = Field(alias="isTyping")


ClientCommand = Annotated[
    Union[JoinChat, SendMessage, SendTyping],
    Field(discriminator="action"),
]

client_command_adapter: TypeAdapter[ClientCommand] = TypeAdapter(ClientCommand)
