"""Real-time chat hub over WebSocket (/chathub).

Each connection gets a random connection id, an outbox queue and a writer
task that drains the queue onto the socket. Client frames are JSON commands
(joinChat, sendMessage, sendTyping). A sendMessage starts a chat turn in its
own task: the user message, the bot typing indicator and the bot answer are
broadcast to every joined client, while failures go back to the sender only.

When a client disconnects it leaves the session set right away. Turns it
started keep running to completion; anything addressed only to it is dropped.
"""

import asyncio
import contextlib
from uuid import uuid4

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from backend.agent.prompts import WELCOME_MESSAGE
from backend.api.schemas import (
    ChatEvent,
    ConnectionStateChanged,
    JoinChat,
    ReceiveMessage,
    SendMessage,
    SendTyping,
    UserTyping,
    client_command_adapter,
)
from backend.core.llm_adapter import BackendError
from backend.core.session_manager import SessionManager

logger = structlog.get_logger(__name__)

router = APIRouter()

BOT_NAME = "AI"
SYSTEM_NAME = "System"


@router.websocket("/chathub")
async def chat_hub(websocket: WebSocket):
    """Serve one hub connection until the client goes away."""
    await websocket.accept()
    connection_id = uuid4().hex
    outbox: asyncio.Queue = asyncio.Queue()
    sessions: SessionManager = websocket.app.state.sessions

    with structlog.contextvars.bound_contextvars(connection_id=connection_id):
        writer = asyncio.create_task(_pump(websocket, outbox))
        outbox.put_nowait(ConnectionStateChanged(state="Connected"))
        logger.info("hub.connected")

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))

                raw = message.get("text")
                if raw is None:
                    logger.warning("hub.binary_frame")
                    outbox.put_nowait(_invalid_frame())
                    continue
                try:
                    command = client_command_adapter.validate_json(raw)
                except ValidationError as e:
                    logger.warning("hub.bad_frame", errors=e.error_count())
                    outbox.put_nowait(_invalid_frame())
                    continue
                await _handle(websocket, connection_id, outbox, command)

        except WebSocketDisconnect as e:
            logger.info("hub.disconnected", code=e.code)

        finally:
            await sessions.leave(connection_id)
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer


def _invalid_frame() -> ReceiveMessage:
    return ReceiveMessage(user=SYSTEM_NAME, content="Invalid message format.", type="error")


async def _handle(websocket: WebSocket, connection_id: str, outbox: asyncio.Queue, command) -> None:
    sessions: SessionManager = websocket.app.state.sessions

    if isinstance(command, JoinChat):
        await sessions.join(connection_id, command.display_name, outbox=outbox)
        await sessions.send_to(connection_id, ReceiveMessage(
            user=SYSTEM_NAME, content=WELCOME_MESSAGE, type="system",
        ))

    elif isinstance(command, SendTyping):
        await sessions.set_typing(connection_id, command.is_typing)

    elif isinstance(command, SendMessage):
        session = sessions.get(connection_id)
        if session is None:
            outbox.put_nowait(ReceiveMessage(
                user=SYSTEM_NAME, content="Join the chat before sending messages.", type="error",
            ))
            return

        logger.info("hub.message", msg_len=len(command.text))
        await sessions.broadcast(ReceiveMessage(user=session.display_name, content=command.text, type="user"))

        turns: set[asyncio.Task] = websocket.app.state.turn_tasks
        task = asyncio.create_task(_run_turn(websocket, connection_id, command.text))
        turns.add(task)
        task.add_done_callback(turns.discard)


async def _run_turn(websocket: WebSocket, connection_id: str, text: str) -> None:
    """One orchestration turn started from the hub."""
    sessions: SessionManager = websocket.app.state.sessions
    orchestrator = websocket.app.state.orchestrator

    if orchestrator is None:
        await sessions.send_to(connection_id, ReceiveMessage(
            user=SYSTEM_NAME, content="Error: Assistant not available.", type="error",
        ))
        return

    await sessions.broadcast(UserTyping(connection_id=BOT_NAME, is_typing=True))
    try:
        result = await orchestrator.run(text)
    except BackendError as e:
        logger.error("hub.turn_failed", error=str(e), error_type=e.__class__.__name__)
        await _fail_turn(sessions, connection_id, str(e))
        return
    except Exception as e:
        logger.exception("hub.turn_crashed")
        await _fail_turn(sessions, connection_id, str(e) or e.__class__.__name__)
        return

    await sessions.broadcast(UserTyping(connection_id=BOT_NAME, is_typing=False))
    await sessions.broadcast(ReceiveMessage(user=BOT_NAME, content=result.text, type="bot"))
    logger.info("hub.turn_done", tools=result.tools_called, iterations=result.iterations)


async def _fail_turn(sessions: SessionManager, connection_id: str, detail: str) -> None:
    await sessions.broadcast(UserTyping(connection_id=BOT_NAME, is_typing=False))
    delivered = await sessions.send_to(connection_id, ReceiveMessage(
        user=SYSTEM_NAME, content=f"Error: {detail}", type="error",
    ))
    if not delivered:
        logger.info("hub.turn_result_discarded")


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Writer task: send queued events in order until the socket fails."""
    while True:
        event: ChatEvent = await outbox.get()
        try:
            await websocket.send_json(event.to_wire())
        except (WebSocketDisconnect, RuntimeError) as e:
            # Typing indicators are best effort; anything else means the socket is gone
            if isinstance(event, UserTyping):
                logger.debug("hub.typing_send_failed", error=str(e))
                continue
            logger.info("hub.writer_stopped", chat_event=event.event, error=str(e))
            return
        except Exception as e:
            logger.warning("hub.writer_failed", chat_event=event.event, error=str(e),
                           error_type=e.__class__.__name__)
            return
