"""Connected-client bookkeeping and event fan-out for the chat hub.

Membership lives in a dict guarded by an asyncio.Lock. Each session owns an
unbounded FIFO outbox; broadcasting only enqueues, so no transport I/O happens
under the lock and events reach every session in the order they were
broadcast. The WebSocket endpoint drains each outbox in its own writer task.

A broadcast reaches the sessions present when it is called. Sessions that
join afterwards do not receive it; nothing is buffered or replayed.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from backend.api.schemas import ChatEvent, UserJoined, UserLeft, UserTyping

logger = structlog.get_logger(__name__)


@dataclass
class ChatSession:
    """State of one connected client."""
    connection_id: str
    display_name: str
    is_typing: bool = False
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)


class SessionManager:
    """Tracks joined clients and fans out ChatEvents to their outboxes."""

    def __init__(self):
        self._sessions: dict[str, ChatSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions

    def get(self, connection_id: str) -> ChatSession | None:
        return self._sessions.get(connection_id)

    def active_ids(self) -> list[str]:
        return list(self._sessions)

    async def join(
        self,
        connection_id: str,
        display_name: str,
        outbox: asyncio.Queue | None = None,
    ) -> ChatSession:
        """Create (or rename) a session and announce it to everyone, the joiner included.

        Args:
            connection_id: Transport-assigned connection identifier.
            display_name: Name shown to other participants.
            outbox: Queue to deliver events into; a new one is created if omitted.

        Returns:
            The session now registered under ``connection_id``.
        """
        async with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                session = ChatSession(connection_id=connection_id, display_name=display_name)
                if outbox is not None:
                    session.outbox = outbox
                self._sessions[connection_id] = session
                logger.info("sessions.joined", connection_id=connection_id,
                            display_name=display_name, active=len(self._sessions))
            else:
                session.display_name = display_name
                logger.info("sessions.renamed", connection_id=connection_id, display_name=display_name)
            self._fan_out(UserJoined(display_name=display_name, connection_id=connection_id))
        return session

    async def leave(self, connection_id: str) -> bool:
        """Remove a session and announce it. Returns False if it was already gone."""
        async with self._lock:
            session = self._sessions.pop(connection_id, None)
            if session is None:
                return False
            logger.info("sessions.left", connection_id=connection_id, active=len(self._sessions))
            self._fan_out(UserLeft(connection_id=connection_id))
        return True

    async def set_typing(self, connection_id: str, is_typing: bool) -> None:
        """Record typing state and tell every other session. Unknown ids are ignored."""
        async with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                logger.debug("sessions.typing_unknown", connection_id=connection_id)
                return
            session.is_typing = is_typing
            self._fan_out(
                UserTyping(connection_id=connection_id, is_typing=is_typing),
                exclude=connection_id,
            )

    async def broadcast(self, event: ChatEvent) -> int:
        """Deliver ``event`` to every current session.

        Returns:
            Number of sessions the event was queued for.
        """
        async with self._lock:
            return self._fan_out(event)

    async def send_to(self, connection_id: str, event: ChatEvent) -> bool:
        """Deliver ``event`` to one session only. Returns False if it has left."""
        async with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                logger.debug("sessions.undeliverable", connection_id=connection_id, chat_event=event.event)
                return False
            session.outbox.put_nowait(event)
        return True

    def _fan_out(self, event: ChatEvent, exclude: str | None = None) -> int:
        # Caller holds self._lock
        delivered = 0
        for connection_id, session in self._sessions.items():
            if connection_id == exclude:
                continue
            session.outbox.put_nowait(event)
            delivered += 1
        logger.debug("sessions.fan_out", chat_event=event.event, recipients=delivered)
        return delivered
