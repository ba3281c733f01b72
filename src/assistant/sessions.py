"""In-memory chat session store.

Keeps conversation history between API requests. History is server-side so
a pending action can only be approved if this store surfaced it.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import ChatSession, ConversationMessage, UserContext

logger = get_logger(__name__)

TITLE_LENGTH = 50


def make_title(message: str) -> str:
    """First characters of the opening user message."""
    return message.strip()[:TITLE_LENGTH]


class ChatSessionStore:
    """
    Chat sessions keyed by id, scoped to the user that created them.

    Sessions idle for longer than the TTL are dropped on access and by
    `cleanup_expired`.
    """

    def __init__(self, max_messages: int = 200, session_ttl_minutes: int = 60) -> None:
        self.max_messages = max_messages
        self.ttl = timedelta(minutes=session_ttl_minutes)
        self._sessions: dict[str, ChatSession] = {}
        self._lock = asyncio.Lock()

    async def create(self, user: UserContext) -> ChatSession:
        session = ChatSession(id=str(uuid.uuid4()), user=user)
        async with self._lock:
            self._sessions[session.id] = session
        logger.info("Chat session created", conversation_id=session.id, user=user.user_id)
        return session

    async def get(self, session_id: str, user: UserContext) -> Optional[ChatSession]:
        """The session if it exists, has not expired and belongs to `user`."""
        session = self._sessions.get(session_id)
        if session is None:
            return None

        if datetime.utcnow() - session.updated_at > self.ttl:
            await self.delete(session_id)
            return None

        if session.user.user_id != user.user_id:
            logger.warning(
                "Chat session requested by another user",
                conversation_id=session_id,
                user=user.user_id
            )
            return None

        return session

    async def get_or_create(self, session_id: Optional[str], user: UserContext) -> ChatSession:
        if session_id:
            session = await self.get(session_id, user)
            if session:
                return session
        return await self.create(user)

    async def append(self, session_id: str, messages: list[ConversationMessage]) -> Optional[ChatSession]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None

            if session.title is None:
                first_user = next((m for m in messages if m.role == "user"), None)
                if first_user is not None:
                    session.title = make_title(first_user.content)

            session.messages.extend(messages)
            if len(session.messages) > self.max_messages:
                session.messages = session.messages[-self.max_messages:]
            session.updated_at = datetime.utcnow()

        return session

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            if session_id in self._sessions:
                del self._sessions[session_id]
                logger.info("Chat session deleted", conversation_id=session_id)
                return True
        return False

    async def cleanup_expired(self) -> int:
        now = datetime.utcnow()
        async with self._lock:
            expired = [sid for sid, s in self._sessions.items() if now - s.updated_at > self.ttl]
            for session_id in expired:
                del self._sessions[session_id]

        if expired:
            logger.info("Expired chat sessions cleaned up", count=len(expired))
        return len(expired)

    async def list_sessions(self, user_id: Optional[str] = None) -> list[dict[str, Any]]:
        sessions = list(self._sessions.values())
        if user_id:
            sessions = [s for s in sessions if s.user.user_id == user_id]
        return [
            {
                "id": s.id,
                "title": s.title,
                "message_count": len(s.messages),
                "updated_at": s.updated_at.isoformat(),
            }
            for s in sessions
        ]
