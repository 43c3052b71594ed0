"""Send and regenerate flows for one user's conversation."""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from tripchat.config import get_settings
from tripchat.errors import ConversationBusyError
from tripchat.models import ChatSession, Message, PendingBody, Sender, TextBody, UserProfile
from tripchat.services.accumulator import StreamAccumulator
from tripchat.services.backend import ChatBackend, Kind, Role
from tripchat.services.conversation import ConversationStore
from tripchat.services.history import decode_history, encode_reply, to_chat_turns
from tripchat.services.images import parse_data_uri
from tripchat.services.llm.base import LLMProvider
from tripchat.services.llm.session import ModelSession

logger = logging.getLogger(__name__)

APOLOGY_TEXT = (
    "I'm sorry, I encountered an issue while connecting to the travel network. Please try again."
)
TITLE_LENGTH = 30


def session_title(text: str) -> str:
    return text[:TITLE_LENGTH] + ("..." if len(text) > TITLE_LENGTH else "")


class ChatService:
    """Owns the store, model session and persistence for one conversation.

    At most one send or regenerate runs at a time; a second one started while
    the first is streaming raises ``ConversationBusyError``.
    """

    def __init__(
        self,
        user: UserProfile,
        backend: ChatBackend,
        model: ModelSession,
        store: ConversationStore | None = None,
    ) -> None:
        self.user = user
        self.backend = backend
        self.model = model
        self.store = store or ConversationStore()
        self.sessions: List[ChatSession] = []
        self.current_session_id: Optional[str] = None
        self._busy = False
        self._writes: set[asyncio.Task] = set()
        self._last_write: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        return self._busy

    def acquire(self) -> None:
        """Take the in-flight token; pass ``reserved=True`` to the run that follows."""

        if self._busy:
            raise ConversationBusyError("A reply is already being generated for this conversation")
        self._busy = True

    def release(self) -> None:
        self._busy = False

    @contextmanager
    def _in_flight(self, reserved: bool = False) -> Iterator[None]:
        if not reserved:
            self.acquire()
        try:
            yield
        finally:
            self.release()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, text: str, image: str | None = None, *, reserved: bool = False) -> Message:
        """Run one exchange and return the settled AI message.

        A stream failure drops the half-built reply and returns the apology
        message that replaced it. With *reserved* the caller already holds
        the in-flight token from ``acquire``; it is released here either way.
        """

        with self._in_flight(reserved):
            if image:
                parse_data_uri(image)  # reject bad attachments before touching state

            session_id = await self._ensure_session(text)

            self.store.append(Message.user(text, image))
            if session_id:
                self._persist(session_id, text, "user", "text")

            pending_id: str | None = None
            try:
                events = await self.model.send(text, image)
                pending_id = self.store.append(Message.ai_pending()).id
                result = await StreamAccumulator(self.store, pending_id).consume(events)
            except Exception:
                logger.exception("Error generating plan for user_id=%s", self.user.id)
                if pending_id is not None:
                    self.store.remove(pending_id)
                return self.store.append(Message.ai_text(APOLOGY_TEXT))

            if session_id:
                content, kind = encode_reply(result.text, result.itinerary)
                self._persist(session_id, content, "ai", kind)

            reply = self.store.get(pending_id)
            if reply is None:
                # the conversation was switched while streaming
                reply = Message(id=pending_id, sender=Sender.AI, body=result.body)
            return reply

    async def regenerate(self, message_id: str, *, reserved: bool = False) -> Message | None:
        """Re-run the reply *message_id* against the user message before it.

        Returns ``None`` without touching state when there is no such message
        or the one before it was not written by the user. The new reply is not
        persisted.
        """

        with self._in_flight(reserved):
            if self.store.get(message_id) is None:
                return None
            prompt = self.store.previous(message_id)
            if prompt is None or prompt.sender is not Sender.USER:
                return None

            self.store.update(message_id, body=PendingBody())
            try:
                events = await self.model.send(prompt.text, prompt.image)
                await StreamAccumulator(self.store, message_id).consume(events)
            except Exception:
                logger.exception("Error regenerating message id=%s", message_id)
                self.store.update(message_id, body=TextBody(text=APOLOGY_TEXT))
            return self.store.get(message_id)

    async def _ensure_session(self, text: str) -> str | None:
        if self.current_session_id:
            return self.current_session_id
        try:
            session = await self.backend.create_session(self.user.id, session_title(text))
        except Exception:
            logger.exception("Create session error for user_id=%s", self.user.id)
            return None
        self.sessions.insert(0, session)
        self.current_session_id = session.id
        return session.id

    # ------------------------------------------------------------------
    # Persistence (fire-and-forget, applied in call order)
    # ------------------------------------------------------------------

    def _persist(self, session_id: str, content: str, role: Role, kind: Kind) -> None:
        previous = self._last_write

        async def _write() -> None:
            if previous is not None:
                await asyncio.wait([previous])
            try:
                await self.backend.save_message(session_id, content, role, kind)
            except Exception:
                logger.exception("Failed to save %s message to chat_id=%s", role, session_id)

        task = asyncio.create_task(_write())
        self._last_write = task
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def flush(self) -> None:
        """Wait for outstanding persistence writes."""

        while self._writes:
            await asyncio.gather(*list(self._writes))

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def load_sessions(self) -> List[ChatSession]:
        try:
            self.sessions = await self.backend.get_sessions(self.user.id)
        except Exception:
            logger.exception("Failed to load sessions for user_id=%s", self.user.id)
            self.sessions = []
        return self.sessions

    async def select_session(self, session_id: str) -> List[Message]:
        self.current_session_id = session_id
        self.store.clear()
        try:
            rows = await self.backend.get_messages(session_id)
        except Exception:
            logger.exception("Failed to load messages for chat_id=%s", session_id)
            rows = []
        messages = decode_history(rows)
        self.store.replace(messages)
        self.model.reset(to_chat_turns(messages))
        return messages

    def new_chat(self) -> None:
        self.store.clear()
        self.current_session_id = None
        self.model.reset()


class ConversationManager:
    """Creates a ``ChatService`` per signed-in user and drops it on logout.

    At most ``max_conversations`` services are kept; beyond that the least
    recently used one that is not streaming is discarded. Its history stays
    in the backend and is reloaded on the user's next request.
    """

    def __init__(
        self,
        backend: ChatBackend,
        provider_factory: Callable[[], LLMProvider],
        max_conversations: int | None = None,
    ) -> None:
        self._backend = backend
        self._provider_factory = provider_factory
        self._max_conversations = max_conversations or get_settings().max_conversations
        self._services: OrderedDict[str, ChatService] = OrderedDict()

    def __len__(self) -> int:
        return len(self._services)

    def get(self, user_id: str) -> ChatService | None:
        service = self._services.get(user_id)
        if service is not None:
            self._services.move_to_end(user_id)
        return service

    def for_user(self, user: UserProfile) -> ChatService:
        service = self.get(user.id)
        if service is None:
            service = ChatService(user, self._backend, ModelSession(self._provider_factory()))
            self._services[user.id] = service
            logger.debug("Started conversation for user_id=%s", user.id)
            self._evict()
        return service

    async def login(self, user: UserProfile) -> ChatService:
        service = self.for_user(user)
        await service.load_sessions()
        return service

    def logout(self, user_id: str) -> None:
        service = self._services.pop(user_id, None)
        if service is not None:
            service.new_chat()
            logger.debug("Ended conversation for user_id=%s", user_id)

    def _evict(self) -> None:
        for user_id in list(self._services):
            if len(self._services) <= self._max_conversations:
                return
            if self._services[user_id].busy:
                continue
            self._services.pop(user_id)
            logger.info("Evicted idle conversation for user_id=%s", user_id)
