"""Conversation orchestration: sending turns and managing sessions."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
import logging
from typing import Any

from .attachments import DEFAULT_MAX_BYTES, AttachmentSource, PendingAttachments
from .client import GenerationClient, OllamaGenerationClient
from .events import (
    SESSION_CREATED,
    SESSION_DELETED,
    SESSION_SELECTED,
    TURN_CANCELLED,
    TURN_COMPLETED,
    TURN_FAILED,
    TURN_STARTED,
    EventBus,
)
from .exceptions import GenerationServiceError, GenerationTimeoutError
from .models import Attachment, Message, Session
from .request_builder import GenerationRequest, RequestBuilder
from .response_interpreter import ResponseInterpreter
from .session_store import SessionStore
from .state import StateManager, TurnState
from .storage import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationView:
    """Snapshot consumed by the UI collaborator."""

    sessions: list[Session]
    current_session_id: str
    pending_text: str
    pending_attachments: list[Attachment]
    is_sending: bool


class ConversationController:
    """Tie sessions, request building, and response handling together.

    Each session runs its own IDLE -> COMPOSING -> SENDING -> IDLE cycle and
    allows at most one request in flight. The user's message is stored
    before the network call; the model's reply (or a fixed apology) is
    stored after it. The SENDING state is released on every exit path.
    """

    def __init__(
        self,
        sessions: SessionStore,
        builder: RequestBuilder,
        interpreter: ResponseInterpreter,
        client: GenerationClient,
        *,
        events: EventBus | None = None,
        max_attachment_bytes: int = DEFAULT_MAX_BYTES,
        timeout_seconds: float | None = 120.0,
        quick_actions: dict[str, str] | None = None,
    ) -> None:
        self.sessions = sessions
        self.builder = builder
        self.interpreter = interpreter
        self.client = client
        self.events = events or EventBus()
        self.timeout_seconds = timeout_seconds
        self.quick_actions = dict(quick_actions or {})
        self.pending = PendingAttachments(
            max_bytes=max_attachment_bytes, events=self.events
        )
        self.pending_text = ""
        self._states: dict[str, StateManager] = {}
        self._tasks = TaskManager()

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        *,
        client: GenerationClient | None = None,
        storage: KeyValueStore | None = None,
        events: EventBus | None = None,
    ) -> ConversationController:
        """Wire the default components from a loaded configuration."""
        generation = config["generation"]
        persistence = config["persistence"]
        conversation = config["conversation"]

        if storage is None:
            storage = (
                FileKeyValueStore(persistence["directory"])
                if persistence["enabled"]
                else MemoryKeyValueStore()
            )
        sessions = SessionStore(
            storage,
            persistence["storage_key"],
            greeting=conversation["greeting"],
            default_title=conversation["new_chat_title"],
            title_max_length=conversation["title_max_length"],
        )
        builder = RequestBuilder(
            generation["general_model"],
            generation["image_edit_model"],
            edit_keywords=generation["edit_keywords"],
            default_prompt=generation["default_prompt"],
            include_history=generation["include_history"],
            max_history_messages=generation["max_history_messages"],
        )
        interpreter = ResponseInterpreter(
            conversation["fallback_reply"],
            conversation["apology_reply"],
            attachment_name=conversation["generated_attachment_name"],
        )
        if client is None:
            client = OllamaGenerationClient(
                generation["host"], timeout=generation["timeout_seconds"]
            )
        return cls(
            sessions,
            builder,
            interpreter,
            client,
            events=events,
            max_attachment_bytes=config["attachments"]["max_bytes"],
            timeout_seconds=generation["timeout_seconds"],
            quick_actions=config["quick_actions"],
        )

    # -- state ---------------------------------------------------------------

    def _state(self, session_id: str) -> StateManager:
        manager = self._states.get(session_id)
        if manager is None:
            manager = StateManager()
            self._states[session_id] = manager
        return manager

    def turn_state(self, session_id: str | None = None) -> TurnState:
        """Return the turn state of a session (the active one by default)."""
        target = session_id or self.sessions.current_session_id
        manager = self._states.get(target)
        return manager.state if manager is not None else TurnState.IDLE

    def is_sending(self, session_id: str | None = None) -> bool:
        return self.turn_state(session_id) == TurnState.SENDING

    def view(self) -> ConversationView:
        """Return the data the UI renders."""
        return ConversationView(
            sessions=self.sessions.sessions,
            current_session_id=self.sessions.current_session_id,
            pending_text=self.pending_text,
            pending_attachments=self.pending.snapshot(),
            is_sending=self.is_sending(),
        )

    async def _sync_composing(self, session_id: str | None = None) -> None:
        """Only the active session composes, and only while the composer has content."""
        current = self.sessions.current_session_id
        target = session_id or current
        manager = self._state(target)
        if target == current and (self.pending_text.strip() or len(self.pending)):
            await manager.transition_if(TurnState.IDLE, TurnState.COMPOSING)
        else:
            await manager.transition_if(TurnState.COMPOSING, TurnState.IDLE)

    # -- composing -----------------------------------------------------------

    async def set_pending_text(self, text: str) -> None:
        """Replace the text being composed."""
        self.pending_text = text
        await self._sync_composing()

    async def apply_quick_action(self, name: str) -> bool:
        """Load a preset prompt into the composer."""
        prompt = self.quick_actions.get(name.strip().lower())
        if prompt is None:
            return False
        await self.set_pending_text(prompt)
        return True

    def attach_file(self, *sources: AttachmentSource) -> list[asyncio.Task[None]]:
        """Start encoding files into the pending collection."""
        return self.pending.attach(sources)

    async def wait_for_attachments(self) -> None:
        """Wait for outstanding file reads, then refresh the composing state."""
        await self.pending.wait()
        await self._sync_composing()

    async def remove_attachment(self, index: int) -> bool:
        removed = self.pending.remove(index)
        await self._sync_composing()
        return removed is not None

    # -- sessions ------------------------------------------------------------

    async def new_session(self) -> Session:
        previous = self.sessions.current_session_id
        session = self.sessions.create()
        await self._sync_composing(previous)
        await self._sync_composing()
        await self.events.publish(SESSION_CREATED, {"session_id": session.id})
        return session

    async def select_session(self, session_id: str) -> bool:
        previous = self.sessions.current_session_id
        selected = self.sessions.select(session_id)
        if selected:
            await self._sync_composing(previous)
            await self._sync_composing()
            await self.events.publish(SESSION_SELECTED, {"session_id": session_id})
        return selected

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session, abandoning its in-flight request if any."""
        if self.sessions.get(session_id) is None:
            return False
        await self.cancel_send(session_id)
        removed = self.sessions.remove(session_id)
        self._states.pop(session_id, None)
        if removed:
            await self._sync_composing()
            await self.events.publish(
                SESSION_DELETED,
                {
                    "session_id": session_id,
                    "current_session_id": self.sessions.current_session_id,
                },
            )
        return removed

    async def clear_session(self, session_id: str | None = None) -> bool:
        return self.sessions.clear(session_id or self.sessions.current_session_id)

    # -- sending -------------------------------------------------------------

    @staticmethod
    def _send_task_name(session_id: str) -> str:
        return f"send:{session_id}"

    async def cancel_send(self, session_id: str | None = None) -> bool:
        """Abandon the in-flight request of a session."""
        target = session_id or self.sessions.current_session_id
        return await self._tasks.cancel(self._send_task_name(target))

    async def send_turn(
        self,
        text: str | None = None,
        attachments: Sequence[Attachment] | None = None,
    ) -> Message | None:
        """Send one user turn in the active session.

        ``text`` and ``attachments`` default to the pending composer content.
        Returns the model message that was stored, or ``None`` when the turn
        was rejected (empty, or a request already in flight) or cancelled.
        """
        session_id = self.sessions.current_session_id
        turn_text = self.pending_text if text is None else text
        turn_attachments = (
            self.pending.snapshot() if attachments is None else list(attachments)
        )
        if not turn_text.strip() and not turn_attachments:
            LOGGER.debug(
                "turn.rejected.empty",
                extra={"event": "turn.rejected.empty", "session_id": session_id},
            )
            return None

        manager = self._state(session_id)
        transitioned = await manager.transition_if(
            {TurnState.IDLE, TurnState.COMPOSING}, TurnState.SENDING
        )
        if not transitioned:
            LOGGER.info(
                "turn.rejected.busy",
                extra={"event": "turn.rejected.busy", "session_id": session_id},
            )
            return None

        try:
            session = self.sessions.get(session_id)
            history = list(session.messages) if session is not None else []
            user_message = Message(
                role="user", text=turn_text, attachments=turn_attachments
            )
            self.sessions.append_messages(session_id, [user_message])
            self.pending_text = ""
            self.pending.clear()
            LOGGER.info(
                "turn.started",
                extra={
                    "event": "turn.started",
                    "session_id": session_id,
                    "attachments": len(turn_attachments),
                },
            )
            await self.events.publish(TURN_STARTED, {"session_id": session_id})

            request = self.builder.build(turn_text, turn_attachments, history)
            reply = await self._run_request(session_id, request)
            if reply is None:
                return None

            if not self.sessions.append_messages(session_id, [reply]):
                LOGGER.warning(
                    "turn.reply_dropped",
                    extra={"event": "turn.reply_dropped", "session_id": session_id},
                )
            return reply
        finally:
            await manager.transition_to(TurnState.IDLE)

    async def _run_request(
        self, session_id: str, request: GenerationRequest
    ) -> Message | None:
        task = asyncio.create_task(self._generate(session_id, request))
        self._tasks.add(task, name=self._send_task_name(session_id))
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                task.cancel()
                raise
            LOGGER.info(
                "turn.cancelled",
                extra={"event": "turn.cancelled", "session_id": session_id},
            )
            await self.events.publish(TURN_CANCELLED, {"session_id": session_id})
            return None

    async def _generate(self, session_id: str, request: GenerationRequest) -> Message:
        """Call the service and interpret the reply; failures become an apology."""
        error: GenerationServiceError
        try:
            if self.timeout_seconds:
                response = await asyncio.wait_for(
                    self.client.generate(request), self.timeout_seconds
                )
            else:
                response = await self.client.generate(request)
            reply = self.interpreter.interpret(response)
        except TimeoutError:
            error = GenerationTimeoutError(
                f"Generation did not finish within {self.timeout_seconds}s."
            )
        except GenerationServiceError as exc:
            error = exc
        except Exception as exc:  # noqa: BLE001 - external collaborator can fail in many ways.
            error = GenerationServiceError(str(exc))
        else:
            LOGGER.info(
                "turn.completed",
                extra={
                    "event": "turn.completed",
                    "session_id": session_id,
                    "model": request.model,
                    "variant": request.variant.value,
                    "attachments": len(reply.attachments),
                },
            )
            await self.events.publish(
                TURN_COMPLETED,
                {"session_id": session_id, "variant": request.variant.value},
            )
            return reply

        LOGGER.warning(
            "turn.failed",
            extra={
                "event": "turn.failed",
                "session_id": session_id,
                "model": request.model,
                "error_type": error.__class__.__name__,
                "error": str(error),
            },
        )
        await self.events.publish(
            TURN_FAILED,
            {"session_id": session_id, "error_type": error.__class__.__name__},
        )
        return self.interpreter.failure_message()

    async def aclose(self) -> None:
        """Cancel in-flight requests and attachment reads."""
        await self._tasks.cancel_all()
        await self.pending.tasks.cancel_all()

    def messages(self, session_id: str | None = None) -> list[Message]:
        """Return the messages of a session (the active one by default)."""
        session = self.sessions.get(session_id or self.sessions.current_session_id)
        return list(session.messages) if session is not None else []

    def export_markdown(self, session_id: str | None = None) -> str:
        return self.sessions.export_markdown(
            session_id or self.sessions.current_session_id
        )
