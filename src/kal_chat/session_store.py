"""Ownership and persistence of conversation sessions."""

from __future__ import annotations

from collections.abc import Iterable
import json
import logging

from pydantic import ValidationError

from .exceptions import PersistenceError, PersistenceFormatError
from .models import Message, Session, SessionDocument
from .storage import KeyValueStore, MemoryKeyValueStore

LOGGER = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "kal_chat_sessions"


class SessionStore:
    """Own the session list and the active-session pointer.

    Every mutating operation writes the whole list back to ``storage`` under
    ``storage_key``. Read and write failures never escape: a bad document at
    startup falls back to a single default session and a failed write is
    logged and dropped.

    The store always holds at least one session and ``current_session_id``
    always names one of them.
    """

    def __init__(
        self,
        storage: KeyValueStore | None = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        *,
        greeting: str = "Hello! How can I help you?",
        default_title: str = "New Chat",
        title_max_length: int = 20,
    ) -> None:
        self.storage: KeyValueStore = storage or MemoryKeyValueStore()
        self.storage_key = storage_key
        self.greeting = greeting
        self.default_title = default_title
        self.title_max_length = max(1, title_max_length)
        self._sessions: list[Session] = []
        self._current_id = ""
        self._load()

    @property
    def sessions(self) -> list[Session]:
        """Return the session list, newest first. Callers must not mutate it."""
        return list(self._sessions)

    @property
    def current_session_id(self) -> str:
        return self._current_id

    @property
    def current_session(self) -> Session:
        session = self.get(self._current_id)
        assert session is not None
        return session

    def get(self, session_id: str) -> Session | None:
        """Return the session with ``session_id`` or ``None``."""
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def create(self) -> Session:
        """Insert a fresh greeting-only session at the front and activate it."""
        session = self._new_session()
        self._sessions.insert(0, session)
        self._current_id = session.id
        LOGGER.info(
            "session.created",
            extra={"event": "session.created", "session_id": session.id},
        )
        self._save()
        return session

    def remove(self, session_id: str) -> bool:
        """Delete a session, keeping at least one session and a valid pointer."""
        index = self._index_of(session_id)
        if index is None:
            return False
        del self._sessions[index]
        LOGGER.info(
            "session.deleted",
            extra={"event": "session.deleted", "session_id": session_id},
        )
        if not self._sessions:
            self.create()
            return True
        if self._current_id == session_id:
            self._current_id = self._sessions[0].id
        self._save()
        return True

    def select(self, session_id: str) -> bool:
        """Point at ``session_id``; unknown ids leave the pointer unchanged."""
        if self.get(session_id) is None:
            LOGGER.debug(
                "session.select.unknown",
                extra={"event": "session.select.unknown", "session_id": session_id},
            )
            return False
        if self._current_id != session_id:
            self._current_id = session_id
            self._save()
        return True

    def append_messages(self, session_id: str, messages: Iterable[Message]) -> bool:
        """Append messages to a session and derive its title from the first one."""
        session = self.get(session_id)
        if session is None:
            LOGGER.warning(
                "session.append.unknown",
                extra={"event": "session.append.unknown", "session_id": session_id},
            )
            return False

        accepted = [message for message in messages if not message.is_empty]
        if not accepted:
            return False

        session.messages.extend(accepted)
        first = accepted[0]
        if (
            session.title == self.default_title
            and first.role == "user"
            and first.text.strip()
        ):
            session.title = first.text[: self.title_max_length]
        self._save()
        return True

    def clear(self, session_id: str) -> bool:
        """Reset a session to its greeting and default title."""
        session = self.get(session_id)
        if session is None:
            return False
        session.messages = [self._greeting_message()]
        session.title = self.default_title
        self._save()
        return True

    def export_markdown(self, session_id: str) -> str:
        """Render a session transcript as markdown."""
        session = self.get(session_id)
        if session is None:
            raise KeyError(session_id)
        lines = [f"# {session.title}", ""]
        for message in session.messages:
            lines.append(f"## {message.role.capitalize()}")
            lines.append("")
            if message.text.strip():
                lines.append(message.text.strip())
                lines.append("")
            for attachment in message.attachments:
                lines.append(f"- Attachment: {attachment.name} ({attachment.mime_type})")
            if message.attachments:
                lines.append("")
        return "\n".join(lines).strip() + "\n"

    def _greeting_message(self) -> Message:
        return Message(role="model", text=self.greeting)

    def _new_session(self) -> Session:
        session = Session(title=self.default_title, messages=[self._greeting_message()])
        while self.get(session.id) is not None:
            session = Session(
                title=self.default_title, messages=[self._greeting_message()]
            )
        return session

    def _index_of(self, session_id: str) -> int | None:
        for index, session in enumerate(self._sessions):
            if session.id == session_id:
                return index
        return None

    def _decode(self, raw: str) -> SessionDocument:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceFormatError(f"Session payload is not JSON: {exc}") from exc
        # Accept a bare list of sessions as well as the full document.
        if isinstance(payload, list):
            payload = {"sessions": payload}
        if not isinstance(payload, dict):
            raise PersistenceFormatError("Session payload is invalid.")
        try:
            return SessionDocument.model_validate(payload)
        except ValidationError as exc:
            raise PersistenceFormatError(f"Session payload is invalid: {exc}") from exc

    def _load(self) -> None:
        document: SessionDocument | None = None
        try:
            raw = self.storage.read(self.storage_key)
            if raw is not None:
                document = self._decode(raw)
        except (PersistenceError, OSError) as exc:
            LOGGER.warning(
                "session.load_failed",
                extra={"event": "session.load_failed", "reason": str(exc)},
            )
            document = None

        sessions: list[Session] = []
        seen: set[str] = set()
        for session in document.sessions if document else []:
            if session.id in seen:
                continue
            seen.add(session.id)
            sessions.append(session)

        if not sessions:
            # Bootstrap directly so an unreadable store is not overwritten
            # until the first real mutation.
            session = self._new_session()
            self._sessions = [session]
            self._current_id = session.id
            return

        self._sessions = sessions
        current = document.current_session_id if document else None
        self._current_id = current if current in seen else sessions[0].id
        LOGGER.info(
            "session.loaded",
            extra={"event": "session.loaded", "count": len(sessions)},
        )

    def dump(self) -> str:
        """Serialize the full session list and pointer."""
        document = SessionDocument(
            current_session_id=self._current_id, sessions=self._sessions
        )
        return document.model_dump_json()

    def _save(self) -> None:
        try:
            self.storage.write(self.storage_key, self.dump())
        except (PersistenceError, OSError) as exc:
            LOGGER.warning(
                "storage.write_failed",
                extra={"event": "storage.write_failed", "reason": str(exc)},
            )
