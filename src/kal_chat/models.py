"""Conversation data model: attachments, messages, and sessions."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "model"]

IMAGE_MIME_PREFIX = "image/"


def is_image_mime(mime_type: str) -> bool:
    """Return True when the MIME type denotes an image."""
    return mime_type.strip().lower().startswith(IMAGE_MIME_PREFIX)


def data_uri(mime_type: str, data: str) -> str:
    """Build a self-contained ``data:`` URI from a MIME type and base64 payload."""
    return f"data:{mime_type};base64,{data}"


def new_session_id() -> str:
    """Return a time-ordered identifier that is never reused."""
    now = datetime.now(UTC)
    return f"{now.strftime('%Y%m%d-%H%M%S%f')}-{uuid4().hex[:8]}"


class Attachment(BaseModel):
    """A resolved file payload attached to a message."""

    model_config = ConfigDict(frozen=True)

    name: str
    mime_type: str
    data: str = Field(min_length=1)
    preview: str | None = None

    @property
    def is_image(self) -> bool:
        return is_image_mime(self.mime_type)


class Message(BaseModel):
    """A single user or model turn."""

    role: Role
    text: str = ""
    attachments: list[Attachment] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when the message carries neither text nor attachments."""
        return not self.text.strip() and not self.attachments


class Session(BaseModel):
    """An independent, titled conversation."""

    id: str = Field(default_factory=new_session_id)
    title: str = "New Chat"
    messages: list[Message] = Field(default_factory=list)
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Session id must not be empty.")
        return value


class SessionDocument(BaseModel):
    """Durable representation of the whole session list."""

    current_session_id: str | None = None
    sessions: list[Session] = Field(default_factory=list)
