"""Turn a pending user turn into a generation request."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .models import Attachment, Message, is_image_mime

DEFAULT_EDIT_KEYWORDS: tuple[str, ...] = ("edit", "වෙනස්", "change")
DEFAULT_PROMPT = "Describe this file."


class ModelVariant(str, Enum):
    """Capability profile requested from the generation service."""

    GENERAL = "general"
    IMAGE_EDIT = "image_edit"


@dataclass(frozen=True)
class RequestPart:
    """Either a text part or an inline data part."""

    text: str | None = None
    mime_type: str | None = None
    data: str | None = None
    name: str = ""

    @property
    def is_inline(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class Turn:
    """A prior conversation turn replayed as context."""

    role: str
    parts: tuple[RequestPart, ...]


@dataclass(frozen=True)
class GenerationRequest:
    """Everything the generation service needs for one turn."""

    model: str
    variant: ModelVariant
    parts: tuple[RequestPart, ...]
    role: str = "user"
    history: tuple[Turn, ...] = field(default_factory=tuple)


def select_model_variant(
    text: str,
    mime_types: Iterable[str],
    keywords: Iterable[str] = DEFAULT_EDIT_KEYWORDS,
) -> ModelVariant:
    """Pick IMAGE_EDIT when an image is attached and the text asks for an edit.

    Keywords match as case-insensitive substrings.
    """
    if not any(is_image_mime(mime_type) for mime_type in mime_types):
        return ModelVariant.GENERAL
    lowered = text.lower()
    for keyword in keywords:
        candidate = keyword.strip().lower()
        if candidate and candidate in lowered:
            return ModelVariant.IMAGE_EDIT
    return ModelVariant.GENERAL


def _attachment_part(attachment: Attachment) -> RequestPart:
    return RequestPart(
        mime_type=attachment.mime_type, data=attachment.data, name=attachment.name
    )


def _message_parts(message: Message) -> tuple[RequestPart, ...]:
    parts: list[RequestPart] = []
    if message.text.strip():
        parts.append(RequestPart(text=message.text))
    parts.extend(_attachment_part(attachment) for attachment in message.attachments)
    return tuple(parts)


class RequestBuilder:
    """Build generation requests and choose the model for each turn."""

    def __init__(
        self,
        general_model: str,
        image_edit_model: str,
        *,
        edit_keywords: Iterable[str] = DEFAULT_EDIT_KEYWORDS,
        default_prompt: str = DEFAULT_PROMPT,
        include_history: bool = False,
        max_history_messages: int = 20,
    ) -> None:
        self.models = {
            ModelVariant.GENERAL: general_model,
            ModelVariant.IMAGE_EDIT: image_edit_model,
        }
        self.edit_keywords = tuple(edit_keywords)
        self.default_prompt = default_prompt
        self.include_history = include_history
        self.max_history_messages = max(0, max_history_messages)

    def select_variant(self, text: str, attachments: Sequence[Attachment]) -> ModelVariant:
        return select_model_variant(
            text, (a.mime_type for a in attachments), self.edit_keywords
        )

    def build(
        self,
        text: str,
        attachments: Sequence[Attachment],
        history: Sequence[Message] = (),
    ) -> GenerationRequest:
        """Build the request for one user turn.

        ``history`` holds the earlier messages of the session in
        chronological order; it is only replayed when history is enabled.
        """
        prompt = text
        if not text.strip() and attachments:
            prompt = self.default_prompt

        parts = [RequestPart(text=prompt)]
        parts.extend(_attachment_part(attachment) for attachment in attachments)

        variant = self.select_variant(text, attachments)
        return GenerationRequest(
            model=self.models[variant],
            variant=variant,
            parts=tuple(parts),
            history=self._history(history),
        )

    def _history(self, messages: Sequence[Message]) -> tuple[Turn, ...]:
        if not self.include_history or self.max_history_messages == 0:
            return ()
        turns: list[Turn] = []
        for message in messages[-self.max_history_messages :]:
            parts = _message_parts(message)
            if parts:
                turns.append(Turn(role=message.role, parts=parts))
        return tuple(turns)
