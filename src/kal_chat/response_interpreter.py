"""Decode generation service responses into model messages."""

from __future__ import annotations

from typing import Any

from .exceptions import GenerationServiceError
from .models import Attachment, Message, data_uri

DEFAULT_ATTACHMENT_NAME = "Generated Image"


def _field(payload: Any, *names: str) -> Any:
    """Return the first present field from an object or mapping."""
    for name in names:
        if isinstance(payload, dict):
            if name in payload and payload[name] is not None:
                return payload[name]
        else:
            value = getattr(payload, name, None)
            if value is not None:
                return value
    return None


def _as_mapping(payload: Any) -> Any:
    """Normalise Pydantic-style SDK objects to plain dicts when possible."""
    if isinstance(payload, dict):
        return payload
    if hasattr(payload, "model_dump"):
        try:
            return payload.model_dump()
        except (TypeError, ValueError) as exc:
            raise GenerationServiceError(
                f"Response could not be serialized: {exc}"
            ) from exc
    return payload


class ResponseInterpreter:
    """Extract text and generated media from a model response."""

    def __init__(
        self,
        fallback_text: str,
        apology_text: str,
        *,
        attachment_name: str = DEFAULT_ATTACHMENT_NAME,
    ) -> None:
        self.fallback_text = fallback_text
        self.apology_text = apology_text
        self.attachment_name = attachment_name

    def interpret(self, response: Any) -> Message:
        """Build the model message for ``response``.

        Raises:
            GenerationServiceError: the response is missing or malformed.
        """
        if response is None:
            raise GenerationServiceError("Generation service returned no response.")
        payload = _as_mapping(response)

        text = _field(payload, "text")
        if text is None:
            text = ""
        if not isinstance(text, str):
            raise GenerationServiceError(
                f"Response text has unexpected type {type(text).__name__}."
            )

        attachments = [
            self._media_attachment(mime_type, data)
            for mime_type, data in self._inline_parts(payload)
        ]

        if not text.strip() and not attachments:
            text = self.fallback_text
        return Message(role="model", text=text, attachments=attachments)

    def failure_message(self) -> Message:
        """Return the fixed apology shown when a turn fails."""
        return Message(role="model", text=self.apology_text)

    def _media_attachment(self, mime_type: str, data: str) -> Attachment:
        return Attachment(
            name=self.attachment_name,
            mime_type=mime_type,
            data=data,
            preview=data_uri(mime_type, data),
        )

    @staticmethod
    def _structured_parts(payload: Any) -> list[Any]:
        parts = _field(payload, "parts", "structured_parts", "structuredParts")
        if parts is None:
            # SDK shape: candidates[0].content.parts
            candidates = _field(payload, "candidates")
            if isinstance(candidates, list) and candidates:
                content = _field(candidates[0], "content")
                parts = _field(content, "parts") if content is not None else None
        if parts is None:
            return []
        if not isinstance(parts, list):
            raise GenerationServiceError("Response parts must be a list.")
        return parts

    @classmethod
    def _inline_parts(cls, payload: Any) -> list[tuple[str, str]]:
        found: list[tuple[str, str]] = []
        for part in cls._structured_parts(payload):
            inline = _field(part, "inline_data", "inlineData")
            source = inline if inline is not None else part
            mime_type = _field(source, "mime_type", "mimeType")
            data = _field(source, "data")
            if mime_type is None and data is None:
                # Text-only part.
                continue
            if not isinstance(mime_type, str) or not isinstance(data, str) or not data:
                raise GenerationServiceError("Inline media part is malformed.")
            found.append((mime_type, data))
        return found
