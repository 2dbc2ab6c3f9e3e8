"""Generation service collaborator and its Ollama-backed adapter."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
import logging
from typing import Any, Protocol

import httpx
from ollama import AsyncClient

from .exceptions import (
    GenerationConnectionError,
    GenerationModelNotFoundError,
    GenerationServiceError,
)
from .request_builder import GenerationRequest, RequestPart, Turn

LOGGER = logging.getLogger(__name__)

MAX_INLINE_FILE_CHARS = 4000

_TEXT_LIKE_MIME_TYPES = {
    "application/json",
    "application/xml",
    "application/csv",
    "application/x-yaml",
}

# Leading bytes of the image formats a model is likely to return.
_IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


@dataclass(frozen=True)
class MediaPart:
    """Inline media returned by the service."""

    mime_type: str
    data: str


@dataclass
class GenerationResponse:
    """Normalized service reply: primary text plus structured media parts."""

    text: str | None = None
    parts: list[MediaPart] = field(default_factory=list)


class GenerationClient(Protocol):
    """Anything that can answer a generation request."""

    async def generate(self, request: GenerationRequest) -> Any: ...


def sniff_image_mime(data: str) -> str:
    """Detect an image MIME type from base64 payload, defaulting to PNG."""
    try:
        head = base64.b64decode(data[:32], validate=False)
    except (binascii.Error, ValueError):
        return "image/png"
    if head.startswith(b"RIFF") and head[8:12] == b"WEBP":
        return "image/webp"
    for signature, mime_type in _IMAGE_SIGNATURES:
        if head.startswith(signature):
            return mime_type
    return "image/png"


def _is_text_like(mime_type: str) -> bool:
    lowered = mime_type.lower()
    return lowered.startswith("text/") or lowered in _TEXT_LIKE_MIME_TYPES


def _file_context(part: RequestPart) -> str:
    """Render a non-image file as prompt context."""
    name = part.name or "attachment"
    mime_type = part.mime_type or "application/octet-stream"
    try:
        raw = base64.b64decode(part.data or "", validate=False)
    except (binascii.Error, ValueError):
        raw = b""
    if _is_text_like(mime_type):
        snippet = raw.decode("utf-8", errors="ignore")
        if len(snippet) > MAX_INLINE_FILE_CHARS:
            snippet = snippet[:MAX_INLINE_FILE_CHARS] + "\n... [truncated]"
        return f"[File: {name}]\n{snippet}"
    return f"[File: {name} ({mime_type}, {len(raw)} bytes) attached]"


def _ollama_role(role: str) -> str:
    return "assistant" if role == "model" else role


def _to_ollama_message(role: str, parts: tuple[RequestPart, ...]) -> dict[str, Any]:
    texts: list[str] = []
    images: list[str] = []
    for part in parts:
        if part.is_inline:
            if (part.mime_type or "").lower().startswith("image/"):
                images.append(part.data or "")
            else:
                texts.append(_file_context(part))
        elif part.text:
            texts.append(part.text)
    message: dict[str, Any] = {"role": _ollama_role(role), "content": "\n\n".join(texts)}
    if images:
        message["images"] = images
    return message


def build_ollama_messages(request: GenerationRequest) -> list[dict[str, Any]]:
    """Flatten history plus the current turn into Ollama chat messages."""
    turns: list[Turn] = list(request.history)
    messages = [_to_ollama_message(turn.role, turn.parts) for turn in turns]
    messages.append(_to_ollama_message(request.role, request.parts))
    return messages


def _extract_message_field(response: Any, name: str) -> Any:
    """Read message.<name> from an SDK object or a dict payload."""
    message_obj = getattr(response, "message", None)
    if message_obj is not None and not isinstance(response, dict):
        value = getattr(message_obj, name, None)
        if value is not None:
            return value
    if hasattr(response, "model_dump"):
        try:
            response = response.model_dump()
        except (TypeError, ValueError) as exc:
            raise GenerationServiceError(
                f"Response could not be serialized: {exc}"
            ) from exc
    if isinstance(response, dict):
        message = response.get("message")
        if isinstance(message, dict):
            return message.get(name)
    return None


def _image_payload(image: Any) -> str | None:
    if isinstance(image, (bytes, bytearray)):
        return base64.b64encode(bytes(image)).decode("ascii")
    if isinstance(image, str) and image:
        return image
    value = getattr(image, "value", None)
    if isinstance(value, (str, bytes, bytearray)):
        return _image_payload(value)
    return None


class OllamaGenerationClient:
    """Send requests through the ``ollama`` async client.

    Each request is a single non-streaming chat call. Failures are mapped
    onto the domain exceptions; retrying is left to the user.
    """

    def __init__(
        self,
        host: str,
        timeout: float = 120.0,
        client: Any | None = None,
    ) -> None:
        self.host = host
        self.timeout = timeout
        self._client = (
            client if client is not None else AsyncClient(host=host, timeout=timeout)
        )

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        messages = build_ollama_messages(request)
        LOGGER.info(
            "generation.request",
            extra={
                "event": "generation.request",
                "model": request.model,
                "variant": request.variant.value,
                "parts": len(request.parts),
                "history": len(request.history),
            },
        )
        try:
            response = await self._client.chat(
                model=request.model, messages=messages, stream=False
            )
        except Exception as exc:  # noqa: BLE001 - external API can fail in many ways.
            raise self._map_exception(exc, request.model) from exc
        return self._normalize(response)

    async def check_connection(self) -> bool:
        """Return whether the generation host is reachable."""
        try:
            await self._client.list()
            return True
        except Exception as exc:  # noqa: BLE001 - any failure means unreachable.
            LOGGER.info(
                "generation.unreachable",
                extra={
                    "event": "generation.unreachable",
                    "host": self.host,
                    "error_type": type(exc).__name__,
                },
            )
            return False

    @staticmethod
    def _normalize(response: Any) -> GenerationResponse:
        content = _extract_message_field(response, "content")
        if content is not None and not isinstance(content, str):
            raise GenerationServiceError("Response content is not text.")
        images = _extract_message_field(response, "images") or []
        if not isinstance(images, list):
            raise GenerationServiceError("Response images must be a list.")
        parts: list[MediaPart] = []
        for image in images:
            payload = _image_payload(image)
            if payload:
                parts.append(MediaPart(mime_type=sniff_image_mime(payload), data=payload))
        return GenerationResponse(text=content, parts=parts)

    def _map_exception(self, exc: Exception, model: str) -> GenerationServiceError:
        if isinstance(exc, GenerationServiceError):
            return exc

        lower_message = str(exc).lower()

        if isinstance(
            exc,
            (
                httpx.ConnectError,
                httpx.ConnectTimeout,
                httpx.ReadTimeout,
                httpx.NetworkError,
                ConnectionError,
            ),
        ):
            return GenerationConnectionError(
                f"Unable to connect to generation host {self.host}."
            )

        if "model" in lower_message and "not found" in lower_message:
            return GenerationModelNotFoundError(
                f"Model {model!r} was not found on {self.host}."
            )
        if "404" in lower_message and "model" in lower_message:
            return GenerationModelNotFoundError(
                f"Model {model!r} was not found on {self.host}."
            )

        return GenerationServiceError(
            f"Generation request to {self.host} failed: {exc}"
        )
