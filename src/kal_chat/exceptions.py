"""Domain exception hierarchy for the KAL chat client."""

from __future__ import annotations


class KalChatError(RuntimeError):
    """Base class for all domain-level chat errors."""


class AttachmentReadError(KalChatError):
    """Raised when a selected file cannot be read or encoded."""

    def __init__(self, message: str, name: str = "") -> None:
        super().__init__(message)
        self.name = name


class GenerationServiceError(KalChatError):
    """Raised when the generation service fails or returns an unusable shape."""


class GenerationConnectionError(GenerationServiceError):
    """Raised when the generation host cannot be reached."""


class GenerationModelNotFoundError(GenerationServiceError):
    """Raised when the selected model is unavailable."""


class GenerationTimeoutError(GenerationServiceError):
    """Raised when a generation call exceeds its time budget."""


class PersistenceError(KalChatError):
    """Raised when durable session state cannot be read or written."""


class PersistenceFormatError(PersistenceError):
    """Raised when a persisted payload cannot be decoded safely."""


class ConfigValidationError(KalChatError):
    """Raised when configuration cannot be validated safely."""
