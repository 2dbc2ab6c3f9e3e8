"""Top-level package for kal-chat."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .attachments import FileHandle, PendingAttachments, encode_attachment
    from .client import GenerationResponse, MediaPart, OllamaGenerationClient
    from .config import ensure_config_dir, load_config
    from .controller import ConversationController, ConversationView
    from .exceptions import (
        AttachmentReadError,
        ConfigValidationError,
        GenerationConnectionError,
        GenerationModelNotFoundError,
        GenerationServiceError,
        GenerationTimeoutError,
        KalChatError,
        PersistenceError,
        PersistenceFormatError,
    )
    from .models import Attachment, Message, Session
    from .request_builder import (
        GenerationRequest,
        ModelVariant,
        RequestBuilder,
        select_model_variant,
    )
    from .response_interpreter import ResponseInterpreter
    from .session_store import SessionStore
    from .state import StateManager, TurnState
    from .storage import FileKeyValueStore, MemoryKeyValueStore

_EXPORTS: dict[str, str] = {
    "FileHandle": ".attachments",
    "PendingAttachments": ".attachments",
    "encode_attachment": ".attachments",
    "GenerationResponse": ".client",
    "MediaPart": ".client",
    "OllamaGenerationClient": ".client",
    "ensure_config_dir": ".config",
    "load_config": ".config",
    "ConversationController": ".controller",
    "ConversationView": ".controller",
    "AttachmentReadError": ".exceptions",
    "ConfigValidationError": ".exceptions",
    "GenerationConnectionError": ".exceptions",
    "GenerationModelNotFoundError": ".exceptions",
    "GenerationServiceError": ".exceptions",
    "GenerationTimeoutError": ".exceptions",
    "KalChatError": ".exceptions",
    "PersistenceError": ".exceptions",
    "PersistenceFormatError": ".exceptions",
    "Attachment": ".models",
    "Message": ".models",
    "Session": ".models",
    "GenerationRequest": ".request_builder",
    "ModelVariant": ".request_builder",
    "RequestBuilder": ".request_builder",
    "select_model_variant": ".request_builder",
    "ResponseInterpreter": ".response_interpreter",
    "SessionStore": ".session_store",
    "StateManager": ".state",
    "TurnState": ".state",
    "FileKeyValueStore": ".storage",
    "MemoryKeyValueStore": ".storage",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import symbols so importing the package stays cheap."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    return getattr(import_module(module_name, __name__), name)
