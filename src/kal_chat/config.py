"""Configuration loading and validation for the KAL chat client."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
import re
import tomllib
from typing import Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ConfigValidationError

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "kal-chat"
CONFIG_PATH = CONFIG_DIR / "config.toml"

VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
STORAGE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

DEFAULT_GREETING = (
    "ආයුබෝවන්! මම KAL AI Assistant. මට රූප, PDF සහ Excel ගොනු කියවන්න "
    "පුළුවන්. ඔබට උදව් කරන්නේ කොහොමද?"
)
DEFAULT_FALLBACK_REPLY = (
    "මම එම ගොනු පරීක්ෂා කළා. මට ඔබට උදව් කළ හැකි වෙනත් යමක් තිබේද?"
)
DEFAULT_APOLOGY_REPLY = (
    "සමාවෙන්න, ගොනුව පරීක්ෂා කිරීමේදී දෝෂයක් සිදු වුණා. "
    "කරුණාකර නැවත උත්සාහ කරන්න."
)
DEFAULT_QUICK_ACTIONS: dict[str, str] = {
    "image-vision": "මෙම රූපය විස්තර කරන්න.",
    "pdf-analysis": "මෙම PDF එකේ සාරාංශයක් ලබා දෙන්න.",
    "excel-insights": "මෙම දත්ත විග්‍රහ කර වැදගත් කරුණු පෙන්වන්න.",
    "photo-editing": "මෙම රූපය මෙලෙස වෙනස් කරන්න: ",
}


def _required_string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Expected a string value.")
    normalized = value.strip()
    if not normalized:
        raise ValueError("String value must not be empty.")
    return normalized


class AppConfig(BaseModel):
    """Application metadata."""

    title: str = "KAL AI Assistant"

    @field_validator("title", mode="before")
    @classmethod
    def _validate_title(cls, value: Any) -> str:
        return _required_string(value)


class GenerationConfig(BaseModel):
    """Generation service endpoint and model variant settings."""

    host: str = "http://localhost:11434"
    general_model: str = "gemma3"
    image_edit_model: str = "gemma3"
    timeout_seconds: float = Field(default=120.0, gt=0, le=3600)
    edit_keywords: list[str] = Field(
        default_factory=lambda: ["edit", "වෙනස්", "change"]
    )
    default_prompt: str = "Describe this file."
    include_history: bool = False
    max_history_messages: int = Field(default=20, ge=0, le=10_000)

    @field_validator(
        "host", "general_model", "image_edit_model", "default_prompt", mode="before"
    )
    @classmethod
    def _validate_required_string(cls, value: Any) -> str:
        return _required_string(value)

    @field_validator("edit_keywords", mode="before")
    @classmethod
    def _validate_keywords(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            raise ValueError("edit_keywords must be a list of strings.")
        keywords: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError("edit_keywords entries must be strings.")
            candidate = item.strip().lower()
            if candidate and candidate not in keywords:
                keywords.append(candidate)
        return keywords


class SecurityConfig(BaseModel):
    """Security policy for remote host access."""

    allow_remote_hosts: bool = False
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "::1"]

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _validate_allowed_hosts(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            raise ValueError("allowed_hosts must be a list.")
        normalized_hosts = [
            item.strip().lower()
            for item in value
            if isinstance(item, str) and item.strip()
        ]
        if not normalized_hosts:
            raise ValueError("allowed_hosts must contain at least one host.")
        return normalized_hosts


class PersistenceConfig(BaseModel):
    """Session persistence settings."""

    enabled: bool = True
    directory: str = "~/.local/state/kal-chat"
    storage_key: str = "kal_chat_sessions"

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_directory(cls, value: Any) -> str:
        return _required_string(value)

    @field_validator("storage_key", mode="before")
    @classmethod
    def _validate_storage_key(cls, value: Any) -> str:
        normalized = _required_string(value)
        if not STORAGE_KEY_PATTERN.match(normalized):
            raise ValueError(
                "storage_key may only contain letters, digits, '.', '_' and '-'."
            )
        return normalized


class AttachmentsConfig(BaseModel):
    """Limits applied when encoding attachments."""

    max_bytes: int = Field(default=20 * 1024 * 1024, ge=1, le=512 * 1024 * 1024)


class ConversationConfig(BaseModel):
    """Localized conversation strings and title policy."""

    greeting: str = DEFAULT_GREETING
    new_chat_title: str = "New Chat"
    title_max_length: int = Field(default=20, ge=1, le=200)
    fallback_reply: str = DEFAULT_FALLBACK_REPLY
    apology_reply: str = DEFAULT_APOLOGY_REPLY
    generated_attachment_name: str = "Generated Image"

    @field_validator(
        "greeting",
        "new_chat_title",
        "fallback_reply",
        "apology_reply",
        "generated_attachment_name",
        mode="before",
    )
    @classmethod
    def _validate_text(cls, value: Any) -> str:
        return _required_string(value)


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = "~/.local/state/kal-chat/app.log"

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("log_file_path must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("log_file_path must not be empty.")
        return normalized


class Config(BaseModel):
    """Root configuration model for all sections."""

    model_config = ConfigDict(populate_by_name=True)
    app: AppConfig = AppConfig()
    generation: GenerationConfig = GenerationConfig()
    security: SecurityConfig = SecurityConfig()
    persistence: PersistenceConfig = PersistenceConfig()
    attachments: AttachmentsConfig = AttachmentsConfig()
    conversation: ConversationConfig = ConversationConfig()
    quick_actions: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_QUICK_ACTIONS)
    )
    logging: LoggingConfig = LoggingConfig()

    @field_validator("quick_actions", mode="before")
    @classmethod
    def _validate_quick_actions(cls, value: Any) -> dict[str, str]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("quick_actions must be a table of name -> prompt.")
        actions: dict[str, str] = {}
        for key, prompt in value.items():
            if not isinstance(key, str) or not key.strip():
                raise ValueError("quick_actions keys must be non-empty strings.")
            if not isinstance(prompt, str):
                raise ValueError("quick_actions values must be strings.")
            actions[key.strip().lower()] = prompt
        return actions

    @model_validator(mode="after")
    def _validate_security_policy(self) -> Config:
        parsed = urlparse(self.generation.host)
        scheme = parsed.scheme.lower()
        hostname = (parsed.hostname or "").strip().lower()

        if scheme not in {"http", "https"}:
            raise ValueError("generation.host must use http or https scheme.")
        if not hostname:
            raise ValueError("generation.host must include a hostname.")
        if not self.security.allow_remote_hosts and hostname not in set(
            self.security.allowed_hosts
        ):
            raise ValueError(
                "generation.host is not in security.allowed_hosts while allow_remote_hosts is false."
            )
        return self


DEFAULT_CONFIG: dict[str, Any] = Config().model_dump()


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key == "quick_actions":
            # A user table replaces the presets instead of extending them.
            merged[key] = value
        elif key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _enforce_private_permissions(path: Path) -> None:
    """Best-effort enforcement of private file permissions on POSIX systems."""
    if os.name != "posix" or not path.exists():
        return
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)


def _safe_default_config() -> dict[str, Any]:
    """Return a deep copy of validated default config data."""
    return deepcopy(DEFAULT_CONFIG)


def _validate_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Validate merged config and fallback to safe defaults when possible."""
    try:
        config = Config.model_validate(raw)
        return config.model_dump()
    except ValidationError as exc:
        LOGGER.warning("Configuration validation failed, using safe defaults: %s", exc)
        return _safe_default_config()
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load configuration from TOML, merge with defaults, and validate.

    The optional ``config_path`` argument is intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        _enforce_private_permissions(target_path)
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (
            Exception
        ) as exc:  # noqa: BLE001 - we must not crash on invalid user config.
            LOGGER.warning("Failed to parse config at %s: %s", target_path, exc)
            raw_data = {}

    merged = (
        _deep_merge(DEFAULT_CONFIG, raw_data)
        if isinstance(raw_data, dict)
        else _safe_default_config()
    )
    return _validate_config(merged)
