"""Durable key/value stores used to persist session state."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from .exceptions import PersistenceError

LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Durable key to string store."""

    def read(self, key: str) -> str | None: ...

    def write(self, key: str, value: str) -> None: ...


class MemoryKeyValueStore:
    """In-process store for tests and disabled persistence."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})
        self.writes = 0

    def read(self, key: str) -> str | None:
        return self.values.get(key)

    def write(self, key: str, value: str) -> None:
        self.values[key] = value
        self.writes += 1


class FileKeyValueStore:
    """Keep one private JSON document per key inside a state directory."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        """Set POSIX permissions on a file or directory; silently ignores failures."""
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError:
            pass

    def _ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._enforce_permissions(self.directory, 0o700)

    def path_for(self, key: str) -> Path:
        """Return the file that backs ``key``."""
        if not key or "/" in key or "\\" in key or key in {".", ".."}:
            raise PersistenceError(f"Invalid storage key {key!r}.")
        return self.directory / f"{key}.json"

    def read(self, key: str) -> str | None:
        target = self.path_for(key)
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Unable to read {target}: {exc}") from exc

    def write(self, key: str, value: str) -> None:
        target = self.path_for(key)
        # Write to a sibling file first so a crash never leaves a torn document.
        staging = target.with_name(f".{target.name}.{uuid4().hex[:8]}.tmp")
        try:
            self._ensure_directory()
            staging.write_text(value, encoding="utf-8")
            self._enforce_permissions(staging)
            os.replace(staging, target)
        except OSError as exc:
            try:
                staging.unlink(missing_ok=True)
            except OSError:
                pass
            raise PersistenceError(f"Unable to write {target}: {exc}") from exc
        LOGGER.debug(
            "storage.write",
            extra={"event": "storage.write", "key": key, "bytes": len(value)},
        )
