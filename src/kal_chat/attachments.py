"""Attachment encoding and the pending-attachment collection.

Files are read off the event loop and encoded as base64 text so they can
travel inside a JSON request. Several files can be read at once; each one
joins the pending collection as soon as its own read completes.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Iterable
from dataclasses import dataclass
import logging
import mimetypes
from pathlib import Path
from typing import BinaryIO

from .events import ATTACHMENT_ADDED, ATTACHMENT_FAILED, EventBus
from .exceptions import AttachmentReadError
from .models import Attachment, data_uri, is_image_mime
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 20 * 1024 * 1024
FALLBACK_MIME_TYPE = "application/octet-stream"

# Types that mimetypes does not know on every platform.
_EXTRA_MIME_TYPES = {
    ".webp": "image/webp",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".csv": "text/csv",
    ".md": "text/markdown",
}


@dataclass(frozen=True)
class FileHandle:
    """A file chosen by the user: name, declared type, and its content."""

    name: str
    content: bytes | BinaryIO
    mime_type: str = ""


AttachmentSource = str | Path | FileHandle


def guess_mime_type(name: str) -> str:
    """Guess a MIME type from a file name."""
    suffix = Path(name).suffix.lower()
    if suffix in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[suffix]
    guessed, _encoding = mimetypes.guess_type(name)
    return guessed or FALLBACK_MIME_TYPE


def _read_path(path: Path, max_bytes: int) -> bytes:
    resolved = path.expanduser()
    if not resolved.exists():
        raise AttachmentReadError(f"File not found: {path}", name=path.name)
    if not resolved.is_file():
        raise AttachmentReadError(f"Not a file: {path}", name=path.name)
    size = resolved.stat().st_size
    if size > max_bytes:
        max_mb = max_bytes / (1024 * 1024)
        raise AttachmentReadError(
            f"File too large: {path.name} (max {max_mb:.1f}MB)", name=path.name
        )
    return resolved.read_bytes()


def _read_handle(handle: FileHandle, max_bytes: int) -> bytes:
    content = handle.content
    if isinstance(content, (bytes, bytearray)):
        raw = bytes(content)
    else:
        # Read one byte past the limit so oversize streams are detected.
        raw = content.read(max_bytes + 1)
        if not isinstance(raw, (bytes, bytearray)):
            raise AttachmentReadError(
                f"Stream for {handle.name} did not yield bytes.", name=handle.name
            )
        raw = bytes(raw)
    if len(raw) > max_bytes:
        max_mb = max_bytes / (1024 * 1024)
        raise AttachmentReadError(
            f"File too large: {handle.name} (max {max_mb:.1f}MB)", name=handle.name
        )
    return raw


def source_name(source: AttachmentSource) -> str:
    """Return the display name of an attachment source."""
    if isinstance(source, FileHandle):
        return source.name
    return Path(source).name


def build_attachment(name: str, mime_type: str, raw: bytes) -> Attachment:
    """Encode raw bytes into an Attachment, computing the image preview once."""
    if not raw:
        raise AttachmentReadError(f"File is empty: {name}", name=name)
    data = base64.b64encode(raw).decode("ascii")
    preview = data_uri(mime_type, data) if is_image_mime(mime_type) else None
    return Attachment(name=name, mime_type=mime_type, data=data, preview=preview)


async def encode_attachment(
    source: AttachmentSource,
    *,
    name: str | None = None,
    mime_type: str | None = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> Attachment:
    """Read and encode one file without blocking the event loop.

    Raises:
        AttachmentReadError: the file is missing, unreadable, empty or too large.
    """
    display_name = name or source_name(source)
    declared = mime_type or (source.mime_type if isinstance(source, FileHandle) else "")
    resolved_mime = declared.strip() or guess_mime_type(display_name)

    try:
        if isinstance(source, FileHandle):
            raw = await asyncio.to_thread(_read_handle, source, max_bytes)
        else:
            raw = await asyncio.to_thread(_read_path, Path(source), max_bytes)
    except AttachmentReadError:
        raise
    except (OSError, ValueError) as exc:
        raise AttachmentReadError(
            f"Unable to read {display_name}: {exc}", name=display_name
        ) from exc

    return build_attachment(display_name, resolved_mime, raw)


class PendingAttachments:
    """Attachments waiting for the next send.

    ``attach`` starts one read per file and returns immediately. Each read
    appends its result when it finishes, so the collection is ordered by
    completion, not by selection. A failed read is logged and published as
    an ``attachment.failed`` event; it never joins the collection.
    """

    def __init__(
        self,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        events: EventBus | None = None,
        tasks: TaskManager | None = None,
    ) -> None:
        self.max_bytes = max_bytes
        self.events = events or EventBus()
        self.tasks = tasks or TaskManager()
        self._items: list[Attachment] = []

    def __len__(self) -> int:
        return len(self._items)

    @property
    def in_flight(self) -> int:
        """Number of reads that have not completed yet."""
        return self.tasks.pending

    def snapshot(self) -> list[Attachment]:
        """Return the resolved attachments in append order."""
        return list(self._items)

    def take(self) -> list[Attachment]:
        """Return the resolved attachments and empty the collection."""
        items = self._items
        self._items = []
        return items

    def add(self, attachment: Attachment) -> None:
        """Append an already resolved attachment."""
        self._items.append(attachment)

    def remove(self, index: int) -> Attachment | None:
        """Remove the attachment at ``index``; out-of-range is a no-op."""
        if 0 <= index < len(self._items):
            return self._items.pop(index)
        return None

    def clear(self) -> None:
        """Discard all resolved attachments."""
        self._items.clear()

    def attach(self, sources: Iterable[AttachmentSource]) -> list[asyncio.Task[None]]:
        """Start reading each source; must be called with a running loop."""
        started: list[asyncio.Task[None]] = []
        for source in sources:
            task = asyncio.create_task(self._encode_into(source))
            self.tasks.add(task)
            started.append(task)
        return started

    async def wait(self) -> None:
        """Wait until every outstanding read has completed."""
        while self.tasks.pending:
            await self.tasks.await_all()

    async def _encode_into(self, source: AttachmentSource) -> None:
        name = source_name(source)
        try:
            attachment = await encode_attachment(source, max_bytes=self.max_bytes)
        except AttachmentReadError as exc:
            LOGGER.warning(
                "attachment.read_failed",
                extra={
                    "event": "attachment.read_failed",
                    "attachment": name,
                    "reason": str(exc),
                },
            )
            await self.events.publish(
                ATTACHMENT_FAILED, {"name": name, "reason": str(exc)}
            )
            return

        self._items.append(attachment)
        LOGGER.info(
            "attachment.added",
            extra={
                "event": "attachment.added",
                "attachment": attachment.name,
                "mime_type": attachment.mime_type,
            },
        )
        await self.events.publish(
            ATTACHMENT_ADDED,
            {"name": attachment.name, "mime_type": attachment.mime_type},
        )
