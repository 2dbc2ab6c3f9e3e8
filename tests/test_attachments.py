"""Tests for attachment encoding and the pending collection."""

from __future__ import annotations

import asyncio
import base64
import io
import tempfile
from pathlib import Path
import unittest
from unittest.mock import patch

from kal_chat import attachments as attachments_module
from kal_chat.attachments import (
    FileHandle,
    PendingAttachments,
    encode_attachment,
    guess_mime_type,
)
from kal_chat.events import ATTACHMENT_ADDED, ATTACHMENT_FAILED, Event, EventBus
from kal_chat.exceptions import AttachmentReadError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class MimeGuessTests(unittest.TestCase):
    def test_known_extensions(self) -> None:
        self.assertEqual(guess_mime_type("photo.PNG"), "image/png")
        self.assertEqual(guess_mime_type("report.pdf"), "application/pdf")
        self.assertEqual(guess_mime_type("image.webp"), "image/webp")
        self.assertEqual(
            guess_mime_type("sheet.xlsx"),
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )

    def test_unknown_extension_falls_back(self) -> None:
        self.assertEqual(guess_mime_type("blob.zzz"), "application/octet-stream")


class EncodeAttachmentTests(unittest.IsolatedAsyncioTestCase):
    """Validate single-file encoding."""

    async def test_image_path_gets_preview(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "cat.png"
            path.write_bytes(PNG_BYTES)
            attachment = await encode_attachment(path)
        encoded = base64.b64encode(PNG_BYTES).decode("ascii")
        self.assertEqual(attachment.name, "cat.png")
        self.assertEqual(attachment.mime_type, "image/png")
        self.assertEqual(attachment.data, encoded)
        self.assertEqual(attachment.preview, f"data:image/png;base64,{encoded}")

    async def test_non_image_has_no_preview(self) -> None:
        handle = FileHandle("report.pdf", b"%PDF-1.4")
        attachment = await encode_attachment(handle)
        self.assertEqual(attachment.mime_type, "application/pdf")
        self.assertIsNone(attachment.preview)

    async def test_declared_mime_type_wins(self) -> None:
        handle = FileHandle("upload", io.BytesIO(PNG_BYTES), mime_type="image/png")
        attachment = await encode_attachment(handle)
        self.assertEqual(attachment.mime_type, "image/png")
        self.assertIsNotNone(attachment.preview)

    async def test_missing_file_raises(self) -> None:
        with self.assertRaises(AttachmentReadError) as ctx:
            await encode_attachment("/does/not/exist.pdf")
        self.assertEqual(ctx.exception.name, "exist.pdf")

    async def test_directory_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            with self.assertRaises(AttachmentReadError):
                await encode_attachment(temp_dir)

    async def test_empty_file_raises(self) -> None:
        with self.assertRaises(AttachmentReadError):
            await encode_attachment(FileHandle("empty.txt", b""))

    async def test_oversize_file_raises(self) -> None:
        with self.assertRaises(AttachmentReadError):
            await encode_attachment(FileHandle("big.bin", b"x" * 11), max_bytes=10)
        with self.assertRaises(AttachmentReadError):
            await encode_attachment(
                FileHandle("big.bin", io.BytesIO(b"x" * 11)), max_bytes=10
            )

    async def test_os_error_is_mapped(self) -> None:
        class BrokenStream(io.RawIOBase):
            def read(self, size: int = -1) -> bytes:
                raise OSError("device unplugged")

        with self.assertRaises(AttachmentReadError) as ctx:
            await encode_attachment(FileHandle("usb.png", BrokenStream()))
        self.assertIn("device unplugged", str(ctx.exception))


class PendingAttachmentsTests(unittest.IsolatedAsyncioTestCase):
    """Validate concurrent reads into the pending collection."""

    async def test_attach_reads_all_files(self) -> None:
        pending = PendingAttachments()
        pending.attach(
            [FileHandle("a.png", PNG_BYTES), FileHandle("b.pdf", b"%PDF")]
        )
        await pending.wait()
        self.assertEqual(sorted(a.name for a in pending.snapshot()), ["a.png", "b.pdf"])
        self.assertEqual(pending.in_flight, 0)

    async def test_results_append_in_completion_order(self) -> None:
        pending = PendingAttachments()
        release_slow = asyncio.Event()
        original = attachments_module.encode_attachment

        async def controlled(source, **kwargs):
            if source.name == "slow.png":
                await release_slow.wait()
            return await original(source, **kwargs)

        with patch.object(attachments_module, "encode_attachment", controlled):
            pending.attach(
                [FileHandle("slow.png", PNG_BYTES), FileHandle("fast.pdf", b"%PDF")]
            )
            while len(pending) < 1:
                await asyncio.sleep(0.001)
            self.assertEqual([a.name for a in pending.snapshot()], ["fast.pdf"])
            release_slow.set()
            await pending.wait()

        self.assertEqual(
            [a.name for a in pending.snapshot()], ["fast.pdf", "slow.png"]
        )

    async def test_failed_read_publishes_event(self) -> None:
        bus = EventBus()
        failures: list[Event] = []
        added: list[Event] = []
        bus.subscribe(ATTACHMENT_FAILED, failures.append)
        bus.subscribe(ATTACHMENT_ADDED, added.append)
        pending = PendingAttachments(events=bus)

        with self.assertLogs("kal_chat.attachments", level="WARNING") as logs:
            pending.attach(["/does/not/exist.png", FileHandle("ok.pdf", b"%PDF")])
            await pending.wait()

        self.assertEqual([a.name for a in pending.snapshot()], ["ok.pdf"])
        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0].data["name"], "exist.png")
        self.assertIn("File not found", failures[0].data["reason"])
        self.assertEqual([e.data["name"] for e in added], ["ok.pdf"])
        self.assertTrue(any("attachment.read_failed" in line for line in logs.output))

    async def test_remove_and_take(self) -> None:
        pending = PendingAttachments()
        pending.attach([FileHandle("a.pdf", b"1")])
        await pending.wait()
        pending.attach([FileHandle("b.pdf", b"2")])
        await pending.wait()

        self.assertIsNone(pending.remove(5))
        removed = pending.remove(0)
        self.assertIsNotNone(removed)
        self.assertEqual(removed.name, "a.pdf")
        taken = pending.take()
        self.assertEqual([a.name for a in taken], ["b.pdf"])
        self.assertEqual(len(pending), 0)

    async def test_clear(self) -> None:
        pending = PendingAttachments()
        pending.attach([FileHandle("a.pdf", b"1")])
        await pending.wait()
        pending.clear()
        self.assertEqual(pending.snapshot(), [])


if __name__ == "__main__":
    unittest.main()
