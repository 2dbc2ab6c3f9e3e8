"""Tests for the conversation data model."""

from __future__ import annotations

import unittest

from pydantic import ValidationError

from kal_chat.models import (
    Attachment,
    Message,
    Session,
    SessionDocument,
    data_uri,
    is_image_mime,
    new_session_id,
)


class ModelTests(unittest.TestCase):
    """Validate model defaults and helpers."""

    def test_is_image_mime(self) -> None:
        self.assertTrue(is_image_mime("image/png"))
        self.assertTrue(is_image_mime(" Image/JPEG "))
        self.assertFalse(is_image_mime("application/pdf"))

    def test_data_uri(self) -> None:
        self.assertEqual(data_uri("image/png", "AAAA"), "data:image/png;base64,AAAA")

    def test_session_ids_are_unique(self) -> None:
        ids = {new_session_id() for _ in range(200)}
        self.assertEqual(len(ids), 200)

    def test_session_defaults(self) -> None:
        session = Session()
        self.assertEqual(session.title, "New Chat")
        self.assertEqual(session.messages, [])
        self.assertTrue(session.id)
        self.assertTrue(session.created_at)

    def test_blank_session_id_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            Session(id="  ")

    def test_attachment_requires_data(self) -> None:
        with self.assertRaises(ValidationError):
            Attachment(name="a.png", mime_type="image/png", data="")

    def test_attachment_is_immutable(self) -> None:
        attachment = Attachment(name="a.png", mime_type="image/png", data="AAAA")
        with self.assertRaises(ValidationError):
            attachment.name = "b.png"
        self.assertTrue(attachment.is_image)

    def test_message_is_empty(self) -> None:
        self.assertTrue(Message(role="user", text="   ").is_empty)
        self.assertFalse(Message(role="user", text="hi").is_empty)
        attachment = Attachment(name="a.pdf", mime_type="application/pdf", data="AAAA")
        self.assertFalse(Message(role="user", attachments=[attachment]).is_empty)

    def test_message_role_is_restricted(self) -> None:
        with self.assertRaises(ValidationError):
            Message(role="system", text="nope")

    def test_document_round_trip(self) -> None:
        session = Session(
            title="Chat",
            messages=[
                Message(role="model", text="hello"),
                Message(
                    role="user",
                    text="look",
                    attachments=[
                        Attachment(
                            name="a.png",
                            mime_type="image/png",
                            data="AAAA",
                            preview="data:image/png;base64,AAAA",
                        )
                    ],
                ),
            ],
        )
        document = SessionDocument(current_session_id=session.id, sessions=[session])
        restored = SessionDocument.model_validate_json(document.model_dump_json())
        self.assertEqual(restored, document)


if __name__ == "__main__":
    unittest.main()
