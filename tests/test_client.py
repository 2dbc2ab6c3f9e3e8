"""Tests for the Ollama-backed generation client adapter."""

from __future__ import annotations

import base64
from typing import Any
import unittest

import httpx

from kal_chat.client import (
    GenerationResponse,
    OllamaGenerationClient,
    build_ollama_messages,
    sniff_image_mime,
)
from kal_chat.exceptions import (
    GenerationConnectionError,
    GenerationModelNotFoundError,
    GenerationServiceError,
)
from kal_chat.models import Attachment, Message
from kal_chat.request_builder import RequestBuilder

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x00" * 24).decode("ascii")
JPEG_B64 = base64.b64encode(b"\xff\xd8\xff\xe0" + b"\x00" * 24).decode("ascii")


class FakeChatClient:
    """Records chat() calls and replays a canned response or error."""

    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def chat(self, model: str, messages: list[dict[str, Any]], stream: bool) -> Any:
        self.calls.append({"model": model, "messages": messages, "stream": stream})
        if self.error is not None:
            raise self.error
        return self.response

    async def list(self) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        return {"models": []}


def _builder(**kwargs: Any) -> RequestBuilder:
    return RequestBuilder("general-model", "edit-model", **kwargs)


class MessageMappingTests(unittest.TestCase):
    """Validate how requests flatten into chat messages."""

    def test_images_go_to_images_field(self) -> None:
        image = Attachment(name="cat.png", mime_type="image/png", data=PNG_B64)
        request = _builder().build("What is this?", [image])
        messages = build_ollama_messages(request)
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["role"], "user")
        self.assertEqual(messages[0]["content"], "What is this?")
        self.assertEqual(messages[0]["images"], [PNG_B64])

    def test_text_files_are_inlined(self) -> None:
        data = base64.b64encode(b"col1,col2\n1,2").decode("ascii")
        sheet = Attachment(name="data.csv", mime_type="text/csv", data=data)
        request = _builder().build("Summarize", [sheet])
        content = build_ollama_messages(request)[0]["content"]
        self.assertIn("Summarize", content)
        self.assertIn("[File: data.csv]\ncol1,col2\n1,2", content)
        self.assertNotIn("images", build_ollama_messages(request)[0])

    def test_binary_files_are_described(self) -> None:
        data = base64.b64encode(b"%PDF-1.7 binary").decode("ascii")
        pdf = Attachment(name="doc.pdf", mime_type="application/pdf", data=data)
        content = build_ollama_messages(_builder().build("Read", [pdf]))[0]["content"]
        self.assertIn("[File: doc.pdf (application/pdf, 15 bytes) attached]", content)

    def test_history_roles_are_mapped(self) -> None:
        history = [Message(role="model", text="Hi"), Message(role="user", text="Q")]
        request = _builder(include_history=True).build("next", [], history)
        messages = build_ollama_messages(request)
        self.assertEqual(
            [m["role"] for m in messages], ["assistant", "user", "user"]
        )
        self.assertEqual(messages[-1]["content"], "next")


class SniffTests(unittest.TestCase):
    def test_detects_common_formats(self) -> None:
        self.assertEqual(sniff_image_mime(PNG_B64), "image/png")
        self.assertEqual(sniff_image_mime(JPEG_B64), "image/jpeg")
        webp = base64.b64encode(b"RIFF\x00\x00\x00\x00WEBPVP8 ").decode("ascii")
        self.assertEqual(sniff_image_mime(webp), "image/webp")

    def test_unknown_defaults_to_png(self) -> None:
        self.assertEqual(sniff_image_mime("@@@"), "image/png")


class OllamaGenerationClientTests(unittest.IsolatedAsyncioTestCase):
    """Validate the adapter's request and error mapping."""

    async def test_generate_sends_single_non_streaming_call(self) -> None:
        fake = FakeChatClient({"message": {"role": "assistant", "content": "hello"}})
        client = OllamaGenerationClient("http://localhost:11434", client=fake)
        response = await client.generate(_builder().build("hi", []))
        self.assertIsInstance(response, GenerationResponse)
        self.assertEqual(response.text, "hello")
        self.assertEqual(response.parts, [])
        self.assertEqual(len(fake.calls), 1)
        self.assertEqual(fake.calls[0]["model"], "general-model")
        self.assertFalse(fake.calls[0]["stream"])

    async def test_generate_routes_edit_model_and_returns_images(self) -> None:
        fake = FakeChatClient(
            {"message": {"content": "", "images": [JPEG_B64, b"\x89PNG\r\n\x1a\n"]}}
        )
        client = OllamaGenerationClient("http://localhost:11434", client=fake)
        image = Attachment(name="cat.png", mime_type="image/png", data=PNG_B64)
        response = await client.generate(_builder().build("edit the cat", [image]))
        self.assertEqual(fake.calls[0]["model"], "edit-model")
        self.assertEqual(
            [part.mime_type for part in response.parts], ["image/jpeg", "image/png"]
        )

    async def test_connection_errors_are_mapped(self) -> None:
        fake = FakeChatClient(error=httpx.ConnectError("refused"))
        client = OllamaGenerationClient("http://localhost:11434", client=fake)
        with self.assertRaises(GenerationConnectionError):
            await client.generate(_builder().build("hi", []))

    async def test_missing_model_is_mapped(self) -> None:
        fake = FakeChatClient(error=RuntimeError("model 'general-model' not found"))
        client = OllamaGenerationClient("http://localhost:11434", client=fake)
        with self.assertRaises(GenerationModelNotFoundError):
            await client.generate(_builder().build("hi", []))

    async def test_other_errors_become_service_errors(self) -> None:
        fake = FakeChatClient(error=RuntimeError("boom"))
        client = OllamaGenerationClient("http://localhost:11434", client=fake)
        with self.assertRaises(GenerationServiceError) as ctx:
            await client.generate(_builder().build("hi", []))
        self.assertNotIsInstance(ctx.exception, GenerationConnectionError)

    async def test_non_text_content_is_rejected(self) -> None:
        fake = FakeChatClient({"message": {"content": 12}})
        client = OllamaGenerationClient("http://localhost:11434", client=fake)
        with self.assertRaises(GenerationServiceError):
            await client.generate(_builder().build("hi", []))

    async def test_unserializable_response_is_rejected(self) -> None:
        class BrokenSdkResponse:
            def model_dump(self) -> dict:
                raise TypeError("cannot serialize")

        fake = FakeChatClient(BrokenSdkResponse())
        client = OllamaGenerationClient("http://localhost:11434", client=fake)
        with self.assertRaises(GenerationServiceError):
            await client.generate(_builder().build("hi", []))

    async def test_check_connection(self) -> None:
        ok = OllamaGenerationClient("http://localhost:11434", client=FakeChatClient())
        self.assertTrue(await ok.check_connection())
        down = OllamaGenerationClient(
            "http://localhost:11434",
            client=FakeChatClient(error=httpx.ConnectError("refused")),
        )
        self.assertFalse(await down.check_connection())


if __name__ == "__main__":
    unittest.main()
