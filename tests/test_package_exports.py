"""Tests for top-level package lazy exports."""

from __future__ import annotations

import unittest

import kal_chat


class PackageExportTests(unittest.TestCase):
    """Ensure __getattr__ and exported symbols behave as expected."""

    def test_lazy_exports_resolve_known_symbols(self) -> None:
        self.assertTrue(callable(kal_chat.load_config))
        self.assertTrue(callable(kal_chat.ensure_config_dir))
        self.assertTrue(callable(kal_chat.select_model_variant))
        self.assertIsNotNone(kal_chat.ConversationController)
        self.assertIsNotNone(kal_chat.SessionStore)
        self.assertIsNotNone(kal_chat.RequestBuilder)
        self.assertIsNotNone(kal_chat.ResponseInterpreter)
        self.assertIsNotNone(kal_chat.OllamaGenerationClient)
        self.assertIsNotNone(kal_chat.KalChatError)
        self.assertIsNotNone(kal_chat.AttachmentReadError)
        self.assertIsNotNone(kal_chat.GenerationServiceError)
        self.assertIsNotNone(kal_chat.StateManager)
        self.assertIsNotNone(kal_chat.TurnState)
        self.assertIsNotNone(kal_chat.FileKeyValueStore)

    def test_all_lists_every_export(self) -> None:
        for name in kal_chat.__all__:
            self.assertIsNotNone(getattr(kal_chat, name))

    def test_unknown_symbol_raises_attribute_error(self) -> None:
        with self.assertRaises(AttributeError):
            getattr(kal_chat, "THIS_DOES_NOT_EXIST")


if __name__ == "__main__":
    unittest.main()
