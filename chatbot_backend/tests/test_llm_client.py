import unittest
from unittest.mock import patch

import requests

from chatbot_backend.config import CallPolicy, ConfigurationError, get_settings
from chatbot_backend.llm_client import LLMClient, LLMError
from chatbot_backend.tests.test_helpers import chat_payload, embedding_payload, mock_http_response


class TestLLMClient(unittest.TestCase):
    def setUp(self):
        self.client = LLMClient(
            api_key="mock_api_key",
            base_url="https://api.openai.test/v1/",
            policy=CallPolicy(timeout=15.0, max_retries=2, backoff=0.0),
        )

    @patch("chatbot_backend.llm_client.requests.post")
    def test_chat_returns_text(self, mock_post):
        mock_post.return_value = mock_http_response(chat_payload("  What have you tried?  "))

        text = self.client.chat([{"role": "user", "content": "hi"}], temperature=0.7, max_tokens=1000)

        self.assertEqual(text, "What have you tried?")
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://api.openai.test/v1/chat/completions")
        self.assertEqual(kwargs["timeout"], 15.0)
        self.assertEqual(kwargs["json"]["temperature"], 0.7)
        self.assertEqual(kwargs["json"]["max_tokens"], 1000)
        self.assertNotIn("response_format", kwargs["json"])
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer mock_api_key")

    @patch("chatbot_backend.llm_client.requests.post")
    def test_embed_returns_vector(self, mock_post):
        mock_post.return_value = mock_http_response(embedding_payload([1, 2, 3]))
        self.assertEqual(self.client.embed("loops"), [1.0, 2.0, 3.0])
        self.assertEqual(mock_post.call_args.kwargs["json"]["model"], "text-embedding-3-small")

    @patch("chatbot_backend.llm_client.requests.post")
    def test_retries_transient_failures(self, mock_post):
        mock_post.side_effect = [
            requests.Timeout("slow"),
            mock_http_response({"error": "busy"}, status_code=503),
            mock_http_response(chat_payload("ok")),
        ]
        self.assertEqual(self.client.chat([{"role": "user", "content": "hi"}]), "ok")
        self.assertEqual(mock_post.call_count, 3)

    @patch("chatbot_backend.llm_client.requests.post")
    def test_gives_up_after_retries(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("down")
        with self.assertRaises(LLMError):
            self.client.embed("loops")
        self.assertEqual(mock_post.call_count, 3)

    @patch("chatbot_backend.llm_client.requests.post")
    def test_client_errors_are_not_retried(self, mock_post):
        mock_post.return_value = mock_http_response({"error": "bad request"}, status_code=400)
        with self.assertRaises(LLMError):
            self.client.chat([{"role": "user", "content": "hi"}])
        self.assertEqual(mock_post.call_count, 1)

    @patch("chatbot_backend.llm_client.requests.post")
    def test_malformed_responses(self, mock_post):
        for payload in ({"choices": []}, {"unexpected": True}, chat_payload("   ")):
            mock_post.return_value = mock_http_response(payload)
            with self.assertRaises(LLMError):
                self.client.chat([{"role": "user", "content": "hi"}])

        mock_post.return_value = mock_http_response({"data": []})
        with self.assertRaises(LLMError):
            self.client.embed("loops")

    @patch("chatbot_backend.llm_client.requests.post")
    def test_malformed_embedding_values(self, mock_post):
        for vector in ([None, "x", 1.0], "not a vector", [[1.0], 2.0], {"x": 1.0}):
            mock_post.return_value = mock_http_response(embedding_payload(vector))
            with self.assertRaises(LLMError):
                self.client.embed("loops")

    @patch("chatbot_backend.llm_client.requests.post")
    def test_timeout_applies_to_each_attempt(self, mock_post):
        mock_post.side_effect = requests.Timeout("slow")
        with self.assertRaises(LLMError):
            self.client.chat([{"role": "user", "content": "hi"}])
        self.assertEqual([c.kwargs["timeout"] for c in mock_post.call_args_list], [15.0, 15.0, 15.0])

    def test_backoff_doubles(self):
        self.assertEqual(CallPolicy(max_retries=3, backoff=0.5).delays(), [0.5, 1.0, 2.0])
        self.assertEqual(CallPolicy(max_retries=0).delays(), [])

    def test_from_settings_requires_key(self):
        with patch.dict("os.environ", {"OPENAI_API_KEY": ""}):
            with self.assertRaises(ConfigurationError):
                LLMClient.from_settings(get_settings())

        client = LLMClient.from_settings(get_settings())
        self.assertEqual(client.api_key, "mock_api_key")
        self.assertEqual(client.policy.max_retries, 0)


if __name__ == '__main__':
    unittest.main()
