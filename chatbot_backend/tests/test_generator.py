import unittest
from unittest.mock import Mock

from chatbot_backend.context import ActivityContext
from chatbot_backend.generator import HISTORY_WINDOW, MAX_TOKENS, TEMPERATURE, build_messages, generate_answer
from chatbot_backend.llm_client import LLMError
from chatbot_backend.retriever import RetrievedChunk

CHUNKS = [
    RetrievedChunk(content="A for loop iterates over a sequence.", source="Chapter 2", similarity=0.93),
    RetrievedChunk(content="while loops stop when the condition is false.", source="Slides week 3", similarity=0.88),
    RetrievedChunk(content="range() creates a sequence of integers.", source="Chapter 2", similarity=0.81),
]

ACTIVITY = ActivityContext(
    id="act-1",
    title="Python loops",
    description="Practice loops",
    content="x" * 800,
    type="assignment",
)


class TestBuildMessages(unittest.TestCase):
    def test_fixed_section_order(self):
        messages = build_messages("How do I count to 10?", CHUNKS, [], ACTIVITY)
        system = messages[0]["content"]

        policy_at = system.index("NEVER give the complete or final answer")
        activity_at = system.index("Activity: Python loops")
        source_at = system.index("[Source 1: Chapter 2]")
        self.assertLess(policy_at, activity_at)
        self.assertLess(activity_at, source_at)
        self.assertIn("[Source 2: Slides week 3]", system)
        self.assertIn("[Source 3: Chapter 2]", system)
        self.assertEqual(messages[-1], {"role": "user", "content": "How do I count to 10?"})

    def test_activity_content_is_truncated(self):
        system = build_messages("q", [], [], ACTIVITY)[0]["content"]
        self.assertIn("x" * 500 + "...", system)
        self.assertNotIn("x" * 501, system)

    def test_without_activity_or_material(self):
        system = build_messages("q", [], [], None)[0]["content"]
        self.assertIn("General class - no specific activity selected.", system)
        self.assertIn("No class material matched this question.", system)

    def test_history_window(self):
        history = [{"role": "user", "content": str(i)} for i in range(HISTORY_WINDOW + 3)]
        messages = build_messages("q", [], history, None)
        self.assertEqual(len(messages), HISTORY_WINDOW + 2)
        self.assertEqual(messages[1]["content"], "3")


class TestGenerateAnswer(unittest.TestCase):
    def test_returns_unique_sources_in_order(self):
        client = Mock()
        client.chat.return_value = "What happens to the loop variable on each pass?"
        answer = generate_answer("How do loops work?", CHUNKS, [], ACTIVITY, client)

        self.assertEqual(answer.response, "What happens to the loop variable on each pass?")
        self.assertEqual(answer.sources, ["Chapter 2", "Slides week 3"])
        self.assertEqual(client.chat.call_args.kwargs, {"temperature": TEMPERATURE, "max_tokens": MAX_TOKENS})

    def test_no_chunks_no_sources(self):
        client = Mock()
        client.chat.return_value = "I couldn't find this in the class materials, but what do you know about it?"
        self.assertEqual(generate_answer("q", [], [], None, client).sources, [])

    def test_provider_error_propagates(self):
        client = Mock()
        client.chat.side_effect = LLMError("boom")
        with self.assertRaises(LLMError):
            generate_answer("q", CHUNKS, [], None, client)


if __name__ == '__main__':
    unittest.main()
