import json
import unittest
from unittest.mock import Mock

from chatbot_backend.context import ActivityContext
from chatbot_backend.llm_client import LLMError
from chatbot_backend.llm_parsing import Admitted, LLMParsingError, Rejected, parse_scope_decision
from chatbot_backend.prompts import ADMIT_CRITERIA, REJECT_CRITERIA
from chatbot_backend.scope_gate import check_scope

ACTIVITY = ActivityContext(id="act-1", title="Python loops", description="for and while loops", type="assignment")


class TestScopeDecisionParsing(unittest.TestCase):
    def test_rejection_with_redirect(self):
        decision = parse_scope_decision(json.dumps({
            "in_scope": False,
            "reason": "cafeteria",
            "redirect_message": "Let's get back to loops!",
        }))
        self.assertIsInstance(decision, Rejected)
        self.assertFalse(decision.in_scope)
        self.assertEqual(decision.redirect_message, "Let's get back to loops!")

    def test_rejection_without_redirect_is_admitted(self):
        decision = parse_scope_decision('{"in_scope": false, "reason": "unsure", "redirect_message": ""}')
        self.assertIsInstance(decision, Admitted)
        self.assertTrue(decision.in_scope)

    def test_json_embedded_in_text(self):
        decision = parse_scope_decision('Sure: {"in_scope": true, "reason": "on topic"} done')
        self.assertEqual(decision, Admitted(reason="on topic"))

    def test_invalid_payloads(self):
        for text in ("not json", "", '{"reason": "x"}', '{"in_scope": "yes"}', "[1, 2]"):
            with self.assertRaises(LLMParsingError):
                parse_scope_decision(text)


class TestCheckScope(unittest.TestCase):
    def test_no_activity_never_calls_provider(self):
        client = Mock()
        decision = check_scope("What is photosynthesis?", None, client)
        self.assertEqual(decision, Admitted(reason="No activity context"))
        client.chat.assert_not_called()

    def test_disabled_gate_admits_without_call(self):
        client = Mock()
        decision = check_scope("What's for lunch?", ACTIVITY, client, enabled=False)
        self.assertTrue(decision.in_scope)
        client.chat.assert_not_called()

    def test_prompt_carries_activity_and_policy(self):
        client = Mock()
        client.chat.return_value = '{"in_scope": true, "reason": "loops", "redirect_message": ""}'
        decision = check_scope("How do I stop a while loop?", ACTIVITY, client)

        self.assertTrue(decision.in_scope)
        messages = client.chat.call_args.args[0]
        system = messages[0]["content"]
        self.assertIn("Activity: Python loops", system)
        self.assertIn("WHEN IN DOUBT, ACCEPT", system)
        for criterion in ADMIT_CRITERIA + REJECT_CRITERIA:
            self.assertIn(criterion, system)
        self.assertEqual(messages[1], {"role": "user", "content": "How do I stop a while loop?"})
        self.assertEqual(client.chat.call_args.kwargs["temperature"], 0.3)
        self.assertEqual(client.chat.call_args.kwargs["response_format"]["type"], "json_schema")

    def test_rejected_question(self):
        client = Mock()
        client.chat.return_value = json.dumps({
            "in_scope": False,
            "reason": "administrative",
            "redirect_message": "Please ask your teacher about exam dates.",
        })
        decision = check_scope("When is the exam?", ACTIVITY, client)
        self.assertEqual(decision, Rejected(reason="administrative", redirect_message="Please ask your teacher about exam dates."))

    def test_provider_error_fails_open(self):
        client = Mock()
        client.chat.side_effect = LLMError("503")
        self.assertEqual(check_scope("anything", ACTIVITY, client), Admitted(reason="Validation error"))

    def test_garbage_reply_fails_open(self):
        client = Mock()
        client.chat.return_value = "I think it is fine"
        self.assertEqual(check_scope("anything", ACTIVITY, client), Admitted(reason="Error in validation"))


if __name__ == '__main__':
    unittest.main()
