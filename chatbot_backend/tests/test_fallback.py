import unittest

from chatbot_backend.fallback import DEFAULT_FALLBACK, FALLBACK_RESPONSES, FALLBACK_RULES, fallback_response


class TestFallbackResponse(unittest.TestCase):
    def test_keyword_rules(self):
        cases = [
            ("When is the deadline?", 0),
            ("Is the homework due friday", 0),
            ("What grade did I get?", 1),
            ("How is the assessment scored", 1),
            ("Can you help me?", 2),
            ("Where is the material for today", 3),
        ]
        for question, rule in cases:
            with self.subTest(question=question):
                self.assertEqual(fallback_response(question), FALLBACK_RULES[rule][1])

    def test_first_matching_rule_wins(self):
        # mentions both a deadline and a grade
        self.assertEqual(fallback_response("When will the grades come out?"), FALLBACK_RULES[0][1])

    def test_default_response(self):
        self.assertEqual(fallback_response("Tell me a joke"), DEFAULT_FALLBACK)
        self.assertIn(DEFAULT_FALLBACK, FALLBACK_RESPONSES)
        self.assertTrue(all(text for text in FALLBACK_RESPONSES))


if __name__ == '__main__':
    unittest.main()
