"""Canned answers used when retrieval or generation is unavailable."""
import re
from typing import List, Pattern, Tuple

DEFAULT_FALLBACK = (
    "Hi! I'm the class assistant. I can help with general information about the platform, "
    "deadlines and submissions. For questions about the content itself, please reach out to "
    "your teacher. How can I help?"
)

# First match wins; add rules here rather than branching in callers
FALLBACK_RULES: List[Tuple[Pattern[str], str]] = [
    (
        re.compile(r"\b(deadline|due|when|submit|submission)", re.I),
        "For deadline information, check the activity details. "
        "If you have specific questions, ask your teacher.",
    ),
    (
        re.compile(r"\b(grade|grading|score|assessment|evaluation)", re.I),
        "Grades are updated by your teacher after correction. "
        "You can follow your progress on the performance dashboard.",
    ),
    (
        re.compile(r"\b(how|help|doubt|question)", re.I),
        "I'm here to help! You can ask me about deadlines, submission format, or general questions. "
        "For specific content questions, check the class material or ask your teacher.",
    ),
    (
        re.compile(r"\b(material|file|document)", re.I),
        "Class materials are available on the class page. "
        "Check the materials section to access the files shared by your teacher.",
    ),
]

FALLBACK_RESPONSES = tuple(text for _, text in FALLBACK_RULES) + (DEFAULT_FALLBACK,)


def fallback_response(question: str) -> str:
    for pattern, text in FALLBACK_RULES:
        if pattern.search(question):
            return text
    return DEFAULT_FALLBACK
