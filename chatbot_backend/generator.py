"""
Socratic answer generation over retrieved class material.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import logging

from .context import ActivityContext
from .llm_client import LLMClient
from .prompts import activity_section, materials_section, socratic_system_prompt
from .retriever import RetrievedChunk

logger = logging.getLogger(__name__)

# Fixed generation policy, not exposed to callers
TEMPERATURE = 0.7
MAX_TOKENS = 1000
HISTORY_WINDOW = 6


@dataclass
class GeneratedAnswer:
    response: str
    sources: List[str] = field(default_factory=list)


def unique_sources(chunks: Sequence[RetrievedChunk]) -> List[str]:
    """Source labels in retrieval order without duplicates."""
    return list(dict.fromkeys(c.source for c in chunks))


def build_messages(
    question: str,
    chunks: Sequence[RetrievedChunk],
    history: Sequence[Dict[str, str]],
    activity: Optional[ActivityContext],
) -> List[Dict[str, str]]:
    """
    Assemble the chat messages in their fixed order: teaching policy, activity
    metadata and tagged passages in the system message, then the trailing
    conversation turns, then the current question.
    """
    passages = [f"[Source {i}: {c.source}]\n{c.content}" for i, c in enumerate(chunks, 1)]
    if activity:
        activity_text = activity_section(activity.title, activity.description, activity.content)
    else:
        activity_text = activity_section(None, None, None)

    messages = [{
        "role": "system",
        "content": socratic_system_prompt(activity_text, materials_section(passages)),
    }]
    for turn in list(history)[-HISTORY_WINDOW:]:
        messages.append({"role": turn["role"], "content": turn["content"]})
    messages.append({"role": "user", "content": question})
    return messages


def generate_answer(
    question: str,
    chunks: Sequence[RetrievedChunk],
    history: Sequence[Dict[str, str]],
    activity: Optional[ActivityContext],
    client: LLMClient,
) -> GeneratedAnswer:
    """Generate a guiding answer. LLMError from the provider propagates."""
    messages = build_messages(question, chunks, history, activity)
    response = client.chat(messages, temperature=TEMPERATURE, max_tokens=MAX_TOKENS)
    return GeneratedAnswer(response=response, sources=unique_sources(chunks))
