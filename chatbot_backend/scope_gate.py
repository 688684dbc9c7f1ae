"""
Scope validation: decides whether a question belongs to the selected activity.
Never blocks the student on its own failures.
"""

from typing import Optional
import logging

from .context import ActivityContext
from .llm_client import LLMClient, LLMError
from .llm_parsing import Admitted, LLMParsingError, ScopeDecision, parse_scope_decision
from .prompts import SCOPE_DECISION_SCHEMA, scope_validator_prompt

logger = logging.getLogger(__name__)

SCOPE_TEMPERATURE = 0.3
SCOPE_MAX_TOKENS = 300


def check_scope(
    question: str,
    activity: Optional[ActivityContext],
    client: LLMClient,
    enabled: bool = True,
) -> ScopeDecision:
    """
    Classify the question against the activity.

    Args:
        question: The student's question.
        activity: Activity snapshot, or None for class-wide questions.
        client: Provider client used for the classification call.
        enabled: When False every question is admitted without a call.

    Returns:
        ScopeDecision: Admitted or Rejected. Provider errors and unparseable
        replies fail open to Admitted.
    """
    if activity is None:
        return Admitted(reason="No activity context")
    if not enabled:
        return Admitted(reason="Scope validation disabled")

    messages = [
        {
            "role": "system",
            "content": scope_validator_prompt(activity.title, activity.description, activity.type),
        },
        {"role": "user", "content": question},
    ]
    try:
        reply = client.chat(
            messages,
            temperature=SCOPE_TEMPERATURE,
            max_tokens=SCOPE_MAX_TOKENS,
            response_format=SCOPE_DECISION_SCHEMA,
        )
    except LLMError as e:
        logger.warning("Scope validation failed, assuming in scope: %s", e)
        return Admitted(reason="Validation error")

    try:
        decision = parse_scope_decision(reply)
    except LLMParsingError as e:
        logger.warning("Unparseable scope decision, assuming in scope: %s", e)
        return Admitted(reason="Error in validation")

    logger.debug("Scope decision for activity %s: %s", activity.id, decision)
    return decision
