"""Helper functions for parsing LLM responses"""
from dataclasses import dataclass
from typing import Any, Dict, Union
import json


class LLMParsingError(Exception):
    """Exception raised for errors parsing LLM responses"""
    pass


@dataclass(frozen=True)
class Admitted:
    reason: str
    in_scope = True


@dataclass(frozen=True)
class Rejected:
    reason: str
    redirect_message: str
    in_scope = False


ScopeDecision = Union[Admitted, Rejected]


def parse_llm_json(text: Any) -> Dict[str, Any]:
    """Parse a JSON object out of raw model text"""
    if not isinstance(text, str) or not text.strip():
        raise LLMParsingError("Empty response from LLM")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Try to extract JSON if it's embedded in text
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise LLMParsingError("Failed to parse response as JSON")
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            raise LLMParsingError(f"Failed to parse response as JSON: {e}")
    if not isinstance(data, dict):
        raise LLMParsingError("Expected a JSON object")
    return data


def parse_scope_decision(text: Any) -> ScopeDecision:
    """Parse the scope validator's reply into Admitted or Rejected"""
    result = parse_llm_json(text)

    if "in_scope" not in result:
        raise LLMParsingError("Missing in_scope field in scope decision")
    in_scope = result["in_scope"]
    if not isinstance(in_scope, bool):
        raise LLMParsingError("in_scope must be a boolean")

    reason = str(result.get("reason") or "")
    redirect = str(result.get("redirect_message") or "").strip()

    # A rejection the student cannot be redirected from is admitted
    if in_scope or not redirect:
        return Admitted(reason=reason)
    return Rejected(reason=reason, redirect_message=redirect)
