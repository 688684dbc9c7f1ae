"""
LLM Client module for the OpenAI-compatible embeddings and chat completions API.
Handles request building, timeouts and retries, and response parsing.
"""

from typing import Optional, Dict, Any, List
import json
import logging
import time
import requests

from .config import CallPolicy, Settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Custom exception for LLM-related errors."""
    pass


# Status codes worth another attempt; anything else in 4xx is the caller's fault
RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}


def _parse_chat_response(data: Dict[str, Any]) -> str:
    """
    Extract the generated text from a chat completions payload.

    Raises:
        LLMError: If the payload has no usable content.
    """
    try:
        if "choices" not in data or not data["choices"]:
            raise LLMError("Invalid response format from API")
        choice = data["choices"][0]
        if "message" in choice and choice["message"].get("content") is not None:
            return choice["message"]["content"].strip()
        # Legacy completions shape
        elif "text" in choice:
            return choice["text"].strip()
        else:
            raise LLMError("No content found in response")
    except (KeyError, TypeError, AttributeError) as e:
        raise LLMError(f"Unexpected response structure: {e}")


def _parse_embedding_response(data: Dict[str, Any]) -> List[float]:
    try:
        vector = data["data"][0]["embedding"]
        if not vector:
            raise LLMError("Empty embedding returned")
        if isinstance(vector, (str, bytes, dict)):
            raise LLMError("Embedding is not a list of numbers")
        return [float(v) for v in vector]
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise LLMError(f"Unexpected embedding response structure: {e}")



class LLMClient:
    """Thin wrapper over the provider's HTTP API with an injected call policy."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        chat_model: str = "gpt-4o-mini",
        embed_model: str = "text-embedding-3-small",
        policy: Optional[CallPolicy] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.chat_model = chat_model
        self.embed_model = embed_model
        self.policy = policy or CallPolicy()

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        settings.require_provider()
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.openai_api_url,
            chat_model=settings.chat_model,
            embed_model=settings.embed_model,
            policy=settings.call_policy,
        )

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON payload, retrying transient failures per the call policy.

        Args:
            path: Endpoint path relative to the base URL, e.g. "/embeddings".
            payload: JSON body.

        Returns:
            Dict[str, Any]: Decoded JSON response.

        Raises:
            LLMError: When every attempt failed or the response is not JSON.
        """
        endpoint = f"{self.base_url}{path}"
        delays = self.policy.delays()
        last_error: Optional[Exception] = None

        for attempt in range(len(delays) + 1):
            if attempt:
                time.sleep(delays[attempt - 1])
            try:
                response = requests.post(
                    endpoint,
                    headers=self._build_headers(),
                    json=payload,
                    timeout=self.policy.timeout,
                )
            except requests.RequestException as e:
                logger.warning("Provider call to %s failed (attempt %d): %s", path, attempt + 1, e)
                last_error = e
                continue

            if response.status_code >= 400:
                last_error = LLMError(f"OpenAI API error {response.status_code}: {response.text[:200]}")
                logger.warning("Provider call to %s returned %s (attempt %d)", path, response.status_code, attempt + 1)
                if response.status_code in RETRYABLE_STATUS:
                    continue
                raise last_error

            try:
                return response.json()
            except (json.JSONDecodeError, ValueError):
                raise LLMError("Failed to parse API response")

        raise LLMError(f"Provider unavailable: {last_error}")

    def embed(self, text: str) -> List[float]:
        """Return the embedding vector for a single text."""
        data = self._post("/embeddings", {
            "model": self.embed_model,
            "input": text,
            "encoding_format": "float",
        })
        return _parse_embedding_response(data)

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Run a chat completion and return the assistant text.

        Raises:
            LLMError: On transport failure or an empty completion.
        """
        payload: Dict[str, Any] = {
            "model": self.chat_model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }
        if response_format:
            payload["response_format"] = response_format
        text = _parse_chat_response(self._post("/chat/completions", payload))
        if not text:
            raise LLMError("Empty response from LLM")
        return text
