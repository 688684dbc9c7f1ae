"""
Configuration for the chatbot query service.
Values are read from the environment (and a local .env file) each time
get_settings() is called.
"""

from dataclasses import dataclass
from typing import List
import logging
import os
from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(Exception):
    """Raised when a required setting is missing."""
    pass


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class CallPolicy:
    """Timeout and retry policy applied to every outbound provider call.

    timeout bounds each attempt, not the call as a whole: with max_retries=1
    a call that times out twice takes about 2 * timeout + backoff.
    """
    timeout: float = 15.0
    max_retries: int = 1
    backoff: float = 0.5

    def delays(self) -> List[float]:
        """Sleep before each retry attempt, doubling every time."""
        return [self.backoff * (2 ** i) for i in range(self.max_retries)]


@dataclass(frozen=True)
class Settings:
    openai_api_key: str
    openai_api_url: str
    chat_model: str
    embed_model: str
    database_url: str
    call_policy: CallPolicy
    match_threshold: float
    match_count: int
    scope_gate_enabled: bool
    allowed_origins: List[str]
    log_level: str

    def require_provider(self) -> None:
        """
        Make sure the language-model provider credential is configured.

        Raises:
            ConfigurationError: If OPENAI_API_KEY is missing.
        """
        if not self.openai_api_key:
            raise ConfigurationError("OpenAI API key not configured")


def get_settings() -> Settings:
    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_api_url=os.getenv("OPENAI_API_URL", "https://api.openai.com/v1").rstrip("/"),
        chat_model=os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini"),
        embed_model=os.getenv("OPENAI_EMBED_MODEL", "text-embedding-3-small"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./chatbot.db"),
        call_policy=CallPolicy(
            timeout=float(os.getenv("LLM_TIMEOUT_SECONDS", "15")),
            max_retries=int(os.getenv("LLM_MAX_RETRIES", "1")),
            backoff=float(os.getenv("LLM_RETRY_BACKOFF", "0.5")),
        ),
        match_threshold=float(os.getenv("RAG_MATCH_THRESHOLD", "0.7")),
        match_count=int(os.getenv("RAG_MATCH_COUNT", "5")),
        scope_gate_enabled=_env_bool("SCOPE_GATE_ENABLED"),
        allowed_origins=os.getenv(
            "ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
        ).split(","),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
