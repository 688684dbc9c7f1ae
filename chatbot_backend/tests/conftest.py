"""
This module provides test fixtures for the backend tests.
"""

import pytest

from chatbot_backend import db as db_module


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch, tmp_path):
    """Set up provider settings and a fresh SQLite database for every test"""
    monkeypatch.setenv("OPENAI_API_KEY", "mock_api_key")
    monkeypatch.setenv("OPENAI_API_URL", "https://api.openai.test/v1")
    monkeypatch.setenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("LLM_MAX_RETRIES", "0")
    monkeypatch.setenv("SCOPE_GATE_ENABLED", "true")
    monkeypatch.delenv("RAG_MATCH_THRESHOLD", raising=False)
    monkeypatch.delenv("RAG_MATCH_COUNT", raising=False)

    db_module.configure_engine(f"sqlite:///{tmp_path / 'chatbot_test.db'}")
    db_module.init_db()

    yield

    db_module.engine.dispose()

