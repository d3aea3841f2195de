"""
Tests for execution/contract_rag/config.py
"""

from pathlib import Path

import pytest

ENV_VARS = [
    "OPENAI_API_KEY", "VOYAGE_API_KEY", "EMBEDDING_PROVIDER", "EMBEDDING_MODEL",
    "COMPLETION_MODEL", "RAG_DATA_DIR", "RAG_STORE_BACKEND", "POSTGRES_URL",
    "DATABASE_URL", "VECTOR_BATCH_SIZE", "COST_PER_1K_TOKENS", "MAX_PROMPT_TOKENS",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestRAGSettings:

    def test_defaults(self, clean_env):
        from execution.contract_rag.config import RAGSettings
        settings = RAGSettings.from_env(dotenv=False)
        assert settings.embedding_provider == "openai"
        assert settings.store_backend == "json"
        assert settings.vector_batch_size == 10
        assert settings.openai_api_key is None
        assert settings.index_path == Path("data") / "vector_index.json"
        assert settings.conversations_path == Path("data") / "conversations.json"

    def test_from_environment(self, clean_env):
        from execution.contract_rag.config import RAGSettings
        clean_env.setenv("EMBEDDING_PROVIDER", "Voyage")
        clean_env.setenv("VOYAGE_API_KEY", "vk")
        clean_env.setenv("RAG_DATA_DIR", "/tmp/rag")
        clean_env.setenv("RAG_STORE_BACKEND", "postgres")
        clean_env.setenv("DATABASE_URL", "postgresql://db/contracts")
        clean_env.setenv("VECTOR_BATCH_SIZE", "25")
        clean_env.setenv("COST_PER_1K_TOKENS", "0.01")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = RAGSettings.from_env(dotenv=False)
        assert settings.embedding_provider == "voyage"
        assert settings.voyage_api_key == "vk"
        assert settings.data_dir == Path("/tmp/rag")
        assert settings.store_backend == "postgres"
        assert settings.postgres_url == "postgresql://db/contracts"
        assert settings.vector_batch_size == 25
        assert settings.cost_per_1k_tokens == 0.01
        assert settings.log_level == "DEBUG"

    def test_bad_numbers_use_defaults(self, clean_env):
        from execution.contract_rag.config import RAGSettings
        clean_env.setenv("VECTOR_BATCH_SIZE", "ten")
        clean_env.setenv("COST_PER_1K_TOKENS", "cheap")
        settings = RAGSettings.from_env(dotenv=False)
        assert settings.vector_batch_size == 10
        assert settings.cost_per_1k_tokens == 0.03

    @pytest.mark.parametrize("name, value", [
        ("RAG_STORE_BACKEND", "sqlite"),
        ("EMBEDDING_PROVIDER", "cohere"),
        ("VECTOR_BATCH_SIZE", "0"),
    ])
    def test_invalid_settings(self, clean_env, name, value):
        from execution.contract_rag.config import RAGSettings
        clean_env.setenv(name, value)
        with pytest.raises(ValueError):
            RAGSettings.from_env(dotenv=False)

    def test_postgres_requires_url(self, clean_env):
        from execution.contract_rag.config import RAGSettings
        clean_env.setenv("RAG_STORE_BACKEND", "postgres")
        with pytest.raises(ValueError):
            RAGSettings.from_env(dotenv=False)
