"""
Process-level settings for Contract RAG.

Component behaviour is configured through per-component dataclasses
(ChunkOptions, EmbeddingConfig, ...). This module only collects what comes
from the environment (a .env file is honoured via python-dotenv).
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("json", "postgres")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


@dataclass
class RAGSettings:
    """Settings read from environment variables."""
    openai_api_key: Optional[str] = None
    voyage_api_key: Optional[str] = None
    embedding_provider: str = "openai"
    embedding_model: Optional[str] = None
    completion_model: str = "gpt-4o"
    data_dir: Path = Path("data")
    store_backend: str = "json"
    postgres_url: Optional[str] = None
    vector_batch_size: int = 10
    cost_per_1k_tokens: float = 0.03
    max_prompt_tokens: int = 3000
    log_level: str = "INFO"

    @property
    def index_path(self) -> Path:
        return self.data_dir / "vector_index.json"

    @property
    def conversations_path(self) -> Path:
        return self.data_dir / "conversations.json"

    @property
    def embedding_cache_dir(self) -> Path:
        return self.data_dir / "embedding_cache"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "RAGSettings":
        """
        Build settings from the environment.

        Args:
            dotenv: Load a .env file first (existing variables win)

        Raises:
            ValueError: unknown store backend or embedding provider, or the
                postgres backend without a connection string
        """
        if dotenv:
            load_dotenv()

        settings = cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            voyage_api_key=os.getenv("VOYAGE_API_KEY") or None,
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", "openai").lower(),
            embedding_model=os.getenv("EMBEDDING_MODEL") or None,
            completion_model=os.getenv("COMPLETION_MODEL", "gpt-4o"),
            data_dir=Path(os.getenv("RAG_DATA_DIR", "data")),
            store_backend=os.getenv("RAG_STORE_BACKEND", "json").lower(),
            postgres_url=os.getenv("POSTGRES_URL") or os.getenv("DATABASE_URL") or None,
            vector_batch_size=_env_int("VECTOR_BATCH_SIZE", 10),
            cost_per_1k_tokens=_env_float("COST_PER_1K_TOKENS", 0.03),
            max_prompt_tokens=_env_int("MAX_PROMPT_TOKENS", 3000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(
                f"RAG_STORE_BACKEND must be one of {STORE_BACKENDS}, got {self.store_backend!r}"
            )
        if self.embedding_provider not in ("openai", "voyage"):
            raise ValueError(f"Unknown EMBEDDING_PROVIDER: {self.embedding_provider!r}")
        if self.store_backend == "postgres" and not self.postgres_url:
            raise ValueError("Postgres backend requires POSTGRES_URL or DATABASE_URL")
        if self.vector_batch_size <= 0:
            raise ValueError(f"VECTOR_BATCH_SIZE must be positive, got {self.vector_batch_size}")

    def configure_logging(self) -> None:
        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
