"""
Embedding Service for Contract RAG

Provides embeddings via OpenAI (text-embedding-3-small, default) or Voyage AI.
Supports batching, caching, retry with backoff, and a periodic connection
health probe.

Architecture:
    BaseEmbeddingService  -- shared caching, batching, retry, health probing
        OpenAIEmbeddingService  -- OpenAI embeddings API (AsyncOpenAI)
        VoyageEmbeddingService  -- Voyage AI (voyageai.AsyncClient)

Failures are surfaced through the error taxonomy: TransientEmbeddingError
after the retry ceiling, PersistentEmbeddingError immediately for bad
credentials, quota or an unknown model. A persistent failure drops the cached
client so the next call re-authenticates.
"""

import os
import json
import time
import asyncio
import hashlib
import logging
from typing import Optional
from dataclasses import dataclass
from pathlib import Path

from .errors import (
    call_with_retry,
    PersistentEmbeddingError,
    TransientEmbeddingError,
)

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "openai"  # "openai" or "voyage"
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 64
    max_tokens_per_batch: int = 100000
    chars_per_token: float = 4.0
    cache_dir: Optional[str] = None
    use_cache: bool = True

    # Retry policy: base_delay * (attempt + 1) between transient failures
    max_retries: int = 3
    base_delay: float = 1.0
    request_timeout: float = 30.0

    # Connection health probe
    health_check_interval: float = 300.0  # seconds; 0 disables probing
    health_check_timeout: float = 5.0


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Provides shared functionality:
    - Batched embedding with progress logging
    - Memory and file-based caching
    - Retry/backoff and persistent-error connection invalidation
    - Periodic connection validation before use

    Subclasses implement:
    - _create_client(): Build the provider-specific async client
    - _request(client, texts, input_type): One embedding API call
    - _probe(client): Cheap call proving the connection works
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _doc_input_type: str = "document"
    _query_input_type: str = "query"

    def __init__(self, config: Optional[EmbeddingConfig] = None, client=None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
            client: Pre-built provider client (tests inject fakes here)
        """
        self.config = config or EmbeddingConfig()
        self._client = client
        self._cache = {}
        self._last_validated: Optional[float] = None

        if self.config.cache_dir:
            self._cache_path = Path(self.config.cache_dir)
            self._cache_path.mkdir(parents=True, exist_ok=True)
        else:
            self._cache_path = None

    # -------------------------------------------------------------------------
    # Provider hooks
    # -------------------------------------------------------------------------

    def _create_client(self):
        raise NotImplementedError("Subclasses must implement _create_client()")

    async def _request(self, client, texts: list[str], input_type: str) -> list[list[float]]:
        raise NotImplementedError("Subclasses must implement _request()")

    async def _probe(self, client) -> None:
        raise NotImplementedError("Subclasses must implement _probe()")

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    def _get_client(self):
        """Get or create the cached provider client."""
        if self._client is None:
            self._client = self._create_client()
            self._last_validated = None
            logger.info(f"{self._provider_name} client initialized with model {self.config.model}")
        return self._client

    def invalidate(self) -> None:
        """Drop the cached client; the next call re-authenticates."""
        if self._client is not None:
            logger.warning(f"Invalidating {self._provider_name} client")
        self._client = None
        self._last_validated = None

    async def _ensure_connection(self):
        """
        Return a validated client, probing it when the last validation is
        older than health_check_interval. A failed probe forces
        re-initialization.
        """
        client = self._get_client()
        interval = self.config.health_check_interval
        if interval <= 0:
            return client

        now = time.monotonic()
        if self._last_validated is not None and now - self._last_validated < interval:
            return client

        try:
            await asyncio.wait_for(self._probe(client), timeout=self.config.health_check_timeout)
        except Exception as e:
            logger.warning(f"{self._provider_name} health check failed, re-initializing: {e}")
            self.invalidate()
            client = self._get_client()

        self._last_validated = time.monotonic()
        return client

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def _create_batches(self, texts: list[str]) -> list[list[str]]:
        """Split texts into batches respecting both item count and token limits."""
        batches = []
        current_batch = []
        current_tokens = 0
        cpt = self.config.chars_per_token

        for text in texts:
            est_tokens = len(text) / cpt
            if current_batch and (
                len(current_batch) >= self.config.batch_size
                or current_tokens + est_tokens > self.config.max_tokens_per_batch
            ):
                batches.append(current_batch)
                current_batch = []
                current_tokens = 0
            current_batch.append(text)
            current_tokens += est_tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    async def embed(self, text: str) -> list[float]:
        """Embed a single document chunk."""
        result = await self._embed_batch([text], input_type=self._doc_input_type)
        return result[0]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for document chunks.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, in input order
        """
        if not texts:
            return []

        batches = self._create_batches(texts)
        logger.info(
            f"Embedding {len(texts)} documents in {len(batches)} batches"
            f" with {self._provider_name}"
        )

        embeddings = []
        for batch_idx, batch in enumerate(batches):
            embeddings.extend(await self._embed_batch(batch, input_type=self._doc_input_type))
            if (batch_idx + 1) % 10 == 0:
                logger.info(f"Processed batch {batch_idx + 1}/{len(batches)}")

        return embeddings

    async def embed_query(self, query: str) -> list[float]:
        """
        Generate embedding for a search query.

        Uses the provider's query input type where it distinguishes one.
        """
        result = await self._embed_batch([query], input_type=self._query_input_type)
        return result[0]

    async def _embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        """Embed a batch, serving what it can from cache."""
        results = []
        uncached_texts = []
        uncached_indices = []

        for i, text in enumerate(texts):
            cached = self._get_cached(self._get_cache_key(text, input_type))
            if cached is not None:
                results.append((i, cached))
            else:
                uncached_texts.append(text)
                uncached_indices.append(i)

        if uncached_texts:
            async def _call():
                client = await self._ensure_connection()
                return await self._request(client, uncached_texts, input_type)

            embeddings = await call_with_retry(
                _call,
                label=f"{self._provider_name} embedding",
                max_retries=self.config.max_retries,
                base_delay=self.config.base_delay,
                transient_error=TransientEmbeddingError,
                persistent_error=PersistentEmbeddingError,
                on_persistent=self.invalidate,
            )
            if len(embeddings) != len(uncached_texts):
                raise TransientEmbeddingError(
                    f"{self._provider_name} returned {len(embeddings)} embeddings "
                    f"for {len(uncached_texts)} inputs"
                )

            for idx, embedding in zip(uncached_indices, embeddings):
                self._set_cached(self._get_cache_key(texts[idx], input_type), embedding)
                results.append((idx, embedding))

        results.sort(key=lambda x: x[0])
        return [emb for _, emb in results]

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def _get_cache_key(self, text: str, input_type: str) -> str:
        """Generate cache key for text."""
        content = f"{self.config.model}:{input_type}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        """Get cached embedding."""
        if not self.config.use_cache:
            return None

        if key in self._cache:
            return self._cache[key]

        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            if cache_file.exists():
                try:
                    with open(cache_file) as f:
                        embedding = json.load(f)
                        self._cache[key] = embedding
                        return embedding
                except (OSError, json.JSONDecodeError) as e:
                    logger.debug(f"Failed to read embedding cache file {cache_file}: {e}")

        return None

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        """Cache an embedding."""
        if not self.config.use_cache:
            return

        self._cache[key] = embedding

        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            try:
                with open(cache_file, 'w') as f:
                    json.dump(embedding, f)
            except OSError as e:
                logger.warning(f"Failed to cache embedding: {e}")

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions

    @property
    def has_credentials(self) -> bool:
        return self._client is not None or bool(os.getenv(self._env_var_name))


class OpenAIEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using OpenAI's embeddings API.

    text-embedding-3-small provides 1536-dimensional embeddings and does not
    distinguish document from query inputs.
    """

    _provider_name = "OpenAI"
    _env_var_name = "OPENAI_API_KEY"

    def _create_client(self):
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise PersistentEmbeddingError(
                "OPENAI_API_KEY not found. Set the environment variable or use a different provider."
            )

        from openai import AsyncOpenAI
        return AsyncOpenAI(api_key=api_key, timeout=self.config.request_timeout, max_retries=0)

    async def _request(self, client, texts: list[str], input_type: str) -> list[list[float]]:
        response = await client.embeddings.create(model=self.config.model, input=texts)
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]

    async def _probe(self, client) -> None:
        await client.models.list()


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Voyage AI.

    voyage-law-2 is tuned for legal text and separates document and query
    input types.
    """

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _create_client(self):
        api_key = os.getenv("VOYAGE_API_KEY")
        if not api_key:
            raise PersistentEmbeddingError(
                "VOYAGE_API_KEY not found. Get your API key at https://dash.voyageai.com/"
            )

        import voyageai
        return voyageai.AsyncClient(
            api_key=api_key, max_retries=0, timeout=self.config.request_timeout,
        )

    async def _request(self, client, texts: list[str], input_type: str) -> list[list[float]]:
        response = await client.embed(texts, model=self.config.model, input_type=input_type)
        return response.embeddings

    async def _probe(self, client) -> None:
        # Voyage has no listing endpoint; a one-word embed is the cheapest call
        await client.embed(["ping"], model=self.config.model, input_type=self._query_input_type)


def get_embedding_service(
    provider: str = "openai",
    model: Optional[str] = None,
    cache_dir: Optional[str] = None,
) -> BaseEmbeddingService:
    """
    Factory function to get the appropriate embedding service.

    Args:
        provider: "openai" (default) or "voyage"
        model: Override the provider's default model
        cache_dir: Optional directory for the file-based embedding cache

    Returns:
        Configured embedding service
    """
    if provider == "voyage":
        config = EmbeddingConfig(
            provider="voyage",
            model=model or "voyage-law-2",
            dimensions=1024,
            batch_size=128,
            # Voyage's tokenizer is more aggressive than OpenAI's
            chars_per_token=2.0,
            cache_dir=cache_dir,
        )
        return VoyageEmbeddingService(config)

    if provider != "openai":
        raise ValueError(f"Unknown embedding provider: {provider}")

    config = EmbeddingConfig(
        provider="openai",
        model=model or "text-embedding-3-small",
        cache_dir=cache_dir,
    )
    return OpenAIEmbeddingService(config)


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    provider = os.getenv("EMBEDDING_PROVIDER", "openai")
    print(f"Using embedding provider: {provider}")

    service = get_embedding_service(provider=provider)

    if len(sys.argv) > 1:
        query = " ".join(sys.argv[1:])
    else:
        query = "What are the termination clauses in this contract?"

    print(f"Query: {query}")
    embedding = asyncio.run(service.embed_query(query))
    print(f"Embedding dimensions: {len(embedding)}")
    print(f"First 10 values: {embedding[:10]}")
