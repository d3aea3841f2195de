"""
Completion Service for Contract RAG

Wraps the OpenAI chat completions API behind the retry policy and error
taxonomy: TransientCompletionError after the retry ceiling,
PersistentCompletionError immediately for bad credentials, quota or an
unknown model (and the cached client is dropped).
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import (
    call_with_retry,
    PersistentCompletionError,
    TransientCompletionError,
)

logger = logging.getLogger(__name__)


@dataclass
class CompletionConfig:
    """Configuration for the completion collaborator."""
    model: str = "gpt-4o"
    temperature: float = 0.3  # low for factual answers
    max_tokens: int = 1000
    max_retries: int = 3
    base_delay: float = 1.0
    request_timeout: float = 60.0


@dataclass
class CompletionResult:
    text: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class CompletionService:
    """Chat completion collaborator: complete(messages) -> CompletionResult."""

    def __init__(self, config: Optional[CompletionConfig] = None, client=None):
        self.config = config or CompletionConfig()
        self._client = client

    def _get_llm_client(self):
        """Get or create the cached AsyncOpenAI client."""
        if self._client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise PersistentCompletionError(
                    "OpenAI API key not configured. Set OPENAI_API_KEY."
                )
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=api_key, timeout=self.config.request_timeout, max_retries=0,
            )
            logger.info(f"Completion client initialized with model {self.config.model}")
        return self._client

    def invalidate(self) -> None:
        self._client = None

    @property
    def has_credentials(self) -> bool:
        return self._client is not None or bool(os.getenv("OPENAI_API_KEY"))

    async def complete(
        self,
        messages: list[dict],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        async def _call():
            client = self._get_llm_client()
            return await client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.config.max_tokens,
            )

        response = await call_with_retry(
            _call,
            label="completion",
            max_retries=self.config.max_retries,
            base_delay=self.config.base_delay,
            transient_error=TransientCompletionError,
            persistent_error=PersistentCompletionError,
            on_persistent=self.invalidate,
        )

        usage = getattr(response, "usage", None)
        return CompletionResult(
            text=response.choices[0].message.content or "",
            model=getattr(response, "model", self.config.model),
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
        )
