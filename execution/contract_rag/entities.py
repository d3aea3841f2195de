"""
Entity Detection for Entity-Aware Chunking

The chunker asks an entity detector for the spans of named entities
(people, organizations, dates, amounts, clause references) inside a window
of text so that no chunk boundary falls in the middle of one. Detection is
best-effort: the chunker survives any detector failure.

Two detectors are provided:
- RegexEntityDetector: local pattern matching, no network, always available
- LLMEntityDetector: OpenAI chat model returning entities as JSON
"""

import os
import re
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import (
    call_with_retry,
    TransientServiceError,
    PersistentServiceError,
)
from .language_patterns import ENTITY_PATTERNS

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("person", "organization", "date", "amount", "clause")


@dataclass(frozen=True)
class EntitySpan:
    """A detected entity, as offsets relative to the text it was found in."""
    start: int
    end: int
    label: str
    text: str = ""

    def shifted(self, offset: int) -> "EntitySpan":
        """Translate window-relative offsets into absolute document offsets."""
        return EntitySpan(self.start + offset, self.end + offset, self.label, self.text)


class EntityDetector(Protocol):
    """Anything that can find entity spans in a window of text."""

    async def detect_entities(self, window_text: str) -> list[EntitySpan]:
        ...


class RegexEntityDetector:
    """
    Pattern-based entity detector.

    Patterns are compiled per instance from ENTITY_PATTERNS; overlapping
    matches are merged so a date inside an amount phrase yields one span.
    """

    def __init__(self, patterns: Optional[dict[str, list[str]]] = None):
        source = patterns or ENTITY_PATTERNS
        self._patterns = {
            label: [re.compile(p) for p in pattern_list]
            for label, pattern_list in source.items()
        }

    async def detect_entities(self, window_text: str) -> list[EntitySpan]:
        return self.find(window_text)

    def find(self, text: str) -> list[EntitySpan]:
        """Synchronous detection, used directly by tests and metadata extraction."""
        spans = []
        for label, patterns in self._patterns.items():
            for pattern in patterns:
                for match in pattern.finditer(text):
                    if match.end() > match.start():
                        spans.append(EntitySpan(match.start(), match.end(), label, match.group(0)))
        return merge_spans(spans)


def merge_spans(spans: list[EntitySpan]) -> list[EntitySpan]:
    """Sort spans and merge any that overlap, keeping the first span's label."""
    merged: list[EntitySpan] = []
    for span in sorted(spans, key=lambda s: (s.start, -s.end)):
        if merged and span.start < merged[-1].end:
            last = merged[-1]
            if span.end > last.end:
                merged[-1] = EntitySpan(last.start, span.end, last.label)
            continue
        merged.append(span)
    return merged


ENTITY_PROMPT = """Extract every named entity from the contract excerpt below.
Entity types: person, organization, date, amount, clause.
Copy each entity EXACTLY as it appears in the excerpt.
Respond with JSON only: {{"entities": [{{"text": "...", "type": "..."}}]}}

EXCERPT:
{window}"""


class LLMEntityDetector:
    """
    Entity detector backed by an OpenAI chat model.

    The model is asked for entity strings rather than offsets; offsets are
    recovered by searching the window left to right, which keeps them exact
    even when the model miscounts characters. Entities the model invents
    (not found in the window) are dropped.
    """

    def __init__(
        self,
        client=None,
        model: str = "gpt-4o-mini",
        max_retries: int = 2,
        base_delay: float = 1.0,
        timeout: float = 30.0,
    ):
        self._client = client
        self.model = model
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.timeout = timeout

    def _get_client(self):
        """Get or create the cached AsyncOpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=os.getenv("OPENAI_API_KEY"),
                timeout=self.timeout,
            )
        return self._client

    def _reset_client(self):
        self._client = None

    async def detect_entities(self, window_text: str) -> list[EntitySpan]:
        if not window_text.strip():
            return []

        async def _call():
            client = self._get_client()
            return await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": ENTITY_PROMPT.format(window=window_text)}],
                response_format={"type": "json_object"},
                temperature=0.0,
                max_tokens=1000,
            )

        response = await call_with_retry(
            _call,
            label="entity detection",
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            transient_error=TransientServiceError,
            persistent_error=PersistentServiceError,
            on_persistent=self._reset_client,
        )
        content = response.choices[0].message.content or "{}"
        return self._locate(window_text, self._parse(content))

    @staticmethod
    def _parse(content: str) -> list[dict]:
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise TransientServiceError(f"Entity detector returned invalid JSON: {e}") from e

        entities = payload.get("entities", []) if isinstance(payload, dict) else payload
        if not isinstance(entities, list):
            return []
        return [e for e in entities if isinstance(e, dict) and e.get("text")]

    @staticmethod
    def _locate(window_text: str, entities: list[dict]) -> list[EntitySpan]:
        spans = []
        cursor = 0
        for entity in entities:
            text = str(entity["text"])
            label = str(entity.get("type", "entity")).lower()
            position = window_text.find(text, cursor)
            if position < 0:
                # Out-of-order entities: retry from the top of the window
                position = window_text.find(text)
            if position < 0:
                logger.debug(f"Dropping entity not present in window: {text[:40]!r}")
                continue
            spans.append(EntitySpan(position, position + len(text), label, text))
            cursor = position + len(text)
        return merge_spans(spans)
