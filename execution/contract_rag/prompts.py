"""
Prompt assembly and selection.

Two templates exist: a minimal instruction for short, well-supported lookups
and a full analysis framework (identify, interpret, analyze, assess, cite)
for everything else. A prompt that would exceed the token or cost budget is
downgraded to the minimal template regardless of confidence.

Token cost is approximated as len(text) / 4 and dollar cost as
(tokens / 1000) * rate.
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional

from .classifiers import SPECIALIZED_SIMPLE_TYPES
from .language_patterns import (
    LABELS,
    PROMPT_TEMPLATES,
    QUERY_TYPE_INSTRUCTIONS,
    DEFAULT_PERSONAS,
)

logger = logging.getLogger(__name__)

MINIMAL = "minimal"
FULL = "full"


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    return math.ceil(len(text) / chars_per_token)


def estimate_cost(tokens: int, cost_per_1k_tokens: float) -> float:
    return (tokens / 1000) * cost_per_1k_tokens


@dataclass
class PromptConfig:
    """Token and cost budget for a single prompt."""
    chars_per_token: int = 4
    cost_per_1k_tokens: float = 0.03
    max_prompt_tokens: int = 3000
    max_prompt_cost: float = 0.05


@dataclass
class Citation:
    source_id: str
    document_id: str
    document_name: str
    chunk_index: int
    similarity: float = 0.0

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "document_id": self.document_id,
            "document_name": self.document_name,
            "chunk_index": self.chunk_index,
            "similarity": round(self.similarity, 4),
        }


def format_context(hits: list, language: str = "en") -> tuple[str, list[Citation]]:
    """
    Render retrieved evidence with per-source citation ids [S1], [S2], ...

    Returns:
        (context text, citations in id order)
    """
    labels = LABELS.get(language, LABELS["en"])
    blocks = []
    citations = []

    for hit in hits:
        for chunk in hit.chunks:
            source_id = f"S{len(citations) + 1}"
            detail = f"{labels['chunk']} {chunk.chunk_index + 1}"
            if chunk.similarity:
                detail += f", {round(chunk.similarity * 100)}% {labels['match']}"
            blocks.append(
                f"[{source_id}] {labels['document']}: {hit.document_name} ({detail})\n{chunk.text}"
            )
            citations.append(Citation(
                source_id=source_id,
                document_id=hit.document_id,
                document_name=hit.document_name,
                chunk_index=chunk.chunk_index,
                similarity=chunk.similarity,
            ))

    return "\n\n".join(blocks), citations


@dataclass
class PromptPlan:
    variant: str
    prompt: str
    estimated_tokens: int
    estimated_cost: float
    reason: str


class PromptSelector:
    """Chooses between the minimal and full templates."""

    def __init__(self, config: Optional[PromptConfig] = None):
        self.config = config or PromptConfig()

    def select(
        self,
        query: str,
        context: str,
        query_type: str,
        confidence_level: str,
        complexity: str,
        contract_type: str = "general",
        risk_level: str = "LOW",
        system_prompt: str = "",
    ) -> PromptPlan:
        instruction = QUERY_TYPE_INSTRUCTIONS.get(query_type, QUERY_TYPE_INSTRUCTIONS["general"])

        if (
            complexity == "low"
            and confidence_level == "HIGH"
            and query_type in SPECIALIZED_SIMPLE_TYPES
        ):
            return self._plan(MINIMAL, instruction, context, query, system_prompt, "simple high-confidence query")

        full = self._plan(
            FULL, instruction, context, query, system_prompt, "full analysis",
            contract_type=contract_type, risk_level=risk_level,
        )
        if (
            full.estimated_tokens > self.config.max_prompt_tokens
            or full.estimated_cost > self.config.max_prompt_cost
        ):
            logger.warning(
                f"Full prompt exceeds budget ({full.estimated_tokens} tokens, "
                f"${full.estimated_cost:.4f}); using minimal template"
            )
            return self._plan(MINIMAL, instruction, context, query, system_prompt, "over budget")

        return full

    def _plan(
        self,
        variant: str,
        instruction: str,
        context: str,
        query: str,
        system_prompt: str,
        reason: str,
        **extra,
    ) -> PromptPlan:
        prompt = PROMPT_TEMPLATES[variant].format(
            instruction=instruction, context=context, query=query, **extra,
        )
        tokens = estimate_tokens(system_prompt + prompt, self.config.chars_per_token)
        return PromptPlan(
            variant=variant,
            prompt=prompt,
            estimated_tokens=tokens,
            estimated_cost=estimate_cost(tokens, self.config.cost_per_1k_tokens),
            reason=reason,
        )


@dataclass
class Persona:
    id: str
    system_prompt: str
    name: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name or self.id, "system_prompt": self.system_prompt}


class PersonaRegistry:
    """Role-specific system prompts, looked up by id with a default fallback."""

    def __init__(self, default_id: str = "legal_advisor"):
        self._personas = {
            pid: Persona(id=pid, system_prompt=prompt, name=pid.replace("_", " ").title())
            for pid, prompt in DEFAULT_PERSONAS.items()
        }
        if default_id not in self._personas:
            raise ValueError(f"Unknown default persona: {default_id}")
        self.default_id = default_id

    def register(self, persona: Persona) -> None:
        self._personas[persona.id] = persona

    def get(self, persona_id: Optional[str] = None) -> Persona:
        if persona_id and persona_id in self._personas:
            return self._personas[persona_id]
        if persona_id:
            logger.warning(f"Unknown persona {persona_id}, using {self.default_id}")
        return self._personas[self.default_id]

    def list(self) -> list[Persona]:
        return list(self._personas.values())
