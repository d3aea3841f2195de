"""
Answer confidence scoring.

Weighted sum of four factors, each in [0, 1]:

    source_relevance      mean similarity of the retrieved evidence,
                          boosted for specialized query types
    context_completeness  retrieved chunk count against an ideal count
    query_type_confidence specialized query types score above "general"
    response_quality      whether the query length is in a sane range

The overall score is bucketed into HIGH / MEDIUM / LOW / MINIMAL, each with a
human-readable explanation. An empty retrieval always scores MINIMAL with a
fixed explanation.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .language_patterns import CONFIDENCE_EXPLANATIONS

logger = logging.getLogger(__name__)


@dataclass
class ConfidenceConfig:
    """Weights must sum to 1.0."""
    source_relevance_weight: float = 0.4
    context_completeness_weight: float = 0.3
    query_type_weight: float = 0.2
    response_quality_weight: float = 0.1

    specialized_boost: float = 1.1
    ideal_chunk_count: int = 3
    specialized_type_confidence: float = 0.9
    general_type_confidence: float = 0.6
    keyword_normalizer: float = 10.0

    min_query_words: int = 3
    max_query_words: int = 50

    high_threshold: float = 0.8
    medium_threshold: float = 0.6
    low_threshold: float = 0.4

    def __post_init__(self):
        total = (
            self.source_relevance_weight + self.context_completeness_weight
            + self.query_type_weight + self.response_quality_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Confidence weights must sum to 1.0, got {total}")


@dataclass
class ConfidenceScore:
    overall: float
    level: str
    explanation: str
    factors: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "overall": round(self.overall, 4),
            "level": self.level,
            "explanation": self.explanation,
            "factors": {k: round(v, 4) for k, v in self.factors.items()},
        }


class ConfidenceScorer:
    """Computes a ConfidenceScore from retrieved evidence and the query."""

    def __init__(self, config: Optional[ConfidenceConfig] = None):
        self.config = config or ConfidenceConfig()

    def no_results(self) -> ConfidenceScore:
        return ConfidenceScore(
            overall=0.0,
            level="MINIMAL",
            explanation=CONFIDENCE_EXPLANATIONS["NO_RESULTS"],
            factors={
                "source_relevance": 0.0,
                "context_completeness": 0.0,
                "query_type_confidence": 0.0,
                "response_quality": 0.0,
            },
        )

    def score(self, hits: list, query: str, query_type: str) -> ConfidenceScore:
        """
        Args:
            hits: DocumentHits returned by the retriever
            query: The user's question
            query_type: Output of QueryTypeClassifier
        """
        if not hits:
            return self.no_results()

        cfg = self.config
        specialized = query_type != "general"

        relevance = self._mean_relevance(hits)
        if specialized:
            relevance *= cfg.specialized_boost
        source_relevance = min(1.0, relevance)

        chunk_count = sum(len(h.chunks) for h in hits)
        context_completeness = min(1.0, chunk_count / cfg.ideal_chunk_count)

        query_type_confidence = (
            cfg.specialized_type_confidence if specialized else cfg.general_type_confidence
        )

        words = len(query.split())
        if cfg.min_query_words <= words <= cfg.max_query_words:
            response_quality = 1.0
        elif words < cfg.min_query_words:
            response_quality = 0.5
        else:
            response_quality = 0.7

        factors = {
            "source_relevance": source_relevance,
            "context_completeness": context_completeness,
            "query_type_confidence": query_type_confidence,
            "response_quality": response_quality,
        }
        overall = (
            cfg.source_relevance_weight * source_relevance
            + cfg.context_completeness_weight * context_completeness
            + cfg.query_type_weight * query_type_confidence
            + cfg.response_quality_weight * response_quality
        )
        overall = max(0.0, min(1.0, overall))
        level = self.level_for(overall)

        logger.debug(f"Confidence {overall:.3f} ({level}): {factors}")
        return ConfidenceScore(
            overall=overall,
            level=level,
            explanation=CONFIDENCE_EXPLANATIONS[level],
            factors=factors,
        )

    def level_for(self, overall: float) -> str:
        cfg = self.config
        if overall >= cfg.high_threshold:
            return "HIGH"
        if overall >= cfg.medium_threshold:
            return "MEDIUM"
        if overall >= cfg.low_threshold:
            return "LOW"
        return "MINIMAL"

    def _mean_relevance(self, hits: list) -> float:
        # Keyword matches set a floor, so a higher similarity never lowers the result
        values = [
            max(hit.similarity, min(1.0, hit.match_count / self.config.keyword_normalizer))
            for hit in hits
        ]
        return sum(values) / len(values)
