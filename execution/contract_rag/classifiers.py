"""
Keyword-weighted classifiers for the query pipeline.

None of these are ML models. Each category accumulates a score from pattern
match counts in the detected language (plus English, at reduced weight,
because contracts in every language quote English defined terms); the best
category above zero wins. The signal only has to be stable enough to steer
prompt selection and follow-up questions.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Optional

from .language_config import detect_language
from .language_patterns import (
    QUERY_TYPE_KEYWORDS,
    CONTRACT_TYPE_PATTERNS,
    RISK_PATTERNS,
    ANALYTICAL_PATTERNS,
)

logger = logging.getLogger(__name__)

GENERAL = "general"

# Query types a short, well-supported question can be answered cheaply for
SPECIALIZED_SIMPLE_TYPES = frozenset({"parties", "dates", "payment"})


@dataclass
class ClassifierConfig:
    """Calibration constants. Defaults are placeholders, not derived values."""
    risk_high_threshold: float = 8
    risk_medium_threshold: float = 4
    english_fallback_weight: float = 0.5
    complex_query_chars: int = 100
    simple_query_chars: int = 50


class QueryTypeClassifier:
    """
    First matching query type wins, in the fixed order parties, payment,
    dates, termination, liability, confidentiality, terms; otherwise general.
    """

    def classify(self, query: str, language: Optional[str] = None) -> str:
        language = language or detect_language(query)
        query_lower = query.lower()

        for query_type, keywords_by_lang in QUERY_TYPE_KEYWORDS:
            keywords = list(keywords_by_lang.get(language, []))
            if language != "en":
                keywords.extend(keywords_by_lang.get("en", []))
            if any(self._matches(k, query_lower) for k in keywords):
                return query_type

        return GENERAL

    @staticmethod
    def _matches(keyword: str, query_lower: str) -> bool:
        # Latin keywords must start a word; stems like "indemnif" may run on.
        # Hebrew and Arabic attach prefixes, so they match anywhere.
        if keyword.isascii():
            return re.search(r"(?<!\w)" + re.escape(keyword), query_lower) is not None
        return keyword in query_lower


class ContractTypeClassifier:
    """Bag-of-patterns contract type classifier."""

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.config = config or ClassifierConfig()
        self._patterns = {
            contract_type: {
                lang: [(re.compile(p, re.IGNORECASE), w) for p, w in patterns]
                for lang, patterns in by_lang.items()
            }
            for contract_type, by_lang in CONTRACT_TYPE_PATTERNS.items()
        }

    def scores(self, text: str, language: Optional[str] = None) -> dict[str, float]:
        language = language or detect_language(text)
        scores = {}
        for contract_type, by_lang in self._patterns.items():
            score = 0.0
            for pattern, weight in by_lang.get(language, []):
                score += weight * len(pattern.findall(text))
            if language != "en":
                for pattern, weight in by_lang.get("en", []):
                    score += self.config.english_fallback_weight * weight * len(pattern.findall(text))
            scores[contract_type] = score
        return scores

    def classify(self, text: str, language: Optional[str] = None) -> str:
        scores = self.scores(text, language)
        logger.debug(f"Contract type scores: {scores}")
        best = max(scores, key=scores.get, default=None)
        if best is None or scores[best] <= 0:
            return GENERAL
        return best


@dataclass
class RiskAssessment:
    level: str
    score: float
    indicators: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"level": self.level, "score": self.score, "indicators": self.indicators}


class RiskScorer:
    """
    Sum of weighted risk-indicator matches, bucketed by configurable
    thresholds (default: >= 8 HIGH, >= 4 MEDIUM, else LOW).
    """

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.config = config or ClassifierConfig()
        self._patterns = {
            lang: [(re.compile(p, re.IGNORECASE), w) for p, w in patterns]
            for lang, patterns in RISK_PATTERNS.items()
        }

    def assess(self, text: str, language: Optional[str] = None) -> RiskAssessment:
        language = language or detect_language(text)
        candidates = [(p, w, 1.0) for p, w in self._patterns.get(language, [])]
        if language != "en":
            candidates.extend(
                (p, w, self.config.english_fallback_weight) for p, w in self._patterns["en"]
            )

        score = 0.0
        indicators = []
        for pattern, weight, factor in candidates:
            hits = pattern.findall(text)
            if hits:
                score += factor * weight * len(hits)
                indicators.append(pattern.pattern)

        if score >= self.config.risk_high_threshold:
            level = "HIGH"
        elif score >= self.config.risk_medium_threshold:
            level = "MEDIUM"
        else:
            level = "LOW"

        return RiskAssessment(level=level, score=score, indicators=indicators)


def assess_complexity(
    query: str,
    language: Optional[str] = None,
    config: Optional[ClassifierConfig] = None,
) -> str:
    """
    "high" for analytical questions or long queries, "low" for short
    lookups, "medium" otherwise.
    """
    config = config or ClassifierConfig()
    language = language or detect_language(query)
    text = query.strip()
    text_lower = text.lower()

    patterns = list(ANALYTICAL_PATTERNS.get(language, []))
    if language != "en":
        patterns.extend(ANALYTICAL_PATTERNS["en"])

    if any(re.search(p, text_lower) for p in patterns) or len(text) > config.complex_query_chars:
        return "high"
    if len(text) < config.simple_query_chars:
        return "low"
    return "medium"
