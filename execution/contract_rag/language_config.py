"""
Language Configuration for Multilingual Contract RAG

Documents and questions arrive in English, Hebrew or Arabic. Each language
carries its own token ratio and display direction; detection is a cheap
script count, not a model call.
"""

import re
from dataclasses import dataclass


# Supported languages with their token ratios
SUPPORTED_LANGUAGES = {
    "en": {
        "name": "English",
        "chars_per_token": 4,
        "rtl": False,
    },
    "he": {
        "name": "Hebrew",
        "chars_per_token": 3,
        "rtl": True,
    },
    "ar": {
        "name": "Arabic",
        "chars_per_token": 3,
        "rtl": True,
    },
}

DEFAULT_LANGUAGE = "en"

_SCRIPT_RANGES = {
    "he": re.compile(r"[\u0590-\u05FF]"),
    "ar": re.compile(r"[\u0600-\u06FF\u0750-\u077F]"),
    "en": re.compile(r"[A-Za-z]"),
}


def detect_language(text: str, min_share: float = 0.3) -> str:
    """
    Detect the dominant language of a text by counting script characters.

    Hebrew and Arabic win as soon as they make up ``min_share`` of the
    letters, because contracts in those languages routinely embed Latin
    names, amounts and defined terms.

    Args:
        text: Query or document text
        min_share: Minimum share of letters needed for an RTL script to win

    Returns:
        ISO 639-1 code: "en", "he" or "ar"
    """
    if not text:
        return DEFAULT_LANGUAGE

    counts = {lang: len(pattern.findall(text)) for lang, pattern in _SCRIPT_RANGES.items()}
    total = sum(counts.values())
    if total == 0:
        return DEFAULT_LANGUAGE

    for lang in ("he", "ar"):
        if counts[lang] / total >= min_share:
            return lang

    return DEFAULT_LANGUAGE


@dataclass
class LanguageConfig:
    """Per-language settings used by the chunker and the query pipeline."""
    language: str = "en"
    chars_per_token: int = 4
    rtl: bool = False

    @classmethod
    def for_language(cls, language: str) -> "LanguageConfig":
        """
        Factory method returning defaults for a given language.

        Unknown codes fall back to English.
        """
        if language not in SUPPORTED_LANGUAGES:
            language = DEFAULT_LANGUAGE

        settings = SUPPORTED_LANGUAGES[language]
        return cls(
            language=language,
            chars_per_token=settings["chars_per_token"],
            rtl=settings["rtl"],
        )

    @classmethod
    def for_text(cls, text: str) -> "LanguageConfig":
        """Build the config for whatever language ``text`` is written in."""
        return cls.for_language(detect_language(text))
