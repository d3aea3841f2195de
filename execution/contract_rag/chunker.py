"""
Contract-Aware Chunker

Splits extracted document text into retrieval-sized chunks without severing
named entities or legal clause boundaries.

Boundary detection runs in priority order:
1. Structural: paragraph breaks always; for legal documents also numbered
   sections, ALL-CAPS headers, Article/Section headings and sub-clauses.
2. Entity-aware: overlapping windows are sent to an entity detector and
   entity edges join the boundary set; no boundary may fall inside an entity.
3. Greedy assembly: consecutive spans are packed up to the target size;
   a span that alone exceeds it is split at whitespace only.
4. Fallback: Unicode-aware sentence chunking with sentence overlap, or pure
   word chunking with word overlap when no sentence terminator exists.

Chunk spans always tile the source text: concatenating ``text[span_start:
span_end]`` over the chunks (ignoring overlap) reproduces the input, and the
final chunk ends at ``len(text)``.
"""

import re
import enum
import bisect
import logging
from dataclasses import dataclass, field
from typing import Optional

from .entities import EntityDetector, EntitySpan, merge_spans
from .language_config import LanguageConfig
from .language_patterns import (
    STRUCTURAL_MARKERS,
    SECTION_HEADINGS,
    SENTENCE_TERMINATORS,
    LEGAL_TERMS,
    LEGAL_TERM_THRESHOLDS,
    PARTY_PATTERN,
    DATE_PATTERN,
    CLAUSE_TYPE_KEYWORDS,
)

logger = logging.getLogger(__name__)

LEGAL_DOCUMENT_TYPES = frozenset({"legal", "legal_contract", "contract"})

# Full-width terminators end a sentence without trailing whitespace
_CJK_TERMINATORS = "。！？"


class BoundaryKind(str, enum.Enum):
    """How a chunk's edges were chosen."""
    STRUCTURAL = "structural"
    ENTITY_AWARE = "entity_aware"
    WORD_SPLIT = "word_split"
    SENTENCE = "sentence"
    SHORT_TEXT = "short_text"


@dataclass(frozen=True)
class Chunk:
    """A contiguous span of a document, sized for retrieval."""
    chunk_index: int
    text: str
    char_length: int
    boundary_kind: str
    span_start: int
    span_end: int
    metadata: dict = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        return {
            "chunk_index": self.chunk_index,
            "text": self.text,
            "char_length": self.char_length,
            "boundary_kind": self.boundary_kind,
            "span_start": self.span_start,
            "span_end": self.span_end,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Chunk":
        text = data["text"]
        return cls(
            chunk_index=int(data["chunk_index"]),
            text=text,
            char_length=int(data.get("char_length", len(text))),
            boundary_kind=data.get("boundary_kind", BoundaryKind.STRUCTURAL.value),
            span_start=int(data.get("span_start", 0)),
            span_end=int(data.get("span_end", len(text))),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ChunkOptions:
    """Every option the chunker recognizes, with its default."""
    target_size: int = 512          # characters per chunk
    overlap: int = 50               # characters; one sentence per 50, one word per 5
    document_type: str = "general"
    use_entity_detection: bool = True

    # Text shorter than this becomes a single short_text chunk
    min_text_length: int = 50

    # Entity windows are window_multiplier x target_size, overlapping by this ratio
    window_multiplier: int = 2
    window_overlap_ratio: float = 0.2

    # Sanity ceilings: beyond these, entity detection is abandoned for the document
    max_entity_boundaries: int = 1000
    max_entity_input_chars: int = 200_000

    @property
    def overlap_sentences(self) -> int:
        return max(0, self.overlap // 50)

    @property
    def overlap_words(self) -> int:
        return max(0, self.overlap // 5)


def detect_document_type(text: str) -> str:
    """
    Guess the document type from legal vocabulary.

    Returns:
        "legal_contract", "assignment" or "general"
    """
    text_lower = text.lower()
    english_hits = sum(1 for term in LEGAL_TERMS["en"] if term in text_lower)
    hebrew_hits = sum(1 for term in LEGAL_TERMS["he"] if term in text)

    if english_hits >= LEGAL_TERM_THRESHOLDS["en"] or hebrew_hits >= LEGAL_TERM_THRESHOLDS["he"]:
        return "legal_contract"
    if "assignment" in text_lower and "manager" in text_lower:
        return "assignment"
    return "general"


class ContractChunker:
    """
    Chunks contract text while respecting structure and entities.

    The entity detector is injected; without one (or with
    ``use_entity_detection=False``) the sentence fallback is used.
    Patterns are compiled per chunker instance and hold no state between
    documents.
    """

    def __init__(
        self,
        entity_detector: Optional[EntityDetector] = None,
        language_config: Optional[LanguageConfig] = None,
    ):
        self._detector = entity_detector
        self._language_config = language_config or LanguageConfig.for_language("en")

        self._paragraph_break = re.compile(r"\n[ \t]*\n\s*")

        legal_markers = list(STRUCTURAL_MARKERS)
        for headings in SECTION_HEADINGS.values():
            legal_markers.extend(headings)
        self._legal_marker = re.compile(
            "|".join(f"(?:{m})" for m in legal_markers),
            re.MULTILINE,
        )

        terminators = "".join(t for t in SENTENCE_TERMINATORS if t not in _CJK_TERMINATORS)
        self._sentence_end = re.compile(
            rf"(?:[{re.escape(terminators)}]+[\"'”’»)\]]*(?:\s+|$))"
            rf"|(?:[{_CJK_TERMINATORS}]+\s*)"
        )
        self._word = re.compile(r"\S+\s*")
        self._word_start = re.compile(r"\s+(?=\S)")

        self._party_pattern = re.compile(PARTY_PATTERN)
        self._date_pattern = re.compile(DATE_PATTERN)

    async def chunk(self, text: str, options: Optional[ChunkOptions] = None) -> list[Chunk]:
        """
        Chunk extracted text into retrieval-ready pieces.

        Args:
            text: Extracted document text
            options: Chunking options; defaults when omitted

        Returns:
            Ordered list of non-empty chunks whose spans tile ``text``
        """
        opts = options or ChunkOptions()
        if opts.target_size <= 0:
            raise ValueError(f"target_size must be positive, got {opts.target_size}")

        if not text or not text.strip():
            return []

        if len(text.strip()) < opts.min_text_length:
            stripped = text.strip()
            return [Chunk(
                chunk_index=0,
                text=stripped,
                char_length=len(stripped),
                boundary_kind=BoundaryKind.SHORT_TEXT.value,
                span_start=0,
                span_end=len(text),
                metadata=self._extract_metadata(stripped),
            )]

        pieces = None
        if opts.use_entity_detection and self._detector is not None:
            pieces = await self._chunk_with_entities(text, opts)

        if pieces is None:
            pieces = self._chunk_by_sentences(text, opts)

        chunks = self._finalize(text, pieces)
        logger.info(
            f"Created {len(chunks)} chunks from {len(text)} chars "
            f"(type={opts.document_type}, target={opts.target_size})"
        )
        return chunks

    # -------------------------------------------------------------------------
    # Step 1: structural boundaries
    # -------------------------------------------------------------------------

    def _structural_boundaries(self, text: str, document_type: str) -> list[int]:
        """Paragraph breaks, plus legal markers for legal documents. Single pass each."""
        boundaries = [m.end() for m in self._paragraph_break.finditer(text)]

        if document_type in LEGAL_DOCUMENT_TYPES:
            boundaries.extend(m.start() for m in self._legal_marker.finditer(text))

        length = len(text)
        return sorted({b for b in boundaries if 0 < b < length})

    # -------------------------------------------------------------------------
    # Step 2: entity-aware boundaries
    # -------------------------------------------------------------------------

    async def _chunk_with_entities(
        self, text: str, opts: ChunkOptions
    ) -> Optional[list[tuple[int, int, str]]]:
        """
        Enhanced path. Returns None when every window failed, which sends
        the document to the sentence fallback.
        """
        structural = self._structural_boundaries(text, opts.document_type)

        if len(text) > opts.max_entity_input_chars:
            logger.warning(
                f"Input of {len(text)} chars exceeds entity ceiling "
                f"({opts.max_entity_input_chars}); using structural boundaries only"
            )
            return self._assemble(text, structural, [], opts, BoundaryKind.STRUCTURAL)

        spans, succeeded, abandoned = await self._detect_entity_spans(text, opts)

        if abandoned:
            return self._assemble(text, structural, [], opts, BoundaryKind.STRUCTURAL)

        if succeeded == 0:
            logger.warning("Entity detection failed for every window; falling back to sentence chunking")
            return None

        boundaries = set(structural)
        for span in spans:
            boundaries.add(span.start)
            boundaries.add(span.end)
        boundaries = self._drop_inside_entities(sorted(boundaries), spans)

        return self._assemble(text, boundaries, spans, opts, BoundaryKind.ENTITY_AWARE)

    async def _detect_entity_spans(
        self, text: str, opts: ChunkOptions
    ) -> tuple[list[EntitySpan], int, bool]:
        """
        Scan overlapping windows with the entity detector.

        Returns:
            (merged absolute spans, windows that succeeded, abandoned flag)
        """
        window_size = max(1, opts.target_size * opts.window_multiplier)
        step = max(1, int(window_size * (1 - opts.window_overlap_ratio)))

        spans: list[EntitySpan] = []
        succeeded = 0
        failed = 0
        start = 0

        while start < len(text):
            end = min(len(text), start + window_size)
            window = text[start:end]
            try:
                found = await self._detector.detect_entities(window)
            except Exception as e:
                # Window keeps only its paragraph boundaries
                failed += 1
                logger.warning(f"Entity detection failed for window [{start}:{end}]: {e}")
            else:
                succeeded += 1
                for span in found:
                    if 0 <= span.start < span.end <= len(window):
                        spans.append(span.shifted(start))

                if 2 * len(spans) > opts.max_entity_boundaries:
                    logger.warning(
                        f"Entity boundaries exceed ceiling ({opts.max_entity_boundaries}); "
                        f"abandoning entity detection for this document"
                    )
                    return [], succeeded, True

            if end == len(text):
                break
            start += step

        if failed:
            logger.info(f"Entity detection: {succeeded} windows succeeded, {failed} failed")

        return merge_spans(spans), succeeded, False

    @staticmethod
    def _drop_inside_entities(boundaries: list[int], spans: list[EntitySpan]) -> list[int]:
        """Remove boundaries that fall strictly inside an entity span."""
        if not spans:
            return boundaries
        starts = [s.start for s in spans]
        kept = []
        for b in boundaries:
            i = bisect.bisect_left(starts, b) - 1
            if i >= 0 and spans[i].start < b < spans[i].end:
                continue
            kept.append(b)
        return kept

    # -------------------------------------------------------------------------
    # Step 3: greedy assembly
    # -------------------------------------------------------------------------

    def _assemble(
        self,
        text: str,
        boundaries: list[int],
        spans: list[EntitySpan],
        opts: ChunkOptions,
        kind: BoundaryKind,
    ) -> list[tuple[int, int, str]]:
        """Pack boundary-delimited spans into chunks of at most target_size."""
        length = len(text)
        points = [0] + [b for b in boundaries if 0 < b < length] + [length]
        target = opts.target_size

        pieces = []
        current_start = None

        for a, b in zip(points, points[1:]):
            if b <= a:
                continue

            if b - a > target:
                if current_start is not None:
                    pieces.append((current_start, a, kind.value))
                    current_start = None
                pieces.extend(self._split_at_whitespace(text, a, b, target, spans))
                continue

            if current_start is None:
                current_start = a
            elif b - current_start > target:
                pieces.append((current_start, a, kind.value))
                current_start = a

        if current_start is not None:
            pieces.append((current_start, length, kind.value))

        return pieces

    def _split_at_whitespace(
        self,
        text: str,
        start: int,
        end: int,
        target: int,
        spans: Optional[list[EntitySpan]] = None,
    ) -> list[tuple[int, int, str]]:
        """
        Split an oversized span at word starts only, never mid-word, and
        never inside an entity when an outside cut exists. A single word
        longer than target stays whole.
        """
        segment = text[start:end]
        cuts = [start + m.end() for m in self._word_start.finditer(segment)]
        cuts = [c for c in cuts if start < c < end]
        if spans:
            cuts = self._drop_inside_entities(cuts, spans)

        pieces = []
        position = start
        while end - position > target:
            limit = position + target
            i = bisect.bisect_right(cuts, limit) - 1
            if i >= 0 and cuts[i] > position:
                cut = cuts[i]
            else:
                j = bisect.bisect_right(cuts, position)
                cut = cuts[j] if j < len(cuts) else end
            pieces.append((position, cut, BoundaryKind.WORD_SPLIT.value))
            position = cut

        if position < end:
            pieces.append((position, end, BoundaryKind.WORD_SPLIT.value))
        return pieces

    # -------------------------------------------------------------------------
    # Step 4: sentence / word fallback
    # -------------------------------------------------------------------------

    def _sentence_spans(self, text: str) -> list[tuple[int, int]]:
        """Sentence spans tiling the text; empty when no terminator is found."""
        spans = []
        start = 0
        for match in self._sentence_end.finditer(text):
            end = match.end()
            if end <= start:
                continue
            if text[start:end].strip():
                spans.append((start, end))
                start = end
        if not spans:
            return []
        if start < len(text):
            if text[start:].strip():
                spans.append((start, len(text)))
            else:
                spans[-1] = (spans[-1][0], len(text))
        return spans

    def _chunk_by_sentences(self, text: str, opts: ChunkOptions) -> list[tuple[int, int, str]]:
        sentences = self._sentence_spans(text)
        if not sentences:
            logger.info("No sentence boundaries found; chunking by words")
            return self._chunk_by_words(text, opts)

        return self._pack(
            text, sentences, opts.target_size, opts.overlap_sentences, BoundaryKind.SENTENCE,
        )

    def _chunk_by_words(self, text: str, opts: ChunkOptions) -> list[tuple[int, int, str]]:
        words = [(m.start(), m.end()) for m in self._word.finditer(text)]
        if not words:
            return []
        words[0] = (0, words[0][1])
        words[-1] = (words[-1][0], len(text))
        return self._pack(
            text, words, opts.target_size, opts.overlap_words, BoundaryKind.WORD_SPLIT,
        )

    def _pack(
        self,
        text: str,
        units: list[tuple[int, int]],
        target: int,
        overlap_units: int,
        kind: BoundaryKind,
    ) -> list[tuple[int, int, str]]:
        """
        Greedily pack units (sentences or words) into chunks, carrying the
        last ``overlap_units`` units of each chunk into the next. Units
        longer than target are split at whitespace.
        """
        pieces = []
        current: list[int] = []

        def flush():
            if current:
                pieces.append((units[current[0]][0], units[current[-1]][1], kind.value))

        for index, (start, end) in enumerate(units):
            if end - start > target:
                flush()
                current = []
                pieces.extend(self._split_at_whitespace(text, start, end, target))
                continue

            if current and end - units[current[0]][0] > target:
                flush()
                carry = current[-overlap_units:] if 0 < overlap_units < len(current) else []
                while carry and end - units[carry[0]][0] > target:
                    carry = carry[1:]
                current = carry

            current.append(index)

        flush()
        return pieces

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def _finalize(self, text: str, pieces: list[tuple[int, int, str]]) -> list[Chunk]:
        """Fold whitespace-only pieces into neighbours and build Chunk records."""
        cleaned: list[list] = []
        pending_start = None

        for start, end, kind in pieces:
            if not text[start:end].strip():
                if cleaned:
                    cleaned[-1][1] = max(cleaned[-1][1], end)
                elif pending_start is None:
                    pending_start = start
                continue
            if pending_start is not None:
                start = min(start, pending_start)
                pending_start = None
            cleaned.append([start, end, kind])

        if not cleaned:
            return []

        cleaned[0][0] = 0
        cleaned[-1][1] = len(text)

        chunks = []
        for index, (start, end, kind) in enumerate(cleaned):
            content = text[start:end].strip()
            chunks.append(Chunk(
                chunk_index=index,
                text=content,
                char_length=len(content),
                boundary_kind=kind,
                span_start=start,
                span_end=end,
                metadata=self._extract_metadata(content),
            ))
        return chunks

    def _extract_metadata(self, content: str) -> dict:
        """Parties, clause type and dates mentioned in a chunk."""
        metadata = {}
        content_lower = content.lower()

        parties = self._party_pattern.findall(content)
        if parties:
            metadata["parties"] = list(dict.fromkeys(parties))

        for clause_type, keywords in CLAUSE_TYPE_KEYWORDS:
            if any(k in content_lower for k in keywords):
                metadata["clause_type"] = clause_type
                break

        dates = self._date_pattern.findall(content)
        if dates:
            metadata["dates"] = dates

        return metadata


# CLI for testing
if __name__ == "__main__":
    import sys
    import asyncio
    from .entities import RegexEntityDetector

    if len(sys.argv) < 2:
        print("Usage: python -m execution.contract_rag.chunker <text_file>")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)

    with open(sys.argv[1], encoding="utf-8") as f:
        source = f.read()

    chunker = ContractChunker(entity_detector=RegexEntityDetector())
    result = asyncio.run(chunker.chunk(
        source, ChunkOptions(document_type=detect_document_type(source)),
    ))

    print(f"\nCreated {len(result)} chunks:")
    for c in result[:5]:
        print(f"\n--- Chunk {c.chunk_index} ({c.boundary_kind}) [{c.span_start}:{c.span_end}] ---")
        print(f"Length: {c.char_length}")
        print(f"Content preview: {c.text[:200]}...")
