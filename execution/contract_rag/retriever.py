"""
Retriever for Contract RAG

Exhaustive-scan retrieval over the Vector Index:
- semantic: cosine similarity between the query embedding and every record
  that has one
- keyword: case-insensitive substring match, ranked by occurrence count
- hybrid: both, merged per document with weighted scores

At the scale of one user's documents a linear scan with numpy is faster than
maintaining an ANN index, and it is exact.
"""

import enum
import logging
import numpy as np
from typing import Optional
from dataclasses import dataclass, field

from .errors import ServiceError, ValidationError
from .vector_store import VectorIndex, VectorRecord

logger = logging.getLogger(__name__)


class SearchMode(str, enum.Enum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


def cosine_similarity(a, b) -> float:
    """
    Cosine similarity of two vectors.

    Mismatched lengths, empty vectors and zero vectors score 0.0 rather
    than raising.
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a_arr, b_arr) / (norm_a * norm_b))


@dataclass
class SearchResult:
    """A single matched chunk."""
    text: str
    document_id: str
    chunk_index: int
    similarity: float = 0.0
    match_count: int = 0
    metadata: dict = field(default_factory=dict)
    document_metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "similarity": self.similarity,
            "match_count": self.match_count,
            "metadata": self.metadata,
        }


@dataclass
class DocumentHit:
    """Matched chunks of one document with a combined score."""
    document_id: str
    score: float
    chunks: list[SearchResult]
    similarity: float = 0.0      # mean chunk similarity
    match_count: int = 0         # total keyword occurrences
    document_metadata: dict = field(default_factory=dict)

    @property
    def document_name(self) -> str:
        return (
            self.document_metadata.get("file_name")
            or self.document_metadata.get("title")
            or self.document_id
        )

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "document_name": self.document_name,
            "score": round(self.score, 4),
            "similarity": round(self.similarity, 4),
            "match_count": self.match_count,
            "chunks": [c.to_dict() for c in self.chunks],
        }


@dataclass
class RetrievalConfig:
    """Configuration for retrieval."""
    default_limit: int = 5
    semantic_candidates: int = 20
    max_chunks_per_document: int = 3
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    keyword_normalizer: float = 10.0   # keyword score = matches / normalizer
    min_similarity: float = 0.0


class Retriever:
    """
    Semantic, keyword and hybrid search over a VectorIndex.

    Scoping follows strict priority: a document id restricts the search to
    that document, otherwise a folder id restricts it to the folder's
    documents, otherwise every document is searched.
    """

    def __init__(
        self,
        index: VectorIndex,
        embedding_service=None,
        config: Optional[RetrievalConfig] = None,
    ):
        self.index = index
        self.embedding_service = embedding_service if embedding_service is not None else index.embedding_service
        self.config = config or RetrievalConfig()

    # -------------------------------------------------------------------------
    # Primitive searches (chunk level)
    # -------------------------------------------------------------------------

    async def semantic_search(
        self,
        query: str,
        limit: int = 10,
        document_ids: Optional[list[str]] = None,
    ) -> list[SearchResult]:
        """
        Rank every embedded record by cosine similarity to the query.

        Returns an empty list when nothing is embedded, without calling the
        embedding service.
        """
        records = [r for r in await self.index.get_records(document_ids) if r.has_embedding]
        if not records:
            logger.info("Semantic search: no embedded records")
            return []

        if self.embedding_service is None:
            raise ValidationError("Semantic search requires an embedding service")

        query_embedding = await self.embedding_service.embed_query(query)

        scored = []
        for record in records:
            similarity = cosine_similarity(query_embedding, record.embedding)
            if similarity > self.config.min_similarity:
                scored.append(self._to_result(record, similarity=similarity))

        scored.sort(key=lambda r: r.similarity, reverse=True)
        return scored[:limit]

    async def keyword_search(
        self,
        query: str,
        limit: Optional[int] = None,
        document_ids: Optional[list[str]] = None,
    ) -> list[SearchResult]:
        """Case-insensitive substring search ranked by occurrence count."""
        needle = query.strip().lower()
        if not needle:
            return []

        results = []
        for record in await self.index.get_records(document_ids):
            count = record.text.lower().count(needle)
            if count:
                results.append(self._to_result(record, match_count=count))

        results.sort(key=lambda r: r.match_count, reverse=True)
        return results[:limit] if limit else results

    # -------------------------------------------------------------------------
    # Document-level searches
    # -------------------------------------------------------------------------

    async def hybrid_search(
        self,
        query: str,
        limit: Optional[int] = None,
        document_ids: Optional[list[str]] = None,
    ) -> list[DocumentHit]:
        """
        Merge semantic and keyword hits per document.

        Score = semantic_weight * mean similarity
              + keyword_weight * (matches / keyword_normalizer)
        """
        limit = limit or self.config.default_limit
        semantic = await self._semantic_or_empty(query, document_ids)
        keyword = await self.keyword_search(query, document_ids=document_ids)

        semantic_hits = {h.document_id: h for h in self._group(semantic, by="similarity")}
        keyword_hits = {h.document_id: h for h in self._group(keyword, by="match_count")}

        merged = []
        for document_id in dict.fromkeys(list(semantic_hits) + list(keyword_hits)):
            s_hit = semantic_hits.get(document_id)
            k_hit = keyword_hits.get(document_id)
            similarity = s_hit.similarity if s_hit else 0.0
            matches = k_hit.match_count if k_hit else 0

            chunks = {}
            for hit in (s_hit, k_hit):
                if hit is None:
                    continue
                for chunk in hit.chunks:
                    existing = chunks.get(chunk.chunk_index)
                    if existing is None:
                        chunks[chunk.chunk_index] = chunk
                    else:
                        existing.similarity = max(existing.similarity, chunk.similarity)
                        existing.match_count = max(existing.match_count, chunk.match_count)

            score = (
                self.config.semantic_weight * similarity
                + self.config.keyword_weight * (matches / self.config.keyword_normalizer)
            )
            source = s_hit or k_hit
            merged.append(DocumentHit(
                document_id=document_id,
                score=score,
                chunks=list(chunks.values())[:self.config.max_chunks_per_document],
                similarity=similarity,
                match_count=matches,
                document_metadata=source.document_metadata,
            ))

        merged.sort(key=lambda h: h.score, reverse=True)
        return merged[:limit]

    async def search(
        self,
        query: str,
        mode: str = SearchMode.HYBRID.value,
        limit: Optional[int] = None,
        document_id: Optional[str] = None,
        folder_id: Optional[str] = None,
    ) -> list[DocumentHit]:
        """
        Search in the given mode and return per-document hits.

        Args:
            query: Natural-language or keyword query
            mode: "semantic", "keyword" or "hybrid"
            limit: Maximum documents returned
            document_id: Restrict to one document (highest priority)
            folder_id: Restrict to a folder's documents

        Returns:
            Document hits, best first, each with at most
            max_chunks_per_document chunks
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        try:
            mode = SearchMode(mode)
        except ValueError:
            raise ValidationError(f"Unknown search mode: {mode}")

        limit = limit or self.config.default_limit
        document_ids = await self._resolve_scope(document_id, folder_id)
        if document_ids is not None and not document_ids:
            return []

        if mode is SearchMode.HYBRID:
            return await self.hybrid_search(query, limit, document_ids)

        if mode is SearchMode.SEMANTIC:
            try:
                results = await self.semantic_search(query, self.config.semantic_candidates, document_ids)
                hits = self._group(results, by="similarity")
            except (ServiceError, ValidationError) as e:
                logger.warning(f"Semantic search unavailable, falling back to keyword: {e}")
                results = await self.keyword_search(query, document_ids=document_ids)
                hits = self._group(results, by="match_count")
        else:
            hits = self._group(await self.keyword_search(query, document_ids=document_ids), by="match_count")

        return hits[:limit]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _semantic_or_empty(
        self,
        query: str,
        document_ids: Optional[list[str]],
    ) -> list[SearchResult]:
        """Semantic search; a collaborator failure leaves hybrid with keyword hits only."""
        try:
            return await self.semantic_search(query, self.config.semantic_candidates, document_ids)
        except (ServiceError, ValidationError) as e:
            logger.warning(f"Semantic search unavailable, using keyword hits only: {e}")
            return []

    async def _resolve_scope(
        self,
        document_id: Optional[str],
        folder_id: Optional[str],
    ) -> Optional[list[str]]:
        if document_id:
            return [document_id]
        if folder_id:
            records = await self.index.get_records()
            return sorted({
                r.document_id for r in records
                if r.document_metadata.get("folder_id") == folder_id
            })
        return None

    def _group(self, results: list[SearchResult], by: str) -> list[DocumentHit]:
        """Group chunk results per document, keeping the best few chunks."""
        grouped: dict[str, list[SearchResult]] = {}
        metadata: dict[str, dict] = {}
        for result in results:
            grouped.setdefault(result.document_id, []).append(result)
            metadata.setdefault(result.document_id, result.document_metadata)

        hits = []
        for document_id, chunks in grouped.items():
            chunks.sort(key=lambda c: getattr(c, by), reverse=True)
            kept = chunks[:self.config.max_chunks_per_document]
            similarity = sum(c.similarity for c in kept) / len(kept)
            matches = sum(c.match_count for c in chunks)
            score = similarity if by == "similarity" else float(matches)
            hits.append(DocumentHit(
                document_id=document_id,
                score=score,
                chunks=kept,
                similarity=similarity,
                match_count=matches,
                document_metadata=metadata[document_id],
            ))

        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    @staticmethod
    def _to_result(record: VectorRecord, similarity: float = 0.0, match_count: int = 0) -> SearchResult:
        return SearchResult(
            text=record.text,
            document_id=record.document_id,
            chunk_index=record.chunk_index,
            similarity=similarity,
            match_count=match_count,
            metadata=dict(record.metadata),
            document_metadata=record.document_metadata,
        )
