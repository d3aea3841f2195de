"""
Tests for execution/contract_rag/retriever.py

Covers: cosine_similarity, semantic/keyword/hybrid search, per-document
        grouping, scope resolution and the keyword fallback when the
        embedding collaborator fails.
"""

import asyncio

import pytest

from tests.conftest import MockEmbeddingService, make_chunks

LEASE = [
    "The tenant shall pay rent of $3,200 on the first day of each month.",
    "The landlord shall maintain the premises and repair damages.",
    "Late rent incurs a fee. Rent is payable by bank transfer.",
]
NDA = [
    "Confidential information shall not be disclosed to any third party.",
    "Either party may terminate this agreement with thirty days notice.",
]


def _build(store, embedding_service=None):
    from execution.contract_rag.vector_store import VectorIndex, VectorIndexConfig
    from execution.contract_rag.retriever import Retriever
    index = VectorIndex(store, embedding_service, VectorIndexConfig(batch_size=2))
    asyncio.run(index.insert("lease", make_chunks(LEASE), {"file_name": "lease.txt", "folder_id": "leases"}))
    asyncio.run(index.insert("nda", make_chunks(NDA), {"file_name": "nda.txt", "folder_id": "ndas"}))
    return Retriever(index)


class _QueryFailingEmbeddings(MockEmbeddingService):
    async def embed_query(self, query):
        from execution.contract_rag.errors import TransientEmbeddingError
        raise TransientEmbeddingError("embedding endpoint timed out")


# ---------------------------------------------------------------------------
# Cosine similarity
# ---------------------------------------------------------------------------

class TestCosineSimilarity:

    def test_identical_vectors(self):
        from execution.contract_rag.retriever import cosine_similarity
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_and_opposite(self):
        from execution.contract_rag.retriever import cosine_similarity
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_symmetric_and_bounded(self):
        from execution.contract_rag.retriever import cosine_similarity
        a, b = [0.3, -1.2, 4.0], [2.5, 0.1, -0.7]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
        assert -1.0 <= cosine_similarity(a, b) <= 1.0

    def test_degenerate_inputs_score_zero(self):
        from execution.contract_rag.retriever import cosine_similarity
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity(None, [1.0]) == 0.0


# ---------------------------------------------------------------------------
# Chunk-level searches
# ---------------------------------------------------------------------------

class TestSemanticSearch:

    def test_no_embedded_records_returns_empty(self, json_store):
        service = MockEmbeddingService()
        retriever = _build(json_store)
        retriever.embedding_service = service
        assert asyncio.run(retriever.search("rent", mode="semantic")) == []
        assert service.query_calls == 0

    def test_ranks_related_document_first(self, json_store):
        retriever = _build(json_store, MockEmbeddingService())
        hits = asyncio.run(retriever.search("tenant rent payment", mode="semantic"))
        assert hits[0].document_id == "lease"
        assert hits[0].similarity > 0

    def test_results_sorted_by_similarity(self, json_store):
        retriever = _build(json_store, MockEmbeddingService())
        results = asyncio.run(retriever.semantic_search("confidential disclosure", limit=5))
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)
        assert results[0].document_id == "nda"

    def test_failure_falls_back_to_keyword(self, json_store):
        retriever = _build(json_store, _QueryFailingEmbeddings())
        hits = asyncio.run(retriever.search("rent", mode="semantic"))
        assert [h.document_id for h in hits] == ["lease"]
        assert hits[0].match_count == 3


class TestKeywordSearch:

    def test_counts_occurrences_case_insensitively(self, json_store):
        retriever = _build(json_store)
        results = asyncio.run(retriever.keyword_search("RENT"))
        assert [r.chunk_index for r in results] == [2, 0]
        assert [r.match_count for r in results] == [2, 1]

    def test_whole_phrase_match(self, json_store):
        retriever = _build(json_store)
        assert asyncio.run(retriever.keyword_search("thirty days notice"))[0].document_id == "nda"
        assert asyncio.run(retriever.keyword_search("rent notice")) == []

    def test_blank_query(self, json_store):
        retriever = _build(json_store)
        assert asyncio.run(retriever.keyword_search("   ")) == []

    def test_document_hit_aggregates_matches(self, json_store):
        retriever = _build(json_store)
        hits = asyncio.run(retriever.search("rent", mode="keyword"))
        assert len(hits) == 1
        assert hits[0].match_count == 3
        assert hits[0].document_name == "lease.txt"


# ---------------------------------------------------------------------------
# Hybrid search and scope
# ---------------------------------------------------------------------------

class TestHybridSearch:

    def test_combines_scores(self, json_store):
        retriever = _build(json_store, MockEmbeddingService())
        hits = asyncio.run(retriever.search("rent", mode="hybrid"))
        lease = next(h for h in hits if h.document_id == "lease")
        expected = 0.7 * lease.similarity + 0.3 * (3 / 10.0)
        assert lease.score == pytest.approx(expected)
        assert hits[0].document_id == "lease"

    def test_keyword_only_when_nothing_embedded(self, json_store):
        retriever = _build(json_store)
        hits = asyncio.run(retriever.search("rent"))
        assert [h.document_id for h in hits] == ["lease"]
        assert hits[0].score == pytest.approx(0.3 * 0.3)

    def test_chunks_capped_per_document(self, json_store):
        from execution.contract_rag.retriever import RetrievalConfig
        retriever = _build(json_store, MockEmbeddingService())
        retriever.config = RetrievalConfig(max_chunks_per_document=1)
        for hit in asyncio.run(retriever.search("the", mode="hybrid")):
            assert len(hit.chunks) == 1

    def test_limit(self, json_store):
        retriever = _build(json_store, MockEmbeddingService())
        assert len(asyncio.run(retriever.search("the", limit=1))) == 1

    def test_to_dict(self, json_store):
        retriever = _build(json_store)
        data = asyncio.run(retriever.search("rent", mode="keyword"))[0].to_dict()
        assert set(data) == {"document_id", "document_name", "score", "similarity", "match_count", "chunks"}
        assert set(data["chunks"][0]) == {
            "text", "document_id", "chunk_index", "similarity", "match_count", "metadata",
        }


class TestScope:

    def test_document_scope(self, json_store):
        retriever = _build(json_store)
        assert asyncio.run(retriever.search("shall", mode="keyword", document_id="nda"))[0].document_id == "nda"
        assert len(asyncio.run(retriever.search("shall", mode="keyword", document_id="nda"))) == 1

    def test_document_scope_beats_folder(self, json_store):
        retriever = _build(json_store)
        hits = asyncio.run(retriever.search("shall", mode="keyword", document_id="nda", folder_id="leases"))
        assert [h.document_id for h in hits] == ["nda"]

    def test_folder_scope(self, json_store):
        retriever = _build(json_store)
        hits = asyncio.run(retriever.search("shall", mode="keyword", folder_id="leases"))
        assert [h.document_id for h in hits] == ["lease"]

    def test_unknown_folder_returns_nothing(self, json_store):
        retriever = _build(json_store)
        assert asyncio.run(retriever.search("shall", folder_id="missing")) == []


class TestValidation:

    def test_empty_query(self, json_store):
        from execution.contract_rag.errors import ValidationError
        retriever = _build(json_store)
        with pytest.raises(ValidationError):
            asyncio.run(retriever.search("  "))

    def test_unknown_mode(self, json_store):
        from execution.contract_rag.errors import ValidationError
        retriever = _build(json_store)
        with pytest.raises(ValidationError):
            asyncio.run(retriever.search("rent", mode="fuzzy"))

    def test_embedding_service_defaults_to_index(self, json_store):
        service = MockEmbeddingService()
        retriever = _build(json_store, service)
        assert retriever.embedding_service is service
