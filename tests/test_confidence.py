"""
Tests for execution/contract_rag/confidence.py

Covers: factor computation, level buckets, monotonicity in source
        relevance, keyword-only evidence and the empty-retrieval case.
"""

import pytest


def _hit(similarity=0.0, match_count=0, chunk_count=1, document_id="doc1"):
    from execution.contract_rag.retriever import DocumentHit, SearchResult
    chunks = [
        SearchResult(text=f"chunk {i}", document_id=document_id, chunk_index=i, similarity=similarity)
        for i in range(chunk_count)
    ]
    return DocumentHit(
        document_id=document_id,
        score=similarity,
        chunks=chunks,
        similarity=similarity,
        match_count=match_count,
    )


class TestConfidenceConfig:

    def test_weights_must_sum_to_one(self):
        from execution.contract_rag.confidence import ConfidenceConfig
        with pytest.raises(ValueError):
            ConfidenceConfig(source_relevance_weight=0.9)


class TestConfidenceScorer:

    def test_no_results(self):
        from execution.contract_rag.confidence import ConfidenceScorer
        from execution.contract_rag.language_patterns import CONFIDENCE_EXPLANATIONS
        score = ConfidenceScorer().score([], "What is the fee?", "payment")
        assert score.level == "MINIMAL"
        assert score.overall == 0.0
        assert score.explanation == CONFIDENCE_EXPLANATIONS["NO_RESULTS"]

    def test_strong_specialized_evidence_is_high(self):
        from execution.contract_rag.confidence import ConfidenceScorer
        score = ConfidenceScorer().score([_hit(similarity=0.9, chunk_count=3)], "What is the monthly fee?", "payment")
        assert score.overall == pytest.approx(0.4 * 0.99 + 0.3 + 0.2 * 0.9 + 0.1)
        assert score.level == "HIGH"
        assert score.factors["source_relevance"] == pytest.approx(0.99)

    def test_keyword_only_evidence(self):
        from execution.contract_rag.confidence import ConfidenceScorer
        score = ConfidenceScorer().score([_hit(match_count=5)], "summarize the agreement please", "general")
        assert score.factors["source_relevance"] == pytest.approx(0.5)
        assert score.overall == pytest.approx(0.52)
        assert score.level == "LOW"

    def test_relevance_capped_at_one(self):
        from execution.contract_rag.confidence import ConfidenceScorer
        score = ConfidenceScorer().score([_hit(similarity=0.98, chunk_count=3)], "Who are the parties?", "parties")
        assert score.factors["source_relevance"] == 1.0
        assert 0.0 <= score.overall <= 1.0

    def test_monotonic_in_similarity(self):
        from execution.contract_rag.confidence import ConfidenceScorer
        scorer = ConfidenceScorer()
        overall = [
            scorer.score([_hit(similarity=s, chunk_count=2)], "What are the payment terms?", "payment").overall
            for s in (0.1, 0.3, 0.5, 0.7, 0.9)
        ]
        assert overall == sorted(overall)
        assert overall[0] < overall[-1]

    def test_monotonic_with_keyword_matches(self):
        from execution.contract_rag.confidence import ConfidenceScorer
        scorer = ConfidenceScorer()
        query = "What are the payment terms?"
        overall = [
            scorer.score([_hit(similarity=s, match_count=10)], query, "payment").overall
            for s in (0.0, 0.2, 0.5, 0.9)
        ]
        assert overall == sorted(overall)
        assert scorer.score([_hit(similarity=0.2, match_count=4)], query, "payment").factors[
            "source_relevance"
        ] == pytest.approx(0.44)

    def test_query_length_factor(self):
        from execution.contract_rag.confidence import ConfidenceScorer
        scorer = ConfidenceScorer()
        hits = [_hit(similarity=0.5)]
        assert scorer.score(hits, "fee?", "payment").factors["response_quality"] == 0.5
        assert scorer.score(hits, "word " * 60, "general").factors["response_quality"] == 0.7
        assert scorer.score(hits, "what is the fee", "payment").factors["response_quality"] == 1.0

    @pytest.mark.parametrize("overall, level", [
        (0.85, "HIGH"), (0.8, "HIGH"), (0.65, "MEDIUM"), (0.45, "LOW"), (0.1, "MINIMAL"),
    ])
    def test_levels(self, overall, level):
        from execution.contract_rag.confidence import ConfidenceScorer
        assert ConfidenceScorer().level_for(overall) == level

    def test_to_dict_rounds(self):
        from execution.contract_rag.confidence import ConfidenceScore
        data = ConfidenceScore(0.123456, "MINIMAL", "x", {"source_relevance": 0.33333}).to_dict()
        assert data == {
            "overall": 0.1235,
            "level": "MINIMAL",
            "explanation": "x",
            "factors": {"source_relevance": 0.3333},
        }
