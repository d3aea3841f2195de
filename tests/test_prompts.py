"""
Tests for execution/contract_rag/prompts.py

Covers: token/cost estimates, context formatting with citation ids,
        minimal vs full prompt selection, budget downgrade and personas.
"""

import pytest


def _hit(document_id, texts, similarity=0.8, file_name=None):
    from execution.contract_rag.retriever import DocumentHit, SearchResult
    chunks = [
        SearchResult(text=t, document_id=document_id, chunk_index=i, similarity=similarity)
        for i, t in enumerate(texts)
    ]
    return DocumentHit(
        document_id=document_id,
        score=similarity,
        chunks=chunks,
        similarity=similarity,
        document_metadata={"file_name": file_name} if file_name else {},
    )


class TestEstimates:

    def test_tokens_round_up(self):
        from execution.contract_rag.prompts import estimate_tokens
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0

    def test_cost(self):
        from execution.contract_rag.prompts import estimate_cost
        assert estimate_cost(2000, 0.03) == pytest.approx(0.06)


class TestFormatContext:

    def test_sequential_source_ids(self):
        from execution.contract_rag.prompts import format_context
        context, citations = format_context([
            _hit("lease", ["Rent is $3,200.", "Deposit is $6,400."], file_name="lease.txt"),
            _hit("nda", ["Term is two years."]),
        ])
        assert [c.source_id for c in citations] == ["S1", "S2", "S3"]
        assert citations[2].document_name == "nda"
        assert "[S1] Document: lease.txt (chunk 1, 80% match)\nRent is $3,200." in context
        assert "[S3] Document: nda" in context

    def test_keyword_chunk_has_no_percentage(self):
        from execution.contract_rag.prompts import format_context
        context, _ = format_context([_hit("lease", ["Rent is due."], similarity=0.0)])
        assert context == "[S1] Document: lease (chunk 1)\nRent is due."

    def test_localized_labels(self):
        from execution.contract_rag.prompts import format_context
        context, _ = format_context([_hit("d", ["טקסט"])], language="he")
        assert context.startswith("[S1] מסמך: d (קטע 1")

    def test_citation_to_dict(self):
        from execution.contract_rag.prompts import format_context
        _, citations = format_context([_hit("lease", ["x"], similarity=0.123456)])
        assert citations[0].to_dict() == {
            "source_id": "S1",
            "document_id": "lease",
            "document_name": "lease",
            "chunk_index": 0,
            "similarity": 0.1235,
        }


class TestPromptSelector:

    def test_simple_high_confidence_uses_minimal(self):
        from execution.contract_rag.prompts import PromptSelector
        plan = PromptSelector().select("What is the fee?", "[S1] ...", "payment", "HIGH", "low")
        assert plan.variant == "minimal"
        assert "What is the fee?" in plan.prompt

    def test_simple_query_threshold_comes_from_classifier(self):
        from execution.contract_rag.classifiers import ClassifierConfig, assess_complexity
        from execution.contract_rag.prompts import PromptSelector
        query = "What is the monthly fee the client pays under section four of this agreement?"
        config = ClassifierConfig(simple_query_chars=200, complex_query_chars=300)

        complexity = assess_complexity(query, "en", config)
        assert complexity == "low"
        assert PromptSelector().select(query, "[S1] ...", "payment", "HIGH", complexity).variant == "minimal"
        assert assess_complexity(query, "en") == "medium"

    @pytest.mark.parametrize("query_type, confidence, complexity", [
        ("general", "HIGH", "low"),
        ("payment", "MEDIUM", "low"),
        ("payment", "HIGH", "high"),
        ("liability", "HIGH", "low"),
    ])
    def test_otherwise_full(self, query_type, confidence, complexity):
        from execution.contract_rag.prompts import PromptSelector
        plan = PromptSelector().select("What is the fee?", "[S1] ...", query_type, confidence, complexity)
        assert plan.variant == "full"
        assert "IDENTIFY" in plan.prompt

    def test_full_carries_contract_type_and_risk(self):
        from execution.contract_rag.prompts import PromptSelector
        plan = PromptSelector().select(
            "Explain the risks", "ctx", "general", "LOW", "high", contract_type="lease", risk_level="HIGH",
        )
        assert "contract type: lease" in plan.prompt
        assert "risk level: HIGH" in plan.prompt

    def test_over_budget_downgrades(self):
        from execution.contract_rag.prompts import PromptSelector, PromptConfig
        selector = PromptSelector(PromptConfig(max_prompt_tokens=100))
        plan = selector.select("Explain the risks", "x" * 2000, "general", "LOW", "high")
        assert plan.variant == "minimal"
        assert plan.reason == "over budget"

    def test_over_cost_downgrades(self):
        from execution.contract_rag.prompts import PromptSelector, PromptConfig
        selector = PromptSelector(PromptConfig(cost_per_1k_tokens=100.0, max_prompt_cost=0.05))
        plan = selector.select("Explain the risks", "ctx", "general", "LOW", "high")
        assert plan.variant == "minimal"

    def test_estimate_includes_system_prompt(self):
        from execution.contract_rag.prompts import PromptSelector
        selector = PromptSelector()
        bare = selector.select("What is the fee?", "ctx", "payment", "HIGH", "low")
        with_system = selector.select("What is the fee?", "ctx", "payment", "HIGH", "low", system_prompt="x" * 400)
        assert with_system.estimated_tokens == bare.estimated_tokens + 100


class TestPersonaRegistry:

    def test_default_and_lookup(self):
        from execution.contract_rag.prompts import PersonaRegistry
        registry = PersonaRegistry()
        assert registry.get().id == "legal_advisor"
        assert registry.get("legal_writer").id == "legal_writer"

    def test_unknown_falls_back(self):
        from execution.contract_rag.prompts import PersonaRegistry
        assert PersonaRegistry().get("pirate").id == "legal_advisor"

    def test_register(self):
        from execution.contract_rag.prompts import Persona, PersonaRegistry
        registry = PersonaRegistry()
        registry.register(Persona(id="auditor", system_prompt="You audit contracts."))
        assert registry.get("auditor").to_dict()["name"] == "auditor"
        assert len(registry.list()) == 3

    def test_bad_default(self):
        from execution.contract_rag.prompts import PersonaRegistry
        with pytest.raises(ValueError):
            PersonaRegistry(default_id="missing")
