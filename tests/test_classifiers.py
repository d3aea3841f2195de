"""
Tests for execution/contract_rag/classifiers.py

Covers: QueryTypeClassifier ordering, ContractTypeClassifier, RiskScorer
        thresholds and assess_complexity.
"""

import pytest


class TestQueryTypeClassifier:

    @pytest.mark.parametrize("query, expected", [
        ("Who are the parties?", "parties"),
        ("What is the monthly fee?", "payment"),
        ("When does the lease expire?", "dates"),
        ("How can I terminate early?", "termination"),
        ("Is there a cap on liability?", "liability"),
        ("Is this information confidential?", "confidentiality"),
        ("What does clause 4 say?", "terms"),
        ("Summarize the document", "general"),
    ])
    def test_english(self, query, expected):
        from execution.contract_rag.classifiers import QueryTypeClassifier
        assert QueryTypeClassifier().classify(query) == expected

    def test_first_match_wins(self):
        from execution.contract_rag.classifiers import QueryTypeClassifier
        # mentions both a party and a payment; parties is checked first
        assert QueryTypeClassifier().classify("Which party pays the fee?") == "parties"

    def test_latin_keywords_match_at_word_start(self):
        from execution.contract_rag.classifiers import QueryTypeClassifier
        assert QueryTypeClassifier().classify("Summarize the repayment schedule") == "general"

    def test_hebrew(self):
        from execution.contract_rag.classifiers import QueryTypeClassifier
        classifier = QueryTypeClassifier()
        assert classifier.classify("מי הצדדים להסכם?") == "parties"
        assert classifier.classify("מתי מסתיים ההסכם?") == "dates"

    def test_english_keywords_apply_to_other_languages(self):
        from execution.contract_rag.classifiers import QueryTypeClassifier
        assert QueryTypeClassifier().classify("מה לגבי ה-invoice?", language="he") == "payment"


class TestContractTypeClassifier:

    def test_lease(self, sample_lease_text):
        from execution.contract_rag.classifiers import ContractTypeClassifier
        assert ContractTypeClassifier().classify(sample_lease_text) == "lease"

    def test_service(self, sample_contract_text):
        from execution.contract_rag.classifiers import ContractTypeClassifier
        assert ContractTypeClassifier().classify(sample_contract_text) == "service"

    def test_general_when_nothing_matches(self):
        from execution.contract_rag.classifiers import ContractTypeClassifier
        assert ContractTypeClassifier().classify("Shopping list: apples, bread, milk.") == "general"

    def test_scores_cover_every_type(self):
        from execution.contract_rag.classifiers import ContractTypeClassifier
        from execution.contract_rag.language_patterns import CONTRACT_TYPE_PATTERNS
        scores = ContractTypeClassifier().scores("The lender charges an interest rate of 5%.")
        assert set(scores) == set(CONTRACT_TYPE_PATTERNS)
        assert scores["loan"] == 4


class TestRiskScorer:

    def test_high(self):
        from execution.contract_rag.classifiers import RiskScorer
        text = "The Supplier accepts unlimited liability and liquidated damages. Any penalty applies."
        assessment = RiskScorer().assess(text)
        assert assessment.score == 9
        assert assessment.level == "HIGH"
        assert len(assessment.indicators) == 3

    def test_medium(self):
        from execution.contract_rag.classifiers import RiskScorer
        assessment = RiskScorer().assess("The Employee shall indemnify the Company and accepts a non-compete.")
        assert assessment.level == "MEDIUM"

    def test_low(self):
        from execution.contract_rag.classifiers import RiskScorer
        assessment = RiskScorer().assess("The parties agree to cooperate.")
        assert assessment.level == "LOW"
        assert assessment.score == 0
        assert assessment.to_dict() == {"level": "LOW", "score": 0.0, "indicators": []}

    def test_thresholds_configurable(self):
        from execution.contract_rag.classifiers import ClassifierConfig, RiskScorer
        text = "The Supplier accepts unlimited liability and liquidated damages. Any penalty applies."
        scorer = RiskScorer(ClassifierConfig(risk_high_threshold=20, risk_medium_threshold=5))
        assert scorer.assess(text).level == "MEDIUM"


class TestComplexity:

    def test_analytical_is_high(self):
        from execution.contract_rag.classifiers import assess_complexity
        assert assess_complexity("Explain the termination risks") == "high"

    def test_long_query_is_high(self):
        from execution.contract_rag.classifiers import assess_complexity
        assert assess_complexity("What " + "exactly " * 20 + "is owed?") == "high"

    def test_short_is_low(self):
        from execution.contract_rag.classifiers import assess_complexity
        assert assess_complexity("Who pays?") == "low"

    def test_medium(self):
        from execution.contract_rag.classifiers import assess_complexity
        query = "What is the monthly fee payable to the service provider under the agreement?"
        assert assess_complexity(query) == "medium"
