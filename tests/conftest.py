"""
Shared fixtures and test utilities for Contract RAG tests.

Provides deterministic mock collaborators (embeddings, completions, entity
detection) and sample contracts so that all tests run without API keys,
databases, or network access.
"""

import sys
import hashlib
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

# ---------------------------------------------------------------------------
# Sample contract text
# ---------------------------------------------------------------------------
SAMPLE_CONTRACT = """SERVICES AGREEMENT

This Services Agreement ("Agreement") is entered into on January 1, 2024 by and between
Acme Holdings Inc. ("Client") and Northwind Consulting LLC ("Service Provider").

WHEREAS the Client wishes to engage the Service Provider, the parties agree as follows.

1. Services. The Service Provider shall perform the consulting services described in the
statement of work. The Service Provider shall meet the service level targets in Schedule A.

2. Payment. The Client shall pay a monthly fee of $12,500.00 within thirty days of invoice.
Late payments accrue interest at 1.5% per month.

3. Term and Termination. This Agreement continues until December 31, 2025. Either party may
terminate this Agreement upon sixty days written notice. The Client may terminate immediately
for material breach.

4. Liability. Neither party shall be liable for indirect damages. The Service Provider shall
indemnify the Client against third-party claims arising from its negligence.

5. Confidentiality. Each party shall protect the other party's confidential information and
shall not disclose it without prior written consent.
"""

SAMPLE_LEASE = """LEASE AGREEMENT

The Landlord leases the premises at 12 Harbour Street to the Tenant. The Tenant shall pay
rent of $3,200 on the first day of each month. The Landlord shall maintain the premises.
The lease term begins on March 1, 2024 and ends on February 28, 2026.
"""

SAMPLE_HEBREW = """הסכם שירותים

הואיל והצדדים מעוניינים להתקשר בהסכם זה, הוסכם כדלקמן.

1. התמורה. הלקוח ישלם לנותן השירות תשלום חודשי של 10,000 ש"ח בתוך שלושים יום.

2. סיום ההסכם. כל צד רשאי לסיים את ההסכם בהודעה מוקדמת של שישים יום.

3. אחריות. נותן השירות יישא באחריות לכל נזק שייגרם עקב רשלנותו.
"""


@pytest.fixture
def sample_contract_text():
    return SAMPLE_CONTRACT


@pytest.fixture
def sample_lease_text():
    return SAMPLE_LEASE


@pytest.fixture
def sample_hebrew_text():
    return SAMPLE_HEBREW


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """
    Deterministic mock embedding service -- never calls external APIs.

    Vectors are bag-of-words counts over a small legal vocabulary, so texts
    sharing vocabulary score higher than unrelated texts. Texts listed in
    ``fail_on`` raise a persistent embedding error.
    """

    VOCABULARY = [
        "pay", "fee", "payment", "rent", "terminat", "notice", "liab", "indemn",
        "confidential", "disclos", "party", "parties", "date", "term", "service",
        "landlord", "tenant", "premises", "breach", "damages",
    ]

    def __init__(self, fail_on=None, vectors=None):
        self.fail_on = set(fail_on or [])
        self.vectors = dict(vectors or {})
        self.embed_calls = 0
        self.query_calls = 0

    def _vector(self, text):
        if text in self.vectors:
            return list(self.vectors[text])
        lower = text.lower()
        vector = [float(lower.count(word)) for word in self.VOCABULARY]
        # Small hash-derived component so no text maps to the zero vector
        seed = int(hashlib.sha256(text.encode()).hexdigest()[:8], 16)
        vector.append(0.01 + (seed % 100) / 10000.0)
        return vector

    async def embed(self, text):
        self.embed_calls += 1
        if text in self.fail_on:
            from execution.contract_rag.errors import PersistentEmbeddingError
            raise PersistentEmbeddingError("embedding rejected")
        return self._vector(text)

    async def embed_documents(self, texts):
        return [await self.embed(t) for t in texts]

    async def embed_query(self, query):
        self.query_calls += 1
        return self._vector(query)

    @property
    def dimensions(self):
        return len(self.VOCABULARY) + 1


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# Mock completion service
# ---------------------------------------------------------------------------

class MockCompletionService:
    """Records every message list and answers with a canned reply."""

    def __init__(self, answer="The monthly fee is $12,500.00 [S1].", error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    @property
    def has_credentials(self):
        return self.error is None

    async def complete(self, messages, temperature=None, max_tokens=None):
        from execution.contract_rag.completion import CompletionResult
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return CompletionResult(text=self.answer, model="mock-model", prompt_tokens=10, completion_tokens=5)


@pytest.fixture
def mock_completion_service():
    return MockCompletionService()


class FailingEntityDetector:
    """Entity detector whose every call fails."""

    def __init__(self):
        self.calls = 0

    async def detect_entities(self, window_text):
        self.calls += 1
        raise RuntimeError("entity detector unavailable")


# ---------------------------------------------------------------------------
# Pipeline fixtures (JSON-file store under tmp_path)
# ---------------------------------------------------------------------------

@pytest.fixture
def json_store(tmp_path):
    from execution.contract_rag.storage import JsonFileIndexStore
    return JsonFileIndexStore(tmp_path / "index.json")


@pytest.fixture
def vector_index(json_store, mock_embedding_service):
    from execution.contract_rag.vector_store import VectorIndex, VectorIndexConfig
    return VectorIndex(json_store, mock_embedding_service, VectorIndexConfig(batch_size=3))


@pytest.fixture
def retriever(vector_index):
    from execution.contract_rag.retriever import Retriever
    return Retriever(vector_index)


@pytest.fixture
def conversation_store(tmp_path):
    from execution.contract_rag.conversations import ConversationStore
    return ConversationStore(tmp_path / "conversations.json")


@pytest.fixture
def orchestrator(retriever, mock_completion_service, conversation_store):
    from execution.contract_rag.orchestrator import QueryOrchestrator
    return QueryOrchestrator(retriever, mock_completion_service, conversation_store)


def make_chunks(texts):
    """Chunk records for pre-split texts, indexed in order."""
    from execution.contract_rag.chunker import Chunk
    chunks = []
    position = 0
    for index, text in enumerate(texts):
        chunks.append(Chunk(
            chunk_index=index,
            text=text,
            char_length=len(text),
            boundary_kind="structural",
            span_start=position,
            span_end=position + len(text),
        ))
        position += len(text)
    return chunks


# ---------------------------------------------------------------------------
# Singleton resets between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics_singleton():
    """Reset the MetricsCollector singleton between tests."""
    import execution.contract_rag.metrics as metrics_mod
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
    yield
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
