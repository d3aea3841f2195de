"""
Pydantic models for the Contract RAG FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field


class ChunkRequest(BaseModel):
    """Request body for the chunk endpoint."""
    text: str = Field(..., max_length=2_000_000)
    target_size: int = Field(default=512, ge=50, le=8000)
    overlap: int = Field(default=50, ge=0, le=2000)
    document_type: Optional[str] = None  # detected when omitted
    use_entity_detection: bool = True


class ChunkInfo(BaseModel):
    chunk_index: int
    text: str
    char_length: int
    boundary_kind: str
    span_start: int
    span_end: int
    metadata: dict = {}


class ChunkResponse(BaseModel):
    document_type: str
    chunks: list[ChunkInfo]


class InsertChunksRequest(BaseModel):
    """Request body for inserting pre-chunked text under a document id."""
    chunks: list[ChunkInfo] = Field(..., min_length=1)
    file_name: Optional[str] = None
    folder_id: Optional[str] = None


class InsertResponse(BaseModel):
    success: bool
    document_id: str
    chunk_count: int = 0
    embedded_count: int = 0
    processed_count: int = 0
    error: Optional[str] = None


class UploadResponse(BaseModel):
    """Response body for document upload."""
    success: bool
    document_id: str
    file_name: str
    chunk_count: int = 0
    document_type: Optional[str] = None
    error: Optional[str] = None


class SearchRequest(BaseModel):
    """Request body for the search endpoint."""
    query: str = Field(..., min_length=1, max_length=2000)
    mode: str = Field(default="hybrid", pattern=r"^(semantic|keyword|hybrid)$")
    limit: int = Field(default=5, ge=1, le=50)
    document_id: Optional[str] = None
    folder_id: Optional[str] = None


class SearchChunk(BaseModel):
    text: str
    chunk_index: int
    similarity: float
    match_count: int
    metadata: dict = {}


class SearchHit(BaseModel):
    """One document in a search response."""
    document_id: str
    document_name: str
    score: float
    similarity: float
    match_count: int
    chunks: list[SearchChunk]


class SearchResponse(BaseModel):
    results: list[SearchHit]
    latency_ms: float


class QueryRequest(BaseModel):
    """Request body for RAG query endpoint."""
    query: str = Field(..., min_length=1, max_length=2000)
    conversation_id: Optional[str] = None
    search_mode: str = Field(default="hybrid", pattern=r"^(semantic|keyword|hybrid)$")
    max_results: int = Field(default=5, ge=1, le=20)
    use_conversation_context: bool = True
    document_id: Optional[str] = None
    folder_id: Optional[str] = None
    persona_id: Optional[str] = None


class SourceInfo(BaseModel):
    """Document cited in a query response."""
    document_id: str
    document_name: str
    similarity: float
    matches: int
    chunks: int


class CitationInfo(BaseModel):
    source_id: str
    document_id: str
    document_name: str
    chunk_index: int
    similarity: float


class ConfidenceInfo(BaseModel):
    overall: float
    level: str
    explanation: str
    factors: dict = {}


class QueryResponse(BaseModel):
    """Response body for RAG query endpoint."""
    answer: str
    conversation_id: str
    language: str
    scope: str
    sources: list[SourceInfo]
    citations: list[CitationInfo]
    query_type: str
    contract_type: str
    risk_level: str
    confidence: Optional[ConfidenceInfo] = None
    prompt_variant: Optional[str] = None
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    follow_up_questions: list[str] = []
    fallback: bool = False
    error: Optional[str] = None
    latency_ms: float


class ConversationSummary(BaseModel):
    id: str
    persona_id: str
    created_at: str
    updated_at: str
    message_count: int
    last_query: str


class StatsResponse(BaseModel):
    """Index counters plus process metrics."""
    total_chunks: int
    chunks_with_embeddings: int
    total_documents: int
    storage_type: str
    has_embedding_service: bool
    metrics: dict = {}


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    storage: str
    embeddings: bool
    completions: bool
