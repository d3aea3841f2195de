"""
Contract RAG - retrieval pipeline for contracts and legal documents

This module provides:
- Structure- and entity-aware chunking that never splits amounts, dates or names
- A checkpointed vector index with rollback on failed inserts
- Semantic, keyword and hybrid retrieval scoped to a document, folder or everything
- Query orchestration with intent, contract-type and risk classification,
  confidence scoring and cost-aware prompt selection
- English, Hebrew and Arabic queries and documents
"""

from .chunker import Chunk, ChunkOptions, ContractChunker
from .embeddings import get_embedding_service
from .storage import JsonFileIndexStore, PostgresIndexStore
from .vector_store import VectorIndex
from .retriever import Retriever
from .ingestion import DocumentIngestor
from .orchestrator import QueryOptions, QueryOrchestrator

__all__ = [
    "Chunk",
    "ChunkOptions",
    "ContractChunker",
    "get_embedding_service",
    "JsonFileIndexStore",
    "PostgresIndexStore",
    "VectorIndex",
    "Retriever",
    "DocumentIngestor",
    "QueryOptions",
    "QueryOrchestrator",
]

__version__ = "0.1.0"
