"""
FastAPI Backend for Contract RAG

REST endpoints for chunking, indexing, search, question answering and
conversation management over a local contract index.

Run with: uvicorn execution.contract_rag.api:app --host 0.0.0.0 --port 8000
"""

import os
import json
import time
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, UploadFile, File, Form
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    ChunkRequest, ChunkResponse, ChunkInfo,
    InsertChunksRequest, InsertResponse, UploadResponse,
    SearchRequest, SearchResponse, SearchHit,
    QueryRequest, QueryResponse,
    ConversationSummary, StatsResponse, HealthResponse,
)
from .chunker import Chunk, ChunkOptions, ContractChunker, detect_document_type
from .config import RAGSettings
from .errors import RAGError, ValidationError
from .metrics import get_metrics_collector
from .orchestrator import QueryOptions

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Contract RAG API",
    description="REST API for contract retrieval and question answering in English, Hebrew and Arabic",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Service Container - builds and caches the pipeline collaborators
# =============================================================================

class ServiceContainer:
    """Lazily wires store, index, retriever, ingestor and orchestrator."""

    def __init__(
        self,
        settings: Optional[RAGSettings] = None,
        embedding_service=None,
        completion_service=None,
        entity_detector=None,
    ):
        self._settings = settings
        self._store = None
        self._embeddings = embedding_service
        self._completion = completion_service
        self._entity_detector = entity_detector
        self._index = None
        self._retriever = None
        self._ingestor = None
        self._orchestrator = None
        self._chunker = None

    @property
    def settings(self) -> RAGSettings:
        if self._settings is None:
            self._settings = RAGSettings.from_env()
            self._settings.configure_logging()
        return self._settings

    def get_store(self):
        if self._store is None:
            settings = self.settings
            if settings.store_backend == "postgres":
                from .storage import PostgresIndexStore
                store = PostgresIndexStore(settings.postgres_url)
                store.connect()
                store.initialize_schema()
            else:
                from .storage import JsonFileIndexStore
                settings.data_dir.mkdir(parents=True, exist_ok=True)
                store = JsonFileIndexStore(settings.index_path)
            self._store = store
        return self._store

    def get_embedding_service(self):
        """None when the configured provider has no credentials (keyword search only)."""
        if self._embeddings is None:
            from .embeddings import get_embedding_service
            settings = self.settings
            key = settings.voyage_api_key if settings.embedding_provider == "voyage" else settings.openai_api_key
            if not key:
                logger.warning(
                    f"No {settings.embedding_provider} API key; documents will be indexed without embeddings"
                )
                return None
            self._embeddings = get_embedding_service(
                provider=settings.embedding_provider,
                model=settings.embedding_model,
                cache_dir=str(settings.embedding_cache_dir),
            )
        return self._embeddings

    def get_completion_service(self):
        if self._completion is None:
            from .completion import CompletionConfig, CompletionService
            self._completion = CompletionService(
                CompletionConfig(model=self.settings.completion_model)
            )
        return self._completion

    def get_chunker(self) -> ContractChunker:
        if self._chunker is None:
            detector = self._entity_detector
            if detector is None:
                from .entities import RegexEntityDetector
                detector = RegexEntityDetector()
            self._chunker = ContractChunker(entity_detector=detector)
        return self._chunker

    def get_index(self):
        if self._index is None:
            from .vector_store import VectorIndex, VectorIndexConfig
            self._index = VectorIndex(
                self.get_store(),
                self.get_embedding_service(),
                VectorIndexConfig(batch_size=self.settings.vector_batch_size),
            )
        return self._index

    def get_retriever(self):
        if self._retriever is None:
            from .retriever import Retriever
            self._retriever = Retriever(self.get_index(), self.get_embedding_service())
        return self._retriever

    def get_ingestor(self):
        if self._ingestor is None:
            from .ingestion import DocumentIngestor
            self._ingestor = DocumentIngestor(self.get_index(), chunker=self.get_chunker())
        return self._ingestor

    def get_orchestrator(self):
        if self._orchestrator is None:
            from .conversations import ConversationStore
            from .orchestrator import QueryOrchestrator
            from .prompts import PromptConfig, PromptSelector
            settings = self.settings
            settings.data_dir.mkdir(parents=True, exist_ok=True)
            self._orchestrator = QueryOrchestrator(
                retriever=self.get_retriever(),
                completion_service=self.get_completion_service(),
                conversation_store=ConversationStore(settings.conversations_path),
                prompt_selector=PromptSelector(PromptConfig(
                    cost_per_1k_tokens=settings.cost_per_1k_tokens,
                    max_prompt_tokens=settings.max_prompt_tokens,
                )),
            )
        return self._orchestrator


_container = ServiceContainer()


def _chunk_options(request: ChunkRequest, text: str) -> ChunkOptions:
    return ChunkOptions(
        target_size=request.target_size,
        overlap=request.overlap,
        document_type=request.document_type or detect_document_type(text),
        use_entity_detection=request.use_entity_detection,
    )


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    storage = "unknown"
    try:
        storage = _container.get_store().storage_type
    except Exception as e:
        logger.warning(f"Health check: storage unavailable: {e}")
        storage = "unavailable"

    return HealthResponse(
        status="ok",
        version=__version__,
        storage=storage,
        embeddings=_container.get_embedding_service() is not None,
        completions=_container.get_completion_service().has_credentials,
    )


@app.get("/api/v1/stats", response_model=StatsResponse)
async def get_stats():
    """Index counters plus query and ingestion metrics."""
    try:
        stats = await _container.get_index().get_stats()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return StatsResponse(**stats, metrics=get_metrics_collector().get_metrics_dict())


@app.post("/api/v1/chunk", response_model=ChunkResponse)
async def chunk_text(request: ChunkRequest):
    """Chunk text without indexing it."""
    try:
        options = _chunk_options(request, request.text)
        chunks = await _container.get_chunker().chunk(request.text, options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ChunkResponse(
        document_type=options.document_type,
        chunks=[ChunkInfo(**c.to_dict()) for c in chunks],
    )


@app.post("/api/v1/documents/{document_id}/chunks", response_model=InsertResponse)
async def insert_chunks(document_id: str, request: InsertChunksRequest):
    """Index pre-chunked text under a document id (supersedes an existing one)."""
    chunks = [Chunk.from_dict(c.model_dump()) for c in request.chunks]
    result = await _container.get_index().insert(document_id, chunks, _document_metadata(request))
    return InsertResponse(
        success=result.success,
        document_id=result.document_id,
        chunk_count=result.chunk_count,
        embedded_count=result.embedded_count,
        processed_count=result.processed_count,
        error=result.error,
    )


@app.post("/api/v1/documents/{document_id}/chunks/stream")
async def insert_chunks_stream(document_id: str, request: InsertChunksRequest):
    """Index pre-chunked text, streaming one NDJSON progress line per checkpoint."""
    chunks = [Chunk.from_dict(c.model_dump()) for c in request.chunks]
    index = _container.get_index()

    async def generate():
        try:
            async for progress in index.insert_iter(document_id, chunks, _document_metadata(request)):
                yield json.dumps({
                    "type": "progress",
                    "document_id": progress.document_id,
                    "processed": progress.processed_count,
                    "total": progress.total_chunks,
                    "embedded": progress.embedded_count,
                    "percent": progress.percent,
                    "status": progress.status,
                }) + "\n"
        except RAGError as e:
            logger.error(f"Streaming insert failed for {document_id}: {e}")
            yield json.dumps({
                "type": "error",
                "document_id": document_id,
                "error": str(e),
                "processed": getattr(e, "processed_count", 0),
            }) + "\n"

    return StreamingResponse(generate(), media_type="application/x-ndjson")


def _document_metadata(request: InsertChunksRequest) -> dict:
    metadata = {}
    if request.file_name:
        metadata["file_name"] = request.file_name
    if request.folder_id:
        metadata["folder_id"] = request.folder_id
    return metadata


@app.post("/api/v1/documents/upload", response_model=UploadResponse)
async def upload_document(
    file: UploadFile = File(...),
    folder_id: Optional[str] = Form(None),
    document_id: Optional[str] = Form(None),
):
    """Upload a .txt or .md document and index it."""
    if not file.filename.lower().endswith((".txt", ".md")):
        raise HTTPException(status_code=400, detail="Only .txt and .md files are supported")

    content = await file.read()
    text = content.decode("utf-8", errors="replace")
    result = await _container.get_ingestor().ingest_text(
        text, file_name=file.filename, folder_id=folder_id, document_id=document_id,
    )
    return UploadResponse(**result.to_dict())


@app.delete("/api/v1/documents/{document_id}")
async def delete_document(document_id: str):
    """Remove a document and all its records. Removing an unknown id succeeds."""
    try:
        await _container.get_index().remove_document(document_id)
        return {"status": "deleted", "document_id": document_id}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/v1/search", response_model=SearchResponse)
async def search(request: SearchRequest):
    """Semantic, keyword or hybrid search grouped per document."""
    start_time = time.time()
    try:
        hits = await _container.get_retriever().search(
            request.query,
            mode=request.mode,
            limit=request.limit,
            document_id=request.document_id,
            folder_id=request.folder_id,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    return SearchResponse(
        results=[SearchHit(**hit.to_dict()) for hit in hits],
        latency_ms=(time.time() - start_time) * 1000,
    )


@app.post("/api/v1/query", response_model=QueryResponse)
async def query_documents(request: QueryRequest):
    """Answer a question from the indexed contracts, with citations."""
    start_time = time.time()
    options = QueryOptions(
        search_mode=request.search_mode,
        max_results=request.max_results,
        use_conversation_context=request.use_conversation_context,
        document_id=request.document_id,
        folder_id=request.folder_id,
        persona_id=request.persona_id,
    )
    response = await _container.get_orchestrator().query(
        request.query, conversation_id=request.conversation_id, options=options,
    )
    return QueryResponse(**response.to_dict(), latency_ms=(time.time() - start_time) * 1000)


@app.get("/api/v1/conversations", response_model=list[ConversationSummary])
async def list_conversations():
    """Most recently updated conversations first."""
    return await _container.get_orchestrator().list_conversations()


@app.delete("/api/v1/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str):
    deleted = await _container.get_orchestrator().delete_conversation(conversation_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"status": "deleted", "conversation_id": conversation_id}

