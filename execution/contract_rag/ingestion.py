"""
Document Ingestion for Contract RAG

Extract -> detect document type -> chunk -> insert, serialized per document
id. Text extraction is a collaborator: PlainTextExtractor handles .txt and
.md locally; PDF/DOCX extractors plug in through the TextExtractor protocol.
"""

import time
import uuid
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from dataclasses import dataclass, replace
from typing import Optional, Protocol

from .chunker import ChunkOptions, ContractChunker, detect_document_type
from .errors import RAGError, ValidationError
from .metrics import get_metrics_collector
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)


class TextExtractor(Protocol):
    """Turns a file into plain text."""

    def supports(self, path: Path) -> bool:
        ...

    def extract(self, path: Path) -> str:
        ...


class PlainTextExtractor:
    """Reads UTF-8 text and markdown files."""

    SUFFIXES = (".txt", ".md")

    def supports(self, path: Path) -> bool:
        return path.suffix.lower() in self.SUFFIXES

    def extract(self, path: Path) -> str:
        if not self.supports(path):
            raise ValidationError(
                f"Unsupported file type {path.suffix or '(none)'}; expected one of {', '.join(self.SUFFIXES)}"
            )
        return path.read_text(encoding="utf-8", errors="replace")


@dataclass
class IngestionResult:
    success: bool
    document_id: str
    file_name: str
    chunk_count: int = 0
    document_type: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "document_id": self.document_id,
            "file_name": self.file_name,
            "chunk_count": self.chunk_count,
            "document_type": self.document_type,
            "error": self.error,
        }


class DocumentIngestor:
    """
    Ingests files into a VectorIndex.

    Two ingestions of the same document id never interleave; different
    documents proceed concurrently.
    """

    def __init__(
        self,
        index: VectorIndex,
        chunker: Optional[ContractChunker] = None,
        extractors: Optional[list[TextExtractor]] = None,
        chunk_options: Optional[ChunkOptions] = None,
        metrics=None,
    ):
        self.index = index
        self.chunker = chunker or ContractChunker()
        self.extractors = extractors or [PlainTextExtractor()]
        self.chunk_options = chunk_options or ChunkOptions()
        self.metrics = metrics or get_metrics_collector()
        # document_id -> (lock, tasks holding or waiting for it)
        self._locks: dict[str, list] = {}

    @asynccontextmanager
    async def _document_lock(self, document_id: str):
        slot = self._locks.setdefault(document_id, [asyncio.Lock(), 0])
        slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            slot[1] -= 1
            if slot[1] == 0:
                del self._locks[document_id]

    def _extract(self, path: Path) -> str:
        if not path.exists():
            raise ValidationError(f"Document not found: {path}")
        for extractor in self.extractors:
            if extractor.supports(path):
                return extractor.extract(path)
        raise ValidationError(f"No extractor available for {path.suffix or path.name}")

    async def ingest(
        self,
        file_path,
        file_name: Optional[str] = None,
        folder_id: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> IngestionResult:
        """
        Ingest one file.

        Failures are reported in the result, never raised.
        """
        path = Path(file_path)
        file_name = file_name or path.name
        document_id = document_id or str(uuid.uuid4())
        start = time.time()

        async with self._document_lock(document_id):
            try:
                text = await asyncio.to_thread(self._extract, path)
                if not text.strip():
                    raise ValidationError(f"No text could be extracted from {file_name}")
                return await self._ingest_text(text, document_id, file_name, folder_id, start)
            except (RAGError, OSError) as e:
                logger.error(f"Ingestion failed for {file_name} ({document_id}): {e}")
                self.metrics.record_ingestion_failure(document_id, type(e).__name__)
                return IngestionResult(
                    success=False, document_id=document_id, file_name=file_name, error=str(e),
                )

    async def ingest_text(
        self,
        text: str,
        file_name: str,
        folder_id: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> IngestionResult:
        """Ingest already-extracted text (uploads, other extractors)."""
        document_id = document_id or str(uuid.uuid4())
        start = time.time()

        async with self._document_lock(document_id):
            try:
                if not text or not text.strip():
                    raise ValidationError(f"No text could be extracted from {file_name}")
                return await self._ingest_text(text, document_id, file_name, folder_id, start)
            except RAGError as e:
                logger.error(f"Ingestion failed for {file_name} ({document_id}): {e}")
                self.metrics.record_ingestion_failure(document_id, type(e).__name__)
                return IngestionResult(
                    success=False, document_id=document_id, file_name=file_name, error=str(e),
                )

    async def _ingest_text(
        self,
        text: str,
        document_id: str,
        file_name: str,
        folder_id: Optional[str],
        start: float,
    ) -> IngestionResult:
        document_type = detect_document_type(text)
        options = replace(self.chunk_options, document_type=document_type)
        chunks = await self.chunker.chunk(text, options)
        logger.info(f"Chunked {file_name}: {len(chunks)} chunks (type={document_type})")

        document_metadata = {"file_name": file_name, "document_type": document_type}
        if folder_id:
            document_metadata["folder_id"] = folder_id

        result = await self.index.insert(document_id, chunks, document_metadata)
        if not result.success:
            self.metrics.record_ingestion_failure(document_id, "IndexingError")
            return IngestionResult(
                success=False,
                document_id=document_id,
                file_name=file_name,
                document_type=document_type,
                error=result.error,
            )

        duration_ms = (time.time() - start) * 1000
        self.metrics.record_ingestion(document_id, result.chunk_count, duration_ms)
        return IngestionResult(
            success=True,
            document_id=document_id,
            file_name=file_name,
            chunk_count=result.chunk_count,
            document_type=document_type,
        )
