"""
Vector Index for Contract RAG

Durable store of chunk records (text + optional embedding + metadata), built
by batch-inserting chunker output through the embedding service.

Insert is batched and checkpointed:
- each chunk is embedded; a failed embedding stores the record with
  ``embedding=None`` (keyword-search only) instead of aborting the batch
- after each batch the records and the document entry
  (``status=processing``, ``chunk_count=processed so far``) are persisted in
  one write, then re-read and verified
- on success the entry is marked ``completed`` and verified again
- any unrecoverable failure rolls the document back to its pre-insert state

Progress is reported as an async stream of InsertProgress events, one per
batch plus a final ``completed`` event.
"""

import enum
import asyncio
import logging
from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
from typing import AsyncIterator, Callable, Optional

from .chunker import Chunk
from .errors import CheckpointError, IndexingError, ServiceError, ValidationError
from .storage import IndexStore

logger = logging.getLogger(__name__)


class DocumentStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


def record_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}_chunk_{chunk_index}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class VectorRecord:
    """A persisted chunk. ``embedding is None`` means keyword-search only."""
    id: str
    document_id: str
    chunk_index: int
    text: str
    embedding: Optional[list[float]]
    length: int
    created_at: str
    document_metadata: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "VectorRecord":
        embedding = data.get("embedding")
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            chunk_index=int(data["chunk_index"]),
            text=data["text"],
            embedding=list(embedding) if embedding else None,
            length=int(data.get("length", len(data["text"]))),
            created_at=str(data.get("created_at", "")),
            document_metadata=data.get("document_metadata") or {},
            metadata=data.get("metadata") or {},
        )


@dataclass
class DocumentIndexEntry:
    """One per ingested document; mutated by every checkpoint."""
    document_id: str
    chunk_count: int
    status: str
    created_at: str
    updated_at: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentIndexEntry":
        return cls(
            document_id=data["document_id"],
            chunk_count=int(data["chunk_count"]),
            status=str(data["status"]),
            created_at=str(data["created_at"]),
            updated_at=str(data["updated_at"]),
        )


@dataclass
class VectorIndexConfig:
    """Configuration for the vector index."""
    batch_size: int = 10


@dataclass
class InsertProgress:
    """Emitted after every verified checkpoint."""
    document_id: str
    batch_index: int
    total_batches: int
    processed_count: int
    total_chunks: int
    embedded_count: int
    status: str = DocumentStatus.PROCESSING.value

    @property
    def percent(self) -> float:
        if self.total_chunks == 0:
            return 100.0
        return round(100.0 * self.processed_count / self.total_chunks, 1)


@dataclass
class InsertResult:
    """Outcome of an insert; failures are reported here rather than raised."""
    success: bool
    document_id: str
    chunk_count: int = 0
    embedded_count: int = 0
    error: Optional[str] = None
    processed_count: int = 0


class VectorIndex:
    """
    Checkpointed vector index over a pluggable IndexStore.

    Usage:
        index = VectorIndex(JsonFileIndexStore(path), embedding_service)
        async for progress in index.insert_iter("doc1", chunks):
            print(progress.percent)

    Concurrent inserts for the same document id must be serialized by the
    caller (DocumentIngestor holds a per-document lock).
    """

    def __init__(
        self,
        store: IndexStore,
        embedding_service=None,
        config: Optional[VectorIndexConfig] = None,
    ):
        self.store = store
        self.embedding_service = embedding_service
        self.config = config or VectorIndexConfig()
        if self.config.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.config.batch_size}")

    async def insert_iter(
        self,
        document_id: str,
        chunks: list[Chunk],
        document_metadata: Optional[dict] = None,
    ) -> AsyncIterator[InsertProgress]:
        """
        Insert a document's chunks, yielding progress after each checkpoint.

        Re-inserting an existing document id supersedes it: the old records
        are removed before the first batch and restored if the insert fails.

        Raises:
            ValidationError: no document id or no chunks
            CheckpointError: a checkpoint did not read back as written (rolled back)
            IndexingError: any other failure (rolled back)
        """
        if not document_id:
            raise ValidationError("document_id is required")
        if not chunks:
            raise ValidationError(f"No chunks to insert for document {document_id}")

        document_metadata = dict(document_metadata or {})
        batch_size = self.config.batch_size
        batches = [chunks[i:i + batch_size] for i in range(0, len(chunks), batch_size)]
        total = len(chunks)

        if self.embedding_service is None:
            logger.warning(f"No embedding service configured; {document_id} will be keyword-search only")

        processed = 0
        embedded = 0
        verified = 0
        previous = None

        try:
            existing = await asyncio.to_thread(self.store.get_entry, document_id)
            if existing is not None:
                logger.info(f"Superseding existing document {document_id} ({existing['chunk_count']} chunks)")
                old_records = await asyncio.to_thread(self.store.iter_records, [document_id])
                previous = (old_records, dict(existing))
                await asyncio.to_thread(self.store.delete_document, document_id)

            created = _now()
            entry = DocumentIndexEntry(
                document_id=document_id,
                chunk_count=0,
                status=DocumentStatus.PROCESSING.value,
                created_at=created,
                updated_at=created,
            )
            await asyncio.to_thread(self.store.put_entry, entry.to_dict())

            for batch_index, batch in enumerate(batches):
                records = []
                for chunk in batch:
                    embedding = await self._embed_chunk(document_id, chunk)
                    if embedding is not None:
                        embedded += 1
                    records.append(self._build_record(document_id, chunk, embedding, document_metadata))

                processed += len(batch)
                entry.chunk_count = processed
                entry.updated_at = _now()

                await asyncio.to_thread(
                    self.store.commit_batch, [r.to_dict() for r in records], entry.to_dict(),
                )
                await self._verify(document_id, processed, DocumentStatus.PROCESSING, verified)
                verified = processed

                logger.info(
                    f"Checkpoint {batch_index + 1}/{len(batches)} for {document_id}: "
                    f"{processed}/{total} chunks ({embedded} embedded)"
                )
                yield InsertProgress(
                    document_id=document_id,
                    batch_index=batch_index,
                    total_batches=len(batches),
                    processed_count=processed,
                    total_chunks=total,
                    embedded_count=embedded,
                )

            entry.status = DocumentStatus.COMPLETED.value
            entry.updated_at = _now()
            await asyncio.to_thread(self.store.put_entry, entry.to_dict())
            await self._verify(document_id, total, DocumentStatus.COMPLETED, verified)

        except CheckpointError:
            await self._rollback(document_id, previous)
            raise
        except Exception as e:
            await self._rollback(document_id, previous)
            raise IndexingError(
                f"Insert failed for {document_id}: {e}", document_id, verified,
            ) from e

        logger.info(f"Indexed {document_id}: {total} chunks, {embedded} with embeddings")
        yield InsertProgress(
            document_id=document_id,
            batch_index=len(batches) - 1,
            total_batches=len(batches),
            processed_count=total,
            total_chunks=total,
            embedded_count=embedded,
            status=DocumentStatus.COMPLETED.value,
        )

    async def insert(
        self,
        document_id: str,
        chunks: list[Chunk],
        document_metadata: Optional[dict] = None,
        on_progress: Optional[Callable[[InsertProgress], None]] = None,
    ) -> InsertResult:
        """Drain insert_iter and report the outcome."""
        last: Optional[InsertProgress] = None
        try:
            async for progress in self.insert_iter(document_id, chunks, document_metadata):
                last = progress
                if on_progress:
                    on_progress(progress)
        except (CheckpointError, IndexingError) as e:
            logger.error(str(e))
            return InsertResult(
                success=False,
                document_id=document_id,
                error=str(e),
                processed_count=e.processed_count,
            )
        except ValidationError as e:
            return InsertResult(success=False, document_id=document_id, error=str(e))

        return InsertResult(
            success=True,
            document_id=document_id,
            chunk_count=last.processed_count,
            embedded_count=last.embedded_count,
            processed_count=last.processed_count,
        )

    async def _embed_chunk(self, document_id: str, chunk: Chunk) -> Optional[list[float]]:
        if self.embedding_service is None:
            return None
        try:
            return await self.embedding_service.embed(chunk.text)
        except ServiceError as e:
            logger.warning(
                f"Embedding failed for {document_id} chunk {chunk.chunk_index}; "
                f"storing keyword-only record: {e}"
            )
            return None

    @staticmethod
    def _build_record(
        document_id: str,
        chunk: Chunk,
        embedding: Optional[list[float]],
        document_metadata: dict,
    ) -> VectorRecord:
        metadata = dict(chunk.metadata)
        metadata.update({
            "boundary_kind": chunk.boundary_kind,
            "span_start": chunk.span_start,
            "span_end": chunk.span_end,
        })
        return VectorRecord(
            id=record_id(document_id, chunk.chunk_index),
            document_id=document_id,
            chunk_index=chunk.chunk_index,
            text=chunk.text,
            embedding=list(embedding) if embedding is not None else None,
            length=chunk.char_length,
            created_at=_now(),
            document_metadata=document_metadata,
            metadata=metadata,
        )

    async def _verify(
        self,
        document_id: str,
        expected: int,
        status: DocumentStatus,
        last_verified: int,
    ) -> None:
        """Re-read the persisted state and compare it with what was written."""
        count = await asyncio.to_thread(self.store.count_records, document_id)
        entry = await asyncio.to_thread(self.store.get_entry, document_id)

        if entry is None:
            raise CheckpointError("document entry missing after write", document_id, last_verified)
        if count != expected:
            raise CheckpointError(
                f"expected {expected} records, found {count}", document_id, last_verified,
            )
        if int(entry["chunk_count"]) != expected or entry["status"] != status.value:
            raise CheckpointError(
                f"entry reads back as {entry['status']}/{entry['chunk_count']}, "
                f"expected {status.value}/{expected}",
                document_id,
                last_verified,
            )

    async def _rollback(self, document_id: str, previous: Optional[tuple] = None) -> None:
        """
        Delete everything written for the document, then restore the
        superseded version if there was one. Never raises.

        Args:
            previous: (records, entry) read before the old version was removed
        """
        try:
            removed = await asyncio.to_thread(self.store.delete_document, document_id)
            logger.warning(f"Rolled back {document_id}: removed {removed} records")
            if previous is not None:
                old_records, old_entry = previous
                await asyncio.to_thread(self.store.commit_batch, old_records, old_entry)
                logger.info(f"Restored previous version of {document_id} ({len(old_records)} records)")
        except Exception as e:
            logger.error(f"Rollback failed for {document_id}: {e}")
            try:
                entry = await asyncio.to_thread(self.store.get_entry, document_id)
                if entry is not None:
                    entry["status"] = DocumentStatus.ROLLED_BACK.value
                    entry["updated_at"] = _now()
                    await asyncio.to_thread(self.store.put_entry, entry)
            except Exception as mark_error:
                logger.error(f"Could not mark {document_id} as rolled back: {mark_error}")

    async def remove_document(self, document_id: str) -> bool:
        """Remove a document's records and entry. Idempotent."""
        removed = await asyncio.to_thread(self.store.delete_document, document_id)
        if removed:
            logger.info(f"Removed {removed} records for document {document_id}")
        else:
            logger.info(f"Document {document_id} had no records to remove")
        return True

    async def get_document(self, document_id: str) -> Optional[DocumentIndexEntry]:
        data = await asyncio.to_thread(self.store.get_entry, document_id)
        return DocumentIndexEntry.from_dict(data) if data else None

    async def list_documents(self) -> list[DocumentIndexEntry]:
        entries = await asyncio.to_thread(self.store.list_entries)
        return [DocumentIndexEntry.from_dict(e) for e in entries]

    async def get_records(self, document_ids: Optional[list[str]] = None) -> list[VectorRecord]:
        rows = await asyncio.to_thread(self.store.iter_records, document_ids)
        return [VectorRecord.from_dict(r) for r in rows]

    async def get_stats(self) -> dict:
        """Index health counters."""
        counts = await asyncio.to_thread(self.store.counts)
        return {
            "total_chunks": counts["total_records"],
            "chunks_with_embeddings": counts["records_with_embeddings"],
            "total_documents": counts["total_documents"],
            "storage_type": self.store.storage_type,
            "has_embedding_service": self.embedding_service is not None,
        }
