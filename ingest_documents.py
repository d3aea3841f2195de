"""
Batch ingestion of contract text files into the local Contract RAG index.

Processes every .txt and .md file in a directory:
- Chunker: ContractChunker with regex entity detection (or LLM with --llm-entities)
- Embeddings: provider from EMBEDDING_PROVIDER (skipped without an API key)
- Storage: RAG_STORE_BACKEND (JSON file under RAG_DATA_DIR, or PostgreSQL)

Usage:
    python ingest_documents.py --dir ~/contracts/
    python ingest_documents.py --dir ~/contracts/ --folder-id leases --target-size 800
"""

import sys
import time
import asyncio
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_ingestor(settings, target_size: int, overlap: int, llm_entities: bool):
    from execution.contract_rag.chunker import ChunkOptions, ContractChunker
    from execution.contract_rag.entities import LLMEntityDetector, RegexEntityDetector
    from execution.contract_rag.embeddings import get_embedding_service
    from execution.contract_rag.ingestion import DocumentIngestor
    from execution.contract_rag.storage import JsonFileIndexStore, PostgresIndexStore
    from execution.contract_rag.vector_store import VectorIndex, VectorIndexConfig

    if settings.store_backend == "postgres":
        store = PostgresIndexStore(settings.postgres_url)
        store.connect()
        store.initialize_schema()
    else:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        store = JsonFileIndexStore(settings.index_path)

    key = settings.voyage_api_key if settings.embedding_provider == "voyage" else settings.openai_api_key
    embedding_service = None
    if key:
        embedding_service = get_embedding_service(
            provider=settings.embedding_provider,
            model=settings.embedding_model,
            cache_dir=str(settings.embedding_cache_dir),
        )
    else:
        logger.warning(f"No {settings.embedding_provider} API key: indexing for keyword search only")

    detector = LLMEntityDetector() if llm_entities else RegexEntityDetector()
    index = VectorIndex(store, embedding_service, VectorIndexConfig(batch_size=settings.vector_batch_size))
    return DocumentIngestor(
        index,
        chunker=ContractChunker(entity_detector=detector),
        chunk_options=ChunkOptions(target_size=target_size, overlap=overlap),
    ), index


async def run(files: list[Path], ingestor, index, folder_id) -> int:
    failed = 0
    for i, filepath in enumerate(files, 1):
        start = time.time()
        logger.info(f"[{i}/{len(files)}] {filepath.name}")
        result = await ingestor.ingest(filepath, folder_id=folder_id)
        if result.success:
            logger.info(
                f"  {result.chunk_count} chunks ({result.document_type}) "
                f"as {result.document_id} in {time.time() - start:.1f}s"
            )
        else:
            failed += 1
            logger.error(f"  Failed: {result.error}")

    stats = await index.get_stats()
    logger.info(
        f"Index now holds {stats['total_documents']} documents, {stats['total_chunks']} chunks "
        f"({stats['chunks_with_embeddings']} embedded, {stats['storage_type']})"
    )
    return failed


def main():
    from execution.contract_rag.config import RAGSettings

    arg_parser = argparse.ArgumentParser(description="Ingest contract text files")
    arg_parser.add_argument("--dir", type=str, required=True, help="Directory containing .txt/.md files")
    arg_parser.add_argument("--folder-id", type=str, default=None, help="Folder to file the documents under")
    arg_parser.add_argument("--target-size", type=int, default=512, help="Target chunk size in characters")
    arg_parser.add_argument("--overlap", type=int, default=50, help="Chunk overlap in characters")
    arg_parser.add_argument(
        "--llm-entities",
        action="store_true",
        help="Detect entities with the OpenAI model instead of regex patterns",
    )
    args = arg_parser.parse_args()

    input_dir = Path(args.dir)
    if not input_dir.exists():
        logger.error(f"Directory not found: {input_dir}")
        sys.exit(1)

    files = sorted(p for p in input_dir.iterdir() if p.suffix.lower() in (".txt", ".md"))
    if not files:
        logger.error(f"No .txt or .md files found in {input_dir}")
        sys.exit(1)

    settings = RAGSettings.from_env(dotenv=False)
    logging.getLogger().setLevel(settings.log_level)
    logger.info(f"Found {len(files)} files in {input_dir} (store: {settings.store_backend})")

    ingestor, index = build_ingestor(settings, args.target_size, args.overlap, args.llm_entities)
    try:
        failed = asyncio.run(run(files, ingestor, index, args.folder_id))
    finally:
        if settings.store_backend == "postgres":
            index.store.close()

    logger.info(f"Done: {len(files) - failed} ingested, {failed} failed")
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
