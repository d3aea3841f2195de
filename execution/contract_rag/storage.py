"""
Persistence backends for the Vector Index.

The index keeps two collections:
- vector records: one per chunk, keyed ``{document_id}_chunk_{chunk_index}``
- document index entries: one per document, carrying status and chunk count

Backends are synchronous and thread-safe; the Vector Index calls them
through ``asyncio.to_thread`` so persistence never blocks the event loop.
Every read goes to the persisted state, so a verification read after a
checkpoint observes what was actually written.

Backends:
- JsonFileIndexStore: single JSON file, atomic replace-on-write (default)
- PostgresIndexStore: PostgreSQL via psycopg2, one transaction per checkpoint
"""

import os
import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Iterable, Optional, Protocol

import psycopg2
import psycopg2.extras

logger = logging.getLogger(__name__)


class IndexStore(Protocol):
    """What the Vector Index needs from a persistence backend."""

    storage_type: str

    def commit_batch(self, records: list[dict], entry: dict) -> None:
        """Upsert records and the document entry in one atomic write."""

    def put_entry(self, entry: dict) -> None:
        ...

    def get_entry(self, document_id: str) -> Optional[dict]:
        ...

    def list_entries(self) -> list[dict]:
        ...

    def count_records(self, document_id: str) -> int:
        ...

    def delete_document(self, document_id: str) -> int:
        """Remove every record and the entry for a document. Returns records removed."""

    def iter_records(self, document_ids: Optional[Iterable[str]] = None) -> list[dict]:
        ...

    def counts(self) -> dict:
        """total_records, records_with_embeddings, total_documents."""


def atomic_write_json(path: Path, payload) -> None:
    """Write JSON to a temp file in the same directory, then os.replace it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class JsonFileIndexStore:
    """
    Local single-user store: one JSON document holding both collections.

    Layout::

        {"records": {record_id: record}, "documents": {document_id: entry}}

    Reads are served from a snapshot keyed on the file's mtime and size, so
    an unchanged file is parsed once. A write drops the snapshot, so the
    read that follows it parses the file as it landed on disk.
    """

    storage_type = "json_file"

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._snapshot = None
        self._snapshot_stamp = None

    def _stamp(self):
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return (st.st_mtime_ns, st.st_size)

    def _read(self) -> dict:
        stamp = self._stamp()
        if stamp is None:
            return {"records": {}, "documents": {}}
        if stamp != self._snapshot_stamp:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            data.setdefault("records", {})
            data.setdefault("documents", {})
            self._snapshot = data
            self._snapshot_stamp = stamp
        return self._snapshot

    def _write(self, data: dict) -> None:
        atomic_write_json(self.path, data)
        # Next read parses the file, not what we meant to write
        self._snapshot = None
        self._snapshot_stamp = None

    def _mutable_copy(self) -> dict:
        data = self._read()
        return {"records": dict(data["records"]), "documents": dict(data["documents"])}

    def commit_batch(self, records: list[dict], entry: dict) -> None:
        with self._lock:
            data = self._mutable_copy()
            for record in records:
                data["records"][record["id"]] = record
            data["documents"][entry["document_id"]] = entry
            self._write(data)

    def put_entry(self, entry: dict) -> None:
        with self._lock:
            data = self._mutable_copy()
            data["documents"][entry["document_id"]] = entry
            self._write(data)

    def get_entry(self, document_id: str) -> Optional[dict]:
        with self._lock:
            return self._read()["documents"].get(document_id)

    def list_entries(self) -> list[dict]:
        with self._lock:
            return list(self._read()["documents"].values())

    def count_records(self, document_id: str) -> int:
        with self._lock:
            return sum(
                1 for r in self._read()["records"].values()
                if r["document_id"] == document_id
            )

    def delete_document(self, document_id: str) -> int:
        with self._lock:
            data = self._mutable_copy()
            doomed = [rid for rid, r in data["records"].items() if r["document_id"] == document_id]
            for rid in doomed:
                del data["records"][rid]
            had_entry = data["documents"].pop(document_id, None) is not None
            if doomed or had_entry:
                self._write(data)
            return len(doomed)

    def iter_records(self, document_ids: Optional[Iterable[str]] = None) -> list[dict]:
        with self._lock:
            records = list(self._read()["records"].values())
        if document_ids is not None:
            wanted = set(document_ids)
            records = [r for r in records if r["document_id"] in wanted]
        records.sort(key=lambda r: (r["document_id"], r["chunk_index"]))
        return records

    def counts(self) -> dict:
        with self._lock:
            data = self._read()
            records = data["records"].values()
            return {
                "total_records": len(data["records"]),
                "records_with_embeddings": sum(1 for r in records if r.get("embedding")),
                "total_documents": len(data["documents"]),
            }


class PostgresIndexStore:
    """
    PostgreSQL store. Embeddings are stored as ``double precision[]`` since
    retrieval is an exhaustive scan performed in Python, not an ANN index.
    """

    storage_type = "postgres"

    def __init__(self, connection_string: Optional[str] = None, table_prefix: str = "contract_rag"):
        self._connection_string = (
            connection_string or
            os.getenv("POSTGRES_URL") or
            os.getenv("DATABASE_URL") or
            "postgresql://localhost:5432/contract_rag"
        )
        self.records_table = f"{table_prefix}_vector_records"
        self.documents_table = f"{table_prefix}_document_index"
        self._conn = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Establish the database connection."""
        try:
            self._conn = psycopg2.connect(
                self._connection_string,
                cursor_factory=psycopg2.extras.RealDictCursor,
            )
            self._conn.autocommit = False
            logger.info("Connected to PostgreSQL index store")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

    def _ensure_connection(self):
        if self._conn is None or self._conn.closed:
            self.connect()
        return self._conn

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a DB operation with one retry on stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.
        """
        with self._lock:
            for attempt in range(2):
                conn = self._ensure_connection()
                try:
                    return operation(conn)
                except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                    self._safe_rollback(conn)
                    if attempt == 0:
                        logger.warning(f"{label}: stale conn, reconnecting: {e}")
                        self.connect()
                        continue
                    raise
                except Exception:
                    self._safe_rollback(conn)
                    raise

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        schema_sql = f"""
        CREATE TABLE IF NOT EXISTS {self.documents_table} (
            document_id TEXT PRIMARY KEY,
            chunk_count INT NOT NULL DEFAULT 0,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS {self.records_table} (
            id TEXT PRIMARY KEY,
            document_id TEXT NOT NULL,
            chunk_index INT NOT NULL,
            text TEXT NOT NULL,
            embedding DOUBLE PRECISION[],
            length INT NOT NULL,
            created_at TEXT NOT NULL,
            document_metadata JSONB DEFAULT '{{}}',
            metadata JSONB DEFAULT '{{}}'
        );

        CREATE INDEX IF NOT EXISTS idx_{self.records_table}_document
            ON {self.records_table}(document_id);
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()
            logger.info("Index store schema initialized")

        self._execute_with_retry(_op, "initialize_schema")

    def _upsert_entry_sql(self) -> str:
        return f"""
        INSERT INTO {self.documents_table} (document_id, chunk_count, status, created_at, updated_at)
        VALUES (%(document_id)s, %(chunk_count)s, %(status)s, %(created_at)s, %(updated_at)s)
        ON CONFLICT (document_id) DO UPDATE SET
            chunk_count = EXCLUDED.chunk_count,
            status = EXCLUDED.status,
            updated_at = EXCLUDED.updated_at
        """

    def commit_batch(self, records: list[dict], entry: dict) -> None:
        sql = f"""
        INSERT INTO {self.records_table}
            (id, document_id, chunk_index, text, embedding, length, created_at, document_metadata, metadata)
        VALUES %s
        ON CONFLICT (id) DO UPDATE SET
            text = EXCLUDED.text,
            embedding = EXCLUDED.embedding,
            length = EXCLUDED.length,
            document_metadata = EXCLUDED.document_metadata,
            metadata = EXCLUDED.metadata
        """
        rows = [
            (
                r["id"], r["document_id"], r["chunk_index"], r["text"], r.get("embedding"),
                r["length"], r["created_at"],
                psycopg2.extras.Json(r.get("document_metadata") or {}),
                psycopg2.extras.Json(r.get("metadata") or {}),
            )
            for r in records
        ]

        def _op(conn):
            with conn.cursor() as cur:
                if rows:
                    psycopg2.extras.execute_values(cur, sql, rows)
                cur.execute(self._upsert_entry_sql(), entry)
            conn.commit()

        self._execute_with_retry(_op, "commit_batch")

    def put_entry(self, entry: dict) -> None:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(self._upsert_entry_sql(), entry)
            conn.commit()

        self._execute_with_retry(_op, "put_entry")

    def get_entry(self, document_id: str) -> Optional[dict]:
        sql = f"SELECT * FROM {self.documents_table} WHERE document_id = %s"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                row = cur.fetchone()
            conn.commit()
            return dict(row) if row else None

        return self._execute_with_retry(_op, "get_entry")

    def list_entries(self) -> list[dict]:
        sql = f"SELECT * FROM {self.documents_table} ORDER BY created_at"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql)
                rows = cur.fetchall()
            conn.commit()
            return [dict(row) for row in rows]

        return self._execute_with_retry(_op, "list_entries")

    def count_records(self, document_id: str) -> int:
        sql = f"SELECT COUNT(*) AS n FROM {self.records_table} WHERE document_id = %s"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                row = cur.fetchone()
            conn.commit()
            return int(row["n"])

        return self._execute_with_retry(_op, "count_records")

    def delete_document(self, document_id: str) -> int:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(f"DELETE FROM {self.records_table} WHERE document_id = %s", (document_id,))
                removed = cur.rowcount
                cur.execute(f"DELETE FROM {self.documents_table} WHERE document_id = %s", (document_id,))
            conn.commit()
            return removed

        return self._execute_with_retry(_op, "delete_document")

    def iter_records(self, document_ids: Optional[Iterable[str]] = None) -> list[dict]:
        sql = f"SELECT * FROM {self.records_table}"
        params = None
        if document_ids is not None:
            sql += " WHERE document_id = ANY(%s)"
            params = (list(document_ids),)
        sql += " ORDER BY document_id, chunk_index"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            conn.commit()
            return [dict(row) for row in rows]

        return self._execute_with_retry(_op, "iter_records")

    def counts(self) -> dict:
        sql = f"""
        SELECT
            (SELECT COUNT(*) FROM {self.records_table}) AS total_records,
            (SELECT COUNT(*) FROM {self.records_table} WHERE embedding IS NOT NULL) AS records_with_embeddings,
            (SELECT COUNT(*) FROM {self.documents_table}) AS total_documents
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql)
                row = cur.fetchone()
            conn.commit()
            return {k: int(v) for k, v in dict(row).items()}

        return self._execute_with_retry(_op, "counts")
