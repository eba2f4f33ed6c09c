"""SQLite storage for documents, chunks, vectors and index metadata."""

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from .models import Chunk, Document, TextChunk, Vector


TABLES = ("documents", "chunks", "vectors", "metadata")


class MetadataStore:
    """Key-value style record storage on SQLite.

    Every write commits on its own and every delete is keyed and idempotent,
    so a multi-record operation interrupted halfway can simply be retried.
    """

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # AUTOINCREMENT keeps deleted ids from being reused by new documents,
        # so leftover orphans can never be adopted by a new owner
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                content TEXT NOT NULL,
                size_bytes INTEGER NOT NULL,
                created_at REAL NOT NULL,
                metadata_json TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                doc_id INTEGER NOT NULL,
                text TEXT NOT NULL,
                position INTEGER NOT NULL,
                start_index INTEGER NOT NULL,
                end_index INTEGER NOT NULL,
                token_count INTEGER NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS vectors (
                chunk_id INTEGER PRIMARY KEY,
                dimensions INTEGER NOT NULL,
                components BLOB NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_chunks_doc_id ON chunks(doc_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_chunks_position ON chunks(position)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_documents_name ON documents(name)")

        self.conn.commit()

    # ============ Row mapping ============

    @staticmethod
    def _to_document(row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            content=row["content"],
            size_bytes=row["size_bytes"],
            created_at=row["created_at"],
            metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
        )

    @staticmethod
    def _to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            doc_id=row["doc_id"],
            text=row["text"],
            position=row["position"],
            start_index=row["start_index"],
            end_index=row["end_index"],
            token_count=row["token_count"],
        )

    @staticmethod
    def _to_vector(row: sqlite3.Row) -> Vector:
        return Vector(
            chunk_id=row["chunk_id"],
            components=np.frombuffer(row["components"], dtype=np.float32),
        )

    # ============ Documents ============

    def insert_document(
        self,
        name: str,
        type: str,
        content: str,
        size_bytes: int,
        created_at: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Insert a document. Returns its generated id."""
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO documents (name, type, content, size_bytes, created_at, metadata_json)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            name,
            type,
            content,
            size_bytes,
            created_at,
            json.dumps(metadata) if metadata else None,
        ))
        self.conn.commit()
        return cursor.lastrowid

    def get_document(self, doc_id: int) -> Optional[Document]:
        row = self.conn.execute("SELECT * FROM documents WHERE id = ?", (doc_id,)).fetchone()
        return self._to_document(row) if row else None

    def list_documents(self) -> List[Document]:
        rows = self.conn.execute("SELECT * FROM documents ORDER BY id").fetchall()
        return [self._to_document(row) for row in rows]

    def delete_document(self, doc_id: int) -> bool:
        """Delete a document record. Returns True if a row was removed."""
        cursor = self.conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # ============ Chunks ============

    def insert_chunk(self, doc_id: int, chunk: TextChunk) -> int:
        """Insert a chunk for a document. Returns its generated id."""
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO chunks (doc_id, text, position, start_index, end_index, token_count)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            doc_id,
            chunk.text,
            chunk.position,
            chunk.start_index,
            chunk.end_index,
            chunk.token_count,
        ))
        self.conn.commit()
        return cursor.lastrowid

    def get_chunk(self, chunk_id: int) -> Optional[Chunk]:
        row = self.conn.execute("SELECT * FROM chunks WHERE id = ?", (chunk_id,)).fetchone()
        return self._to_chunk(row) if row else None

    def get_chunks_by_doc_id(self, doc_id: int) -> List[Chunk]:
        """Get all chunks for a document in reading order."""
        rows = self.conn.execute(
            "SELECT * FROM chunks WHERE doc_id = ? ORDER BY position", (doc_id,)
        ).fetchall()
        return [self._to_chunk(row) for row in rows]

    def list_chunks(self) -> List[Chunk]:
        rows = self.conn.execute("SELECT * FROM chunks ORDER BY id").fetchall()
        return [self._to_chunk(row) for row in rows]

    def chunk_counts_by_doc(self) -> Dict[int, int]:
        rows = self.conn.execute(
            "SELECT doc_id, COUNT(*) AS n FROM chunks GROUP BY doc_id"
        ).fetchall()
        return {row["doc_id"]: row["n"] for row in rows}

    def delete_chunk(self, chunk_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM chunks WHERE id = ?", (chunk_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # ============ Vectors ============

    def put_vector(self, chunk_id: int, components) -> None:
        """Store (or replace) the vector for a chunk."""
        array = np.asarray(components, dtype=np.float32)
        self.conn.execute(
            "INSERT OR REPLACE INTO vectors (chunk_id, dimensions, components) VALUES (?, ?, ?)",
            (chunk_id, int(array.shape[0]), array.tobytes()),
        )
        self.conn.commit()

    def get_vector(self, chunk_id: int) -> Optional[Vector]:
        row = self.conn.execute("SELECT * FROM vectors WHERE chunk_id = ?", (chunk_id,)).fetchone()
        return self._to_vector(row) if row else None

    def list_vectors(self) -> List[Vector]:
        """Full scan of the vectors table."""
        rows = self.conn.execute("SELECT * FROM vectors ORDER BY chunk_id").fetchall()
        return [self._to_vector(row) for row in rows]

    def list_vector_ids(self) -> List[int]:
        rows = self.conn.execute("SELECT chunk_id FROM vectors ORDER BY chunk_id").fetchall()
        return [row["chunk_id"] for row in rows]

    def delete_vector(self, chunk_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM vectors WHERE chunk_id = ?", (chunk_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # ============ Index metadata ============

    def get_meta(self, key: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT value_json FROM metadata WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value_json"]) if row else None

    def put_meta(self, key: str, value: Dict[str, Any]) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO metadata (key, value_json) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
        self.conn.commit()

    def get_config(self) -> Dict[str, Any]:
        """The index-level ``config`` record, or an empty dict before initialisation."""
        return self.get_meta("config") or {}

    # ============ Whole tables ============

    def count(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def clear(self, table: str) -> None:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        self.conn.execute(f"DELETE FROM {table}")
        self.conn.commit()

    def close(self) -> None:
        """Close database connection."""
        self.conn.close()
