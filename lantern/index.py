"""Vector index: document ingestion, deletion, compaction and search."""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from .chunking import chunk_text
from .embeddings import BaseEmbeddingProvider
from .errors import DimensionMismatchError
from .models import (
    CompactResult,
    Document,
    IndexStats,
    IngestResult,
    Progress,
    SearchResponse,
)
from .search import SearchEngine
from .storage import MetadataStore


logger = logging.getLogger(__name__)


class VectorIndex:
    """Stores documents, their chunks and one vector per chunk.

    Vector dimensionality is fixed by the first stored vector and persisted
    in the index metadata, so it survives reopening the database.
    """

    def __init__(
        self,
        embedder: BaseEmbeddingProvider,
        metadata_store: MetadataStore,
        chunk_size: int = 800,
        chunk_overlap: int = 200,
        chunk_strategy: str = "words",
    ):
        self.embedder = embedder
        self.metadata_store = metadata_store
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.chunk_strategy = chunk_strategy
        self.search_engine = SearchEngine(embedder, metadata_store)
        self._lock = threading.RLock()
        self._init_config()

    def _init_config(self) -> None:
        if not self.metadata_store.get_config():
            self.metadata_store.put_meta("config", {
                "chunk_size": self.chunk_size,
                "chunk_overlap": self.chunk_overlap,
                "dimensions": None,
                "total_documents": 0,
                "total_chunks": 0,
                "created_at": time.time(),
            })

    @property
    def dimensions(self) -> Optional[int]:
        return self.metadata_store.get_config().get("dimensions")

    def _update_config(self, **changes: Any) -> Dict[str, Any]:
        config = self.metadata_store.get_config()
        config.update(changes)
        self.metadata_store.put_meta("config", config)
        return config

    # ============ Write path ============

    def add_document(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> IngestResult:
        """
        Chunk, embed and store one document.

        A chunk whose embedding call fails is skipped and counted; the result's
        ``success`` flag then reads False. A vector whose dimensionality
        differs from the index raises ``DimensionMismatchError``.

        Args:
            content: Already extracted plain text
            metadata: Optional ``name`` and ``type`` plus any extra fields

        Returns:
            IngestResult with chunk and verified embedding counts
        """
        metadata = dict(metadata or {})
        name = metadata.pop("name", None) or "Untitled"
        doc_type = metadata.pop("type", None) or "text"

        with self._lock:
            logger.info("Adding document: %s (%d chars)", name, len(content))

            doc_id = self.metadata_store.insert_document(
                name=name,
                type=doc_type,
                content=content,
                size_bytes=len(content.encode("utf-8")),
                created_at=time.time(),
                metadata=metadata,
            )

            chunks = chunk_text(
                content,
                self.chunk_size,
                self.chunk_overlap,
                strategy=self.chunk_strategy,
            )
            logger.info("Created %d chunks for document %d", len(chunks), doc_id)

            chunk_ids = []
            for chunk in chunks:
                chunk_id = self.metadata_store.insert_chunk(doc_id, chunk)
                chunk_ids.append(chunk_id)

                try:
                    embedding = np.asarray(self.embedder.embed_one(chunk.text), dtype=np.float32)
                except Exception:
                    logger.warning(
                        "Embedding failed for chunk %d of document %d", chunk.position, doc_id, exc_info=True
                    )
                    continue

                try:
                    self._store_vector(chunk_id, embedding)
                except DimensionMismatchError:
                    logger.error("Aborting ingestion of document %d: embedding dimensions changed", doc_id)
                    self._purge_document(doc_id)
                    raise
                except ValueError as exc:
                    logger.warning("Skipping chunk %d of document %d: %s", chunk.position, doc_id, exc)

            # Verify embeddings were created
            embedded = sum(1 for cid in chunk_ids if self.metadata_store.get_vector(cid) is not None)

            config = self.metadata_store.get_config()
            self._update_config(
                total_documents=config.get("total_documents", 0) + 1,
                total_chunks=config.get("total_chunks", 0) + len(chunks),
            )

        if embedded != len(chunk_ids):
            logger.warning("Only %d/%d embeddings were verified for document %d", embedded, len(chunk_ids), doc_id)
        else:
            logger.info("Stored %d embeddings for document %d", embedded, doc_id)

        return IngestResult(
            doc_id=doc_id,
            chunk_count=len(chunks),
            embedding_count=embedded,
            chunk_ids=chunk_ids,
        )

    def _store_vector(self, chunk_id: int, embedding: np.ndarray) -> None:
        if embedding.ndim != 1 or embedding.shape[0] == 0:
            raise ValueError(f"Embedding for chunk {chunk_id} is not a non-empty 1-D vector")

        dimensions = self.dimensions
        if dimensions is None:
            self._update_config(dimensions=int(embedding.shape[0]))
            logger.debug("Index dimensions fixed at %d", embedding.shape[0])
        elif embedding.shape[0] != dimensions:
            raise DimensionMismatchError(dimensions, int(embedding.shape[0]), f"chunk {chunk_id}")

        self.metadata_store.put_vector(chunk_id, embedding)

    def add_documents(
        self,
        documents: Sequence[Dict[str, Any]],
        on_progress: Optional[Callable[[Progress], None]] = None,
    ) -> List[IngestResult]:
        """
        Ingest several documents in order.

        Args:
            documents: Dicts with ``content`` and optional ``metadata``
            on_progress: Called with a Progress event after each document
        """
        results = []
        total = len(documents)

        for i, doc in enumerate(documents):
            metadata = doc.get("metadata") or {}
            results.append(self.add_document(doc["content"], metadata))

            if on_progress:
                on_progress(Progress(
                    current=i + 1,
                    total=total,
                    document=metadata.get("name") or f"Document {i + 1}",
                ))

        return results

    # ============ Read path ============

    def search(
        self,
        query: str,
        top_k: int = 10,
        threshold: float = 0.0,
        use_mmr: bool = False,
        mmr_lambda: float = 0.5,
    ) -> SearchResponse:
        """
        Rank stored chunks against a query.

        Args:
            query: Query text, embedded with the index's embedder
            top_k: Maximum number of results
            threshold: Minimum cosine similarity to keep a chunk
            use_mmr: Diversify with Maximal Marginal Relevance
            mmr_lambda: Relevance/diversity trade-off for MMR

        Returns:
            SearchResponse; empty results when nothing clears the threshold
        """
        start = time.perf_counter()
        logger.info(
            "Searching for %r (threshold: %s, top_k: %d, mmr: %s)", query[:50], threshold, top_k, use_mmr
        )

        with self._lock:
            results = self.search_engine.vector_search(
                query,
                top_k=top_k,
                threshold=threshold,
                use_mmr=use_mmr,
                mmr_lambda=mmr_lambda,
            )

        search_time = (time.perf_counter() - start) * 1000
        logger.info("Returning %d results in %.1fms", len(results), search_time)
        return SearchResponse(query=query, results=results, search_time=search_time)

    def get_document(self, doc_id: int) -> Optional[Document]:
        return self.metadata_store.get_document(doc_id)

    def get_chunks(self, doc_id: int):
        return self.metadata_store.get_chunks_by_doc_id(doc_id)

    def get_all_documents(self) -> List[Dict[str, Any]]:
        """All documents with their chunk counts."""
        counts = self.metadata_store.chunk_counts_by_doc()
        return [
            {
                "id": doc.id,
                "name": doc.name,
                "type": doc.type,
                "size_bytes": doc.size_bytes,
                "created_at": doc.created_at,
                "metadata": doc.metadata,
                "chunk_count": counts.get(doc.id, 0),
            }
            for doc in self.metadata_store.list_documents()
        ]

    def get_stats(self) -> IndexStats:
        config = self.metadata_store.get_config()
        vectors = self.metadata_store.count("vectors")
        dimensions = config.get("dimensions")
        estimated = vectors * (dimensions or 384) * 4  # float32

        return IndexStats(
            documents=self.metadata_store.count("documents"),
            chunks=self.metadata_store.count("chunks"),
            vectors=vectors,
            dimensions=dimensions,
            estimated_size_mb=round(estimated / (1024 * 1024), 2),
            created_at=config.get("created_at"),
        )

    # ============ Maintenance ============

    def delete_document(self, doc_id: int) -> int:
        """
        Delete a document and everything it owns.

        Vectors go first, then chunks, then the document record, each by key,
        so an interrupted delete leaves nothing search can trip over and a
        retry finishes the job.

        Returns:
            Number of chunks deleted
        """
        with self._lock:
            chunks, removed_doc = self._purge_document(doc_id)

            config = self.metadata_store.get_config()
            self._update_config(
                total_documents=max(0, config.get("total_documents", 0) - (1 if removed_doc else 0)),
                total_chunks=max(0, config.get("total_chunks", 0) - len(chunks)),
            )

        logger.info("Deleted document %d with %d chunks", doc_id, len(chunks))
        return len(chunks)

    def _purge_document(self, doc_id: int):
        chunks = self.metadata_store.get_chunks_by_doc_id(doc_id)
        for chunk in chunks:
            self.metadata_store.delete_vector(chunk.id)
        for chunk in chunks:
            self.metadata_store.delete_chunk(chunk.id)
        return chunks, self.metadata_store.delete_document(doc_id)

    def clear(self) -> None:
        """Remove all documents, chunks and vectors. Dimensions stay fixed."""
        with self._lock:
            self.metadata_store.clear("vectors")
            self.metadata_store.clear("chunks")
            self.metadata_store.clear("documents")
            self._update_config(total_documents=0, total_chunks=0)
        logger.info("Cleared index")

    def compact(self) -> CompactResult:
        """Remove chunks whose document is gone and vectors whose chunk is gone."""
        with self._lock:
            valid_doc_ids = {doc.id for doc in self.metadata_store.list_documents()}

            removed_chunks = 0
            valid_chunk_ids = set()
            for chunk in self.metadata_store.list_chunks():
                if chunk.doc_id in valid_doc_ids:
                    valid_chunk_ids.add(chunk.id)
                    continue
                self.metadata_store.delete_vector(chunk.id)
                self.metadata_store.delete_chunk(chunk.id)
                removed_chunks += 1

            removed_vectors = 0
            for chunk_id in self.metadata_store.list_vector_ids():
                if chunk_id not in valid_chunk_ids:
                    self.metadata_store.delete_vector(chunk_id)
                    removed_vectors += 1

            self._update_config(
                total_documents=len(valid_doc_ids),
                total_chunks=len(valid_chunk_ids),
            )

        result = CompactResult(removed_chunks=removed_chunks, removed_vectors=removed_vectors)
        logger.info(result.message)
        return result
