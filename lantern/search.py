"""Similarity scoring and ranking (exhaustive cosine scan, top-K, MMR)."""

import logging
from typing import List, Sequence

import numpy as np

from .embeddings import BaseEmbeddingProvider
from .errors import DimensionMismatchError, MissingDocumentError
from .models import SearchResult
from .storage import MetadataStore


logger = logging.getLogger(__name__)


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatchError(a.shape[0], b.shape[0])

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def find_top_k(candidates: Sequence[SearchResult], k: int = 10) -> List[SearchResult]:
    """Highest scores first. Equal scores keep their scan order."""
    return sorted(candidates, key=lambda r: r.score, reverse=True)[:k]


def _normalized(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0  # zero rows stay zero, so their similarity is 0
    return vectors / norms


def mmr_rerank(
    candidates: Sequence[SearchResult],
    lambda_: float = 0.5,
    k: int = 10,
) -> List[SearchResult]:
    """
    Maximal Marginal Relevance selection.

    The most relevant candidate is taken first. Each following pick maximises
    ``lambda * relevance - (1 - lambda) * max_similarity_to_selected``, where
    relevance is the candidate's query score. Ties go to the candidate seen
    first. Selected results keep their query relevance as ``score``.

    Args:
        candidates: Scored candidates, each carrying its vector
        lambda_: 1.0 is pure relevance, 0.0 is pure diversity
        k: Maximum number of results

    Returns:
        Up to ``k`` results in selection order
    """
    if not candidates or k <= 0:
        return []

    relevance = np.array([c.score for c in candidates], dtype=np.float64)
    matrix = _normalized(np.vstack([np.asarray(c.vector, dtype=np.float64) for c in candidates]))
    pairwise = matrix @ matrix.T

    available = np.ones(len(candidates), dtype=bool)
    max_sim = np.zeros(len(candidates), dtype=np.float64)

    first = int(np.argmax(relevance))
    selected = [first]
    available[first] = False
    max_sim = np.maximum(max_sim, pairwise[:, first])

    while len(selected) < k and available.any():
        mmr = lambda_ * relevance - (1 - lambda_) * max_sim
        mmr[~available] = -np.inf
        pick = int(np.argmax(mmr))
        selected.append(pick)
        available[pick] = False
        max_sim = np.maximum(max_sim, pairwise[:, pick])

    return [candidates[i] for i in selected]


class SearchEngine:
    """Scans every stored vector against a query embedding."""

    def __init__(self, embedder: BaseEmbeddingProvider, metadata_store: MetadataStore):
        self.embedder = embedder
        self.metadata_store = metadata_store

    def score_all(self, query: str, threshold: float = 0.0) -> List[SearchResult]:
        """Score all vectors and keep those at or above ``threshold``, in scan order."""
        query_vector = np.asarray(self.embedder.embed_one(query), dtype=np.float32)

        dimensions = self.metadata_store.get_config().get("dimensions")
        if dimensions is not None and query_vector.shape[0] != dimensions:
            raise DimensionMismatchError(
                dimensions, query_vector.shape[0], "query embedding does not match the index"
            )

        vectors = self.metadata_store.list_vectors()
        logger.debug("Searching through %d vectors", len(vectors))

        results = []
        for vector in vectors:
            if vector.dimensions != query_vector.shape[0]:
                raise DimensionMismatchError(
                    query_vector.shape[0], vector.dimensions, f"stored vector for chunk {vector.chunk_id}"
                )
            score = cosine_similarity(query_vector, vector.components)
            if score < threshold:
                continue

            chunk = self.metadata_store.get_chunk(vector.chunk_id)
            if chunk is None:
                raise MissingDocumentError(
                    f"Vector {vector.chunk_id} has no chunk; run compact() to repair the index"
                )
            document = self.metadata_store.get_document(chunk.doc_id)
            if document is None:
                raise MissingDocumentError(
                    f"Chunk {chunk.id} belongs to missing document {chunk.doc_id}; "
                    "run compact() to repair the index"
                )
            results.append(SearchResult(
                chunk=chunk,
                document=document,
                vector=vector.components,
                score=score,
            ))
        return results

    def vector_search(
        self,
        query: str,
        top_k: int = 10,
        threshold: float = 0.0,
        use_mmr: bool = False,
        mmr_lambda: float = 0.5,
    ) -> List[SearchResult]:
        """Exhaustive cosine search with optional MMR diversification."""
        candidates = self.score_all(query, threshold)
        logger.info("Found %d results above threshold %.2f", len(candidates), threshold)

        if use_mmr and candidates:
            results = mmr_rerank(candidates, mmr_lambda, top_k)
        else:
            results = find_top_k(candidates, top_k)

        if results:
            top = results[0]
            logger.debug("Top result score %.3f from doc %r", top.score, top.document.name)
        return results
