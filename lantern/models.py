"""Data models for the Lantern RAG engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np


# ============ Index records ============

@dataclass
class SourceText:
    """Plain text extracted from a file, ready for ``VectorIndex.add_document``."""
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Document:
    """An ingested document. Immutable except for deletion."""
    id: int
    name: str
    type: str
    content: str
    size_bytes: int
    created_at: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TextChunk:
    """A chunk produced by the chunker, before it is stored."""
    text: str
    position: int
    start_index: int
    end_index: int
    token_count: int


@dataclass
class Chunk:
    """A stored chunk of a document."""
    id: int
    doc_id: int
    text: str
    position: int
    start_index: int
    end_index: int
    token_count: int


@dataclass
class Vector:
    """Dense embedding of one chunk."""
    chunk_id: int
    components: np.ndarray

    @property
    def dimensions(self) -> int:
        return int(self.components.shape[0])


@dataclass
class SearchResult:
    """A single ranked search hit."""
    chunk: Chunk
    document: Document
    vector: np.ndarray
    score: float


@dataclass
class SearchResponse:
    """Ranked results plus timing for one query."""
    query: str
    results: List[SearchResult]
    search_time: float  # milliseconds

    @property
    def total_results(self) -> int:
        return len(self.results)


@dataclass
class IngestResult:
    """Outcome of ingesting one document.

    ``success`` is False when some chunks ended up without a vector; the
    document and the embedded chunks are still stored.
    """
    doc_id: int
    chunk_count: int
    embedding_count: int
    chunk_ids: List[int] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return self.chunk_count - self.embedding_count

    @property
    def success(self) -> bool:
        return self.embedding_count == self.chunk_count


@dataclass
class CompactResult:
    removed_chunks: int
    removed_vectors: int

    @property
    def message(self) -> str:
        return (
            f"Compaction complete. Removed {self.removed_chunks} orphaned chunks "
            f"and {self.removed_vectors} orphaned vectors."
        )


@dataclass
class IndexStats:
    documents: int
    chunks: int
    vectors: int
    dimensions: Optional[int]
    estimated_size_mb: float
    created_at: Optional[float]


# ============ Retrieval ============

@dataclass
class Source:
    """A document that contributed chunks to a context block."""
    id: int
    name: str
    type: str
    chunks: List[Tuple[int, float]] = field(default_factory=list)  # (position, score)

    @property
    def relevance(self) -> float:
        return max(score for _, score in self.chunks) if self.chunks else 0.0


@dataclass
class RetrievalContext:
    context_text: str
    sources: List[Source]
    tokens_used: int
    chunks_used: int
    search_time: float = 0.0


# ============ Generation ============

class GenerationState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERRORED = "errored"


@dataclass
class GenerationParams:
    """Sampling and limit parameters for one generation session."""
    max_new_tokens: int = 256
    temperature: float = 1.0
    top_p: float = 0.9
    repetition_penalty: float = 1.1
    max_time: float = 120.0   # seconds, wall clock
    max_length: int = 4096    # characters of output


@dataclass
class TokenProgress:
    """Running totals passed to ``on_token``."""
    total_tokens: int
    text: str
    time_elapsed: float  # milliseconds


@dataclass
class GenerationResult:
    text: str
    tokens: int
    time: float  # milliseconds
    time_to_first_token: Optional[float] = None
    tokens_per_second: float = 0.0
    aborted: bool = False
    stop_reason: str = "completed"  # completed, stop_sequence, max_length, cancelled, timeout


# Typed events. A session emits Initiate, then Token*, then exactly one of
# Done, Aborted or Errored. Ingestion emits Progress once per document.

@dataclass
class Initiate:
    session_id: int
    messages: List[Dict[str, str]]


@dataclass
class Token:
    text: str
    progress: TokenProgress


@dataclass
class Done:
    result: GenerationResult


@dataclass
class Aborted:
    result: GenerationResult


@dataclass
class Errored:
    error: BaseException


@dataclass
class Progress:
    current: int
    total: int
    document: str

    @property
    def percent(self) -> float:
        return (self.current / self.total) * 100 if self.total else 100.0


GenerationEvent = Union[Initiate, Token, Done, Aborted, Errored]


@dataclass
class ChatResult:
    """A generated answer plus the sources its context came from."""
    result: GenerationResult
    sources: List[Source] = field(default_factory=list)
    used_context: bool = False

    @property
    def text(self) -> str:
        return self.result.text
