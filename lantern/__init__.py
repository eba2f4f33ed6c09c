"""
Lantern: Local RAG Engine with SQLite + Exact Vector Search

A self-contained retrieval-augmented generation engine combining:
- SQLite storage for documents, chunks and float32 vectors
- Exhaustive cosine similarity search with optional MMR diversification
- Token-budgeted context assembly with per-document source citations
- A streaming generation controller with stop sequences, length and time
  limits, and cooperative cancellation

Key Features:
- Word-, sentence- and paragraph-aware chunking with overlap
- Local sentence-transformers or OpenAI embeddings, cached per provider
- Any OpenAI-compatible chat server (llama.cpp, vLLM, Ollama) for generation
- Typed event stream alongside token callbacks
- Orphan repair with compact()
- REST API (FastAPI) and CLI

References:
- MMR: Carbonell & Goldstein, "The Use of MMR, Diversity-Based Reranking" (SIGIR 1998)
"""

from .config import GenerationConfig, LanternConfig, RetrievalConfig
from .models import (
    ChatResult,
    Document,
    Chunk,
    GenerationParams,
    GenerationResult,
    RetrievalContext,
    SearchResult,
    SourceText,
)
from .errors import (
    DimensionMismatchError,
    GenerationBusyError,
    GenerationCancelled,
    GenerationTimeoutError,
    InvariantViolationError,
    LanternError,
    MissingDocumentError,
    ModelNotLoadedError,
)
from .loaders import load_sources, clean_text
from .chunking import chunk_text, estimate_tokens
from .embeddings import (
    BaseEmbeddingProvider,
    FunctionEmbedding,
    HuggingFaceEmbedding,
    OpenAIEmbedding,
    create_embedding_provider,
)
from .storage import MetadataStore
from .search import SearchEngine, cosine_similarity, mmr_rerank
from .index import VectorIndex
from .rag import RAGPipeline
from .cancellation import CancellationHandle, CancellationToken
from .llm import Batch, GenerativeModel, OpenAIChatModel, Stream
from .generation import GenerationController
from .lantern import Lantern, create_lantern

__version__ = "1.0.0"
__all__ = [
    # Core
    "LanternConfig",
    "RetrievalConfig",
    "GenerationConfig",
    "Lantern",
    "create_lantern",
    # Records
    "Document",
    "Chunk",
    "SearchResult",
    "SourceText",
    "RetrievalContext",
    "GenerationParams",
    "GenerationResult",
    "ChatResult",
    # Errors
    "LanternError",
    "InvariantViolationError",
    "DimensionMismatchError",
    "MissingDocumentError",
    "GenerationBusyError",
    "GenerationTimeoutError",
    "GenerationCancelled",
    "ModelNotLoadedError",
    # Loaders & Chunking
    "load_sources",
    "clean_text",
    "chunk_text",
    "estimate_tokens",
    # Embeddings
    "BaseEmbeddingProvider",
    "HuggingFaceEmbedding",
    "OpenAIEmbedding",
    "FunctionEmbedding",
    "create_embedding_provider",
    # Components
    "MetadataStore",
    "SearchEngine",
    "cosine_similarity",
    "mmr_rerank",
    "VectorIndex",
    "RAGPipeline",
    # Generation
    "CancellationToken",
    "CancellationHandle",
    "GenerativeModel",
    "OpenAIChatModel",
    "Batch",
    "Stream",
    "GenerationController",
]
