"""Configuration models for the Lantern RAG engine."""

import os
from dataclasses import dataclass, field
from typing import List, Optional


DEFAULT_STOP_SEQUENCES = ["</s>", "\n\nUser:", "\n\nHuman:", "[END]"]

DEFAULT_CHAT_SYSTEM_PROMPT = (
    "You are a helpful, factual assistant running locally on the user's machine. "
    "Provide plain text responses suitable for text-to-speech conversion. "
    "Use simple punctuation and clear sentence structure."
)

DEFAULT_RAG_SYSTEM_PROMPT = """You are a helpful assistant with access to a knowledge base.
Use the provided context to answer questions accurately.
If the context doesn't contain relevant information, say so clearly.
Always cite which document(s) you're referencing when using the context.
Provide plain text responses suitable for text-to-speech conversion.
Use simple punctuation and clear sentence structure."""


@dataclass
class RetrievalConfig:
    """Defaults for context retrieval."""

    max_context_tokens: int = 2000
    top_k: int = 5
    threshold: float = 0.3
    use_mmr: bool = True
    mmr_lambda: float = 0.5
    include_metadata: bool = True


@dataclass
class GenerationConfig:
    """Defaults for streaming generation."""

    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None  # any OpenAI-compatible server, e.g. a local llama.cpp
    max_new_tokens: int = 256
    temperature: float = 1.0
    top_p: float = 0.9
    repetition_penalty: float = 1.1
    max_time: float = 120.0    # seconds
    max_length: int = 4096     # characters
    stop_sequences: List[str] = field(default_factory=lambda: list(DEFAULT_STOP_SEQUENCES))
    system_prompt: str = DEFAULT_CHAT_SYSTEM_PROMPT


@dataclass
class LanternConfig:
    """Configuration for the Lantern RAG engine."""

    # Embedding settings
    embedding_provider: str = "huggingface"  # 'huggingface', 'openai'
    embedding_model: Optional[str] = None    # provider default when None
    embedding_cache_size: int = 1000

    # Chunking settings (estimated tokens)
    chunk_size: int = 800
    chunk_overlap: int = 200
    chunk_strategy: str = "words"  # 'words', 'sentence', 'paragraph'

    # Storage
    db_path: str = "lantern.db"

    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)

    @classmethod
    def from_env(cls) -> "LanternConfig":
        """Build a config from LANTERN_* environment variables."""
        config = cls()
        env = os.environ

        config.db_path = env.get("LANTERN_DB_PATH", config.db_path)
        config.embedding_provider = env.get("LANTERN_EMBEDDING_PROVIDER", config.embedding_provider)
        config.embedding_model = env.get("LANTERN_EMBEDDING_MODEL") or config.embedding_model
        config.chunk_size = int(env.get("LANTERN_CHUNK_SIZE", config.chunk_size))
        config.chunk_overlap = int(env.get("LANTERN_CHUNK_OVERLAP", config.chunk_overlap))
        config.chunk_strategy = env.get("LANTERN_CHUNK_STRATEGY", config.chunk_strategy)

        config.retrieval.max_context_tokens = int(
            env.get("LANTERN_MAX_CONTEXT_TOKENS", config.retrieval.max_context_tokens)
        )
        config.retrieval.top_k = int(env.get("LANTERN_TOP_K", config.retrieval.top_k))
        config.retrieval.threshold = float(env.get("LANTERN_THRESHOLD", config.retrieval.threshold))

        config.generation.model = env.get("LANTERN_LLM_MODEL", config.generation.model)
        config.generation.base_url = env.get("LANTERN_LLM_BASE_URL") or config.generation.base_url
        config.generation.max_time = float(env.get("LANTERN_MAX_TIME", config.generation.max_time))
        return config
