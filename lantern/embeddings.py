"""Embedding providers: text in, float32 vectors out, with a per-provider LRU cache."""

import os
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential


class EmbeddingCache:
    """Least-recently-used vectors keyed by ``(model, text)``.

    Each provider owns its own cache; nothing is shared across instances.
    """

    def __init__(self, maxsize: int = 1000):
        self.maxsize = maxsize
        self._entries: "OrderedDict[Tuple[str, str], np.ndarray]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, model: str, text: str) -> Optional[np.ndarray]:
        vector = self._entries.get((model, text))
        if vector is None:
            self.misses += 1
            return None
        self.hits += 1
        self._entries.move_to_end((model, text))
        return vector

    def store(self, model: str, text: str, vector: np.ndarray) -> None:
        if self.maxsize <= 0:
            return
        self._entries[(model, text)] = vector
        self._entries.move_to_end((model, text))
        if len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def stats(self) -> Dict[str, float]:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "size": len(self._entries),
            "maxsize": self.maxsize,
        }

    def clear(self) -> None:
        self._entries.clear()
        self.hits = self.misses = 0


class BaseEmbeddingProvider(ABC):
    """Turns text into fixed-length vectors.

    Subclasses implement ``_encode`` for a batch of uncached texts. The same
    model and input must always give the same vector, and every vector from
    one provider has the same length.
    """

    def __init__(self, model: str, use_cache: bool = True, cache_size: int = 1000):
        self.model = model
        self.use_cache = use_cache
        self.cache = EmbeddingCache(cache_size)

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of the vectors this provider returns."""

    @abstractmethod
    def _encode(self, texts: List[str]) -> Sequence[Sequence[float]]:
        """Embed ``texts`` without consulting the cache."""

    def embed(self, texts: Union[str, Sequence[str]]) -> np.ndarray:
        """
        Embed one or more texts.

        Args:
            texts: A single text or a sequence of texts

        Returns:
            float32 array of shape ``(len(texts), dimension)``, rows in input order
        """
        if isinstance(texts, str):
            texts = [texts]
        texts = list(texts)
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float32)

        rows: List[Optional[np.ndarray]] = [None] * len(texts)
        missing: Dict[str, List[int]] = {}
        for i, text in enumerate(texts):
            cached = self.cache.lookup(self.model, text) if self.use_cache else None
            if cached is None:
                missing.setdefault(text, []).append(i)
            else:
                rows[i] = cached

        if missing:
            pending = list(missing)
            encoded = self._encode(pending)
            if len(encoded) != len(pending):
                raise ValueError(
                    f"{type(self).__name__} returned {len(encoded)} embeddings for {len(pending)} texts"
                )
            for text, values in zip(pending, encoded):
                vector = np.asarray(values, dtype=np.float32)
                if vector.ndim != 1:
                    raise ValueError(f"{type(self).__name__} returned a {vector.ndim}-D embedding")
                if self.use_cache:
                    self.cache.store(self.model, text, vector)
                for i in missing[text]:
                    rows[i] = vector

        return np.vstack(rows)

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed(text)[0]


class HuggingFaceEmbedding(BaseEmbeddingProvider):
    """
    Local sentence-transformers model, loaded on first use.

    Vectors are L2 normalized, so cosine similarity equals the dot product.

    Example:
        >>> embedder = HuggingFaceEmbedding("all-MiniLM-L6-v2")
        >>> embedder.embed(["Hello world"]).shape
        (1, 384)
    """

    def __init__(
        self,
        model: str = "all-MiniLM-L6-v2",
        hf_token: Optional[str] = None,
        device: Optional[str] = None,
        batch_size: int = 32,
        use_cache: bool = True,
        cache_size: int = 1000,
    ):
        super().__init__(model, use_cache, cache_size)
        self.hf_token = hf_token or os.environ.get("HF_TOKEN")
        self.device = device
        self.batch_size = batch_size
        self._model = None

    @property
    def sentence_transformer(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model, token=self.hf_token, device=self.device)
        return self._model

    @property
    def dimension(self) -> int:
        return self.sentence_transformer.get_sentence_embedding_dimension()

    def _encode(self, texts: List[str]) -> np.ndarray:
        return self.sentence_transformer.encode(
            texts,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )


class OpenAIEmbedding(BaseEmbeddingProvider):
    """Embeddings from the OpenAI API or an OpenAI-compatible server.

    Requests go out in batches of ``batch_size`` inputs and each batch is
    retried with exponential backoff.
    """

    KNOWN_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        openai_api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimensions: Optional[int] = None,
        batch_size: int = 256,
        use_cache: bool = True,
        cache_size: int = 1000,
    ):
        super().__init__(model, use_cache, cache_size)
        api_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key and not base_url:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass openai_api_key parameter."
            )
        self.client = OpenAI(api_key=api_key or "not-needed", base_url=base_url)
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._probed: Optional[int] = None

    @property
    def dimension(self) -> int:
        if self.dimensions:
            return self.dimensions
        if self.model in self.KNOWN_DIMENSIONS:
            return self.KNOWN_DIMENSIONS[self.model]
        if self._probed is None:
            self._probed = len(self._request(["dimension probe"])[0])
        return self._probed

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _request(self, batch: List[str]) -> List[List[float]]:
        kwargs = {"dimensions": self.dimensions} if self.dimensions else {}
        response = self.client.embeddings.create(model=self.model, input=batch, **kwargs)
        return [item.embedding for item in sorted(response.data, key=lambda item: item.index)]

    def _encode(self, texts: List[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            vectors.extend(self._request(texts[start:start + self.batch_size]))
        return vectors


class FunctionEmbedding(BaseEmbeddingProvider):
    """Adapts a plain ``str -> vector`` callable.

    Useful for tests and for models already loaded elsewhere. Without an
    explicit ``dimension`` the callable is probed once.
    """

    def __init__(
        self,
        fn: Callable[[str], Sequence[float]],
        model: str = "function",
        dimension: Optional[int] = None,
        use_cache: bool = False,
        cache_size: int = 1000,
    ):
        super().__init__(model, use_cache, cache_size)
        self._fn = fn
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self._fn("dimension probe"))
        return self._dimension

    def _encode(self, texts: List[str]) -> List[Sequence[float]]:
        return [self._fn(text) for text in texts]


# ============ Provider Factory ============

PROVIDERS = {
    "huggingface": (HuggingFaceEmbedding, "all-MiniLM-L6-v2"),
    "hf": (HuggingFaceEmbedding, "all-MiniLM-L6-v2"),
    "sentence-transformers": (HuggingFaceEmbedding, "all-MiniLM-L6-v2"),
    "openai": (OpenAIEmbedding, "text-embedding-3-small"),
}


def create_embedding_provider(
    provider: str = "huggingface",
    model: Optional[str] = None,
    **kwargs,
) -> BaseEmbeddingProvider:
    """
    Create an embedding provider by name.

    Args:
        provider: 'huggingface' (local, default; aliases 'hf' and
            'sentence-transformers') or 'openai'
        model: Model name, provider default when None
        **kwargs: Passed to the provider constructor

    Example:
        >>> embedder = create_embedding_provider("openai", dimensions=512)
    """
    try:
        cls, default_model = PROVIDERS[provider.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown embedding provider: {provider}. Supported: 'huggingface', 'openai'"
        ) from None
    return cls(model or default_model, **kwargs)
