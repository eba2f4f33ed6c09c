"""Main Lantern engine: wires the index, context assembler and generation controller."""

import logging
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .cancellation import CancellationToken
from .config import LanternConfig
from .embeddings import BaseEmbeddingProvider, create_embedding_provider
from .errors import ModelNotLoadedError
from .generation import DoneCallback, ErrorCallback, GenerationController, TokenCallback
from .index import VectorIndex
from .llm import GenerativeModel, OpenAIChatModel
from .loaders import load_sources
from .models import (
    ChatResult,
    CompactResult,
    Document,
    GenerationEvent,
    GenerationParams,
    IngestResult,
    Progress,
    RetrievalContext,
    SearchResponse,
    SourceText,
)
from .rag import QueryResult, RAGPipeline
from .storage import MetadataStore


logger = logging.getLogger(__name__)


class Lantern:
    """Local RAG engine: ingest documents, retrieve context, stream answers.

    Every collaborator is an explicit instance owned by the engine. Pass an
    ``embedder`` or ``model`` to override the ones built from ``config``; the
    chat model is otherwise created on first use, so ingestion and search
    work without any LLM credentials.
    """

    def __init__(
        self,
        config: LanternConfig,
        *,
        embedder: Optional[BaseEmbeddingProvider] = None,
        model: Optional[GenerativeModel] = None,
        openai_api_key: Optional[str] = None,
    ):
        self.config = config
        self._openai_api_key = openai_api_key

        if embedder is None:
            kwargs: Dict[str, Any] = {"cache_size": config.embedding_cache_size}
            if config.embedding_provider.lower().startswith("openai") and openai_api_key:
                kwargs["openai_api_key"] = openai_api_key
            embedder = create_embedding_provider(config.embedding_provider, config.embedding_model, **kwargs)
        self.embedder = embedder

        self.metadata_store = MetadataStore(config.db_path)
        self.index = VectorIndex(
            self.embedder,
            self.metadata_store,
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            chunk_strategy=config.chunk_strategy,
        )
        self.rag = RAGPipeline(self.index, config.retrieval)

        gen = config.generation
        self.controller = GenerationController(
            model,
            default_params=GenerationParams(
                max_new_tokens=gen.max_new_tokens,
                temperature=gen.temperature,
                top_p=gen.top_p,
                repetition_penalty=gen.repetition_penalty,
                max_time=gen.max_time,
                max_length=gen.max_length,
            ),
            stop_sequences=gen.stop_sequences,
            system_prompt=gen.system_prompt,
        )

    def _ensure_model(self) -> None:
        if self.controller.model is None:
            gen = self.config.generation
            logger.info("Connecting chat model %s", gen.model)
            try:
                self.controller.model = OpenAIChatModel(
                    gen.model,
                    openai_api_key=self._openai_api_key,
                    base_url=gen.base_url,
                )
            except ValueError as exc:
                raise ModelNotLoadedError(str(exc)) from exc

    # ============ Ingestion ============

    def ingest(
        self,
        docs: Union[Sequence[SourceText], Sequence[str]],
        on_progress: Optional[Callable[[Progress], None]] = None,
    ) -> List[IngestResult]:
        """
        Ingest documents into the index.

        Args:
            docs: SourceText records or raw text strings
            on_progress: Called with a Progress event after each document

        Returns:
            One IngestResult per document
        """
        batch = []
        for i, doc in enumerate(docs):
            if isinstance(doc, str):
                batch.append({"content": doc, "metadata": {"name": f"Document {i + 1}"}})
            else:
                batch.append({"content": doc.content, "metadata": dict(doc.metadata)})

        results = self.index.add_documents(batch, on_progress=on_progress)
        logger.info(
            "Ingested %d documents (%d chunks)", len(results), sum(r.chunk_count for r in results)
        )
        return results

    def ingest_paths(
        self,
        paths: Union[str, Sequence[str]],
        on_progress: Optional[Callable[[Progress], None]] = None,
        recursive: bool = True,
    ) -> List[IngestResult]:
        """Load files or directories from disk and ingest them."""
        return self.ingest(load_sources(paths, recursive=recursive), on_progress=on_progress)

    def add_document(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> IngestResult:
        return self.index.add_document(content, metadata)

    # ============ Retrieval ============

    def search(
        self,
        query: str,
        *,
        top_k: int = 10,
        threshold: float = 0.0,
        use_mmr: bool = False,
        mmr_lambda: float = 0.5,
    ) -> SearchResponse:
        return self.index.search(
            query, top_k=top_k, threshold=threshold, use_mmr=use_mmr, mmr_lambda=mmr_lambda
        )

    def retrieve_context(self, query: str, **options: Any) -> RetrievalContext:
        return self.rag.retrieve_context(query, **options)

    def prepare_chat(
        self,
        query: str,
        *,
        use_rag: bool = True,
        history: Optional[Sequence[Dict[str, str]]] = None,
        **options: Any,
    ) -> QueryResult:
        """
        Build the message list for a chat turn.

        With ``use_rag`` the query is answered against retrieved context; when
        nothing relevant is found the turn falls back to a plain conversation
        and the controller's chat system prompt applies.

        Args:
            query: User message
            use_rag: Retrieve context from the index
            history: Earlier user/assistant messages, oldest first
            **options: Retrieval overrides (top_k, threshold, ...)
        """
        history = [dict(m) for m in (history or []) if m.get("role") != "system"]

        if use_rag:
            prepared = self.rag.process_query(query, **options)
            if prepared.context:
                system, user = prepared.messages
                prepared.messages = [system] + history + [user]
                return prepared
            logger.info("No context found, answering without retrieval")

        return QueryResult(
            messages=history + [{"role": "user", "content": query}],
            context="",
            sources=[],
        )

    # ============ Generation ============

    def chat(
        self,
        query: str,
        *,
        use_rag: bool = True,
        history: Optional[Sequence[Dict[str, str]]] = None,
        params: Optional[GenerationParams] = None,
        on_token: Optional[TokenCallback] = None,
        on_done: Optional[DoneCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        cancellation: Optional[CancellationToken] = None,
        **options: Any,
    ) -> ChatResult:
        """
        Answer a query, streaming tokens through ``on_token``.

        Example:
            >>> with create_lantern("notes.db") as lantern:
            ...     answer = lantern.chat("What did we decide?", on_token=lambda t, p: print(t, end=""))
            ...     print(RAGPipeline.format_sources(answer.sources))
        """
        self._ensure_model()
        prepared = self.prepare_chat(query, use_rag=use_rag, history=history, **options)
        result = self.controller.generate_stream(
            prepared.messages,
            params,
            on_token=on_token,
            on_done=on_done,
            on_error=on_error,
            cancellation=cancellation,
        )
        return ChatResult(result=result, sources=prepared.sources, used_context=bool(prepared.context))

    def stream_chat(
        self,
        query: str,
        *,
        use_rag: bool = True,
        history: Optional[Sequence[Dict[str, str]]] = None,
        params: Optional[GenerationParams] = None,
        cancellation: Optional[CancellationToken] = None,
        **options: Any,
    ) -> Tuple[QueryResult, Iterator[GenerationEvent]]:
        """Like ``chat`` but returns the prepared turn and a typed event iterator."""
        self._ensure_model()
        prepared = self.prepare_chat(query, use_rag=use_rag, history=history, **options)
        events = self.controller.stream_events(prepared.messages, params, cancellation=cancellation)
        return prepared, events

    def stop(self) -> bool:
        """Stop the active generation, if any."""
        return self.controller.stop()

    # ============ Management ============

    def get_document(self, doc_id: int) -> Optional[Document]:
        return self.index.get_document(doc_id)

    def list_documents(self) -> List[Dict[str, Any]]:
        return self.index.get_all_documents()

    def delete_document(self, doc_id: int) -> int:
        return self.index.delete_document(doc_id)

    def compact(self) -> CompactResult:
        return self.index.compact()

    def clear(self) -> None:
        self.index.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "index": asdict(self.index.get_stats()),
            "db_path": self.config.db_path,
            "embedding_model": self.embedder.model,
            "chunk_size": self.config.chunk_size,
            "chunk_overlap": self.config.chunk_overlap,
            "cache": self.embedder.cache.stats(),
            "generation": {
                "state": self.controller.state.value,
                "model": self.controller.model.name if self.controller.model else None,
                **self.controller.get_metrics(),
            },
        }

    def close(self) -> None:
        """Stop any generation and close the database."""
        self.controller.stop()
        self.metadata_store.close()

    def __enter__(self) -> "Lantern":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def create_lantern(
    db_path: str = "lantern.db",
    *,
    embedding_provider: str = "huggingface",
    embedding_model: Optional[str] = None,
    llm_model: Optional[str] = None,
    base_url: Optional[str] = None,
    openai_api_key: Optional[str] = None,
    embedder: Optional[BaseEmbeddingProvider] = None,
    model: Optional[GenerativeModel] = None,
) -> Lantern:
    """
    Create a Lantern instance with sensible defaults.

    Example:
        >>> lantern = create_lantern("myrag.db", base_url="http://localhost:11434/v1", llm_model="llama3.2")
        >>> lantern.ingest_paths(["./docs"])
        >>> response = lantern.search("How do I...?")
    """
    config = LanternConfig(
        db_path=db_path,
        embedding_provider=embedding_provider,
        embedding_model=embedding_model,
    )
    if llm_model:
        config.generation.model = llm_model
    if base_url:
        config.generation.base_url = base_url
    return Lantern(config, embedder=embedder, model=model, openai_api_key=openai_api_key)
