"""Token-budgeted context assembly for retrieval-augmented prompts."""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .chunking import estimate_tokens
from .config import DEFAULT_RAG_SYSTEM_PROMPT, RetrievalConfig
from .index import VectorIndex
from .models import RetrievalContext, Source


logger = logging.getLogger(__name__)


QUESTION_WORDS = ("what", "who", "where", "when", "why", "how", "which", "whose")
INFO_PHRASES = (
    "tell me about", "explain", "describe", "what is", "what are", "define", "summarize", "list",
)
DOCUMENT_TERMS = ("document", "file", "paper", "article", "according to", "based on")


@dataclass
class _ContextChunk:
    text: str
    score: float
    position: int
    doc_id: int
    doc_name: str


@dataclass
class QueryResult:
    """Augmented messages for one query plus what went into them."""
    messages: List[Dict[str, str]]
    context: str
    sources: List[Source]
    metadata: Dict[str, Any] = field(default_factory=dict)


class RAGPipeline:
    """Turns ranked search results into a prompt-ready context block."""

    def __init__(
        self,
        index: VectorIndex,
        config: Optional[RetrievalConfig] = None,
        system_prompt: str = DEFAULT_RAG_SYSTEM_PROMPT,
    ):
        self.index = index
        self.config = config or RetrievalConfig()
        self.system_prompt = system_prompt

    def _options(self, overrides: Dict[str, Any]) -> RetrievalConfig:
        unknown = set(overrides) - set(asdict(self.config))
        if unknown:
            raise TypeError(f"Unknown retrieval options: {', '.join(sorted(unknown))}")
        merged = asdict(self.config)
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return RetrievalConfig(**merged)

    def retrieve_context(self, query: str, **options: Any) -> RetrievalContext:
        """
        Retrieve chunks for a query and fit them into the token budget.

        Candidates are taken in rank order while the running estimate stays
        within ``max_context_tokens``, stopping at the first chunk that would
        overflow or once ``top_k`` chunks are in.

        Args:
            query: User query
            **options: Overrides for any RetrievalConfig field

        Returns:
            RetrievalContext; empty text and no sources when nothing matched
        """
        config = self._options(options)
        logger.info("Retrieving context for query: %r", query[:50])
        logger.debug(
            "Config: top_k=%d, threshold=%s, max_tokens=%d",
            config.top_k, config.threshold, config.max_context_tokens,
        )

        # Over-fetch so budget truncation still lands near top_k
        response = self.index.search(
            query,
            top_k=config.top_k * 2,
            threshold=config.threshold,
            use_mmr=config.use_mmr,
            mmr_lambda=config.mmr_lambda,
        )

        if not response.results:
            logger.warning("No relevant documents found for query")
            return RetrievalContext(
                context_text="",
                sources=[],
                tokens_used=0,
                chunks_used=0,
                search_time=response.search_time,
            )

        context_chunks: List[_ContextChunk] = []
        sources: Dict[int, Source] = {}
        current_tokens = 0

        for result in response.results:
            chunk, doc = result.chunk, result.document
            chunk_tokens = estimate_tokens(chunk.text)

            if current_tokens + chunk_tokens > config.max_context_tokens:
                break

            context_chunks.append(_ContextChunk(
                text=chunk.text,
                score=result.score,
                position=chunk.position,
                doc_id=doc.id,
                doc_name=doc.name,
            ))
            if doc.id not in sources:
                sources[doc.id] = Source(id=doc.id, name=doc.name, type=doc.type)
            sources[doc.id].chunks.append((chunk.position, result.score))
            current_tokens += chunk_tokens

            if len(context_chunks) >= config.top_k:
                break

        context_text = self.format_context(context_chunks, config.include_metadata)
        sources_list = sorted(sources.values(), key=lambda s: s.relevance, reverse=True)

        logger.info(
            "Built context with %d chunks from %d documents (~%d tokens)",
            len(context_chunks), len(sources_list), current_tokens,
        )
        if sources_list:
            top = sources_list[0]
            logger.debug("Top source: %s (relevance: %.1f%%)", top.name, top.relevance * 100)

        return RetrievalContext(
            context_text=context_text,
            sources=sources_list,
            tokens_used=current_tokens,
            chunks_used=len(context_chunks),
            search_time=response.search_time,
        )

    def format_context(self, chunks: List[_ContextChunk], include_metadata: bool = True) -> str:
        """Group chunks by document (first-seen order), each group in reading order."""
        if not chunks:
            return ""

        groups: Dict[int, List[_ContextChunk]] = {}
        for chunk in chunks:
            groups.setdefault(chunk.doc_id, []).append(chunk)

        parts = ["CONTEXT:\n========\n\n"]
        for doc_index, doc_chunks in enumerate(groups.values(), start=1):
            if include_metadata:
                parts.append(f"[Document {doc_index}: {doc_chunks[0].doc_name}]\n")
            for chunk in sorted(doc_chunks, key=lambda c: c.position):
                parts.append(chunk.text)
                if not chunk.text.endswith("\n"):
                    parts.append("\n")
                parts.append("\n")
        parts.append("========\n")
        return "".join(parts)

    def build_prompt_with_context(
        self,
        query: str,
        context_text: str,
        system_prompt: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        """System message (prompt plus context) followed by the user query."""
        prompt = system_prompt or self.system_prompt
        return [
            {"role": "system", "content": f"{prompt}\n\n{context_text}"},
            {"role": "user", "content": query},
        ]

    def process_query(self, query: str, system_prompt: Optional[str] = None, **options: Any) -> QueryResult:
        """Retrieve context and build the augmented message list in one step."""
        start = time.perf_counter()
        retrieved = self.retrieve_context(query, **options)
        messages = self.build_prompt_with_context(query, retrieved.context_text, system_prompt)
        processing_time = (time.perf_counter() - start) * 1000

        logger.info(
            "Query processed in %.2fms, context provided: %s (%d sources)",
            processing_time, "yes" if retrieved.context_text else "no", len(retrieved.sources),
        )
        return QueryResult(
            messages=messages,
            context=retrieved.context_text,
            sources=retrieved.sources,
            metadata={
                "tokens_used": retrieved.tokens_used,
                "chunks_used": retrieved.chunks_used,
                "processing_time": processing_time,
                "search_time": retrieved.search_time,
            },
        )

    @staticmethod
    def format_sources(sources: List[Source]) -> str:
        """Numbered citation list for display under an answer."""
        if not sources:
            return ""

        lines = ["", "", "Sources:"]
        for i, source in enumerate(sources, start=1):
            line = f"{i}. {source.name}"
            if source.relevance:
                line += f" (relevance: {source.relevance * 100:.1f}%)"
            lines.append(line)
        return "\n".join(lines) + "\n"

    @staticmethod
    def analyze_query(query: str) -> Dict[str, Any]:
        """Cheap heuristic for whether a query is worth a retrieval round trip."""
        lower = query.lower()

        is_question = "?" in query or any(
            lower.startswith(word) or f" {word} " in lower for word in QUESTION_WORDS
        )
        needs_info = any(phrase in lower for phrase in INFO_PHRASES)
        references_docs = any(term in lower for term in DOCUMENT_TERMS)

        return {
            "should_use_rag": is_question or needs_info or references_docs,
            "query_type": "question" if is_question else "statement",
            "confidence": round(
                (0.4 if is_question else 0.0)
                + (0.4 if needs_info else 0.0)
                + (0.2 if references_docs else 0.0),
                2,
            ),
        }
