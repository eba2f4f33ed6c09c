"""FastAPI REST API wrapper for the Lantern RAG engine."""

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, replace
from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from .config import LanternConfig
from .errors import GenerationBusyError, InvariantViolationError, ModelNotLoadedError
from .lantern import Lantern
from .models import (
    Aborted,
    Done,
    Errored,
    GenerationEvent,
    Initiate,
    Source,
    Token,
)


logger = logging.getLogger(__name__)


# ============ Request/Response Models ============

class DocumentIn(BaseModel):
    """A document to ingest, already extracted to plain text."""
    content: str = Field(..., min_length=1, description="Document text")
    name: Optional[str] = Field(default=None, description="Display name")
    type: Optional[str] = Field(default=None, description="Source type, e.g. '.md'")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Extra fields kept on the document")


class IngestRequest(BaseModel):
    """Request body for document ingestion."""
    documents: List[DocumentIn] = Field(..., min_length=1, description="Documents to ingest")


class IngestResponseItem(BaseModel):
    doc_id: int
    chunk_count: int
    embedding_count: int
    success: bool


class IngestResponse(BaseModel):
    """Response from ingestion."""
    results: List[IngestResponseItem]
    chunks: int
    docs: int


class DocumentInfo(BaseModel):
    id: int
    name: str
    type: str
    size_bytes: int
    created_at: float
    metadata: Dict[str, Any]
    chunk_count: int


class SearchRequest(BaseModel):
    """Request body for search."""
    query: str = Field(..., min_length=1, description="Search query")
    top_k: int = Field(default=10, ge=1, le=100, description="Number of results")
    threshold: float = Field(default=0.0, ge=-1.0, le=1.0, description="Minimum cosine similarity")
    use_mmr: bool = Field(default=False, description="Diversify results with MMR")
    mmr_lambda: float = Field(default=0.5, ge=0.0, le=1.0, description="MMR relevance weight")


class SearchResultItem(BaseModel):
    """Single search result."""
    chunk_id: int
    doc_id: int
    doc_name: str
    position: int
    text: str
    score: float


class SearchResponse(BaseModel):
    """Response from search."""
    query: str
    results: List[SearchResultItem]
    count: int
    search_time: float


class ContextRequest(BaseModel):
    """Request body for context retrieval. Unset fields use engine defaults."""
    query: str = Field(..., min_length=1)
    max_context_tokens: Optional[int] = Field(default=None, ge=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=100)
    threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    use_mmr: Optional[bool] = None
    mmr_lambda: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    include_metadata: Optional[bool] = None

    def retrieval_options(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"query"}, exclude_none=True)


class SourceItem(BaseModel):
    id: int
    name: str
    type: str
    relevance: float
    positions: List[int]


class ContextResponse(BaseModel):
    context_text: str
    sources: List[SourceItem]
    tokens_used: int
    chunks_used: int
    search_time: float


class Message(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class ChatRequest(ContextRequest):
    """Request body for a streamed chat turn."""
    use_rag: bool = Field(default=True, description="Answer against retrieved context")
    history: List[Message] = Field(default_factory=list, description="Earlier turns, oldest first")
    max_new_tokens: Optional[int] = Field(default=None, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0)
    top_p: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    max_time: Optional[float] = Field(default=None, gt=0.0)

    def retrieval_options(self) -> Dict[str, Any]:
        return self.model_dump(
            exclude={"query", "use_rag", "history", "max_new_tokens", "temperature", "top_p", "max_time"},
            exclude_none=True,
        )

    def param_overrides(self) -> Dict[str, Any]:
        return self.model_dump(include={"max_new_tokens", "temperature", "top_p", "max_time"}, exclude_none=True)


def _source_item(source: Source) -> SourceItem:
    return SourceItem(
        id=source.id,
        name=source.name,
        type=source.type,
        relevance=source.relevance,
        positions=[position for position, _ in source.chunks],
    )


def _event_payload(event: GenerationEvent) -> Dict[str, Any]:
    if isinstance(event, Initiate):
        return {"type": "initiate", "session_id": event.session_id}
    if isinstance(event, Token):
        return {"type": "token", "text": event.text, "total_tokens": event.progress.total_tokens}
    if isinstance(event, Done):
        return {"type": "done", "result": asdict(event.result)}
    if isinstance(event, Aborted):
        return {"type": "aborted", "result": asdict(event.result)}
    if isinstance(event, Errored):
        return {"type": "error", "error": str(event.error), "error_type": type(event.error).__name__}
    raise TypeError(f"Unknown event: {event!r}")


# ============ App Factory ============

def create_app(
    config: Optional[LanternConfig] = None,
    *,
    lantern: Optional[Lantern] = None,
) -> FastAPI:
    """
    Create a FastAPI app wrapping a Lantern instance.

    Args:
        config: Engine configuration (``LanternConfig.from_env()`` if None)
        lantern: Use an existing engine instead of building one. The caller
            keeps ownership and closes it.

    Returns:
        FastAPI app instance
    """

    lantern_instance: Optional[Lantern] = lantern

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal lantern_instance
        owned = lantern_instance is None
        if owned:
            lantern_instance = Lantern(config or LanternConfig.from_env())
        yield
        if owned and lantern_instance:
            lantern_instance.close()
            lantern_instance = None

    app = FastAPI(
        title="Lantern RAG API",
        description="Local retrieval-augmented generation: ingest, search, and streamed answers",
        version="1.0.0",
        lifespan=lifespan,
    )

    def get_lantern() -> Lantern:
        if lantern_instance is None:
            raise HTTPException(status_code=503, detail="Lantern not initialized")
        return lantern_instance

    # ============ Error mapping ============

    @app.exception_handler(InvariantViolationError)
    async def invariant_violation(request: Request, exc: InvariantViolationError):
        logger.error("Index invariant violated: %s", exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(GenerationBusyError)
    async def generation_busy(request: Request, exc: GenerationBusyError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ModelNotLoadedError)
    async def model_not_loaded(request: Request, exc: ModelNotLoadedError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": exc.errors()})

    # ============ Documents ============

    @app.post("/documents", response_model=IngestResponse, tags=["Documents"])
    async def ingest_documents(request: IngestRequest):
        """
        Ingest documents into the index.

        Documents are chunked, embedded, and stored for search.
        """
        engine = get_lantern()
        results = []
        for doc in request.documents:
            metadata = dict(doc.metadata)
            if doc.name:
                metadata["name"] = doc.name
            if doc.type:
                metadata["type"] = doc.type
            results.append(engine.add_document(doc.content, metadata))

        return IngestResponse(
            results=[
                IngestResponseItem(
                    doc_id=r.doc_id,
                    chunk_count=r.chunk_count,
                    embedding_count=r.embedding_count,
                    success=r.success,
                )
                for r in results
            ],
            chunks=sum(r.chunk_count for r in results),
            docs=len(results),
        )

    @app.get("/documents", response_model=List[DocumentInfo], tags=["Documents"])
    async def list_documents():
        """List all documents with their chunk counts."""
        return [DocumentInfo(**d) for d in get_lantern().list_documents()]

    @app.delete("/documents/{doc_id}", tags=["Documents"])
    async def delete_document(doc_id: int):
        """Delete a document with its chunks and vectors."""
        engine = get_lantern()
        if engine.get_document(doc_id) is None:
            raise HTTPException(status_code=404, detail=f"Document {doc_id} not found")
        deleted = engine.delete_document(doc_id)
        return {"deleted": True, "doc_id": doc_id, "chunks": deleted}

    # ============ Retrieval ============

    @app.post("/search", response_model=SearchResponse, tags=["Search"])
    async def search(request: SearchRequest):
        """
        Search for relevant chunks.

        Every stored vector is scored by cosine similarity; with ``use_mmr``
        the top results are diversified with Maximal Marginal Relevance.
        """
        response = get_lantern().search(
            request.query,
            top_k=request.top_k,
            threshold=request.threshold,
            use_mmr=request.use_mmr,
            mmr_lambda=request.mmr_lambda,
        )
        return SearchResponse(
            query=request.query,
            results=[
                SearchResultItem(
                    chunk_id=r.chunk.id,
                    doc_id=r.document.id,
                    doc_name=r.document.name,
                    position=r.chunk.position,
                    text=r.chunk.text,
                    score=r.score,
                )
                for r in response.results
            ],
            count=response.total_results,
            search_time=response.search_time,
        )

    @app.post("/context", response_model=ContextResponse, tags=["Search"])
    async def context(request: ContextRequest):
        """Assemble a token-budgeted context block for a query."""
        retrieved = get_lantern().retrieve_context(request.query, **request.retrieval_options())
        return ContextResponse(
            context_text=retrieved.context_text,
            sources=[_source_item(s) for s in retrieved.sources],
            tokens_used=retrieved.tokens_used,
            chunks_used=retrieved.chunks_used,
            search_time=retrieved.search_time,
        )

    # ============ Generation ============

    @app.post("/chat", tags=["Generation"])
    def chat(request: ChatRequest):
        """
        Stream an answer as newline-delimited JSON events.

        The first line lists the sources used; then come ``initiate``,
        ``token`` events and one final ``done``, ``aborted`` or ``error``.
        A second request while one is streaming gets 409.
        """
        engine = get_lantern()
        params = replace(engine.controller.default_params, **request.param_overrides())
        prepared, events = engine.stream_chat(
            request.query,
            use_rag=request.use_rag,
            history=[m.model_dump() for m in request.history],
            params=params,
            **request.retrieval_options(),
        )

        def body() -> Iterator[str]:
            yield json.dumps({
                "type": "sources",
                "used_context": bool(prepared.context),
                "sources": [_source_item(s).model_dump() for s in prepared.sources],
            }) + "\n"
            for event in events:
                yield json.dumps(_event_payload(event)) + "\n"

        return StreamingResponse(body(), media_type="application/x-ndjson")

    @app.post("/chat/stop", tags=["Generation"])
    async def stop_chat():
        """Stop the active generation, if any."""
        return {"stopped": get_lantern().stop()}

    # ============ Management ============

    @app.post("/compact", tags=["Management"])
    async def compact():
        """Remove orphaned chunks and vectors."""
        result = get_lantern().compact()
        return {
            "removed_chunks": result.removed_chunks,
            "removed_vectors": result.removed_vectors,
            "message": result.message,
        }

    @app.delete("/index", tags=["Management"])
    async def clear_index():
        """Delete every document, chunk and vector."""
        get_lantern().clear()
        return {"cleared": True}

    @app.get("/stats", tags=["Management"])
    async def get_stats():
        """Get engine statistics including cache and generation metrics."""
        return get_lantern().get_stats()

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "lantern"}

    return app


# Default app for `uvicorn lantern.api:app`
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
