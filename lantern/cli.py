"""CLI for the Lantern RAG engine."""

import argparse
import json
import logging
import os
import sys

# Set USER_AGENT to suppress langchain warning
if not os.environ.get("USER_AGENT"):
    os.environ["USER_AGENT"] = "lantern-rag/1.0.0"


def _config(args: argparse.Namespace):
    from .config import LanternConfig

    config = LanternConfig.from_env()
    if args.db:
        config.db_path = args.db
    if args.embedding_provider:
        config.embedding_provider = args.embedding_provider
    if args.embedding_model:
        config.embedding_model = args.embedding_model
    if args.llm_model:
        config.generation.model = args.llm_model
    if args.base_url:
        config.generation.base_url = args.base_url
    return config


def _open(args: argparse.Namespace):
    from .lantern import Lantern

    return Lantern(_config(args))


def ingest(args: argparse.Namespace) -> None:
    """Load files and directories into the index."""
    from .loaders import load_sources

    docs = load_sources(args.paths, recursive=not args.no_recursive)
    if not docs:
        print("No documents found.")
        sys.exit(1)

    with _open(args) as lantern:
        results = lantern.ingest(
            docs,
            on_progress=lambda p: print(f"[{p.current}/{p.total}] {p.document} ({p.percent:.0f}%)"),
        )

    chunks = sum(r.chunk_count for r in results)
    failed = sum(r.failed_count for r in results)
    print(f"Ingested {len(results)} documents, {chunks} chunks")
    if failed:
        print(f"Warning: {failed} chunks could not be embedded")


def search(args: argparse.Namespace) -> None:
    """Search the index and print ranked chunks."""
    with _open(args) as lantern:
        response = lantern.search(
            args.query,
            top_k=args.top_k,
            threshold=args.threshold,
            use_mmr=args.mmr,
        )

    if not response.results:
        print("No results.")
        return
    for i, r in enumerate(response.results, 1):
        text = " ".join(r.chunk.text.split())
        print(f"{i}. [{r.score:.3f}] {r.document.name} #{r.chunk.position}: {text[:100]}...")
    print(f"\n{response.total_results} results in {response.search_time:.1f}ms")


def ask(args: argparse.Namespace) -> None:
    """Answer a question, streaming tokens to stdout."""
    from .errors import ModelNotLoadedError
    from .models import Aborted, Done, Errored, Token
    from .rag import RAGPipeline

    with _open(args) as lantern:
        try:
            prepared, events = lantern.stream_chat(args.question, use_rag=not args.no_rag)
        except ModelNotLoadedError as e:
            print(f"Error: {e}")
            print("  export OPENAI_API_KEY=sk-...  or pass --base-url for a local server")
            sys.exit(1)

        failed = False
        try:
            for event in events:
                if isinstance(event, Token):
                    print(event.text, end="", flush=True)
                elif isinstance(event, Done):
                    print()
                elif isinstance(event, Aborted):
                    print(f"\n[stopped: {event.result.stop_reason}]")
                elif isinstance(event, Errored):
                    print(f"\nError: {event.error}")
                    failed = True
        except KeyboardInterrupt:
            events.close()
            print("\n[stopped]")

        if prepared.sources:
            print(RAGPipeline.format_sources(prepared.sources), end="")

    if failed:
        sys.exit(1)


def docs(args: argparse.Namespace) -> None:
    """List ingested documents."""
    with _open(args) as lantern:
        documents = lantern.list_documents()

    if not documents:
        print("No documents.")
        return
    for d in documents:
        print(f"{d['id']:>5}  {d['name']}  ({d['type']}, {d['chunk_count']} chunks, {d['size_bytes']} bytes)")


def delete(args: argparse.Namespace) -> None:
    """Delete a document by id."""
    with _open(args) as lantern:
        if lantern.get_document(args.doc_id) is None:
            print(f"Document {args.doc_id} not found")
            sys.exit(1)
        chunks = lantern.delete_document(args.doc_id)
    print(f"Deleted document {args.doc_id} ({chunks} chunks)")


def compact(args: argparse.Namespace) -> None:
    """Remove orphaned chunks and vectors."""
    with _open(args) as lantern:
        result = lantern.compact()
    print(result.message)


def stats(args: argparse.Namespace) -> None:
    """Show engine statistics."""
    with _open(args) as lantern:
        info = lantern.get_stats()
    print(json.dumps(info, indent=2))


def serve(args: argparse.Namespace) -> None:
    """Start the REST API server."""
    import uvicorn
    from .api import create_app

    config = _config(args)
    app = create_app(config)

    print(f"Starting Lantern API server on http://{args.host}:{args.port}")
    print(f"  Database: {config.db_path}")
    print(f"  Docs: http://{args.host}:{args.port}/docs\n")

    uvicorn.run(app, host=args.host, port=args.port)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="lantern",
        description="Lantern - Local RAG Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  lantern ingest ./docs              Load and index a directory
  lantern search "vector search"     Show matching chunks
  lantern ask "What is MMR?"         Stream an answer with sources
  lantern serve                      Start REST API server

Environment variables:
  OPENAI_API_KEY        Required for OpenAI chat/embeddings (not for --base-url servers)
  HF_TOKEN              Optional for HuggingFace models
  LANTERN_DB_PATH       Database path (default: lantern.db)
  LANTERN_LOG_LEVEL     Logging level (default: INFO)
"""
    )

    parser.add_argument(
        "--version", action="version", version="%(prog)s 1.0.0"
    )
    parser.add_argument(
        "--db", type=str, help="Database path (default: lantern.db)"
    )
    parser.add_argument(
        "--embedding-provider", type=str, help="Embedding provider: huggingface or openai"
    )
    parser.add_argument(
        "--embedding-model", type=str, help="Embedding model name"
    )
    parser.add_argument(
        "--llm-model", type=str, help="Chat model name"
    )
    parser.add_argument(
        "--base-url", type=str, help="OpenAI-compatible server URL for generation"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    ingest_parser = subparsers.add_parser("ingest", help="Load and index files or directories")
    ingest_parser.add_argument("paths", nargs="+", help="Files or directories")
    ingest_parser.add_argument(
        "--no-recursive", action="store_true", help="Do not descend into subdirectories"
    )
    ingest_parser.set_defaults(func=ingest)

    search_parser = subparsers.add_parser("search", help="Search indexed chunks")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("-k", "--top-k", type=int, default=5, help="Number of results (default: 5)")
    search_parser.add_argument(
        "--threshold", type=float, default=0.0, help="Minimum similarity (default: 0.0)"
    )
    search_parser.add_argument("--mmr", action="store_true", help="Diversify results with MMR")
    search_parser.set_defaults(func=search)

    ask_parser = subparsers.add_parser("ask", help="Answer a question from the index")
    ask_parser.add_argument("question", help="Question to answer")
    ask_parser.add_argument("--no-rag", action="store_true", help="Skip retrieval")
    ask_parser.set_defaults(func=ask)

    docs_parser = subparsers.add_parser("docs", help="List documents")
    docs_parser.set_defaults(func=docs)

    delete_parser = subparsers.add_parser("delete", help="Delete a document")
    delete_parser.add_argument("doc_id", type=int, help="Document id")
    delete_parser.set_defaults(func=delete)

    compact_parser = subparsers.add_parser("compact", help="Remove orphaned chunks and vectors")
    compact_parser.set_defaults(func=compact)

    stats_parser = subparsers.add_parser("stats", help="Show engine statistics")
    stats_parser.set_defaults(func=stats)

    serve_parser = subparsers.add_parser("serve", help="Start REST API server")
    serve_parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="Host to bind (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=8000, help="Port to bind (default: 8000)"
    )
    serve_parser.set_defaults(func=serve)

    args = parser.parse_args()

    logging.basicConfig(
        level=os.environ.get("LANTERN_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == "__main__":
    main()
