#!/usr/bin/env python3
"""
Example 1: Basic RAG Pipeline with Lantern

This example demonstrates:
- Creating a Lantern instance with local HuggingFace embeddings
- Ingesting documents with a progress callback
- Plain and MMR (diverse) search
- Assembling a token-budgeted context block
- Streaming an answer from an OpenAI-compatible chat model

Requirements:
    pip install lantern-rag
    export OPENAI_API_KEY=sk-...        # or point --base-url at a local server
"""

import os
from pathlib import Path

from lantern import RAGPipeline, SourceText, create_lantern


DB_PATH = "example_basic.db"


def main():
    print("=" * 60)
    print("Example 1: Basic RAG Pipeline")
    print("=" * 60)

    # ============================================================
    # Step 1: Create Lantern instance
    # ============================================================
    print("\n📦 Creating Lantern instance...")
    lantern = create_lantern(
        DB_PATH,
        embedding_provider="huggingface",
        embedding_model="all-MiniLM-L6-v2",
        base_url=os.environ.get("OPENAI_BASE_URL"),
    )

    # ============================================================
    # Step 2: Ingest documents with progress tracking
    # ============================================================
    documents = [
        SourceText(
            "Vector search compares an embedded query against stored embeddings. "
            "Cosine similarity measures the angle between two vectors, so documents "
            "pointing the same way as the query rank highest.",
            {"name": "vector-search.md", "type": ".md"},
        ),
        SourceText(
            "Retrieval-augmented generation first retrieves relevant passages, then "
            "places them in the prompt so the language model answers from them "
            "instead of from memory alone.",
            {"name": "rag.md", "type": ".md"},
        ),
        SourceText(
            "Maximal marginal relevance balances relevance against redundancy. Each "
            "pick rewards similarity to the query and penalises similarity to "
            "passages that were already selected.",
            {"name": "mmr.md", "type": ".md"},
        ),
    ]

    print("\n📥 Ingesting documents...")
    results = lantern.ingest(
        documents,
        on_progress=lambda p: print(f"   Progress: {p.current}/{p.total} ({p.percent:.0f}%) {p.document}"),
    )
    print(f"   ✅ Stored {sum(r.chunk_count for r in results)} chunks")

    # ============================================================
    # Step 3: Search
    # ============================================================
    print("\n🔍 Search: 'How are documents ranked?'")
    response = lantern.search("How are documents ranked?", top_k=3)
    for i, r in enumerate(response.results, 1):
        print(f"   {i}. [{r.score:.3f}] {r.document.name}: {r.chunk.text[:60]}...")

    print("\n🔍 MMR Search: 'relevance' (lambda=0.5)")
    response = lantern.search("relevance", top_k=3, use_mmr=True, mmr_lambda=0.5)
    for i, r in enumerate(response.results, 1):
        print(f"   {i}. [{r.score:.3f}] {r.document.name}")

    # ============================================================
    # Step 4: Context assembly
    # ============================================================
    print("\n🧩 Context for 'What does RAG do?' (200 token budget)")
    context = lantern.retrieve_context("What does RAG do?", max_context_tokens=200)
    print(f"   {context.chunks_used} chunks, {context.tokens_used} tokens")
    print(RAGPipeline.format_sources(context.sources))

    # ============================================================
    # Step 5: Streaming answer
    # ============================================================
    if os.environ.get("OPENAI_API_KEY") or os.environ.get("OPENAI_BASE_URL"):
        print("\n💬 Answer:")
        answer = lantern.chat(
            "What does retrieval-augmented generation do?",
            on_token=lambda text, progress: print(text, end="", flush=True),
        )
        print(f"\n   ({answer.result.tokens} tokens, {answer.result.stop_reason})")
    else:
        print("\n⚠️  Skipping chat: set OPENAI_API_KEY or OPENAI_BASE_URL")

    # ============================================================
    # Step 6: Statistics
    # ============================================================
    stats = lantern.get_stats()
    print("\n📊 Engine Statistics:")
    print(f"   Documents: {stats['index']['documents']}")
    print(f"   Chunks: {stats['index']['chunks']}, vectors: {stats['index']['vectors']}")
    print(f"   Cache hit rate: {stats['cache']['hit_rate']:.1%}")

    lantern.close()
    Path(DB_PATH).unlink(missing_ok=True)

    print("\n✅ Example complete!")


if __name__ == "__main__":
    main()
