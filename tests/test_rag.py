"""Tests for lantern/rag.py"""

import pytest

from lantern.chunking import estimate_tokens
from lantern.config import RetrievalConfig
from lantern.index import VectorIndex
from lantern.models import Source
from lantern.rag import RAGPipeline


SOLAR = (
    "The sun is a star at the centre of the solar system. "
    "Solar panels turn sunlight into electricity for homes."
)
WIND = "Wind turbines turn moving air into electricity. Wind farms sit on hills and at sea."
CHEESE = "Cheese is made from milk curds pressed and aged in caves."


@pytest.fixture
def pipeline(index):
    for name, text in (("solar.md", SOLAR), ("wind.md", WIND), ("cheese.md", CHEESE)):
        index.add_document(text, {"name": name, "type": ".md"})
    return RAGPipeline(index, RetrievalConfig(threshold=0.05, use_mmr=False))


def test_context_respects_budget(pipeline):
    for budget in (1, 20, 40, 2000):
        context = pipeline.retrieve_context("electricity from sunlight and wind", max_context_tokens=budget)
        assert context.tokens_used <= budget
        assert context.chunks_used <= pipeline.config.top_k


def test_budget_too_small_for_any_chunk_gives_empty_context(pipeline):
    context = pipeline.retrieve_context("electricity from sunlight", max_context_tokens=1)
    assert context.context_text == ""
    assert context.sources == []
    assert context.chunks_used == 0


def test_context_text_format(pipeline):
    context = pipeline.retrieve_context("solar panels sunlight electricity")
    text = context.context_text

    assert text.startswith("CONTEXT:\n========\n\n")
    assert text.endswith("========\n")
    assert "[Document 1: solar.md]" in text
    assert "Solar panels turn sunlight into electricity" in text


def test_context_without_metadata_labels(pipeline):
    context = pipeline.retrieve_context("solar panels sunlight", include_metadata=False)
    assert "[Document" not in context.context_text
    assert "Solar panels" in context.context_text


def test_sources_sorted_by_relevance(pipeline):
    context = pipeline.retrieve_context("electricity wind turbines solar")
    relevances = [s.relevance for s in context.sources]
    assert relevances == sorted(relevances, reverse=True)
    assert len({s.id for s in context.sources}) == len(context.sources)
    assert context.sources[0].name in ("wind.md", "solar.md")


def test_tokens_used_matches_included_chunks(pipeline):
    context = pipeline.retrieve_context("cheese milk curds", threshold=0.3)
    assert context.sources[0].name == "cheese.md"
    assert context.tokens_used == estimate_tokens(CHEESE)


def test_no_match_gives_empty_context(pipeline):
    context = pipeline.retrieve_context("zzqx", threshold=0.9)
    assert context.context_text == ""
    assert context.sources == []
    assert context.tokens_used == 0


def test_unknown_option_rejected(pipeline):
    with pytest.raises(TypeError, match="Unknown retrieval options"):
        pipeline.retrieve_context("solar", top_n=3)


def test_build_prompt_with_context(pipeline):
    messages = pipeline.build_prompt_with_context("What is the sun?", "CONTEXT:\n...", system_prompt="Be brief.")
    assert messages == [
        {"role": "system", "content": "Be brief.\n\nCONTEXT:\n..."},
        {"role": "user", "content": "What is the sun?"},
    ]


def test_process_query_reports_metadata(pipeline):
    result = pipeline.process_query("How do wind turbines work?")
    assert result.messages[0]["role"] == "system"
    assert result.context in result.messages[0]["content"]
    assert result.messages[-1] == {"role": "user", "content": "How do wind turbines work?"}
    assert result.metadata["chunks_used"] >= 1
    assert result.metadata["processing_time"] >= 0


def test_format_sources():
    sources = [Source(id=1, name="a.md", type=".md", chunks=[(0, 0.8), (2, 0.9)])]
    assert RAGPipeline.format_sources(sources) == "\n\nSources:\n1. a.md (relevance: 90.0%)\n"
    assert RAGPipeline.format_sources([]) == ""


@pytest.mark.parametrize("query,expected", [
    ("What is solar power?", True),
    ("Tell me about wind farms", True),
    ("according to the document", True),
    ("thanks", False),
])
def test_analyze_query(query, expected):
    assert RAGPipeline.analyze_query(query)["should_use_rag"] is expected


def test_chunks_of_one_document_follow_reading_order(embedder, store):
    # Three words per chunk: "apple ..." (0), "banana ..." (1), "cherry ..." (2)
    index = VectorIndex(embedder, store, chunk_size=5, chunk_overlap=0)
    index.add_document(
        "apple apple apple banana banana banana cherry cherry cherry",
        {"name": "fruit.txt", "type": ".txt"},
    )
    pipeline = RAGPipeline(index, RetrievalConfig(threshold=0.3, use_mmr=False))

    ranked = index.search("cherry cherry apple", threshold=0.3).results
    assert [r.chunk.position for r in ranked] == [2, 0]

    context = pipeline.retrieve_context("cherry cherry apple")
    text = context.context_text
    assert context.chunks_used == 2
    assert text.index("apple apple apple") < text.index("cherry cherry cherry")
    assert "banana" not in text
    assert [position for position, _ in context.sources[0].chunks] == [2, 0]
