"""Tests for the Lantern facade in lantern/lantern.py"""

import pytest

from lantern.errors import ModelNotLoadedError
from lantern.models import Done, Initiate, SourceText

from conftest import ScriptedModel


DOCS = [
    SourceText("Lighthouses guide ships along rocky coasts at night.", {"name": "lighthouse.txt", "type": ".txt"}),
    SourceText("Bees collect nectar and make honey in hives.", {"name": "bees.txt", "type": ".txt"}),
]


def test_ingest_source_texts_and_strings(make_lantern):
    lantern = make_lantern()
    progress = []

    results = lantern.ingest(DOCS + ["A plain string document about owls."], on_progress=progress.append)

    assert len(results) == 3
    assert all(r.success for r in results)
    assert [p.current for p in progress] == [1, 2, 3]
    names = sorted(d["name"] for d in lantern.list_documents())
    assert names == ["Document 3", "bees.txt", "lighthouse.txt"]


def test_chat_uses_retrieved_context(make_lantern):
    model = ScriptedModel(["Ships", " use them."])
    lantern = make_lantern(model)
    lantern.ingest(DOCS)

    answer = lantern.chat("What do lighthouses guide?")

    assert answer.text == "Ships use them."
    assert answer.used_context
    assert answer.sources[0].name == "lighthouse.txt"
    system = model.calls[0][0]
    assert system["role"] == "system"
    assert "Lighthouses guide ships" in system["content"]
    assert model.calls[0][-1] == {"role": "user", "content": "What do lighthouses guide?"}


def test_chat_falls_back_without_context(make_lantern):
    model = ScriptedModel(["Hello!"])
    lantern = make_lantern(model)

    answer = lantern.chat("Hello there", history=[{"role": "assistant", "content": "Hi"}])

    assert answer.text == "Hello!"
    assert not answer.used_context
    assert answer.sources == []
    messages = model.calls[0]
    assert messages[0]["content"] == lantern.config.generation.system_prompt
    assert messages[1:] == [
        {"role": "assistant", "content": "Hi"},
        {"role": "user", "content": "Hello there"},
    ]


def test_chat_without_rag_skips_retrieval(make_lantern):
    model = ScriptedModel(["ok"])
    lantern = make_lantern(model)
    lantern.ingest(DOCS)

    answer = lantern.chat("What do lighthouses guide?", use_rag=False)

    assert not answer.used_context
    assert "CONTEXT" not in model.calls[0][0]["content"]


def test_history_sits_between_context_and_query(make_lantern):
    model = ScriptedModel(["ok"])
    lantern = make_lantern(model)
    lantern.ingest(DOCS)
    history = [
        {"role": "user", "content": "Earlier question"},
        {"role": "assistant", "content": "Earlier answer"},
    ]

    lantern.chat("Where do bees make honey?", history=history)

    messages = model.calls[0]
    assert messages[0]["role"] == "system"
    assert messages[1:3] == history
    assert messages[3]["content"] == "Where do bees make honey?"


def test_stream_chat_events(make_lantern):
    lantern = make_lantern(ScriptedModel(["Honey", "."]))
    lantern.ingest(DOCS)

    prepared, events = lantern.stream_chat("What do bees make?")
    events = list(events)

    assert prepared.sources[0].name == "bees.txt"
    assert isinstance(events[0], Initiate)
    assert isinstance(events[-1], Done)
    assert events[-1].result.text == "Honey."


def test_chat_without_model_or_credentials(make_lantern, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    lantern = make_lantern()
    with pytest.raises(ModelNotLoadedError):
        lantern.chat("Hi")


def test_delete_compact_clear_and_stats(make_lantern):
    lantern = make_lantern()
    results = lantern.ingest(DOCS)

    assert lantern.delete_document(results[0].doc_id) > 0
    assert lantern.get_document(results[0].doc_id) is None
    assert lantern.compact().removed_chunks == 0

    stats = lantern.get_stats()
    assert stats["index"]["documents"] == 1
    assert stats["generation"]["state"] == "idle"
    assert stats["cache"]["size"] == 0

    lantern.clear()
    assert lantern.list_documents() == []
    assert lantern.search("bees").results == []


def test_context_manager_closes_store(make_lantern):
    with make_lantern() as lantern:
        lantern.ingest(DOCS[:1])
    with pytest.raises(Exception):
        lantern.metadata_store.count("documents")
