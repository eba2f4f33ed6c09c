"""Tests for lantern/cli.py"""

import json
import sys

import pytest

from lantern import cli
from lantern.config import LanternConfig
from lantern.embeddings import FunctionEmbedding
from lantern.lantern import Lantern

from conftest import DIM, hash_embed


@pytest.fixture
def run_cli(monkeypatch, capsys, db_path):
    """Run ``main()`` with the given arguments against the temp database."""

    def fake_open(args):
        config = LanternConfig(db_path=db_path, chunk_size=50, chunk_overlap=10)
        return Lantern(config, embedder=FunctionEmbedding(hash_embed, dimension=DIM))

    monkeypatch.setattr(cli, "_open", fake_open)

    def run(*argv):
        monkeypatch.setattr(sys, "argv", ["lantern", *argv])
        cli.main()
        return capsys.readouterr().out

    return run


@pytest.fixture
def notes(tmp_path):
    path = tmp_path / "telescopes.txt"
    path.write_text("Telescopes gather light with mirrors. Larger mirrors see fainter galaxies.")
    return path


def test_ingest_then_search(run_cli, notes):
    out = run_cli("ingest", str(notes))
    assert "[1/1] telescopes.txt (100%)" in out
    assert "Ingested 1 documents" in out

    out = run_cli("search", "mirrors gather light")
    first = out.splitlines()[0]
    assert first.startswith("1. [")
    assert "telescopes.txt #0" in first
    assert "results in" in out


def test_search_on_empty_index(run_cli):
    assert run_cli("search", "anything").strip() == "No results."


def test_docs_delete_and_stats(run_cli, notes):
    run_cli("ingest", str(notes))

    out = run_cli("docs")
    assert "telescopes.txt" in out
    doc_id = int(out.split()[0])

    assert f"Deleted document {doc_id}" in run_cli("delete", str(doc_id))
    assert run_cli("docs").strip() == "No documents."

    stats = json.loads(run_cli("stats"))
    assert stats["index"]["documents"] == 0


def test_ingest_with_nothing_to_load_exits(run_cli, tmp_path):
    with pytest.raises(SystemExit) as exc:
        run_cli("ingest", str(tmp_path / "missing"))
    assert exc.value.code == 1


def test_no_command_prints_help(run_cli):
    with pytest.raises(SystemExit) as exc:
        run_cli()
    assert exc.value.code == 0
