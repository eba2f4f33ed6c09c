"""
Shared fixtures for the Lantern test suite.

Provides:
- a deterministic bag-of-words hashing embedder (no model downloads)
- scripted generative models covering batch, stream, silent and failing cases
- a temporary SQLite database per test
"""

import hashlib
import re
import threading
import time
from typing import List, Optional

import pytest

from lantern.config import LanternConfig
from lantern.embeddings import FunctionEmbedding
from lantern.errors import GenerationCancelled
from lantern.index import VectorIndex
from lantern.lantern import Lantern
from lantern.llm import Batch, GenerativeModel, Stream
from lantern.storage import MetadataStore


DIM = 64


def hash_embed(text: str, dim: int = DIM) -> List[float]:
    """Bag of words hashed into ``dim`` buckets. Shared words mean higher cosine."""
    vector = [0.0] * dim
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % dim
        vector[bucket] += 1.0
    return vector


class ScriptedModel(GenerativeModel):
    """Emits fixed fragments, either pushed through ``on_text`` or as a stream."""

    name = "scripted"

    def __init__(self, fragments: List[str], mode: str = "stream", delay: float = 0.0):
        self.fragments = fragments
        self.mode = mode
        self.delay = delay
        self.calls: List[list] = []

    def _iterate(self, cancellation):
        for fragment in self.fragments:
            if cancellation.is_cancelled:
                return
            if self.delay:
                time.sleep(self.delay)
            yield fragment

    def generate(self, messages, params, on_text, cancellation):
        self.calls.append(messages)
        if self.mode == "stream":
            return Stream(self._iterate(cancellation))

        pushed = []
        for fragment in self._iterate(cancellation):
            on_text(fragment)
            pushed.append(fragment)
        return Batch("".join(pushed))


class BlockingModel(GenerativeModel):
    """Emits one fragment, then waits until cancelled or released."""

    name = "blocking"

    def __init__(self, first: str = "partial"):
        self.first = first
        self.started = threading.Event()
        self.release = threading.Event()

    def generate(self, messages, params, on_text, cancellation):
        on_text(self.first)
        self.started.set()
        deadline = time.monotonic() + 5
        while not cancellation.is_cancelled and not self.release.is_set() and time.monotonic() < deadline:
            cancellation.wait(0.01)
        if cancellation.is_cancelled:
            raise GenerationCancelled("stopped")
        return Batch(self.first)


class SilentModel(GenerativeModel):
    """Never produces a token; returns only once cancelled."""

    name = "silent"

    def generate(self, messages, params, on_text, cancellation):
        cancellation.wait(5)
        return Batch("")


class FailingModel(GenerativeModel):
    name = "failing"

    def generate(self, messages, params, on_text, cancellation):
        raise RuntimeError("model exploded")


def run_in_thread(fn, *args, **kwargs):
    """Run ``fn`` on a thread; returns (thread, outcome dict)."""
    outcome = {}

    def target():
        try:
            outcome["result"] = fn(*args, **kwargs)
        except Exception as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread, outcome


@pytest.fixture
def embedder():
    return FunctionEmbedding(hash_embed, dimension=DIM)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "lantern.db")


@pytest.fixture
def store(db_path):
    store = MetadataStore(db_path)
    yield store
    store.close()


@pytest.fixture
def index(embedder, store):
    return VectorIndex(embedder, store, chunk_size=50, chunk_overlap=10)


@pytest.fixture
def make_lantern(db_path, embedder):
    """Build a Lantern over the temp database with an optional model."""
    created = []

    def factory(model: Optional[GenerativeModel] = None, **config_changes) -> Lantern:
        config = LanternConfig(db_path=db_path, chunk_size=50, chunk_overlap=10)
        for key, value in config_changes.items():
            setattr(config, key, value)
        config.retrieval.threshold = 0.1
        lantern = Lantern(config, embedder=embedder, model=model)
        created.append(lantern)
        return lantern

    yield factory
    for lantern in created:
        lantern.metadata_store.conn.close()
