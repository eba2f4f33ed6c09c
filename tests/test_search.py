"""Tests for lantern/search.py"""

import numpy as np
import pytest

from lantern.errors import DimensionMismatchError
from lantern.models import Chunk, Document, SearchResult
from lantern.search import cosine_similarity, find_top_k, mmr_rerank


def _result(idx: int, vector, score: float) -> SearchResult:
    doc = Document(id=idx, name=f"doc{idx}", type="text", content="", size_bytes=0, created_at=0.0)
    chunk = Chunk(id=idx, doc_id=idx, text=f"chunk {idx}", position=0, start_index=0, end_index=2, token_count=3)
    return SearchResult(chunk=chunk, document=doc, vector=np.asarray(vector, dtype=np.float32), score=score)


class TestCosineSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
        assert cosine_similarity([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]) == 0.0

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 2.0], [10.0, 20.0]) == pytest.approx(1.0)

    def test_length_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


def test_find_top_k_orders_by_score_and_keeps_ties_stable():
    results = [
        _result(1, [1, 0], 0.5),
        _result(2, [1, 0], 0.9),
        _result(3, [1, 0], 0.5),
        _result(4, [1, 0], 0.1),
    ]
    top = find_top_k(results, k=3)
    assert [r.chunk.id for r in top] == [2, 1, 3]


def test_find_top_k_with_fewer_candidates():
    assert len(find_top_k([_result(1, [1, 0], 0.3)], k=10)) == 1
    assert find_top_k([], k=5) == []


class TestMMR:

    def test_best_candidate_first_and_size_bounded(self):
        results = [
            _result(1, [1.0, 0.0, 0.0], 0.7),
            _result(2, [0.9, 0.1, 0.0], 0.95),
            _result(3, [0.0, 1.0, 0.0], 0.4),
        ]
        picked = mmr_rerank(results, lambda_=0.5, k=2)
        assert len(picked) == 2
        assert picked[0].chunk.id == 2

    def test_prefers_diverse_candidate_over_near_duplicate(self):
        results = [
            _result(1, [1.0, 0.0], 0.9),
            _result(2, [1.0, 0.01], 0.85),  # near duplicate of 1
            _result(3, [0.0, 1.0], 0.6),
        ]
        picked = mmr_rerank(results, lambda_=0.5, k=2)
        assert [r.chunk.id for r in picked] == [1, 3]

    def test_lambda_one_is_pure_relevance(self):
        results = [
            _result(1, [1.0, 0.0], 0.9),
            _result(2, [1.0, 0.01], 0.85),
            _result(3, [0.0, 1.0], 0.6),
        ]
        picked = mmr_rerank(results, lambda_=1.0, k=3)
        assert [r.chunk.id for r in picked] == [1, 2, 3]

    def test_scores_stay_query_relevance(self):
        results = [_result(1, [1.0, 0.0], 0.9), _result(2, [0.0, 1.0], 0.3)]
        picked = mmr_rerank(results, lambda_=0.3, k=2)
        assert [r.score for r in picked] == [0.9, 0.3]

    def test_empty_and_zero_k(self):
        assert mmr_rerank([], k=3) == []
        assert mmr_rerank([_result(1, [1.0, 0.0], 0.9)], k=0) == []

    def test_k_larger_than_candidates(self):
        results = [_result(i, [float(i), 1.0], 0.1 * i) for i in range(1, 4)]
        assert len(mmr_rerank(results, k=10)) == 3
