import math

import numpy as np
import pytest

from faceclock.database.storage import JsonProfileStore
from faceclock.exceptions import ValidationError
from faceclock.face_module.matcher import FaceMatcher, similarity
from tests.conftest import unit


def _enroll(store, external_id, vector):
    return store.enroll(external_id, external_id.title(), vector)


def test_highest_qualifying_identity_wins(store):
    alice = _enroll(store, "alice", [0.9, math.sqrt(1 - 0.81), 0.0, 0.0])
    _enroll(store, "bob", [0.3, 0.0, math.sqrt(1 - 0.09), 0.0])

    result = FaceMatcher(store).best_match(unit(1, 0, 0, 0), threshold=0.42)

    assert result.matched
    assert result.identity.id == alice.id
    assert result.confidence == pytest.approx(0.9)


def test_no_match_below_threshold_reports_best_score(store):
    _enroll(store, "alice", [0.3, math.sqrt(1 - 0.09), 0.0, 0.0])

    result = FaceMatcher(store).best_match(unit(1, 0, 0, 0), threshold=0.42)

    assert result.identity is None
    assert result.confidence == pytest.approx(0.3)


def test_threshold_comparison_is_inclusive(store):
    alice = _enroll(store, "alice", [0.5, 0.5, 0.5, 0.5])

    assert FaceMatcher(store).match([0.5, 0.5, 0.5, 0.5], threshold=1.0).id == alice.id


def test_tie_goes_to_first_enrolled(store):
    first = _enroll(store, "first", unit(1, 1, 0, 0))
    _enroll(store, "second", unit(1, 1, 0, 0))

    assert FaceMatcher(store).match(unit(1, 1, 0, 0), threshold=0.42).id == first.id


def test_empty_store_matches_nothing(store):
    result = FaceMatcher(store).best_match(unit(1, 0, 0, 0), threshold=0.0)

    assert result.identity is None
    assert result.confidence == 0.0


def test_query_is_not_renormalized(store):
    _enroll(store, "alice", [0.5, 0.5, 0.5, 0.5])
    matcher = FaceMatcher(store)

    assert matcher.best_match([0.25, 0.25, 0.25, 0.25], threshold=0.9).identity is None
    assert matcher.best_match([0.25, 0.25, 0.25, 0.25], threshold=0.9).confidence == pytest.approx(0.5)


def test_query_length_mismatch_raises(store):
    _enroll(store, "alice", unit(1, 0, 0, 0))

    with pytest.raises(ValidationError):
        FaceMatcher(store).best_match([1.0, 0.0], threshold=0.42)


def test_similarity_is_inner_product():
    assert similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
    assert similarity(np.array([0.6, 0.8]), [0.6, 0.8]) == pytest.approx(1.0)
    assert similarity([2.0, 0.0], [3.0, 0.0]) == pytest.approx(6.0)


def test_result_carries_the_query(store):
    _enroll(store, "alice", unit(0, 1, 0, 0))

    result = FaceMatcher(store).best_match([1.0, 0.0, 0.0, 0.0], threshold=0.42)

    assert result.embedding.tolist() == [1.0, 0.0, 0.0, 0.0]


def test_float32_unit_vectors_match_themselves_at_full_threshold(tmp_path):
    store = JsonProfileStore(tmp_path / "identities.json", tmp_path / "events.json", embedding_dim=512)
    rng = np.random.default_rng(7)
    enrolled = []
    for index in range(20):
        vector = rng.standard_normal(512).astype(np.float32)
        vector /= np.linalg.norm(vector)
        enrolled.append((store.enroll(f"E-{index}", f"Person {index}", vector), vector))
    matcher = FaceMatcher(store)

    for identity, vector in enrolled:
        result = matcher.best_match(vector, threshold=1.0)
        assert result.identity is not None
        assert result.identity.id == identity.id
        assert result.confidence <= 1.0
        assert result.confidence == pytest.approx(1.0, abs=1e-6)
