"""Tests for the in-memory similarity index."""
import numpy as np
import pytest

from rollcall.core.exceptions import DimensionMismatchError
from rollcall.domain.entities.face import FaceDescriptor
from rollcall.domain.value_objects.recognition import SimilarityMetric
from rollcall.services.similarity_index import SimilarityIndex


def offset_vector(base: np.ndarray, distance: float) -> np.ndarray:
    """A vector exactly ``distance`` away from ``base`` along the first axis."""
    shifted = base.astype(np.float64).copy()
    shifted[0] += distance
    return shifted


@pytest.fixture
def alice() -> np.ndarray:
    rng = np.random.default_rng(7)
    return rng.normal(size=128).astype(np.float32)


@pytest.fixture
def euclidean_index(alice) -> SimilarityIndex:
    index = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN, threshold=0.6)
    index.add("alice", alice, name="Alice")
    return index


class TestEuclideanMatching:
    """Nearest-neighbour matching with a distance threshold."""

    def test_identical_vector_is_recognized(self, euclidean_index, alice):
        result = euclidean_index.match(alice)

        assert result.recognized
        assert result.identity_id == "alice"
        assert result.distance == pytest.approx(0.0, abs=1e-6)
        assert result.score == pytest.approx(1.0, abs=1e-6)

    def test_distant_vector_is_unrecognized(self, euclidean_index, alice):
        result = euclidean_index.match(offset_vector(alice, 0.8))

        assert not result.recognized
        assert result.identity_id is None
        assert result.distance == pytest.approx(0.8, abs=1e-5)

    def test_threshold_boundary(self, euclidean_index, alice):
        assert euclidean_index.match(offset_vector(alice, 0.59)).recognized
        assert not euclidean_index.match(offset_vector(alice, 0.61)).recognized

    def test_distance_equal_to_threshold_is_rejected(self, alice):
        index = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN, threshold=0.5)
        index.add("alice", np.zeros(4))

        assert not index.match([0.5, 0.0, 0.0, 0.0]).recognized
        assert index.match([0.25, 0.0, 0.0, 0.0]).recognized

    def test_best_candidate_wins(self):
        index = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN, threshold=0.6)
        index.add("far", [0.5, 0.0])
        index.add("near", [0.1, 0.0])

        result = index.match([0.0, 0.0])

        assert result.identity_id == "near"
        assert result.score == pytest.approx(0.9)

    def test_ties_go_to_earliest_enrolled(self):
        index = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN, threshold=0.6)
        index.add("first", [0.1, 0.0])
        index.add("second", [-0.1, 0.0])

        assert index.match([0.0, 0.0]).identity_id == "first"

    def test_matching_is_deterministic(self, euclidean_index, alice):
        query = offset_vector(alice, 0.3)
        results = {(r.identity_id, r.score) for r in (euclidean_index.match(query) for _ in range(5))}

        assert len(results) == 1

    def test_empty_gallery_is_unrecognized(self):
        result = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN).match([0.1, 0.2])

        assert not result.recognized
        assert result.identity_id is None


class TestCosineMatching:
    """Most-similar matching with a similarity threshold."""

    def test_similarity_at_threshold_is_accepted(self):
        index = SimilarityIndex(metric=SimilarityMetric.COSINE, threshold=0.6)
        index.add("bob", [1.0, 0.0])

        # cos(angle) == 3/5 exactly
        result = index.match([3.0, 4.0])

        assert result.recognized
        assert result.identity_id == "bob"
        assert result.score == pytest.approx(0.6)

    def test_dissimilar_vector_is_rejected(self):
        index = SimilarityIndex(metric=SimilarityMetric.COSINE, threshold=0.6)
        index.add("bob", [1.0, 0.0])

        assert not index.match([0.0, 1.0]).recognized

    def test_zero_vector_does_not_produce_nan(self):
        index = SimilarityIndex(metric=SimilarityMetric.COSINE, threshold=0.6)
        index.add("bob", [1.0, 0.0])

        result = index.match([0.0, 0.0])

        assert not result.recognized
        assert result.score == 0.0


class TestGalleryMaintenance:
    """Enrollment, replacement, removal and dimension checks."""

    def test_add_replaces_existing_identity(self, euclidean_index):
        euclidean_index.add("alice", np.ones(128))

        assert len(euclidean_index) == 1
        assert euclidean_index.match(np.ones(128)).identity_id == "alice"

    def test_remove(self, euclidean_index, alice):
        assert euclidean_index.remove("alice")
        assert not euclidean_index.remove("alice")
        assert not euclidean_index.match(alice).recognized

    def test_dimension_mismatch_on_add(self, euclidean_index):
        with pytest.raises(DimensionMismatchError) as exc_info:
            euclidean_index.add("carol", np.ones(64))

        assert exc_info.value.expected == 128
        assert exc_info.value.actual == 64
        assert "carol" not in euclidean_index

    def test_dimension_mismatch_on_query(self, euclidean_index):
        with pytest.raises(DimensionMismatchError):
            euclidean_index.match(np.ones(64))

    def test_load_skips_wrong_dimension(self):
        index = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN)
        loaded = index.load([
            FaceDescriptor(identity_id="a", vector=[0.0, 0.0, 1.0]),
            FaceDescriptor(identity_id="b", vector=[0.0, 1.0]),
            FaceDescriptor(identity_id="c", vector=[1.0, 0.0, 0.0]),
        ])

        assert loaded == 2
        assert index.identities() == ["a", "c"]
        assert index.dimension == 3

    def test_fixed_dimension(self):
        index = SimilarityIndex(metric=SimilarityMetric.EUCLIDEAN, dimension=4)

        with pytest.raises(DimensionMismatchError):
            index.add("a", [0.0, 1.0])

    def test_clear_resets_dimension(self, euclidean_index):
        euclidean_index.clear()
        euclidean_index.add("small", [1.0, 2.0])

        assert euclidean_index.dimension == 2

    def test_descriptor_rejects_non_finite_values(self):
        with pytest.raises(ValueError):
            FaceDescriptor(identity_id="x", vector=[0.0, float("nan")])
