"""Tests for nearest-neighbour distance distributions."""

import numpy as np
import pytest

from sarmap.exceptions import InsufficientDataError
from sarmap.spatial.distances import (
    EARTH_RADIUS_M,
    distance_summary,
    domain_to_sample,
    feature_space_distances,
    fold_heldout_to_train,
    sample_to_domain,
    sample_to_sample,
    standardize,
)


class TestSampleToSample:
    """Test distances between samples."""

    def test_excludes_self(self):
        """Each point gets the distance to its nearest other point."""
        points = np.array([[0.0, 0.0], [3.0, 4.0], [10.0, 0.0]])

        result = sample_to_sample(points)

        np.testing.assert_allclose(result, [5.0, 5.0, np.sqrt(65.0)])
        assert np.all(result > 0)

    def test_duplicates_give_zero(self):
        """Duplicated coordinates are real zero distances."""
        points = np.array([[1.0, 1.0], [1.0, 1.0], [5.0, 5.0]])

        result = sample_to_sample(points)

        assert result[0] == 0.0
        assert result[1] == 0.0
        assert result[2] > 0.0

    def test_haversine(self):
        """One degree of longitude on the equator is ~111.2 km."""
        points = np.array([[0.0, 0.0], [1.0, 0.0]])

        result = sample_to_sample(points, metric="haversine")

        np.testing.assert_allclose(result, EARTH_RADIUS_M * np.pi / 180.0, rtol=1e-9)

    def test_insufficient_points(self):
        """A single point has no neighbour."""
        with pytest.raises(InsufficientDataError) as exc_info:
            sample_to_sample(np.array([[0.0, 0.0]]))
        assert exc_info.value.n_points == 1


class TestDomainDistances:
    """Test sample/domain distances."""

    def test_sample_to_domain_exclude_self(self):
        """A domain containing the sample skips the coincident match."""
        points = np.array([[0.0, 0.0], [5.0, 5.0]])
        domain = np.array([[0.0, 0.0], [1.0, 0.0], [5.0, 5.0], [5.0, 7.0]])

        excluded = sample_to_domain(points, domain, exclude_self=True)
        included = sample_to_domain(points, domain, exclude_self=False)

        np.testing.assert_allclose(excluded, [1.0, 2.0])
        np.testing.assert_allclose(included, [0.0, 0.0])

    def test_domain_to_sample(self):
        """Each prediction location gets the distance to its nearest sample."""
        points = np.array([[0.0, 0.0], [10.0, 0.0]])
        domain = np.array([[1.0, 0.0], [6.0, 0.0], [10.0, 3.0]])

        result = domain_to_sample(domain, points)

        np.testing.assert_allclose(result, [1.0, 4.0, 3.0])

    def test_summary_frame(self):
        """Diagnostic table stacks all distributions."""
        points = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        domain = np.array([[5.0, 5.0], [1.0, 1.0]])
        labels = np.array([1, 1, 2, 2])

        summary = distance_summary(points, domain, labels)

        assert set(summary["what"]) == {
            "sample-to-sample",
            "prediction-to-sample",
            "CV-distances",
        }
        assert len(summary) == 4 + 2 + 4
        assert (summary["distance"] >= 0).all()


class TestFoldDistances:
    """Test held-out to training distances."""

    def test_aligned_with_samples(self):
        """Held-out points only see training points of other folds."""
        points = np.array([[0.0, 0.0], [1.0, 0.0], [10.0, 0.0], [12.0, 0.0]])
        labels = np.array([1, 1, 2, 2])

        result = fold_heldout_to_train(points, labels)

        np.testing.assert_allclose(result, [10.0, 9.0, 9.0, 11.0])

    def test_label_length_mismatch(self):
        """Labels must cover every point."""
        with pytest.raises(ValueError, match="does not match"):
            fold_heldout_to_train(np.zeros((3, 2)), np.array([1, 2]))


class TestFeatureSpace:
    """Test feature-space distances."""

    def test_standardize_constant_column(self):
        """Constant columns are centred but not scaled."""
        values = np.array([[1.0, 5.0], [3.0, 5.0], [5.0, 5.0]])

        scaled, mean, scale = standardize(values)

        np.testing.assert_allclose(mean, [3.0, 5.0])
        np.testing.assert_allclose(scale, [2.0, 1.0])
        np.testing.assert_allclose(scaled[:, 1], 0.0)

    def test_zero_weight_ignores_feature(self):
        """A zero-weighted feature does not contribute to the distance."""
        reference = np.array([[0.0, 0.0], [1.0, 100.0], [2.0, -50.0]])
        query = np.array([[0.0, 1000.0]])

        weighted = feature_space_distances(query, reference, weights=np.array([1.0, 0.0]))

        assert weighted[0] == pytest.approx(0.0)
