"""Nearest-neighbour distance distributions.

Geographic distances are Euclidean in projected coordinates or great-circle
(haversine) distances in metres for lon/lat degrees. Feature-space distances
are Euclidean in standardized, optionally importance-weighted, predictor
space. Every function returns one non-negative distance per query point; no
aggregation happens here.
"""

from typing import Literal

import numpy as np
import pandas as pd
from sklearn.neighbors import BallTree, NearestNeighbors  # type: ignore[import-untyped]

from sarmap.exceptions import InsufficientDataError

Metric = Literal["euclidean", "haversine"]

EARTH_RADIUS_M = 6_371_008.8


def _as_points(points: np.ndarray, name: str) -> np.ndarray:
    points = np.asarray(points, dtype=float)
    if points.ndim == 1:
        points = points.reshape(-1, 1)
    if points.ndim != 2:
        raise ValueError(f"{name} must be a 2D array, got shape {points.shape}")
    return points


def _require_points(points: np.ndarray, minimum: int = 2) -> None:
    if len(points) < minimum:
        raise InsufficientDataError(len(points), minimum)


def _build_index(reference: np.ndarray, metric: Metric) -> BallTree | NearestNeighbors:
    if metric == "haversine":
        # BallTree expects [lat, lon] in radians
        return BallTree(np.radians(reference[:, ::-1]), metric="haversine")
    return NearestNeighbors(metric="euclidean").fit(reference)


def _query(
    index: BallTree | NearestNeighbors,
    query: np.ndarray,
    n_neighbors: int,
    metric: Metric,
) -> np.ndarray:
    if metric == "haversine":
        dist, _ = index.query(np.radians(query[:, ::-1]), k=n_neighbors)
        return dist * EARTH_RADIUS_M
    dist, _ = index.kneighbors(query, n_neighbors=n_neighbors)
    return dist


def sample_to_sample(points: np.ndarray, metric: Metric = "euclidean") -> np.ndarray:
    """Distance from each point to its nearest other point.

    Self matches are excluded; duplicated coordinates give a distance of 0.

    Args:
        points: (n, d) coordinates
        metric: "euclidean" or "haversine"

    Returns:
        (n,) nearest-neighbour distances
    """
    points = _as_points(points, "points")
    _require_points(points)

    index = _build_index(points, metric)
    dist = _query(index, points, 2, metric)
    # column 0 is the point itself, or an equally distant duplicate
    return dist[:, 1]


def sample_to_domain(
    points: np.ndarray,
    domain: np.ndarray,
    metric: Metric = "euclidean",
    exclude_self: bool = True,
) -> np.ndarray:
    """Distance from each point to its nearest point of a reference population.

    Args:
        points: (n, d) query points (samples)
        domain: (m, d) reference points (e.g. grid cell centres)
        metric: "euclidean" or "haversine"
        exclude_self: Skip one coincident (zero distance) match per point,
            for reference populations that contain the query points

    Returns:
        (n,) distances
    """
    points = _as_points(points, "points")
    domain = _as_points(domain, "domain")
    _require_points(points, 1)
    n_neighbors = 2 if exclude_self else 1
    _require_points(domain, n_neighbors)

    index = _build_index(domain, metric)
    dist = _query(index, points, n_neighbors, metric)
    if not exclude_self:
        return dist[:, 0]
    return np.where(dist[:, 0] == 0.0, dist[:, 1], dist[:, 0])


def domain_to_sample(
    domain: np.ndarray, points: np.ndarray, metric: Metric = "euclidean"
) -> np.ndarray:
    """Distance from each prediction location to its nearest sample.

    Args:
        domain: (m, d) prediction locations
        points: (n, d) sample locations
        metric: "euclidean" or "haversine"

    Returns:
        (m,) distances
    """
    domain = _as_points(domain, "domain")
    points = _as_points(points, "points")
    _require_points(points)
    _require_points(domain, 1)

    index = _build_index(points, metric)
    return _query(index, domain, 1, metric)[:, 0]


def fold_heldout_to_train(
    points: np.ndarray, labels: np.ndarray, metric: Metric = "euclidean"
) -> np.ndarray:
    """Distance from each held-out sample to the nearest training sample of its fold.

    Every sample is held out exactly once, so the result is aligned with the
    sample order.

    Args:
        points: (n, d) sample locations
        labels: (n,) fold label per sample
        metric: "euclidean" or "haversine"

    Returns:
        (n,) distances
    """
    points = _as_points(points, "points")
    labels = np.asarray(labels)
    _require_points(points)
    if len(labels) != len(points):
        raise ValueError(
            f"labels length {len(labels)} does not match {len(points)} points"
        )

    distances = np.empty(len(points), dtype=float)
    for fold in np.unique(labels):
        held_out = labels == fold
        if held_out.all():
            raise InsufficientDataError(0, 1, what="training points outside the fold")
        index = _build_index(points[~held_out], metric)
        distances[held_out] = _query(index, points[held_out], 1, metric)[:, 0]
    return distances


def standardize(
    features: np.ndarray | pd.DataFrame,
    reference: np.ndarray | pd.DataFrame | None = None,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Scale features by the mean and standard deviation of a reference set.

    Columns with zero spread in the reference are centred but not scaled.

    Args:
        features: (n, p) values to scale
        reference: (m, p) values defining mean and spread (defaults to features)

    Returns:
        Tuple of (scaled features, mean, scale)
    """
    values = np.asarray(features, dtype=float)
    ref = values if reference is None else np.asarray(reference, dtype=float)
    mean = ref.mean(axis=0)
    scale = ref.std(axis=0, ddof=1) if len(ref) > 1 else np.ones(ref.shape[1])
    scale = np.where(scale > 0, scale, 1.0)
    return (values - mean) / scale, mean, scale


def feature_space_distances(
    query: np.ndarray | pd.DataFrame,
    reference: np.ndarray | pd.DataFrame,
    weights: np.ndarray | None = None,
    exclude_self: bool = False,
) -> np.ndarray:
    """Nearest-neighbour distances in standardized predictor space.

    Both sets are scaled with the reference mean and standard deviation, then
    optionally multiplied by per-feature weights.

    Args:
        query: (n, p) feature vectors
        reference: (m, p) reference feature vectors
        weights: Optional (p,) non-negative weights
        exclude_self: Skip one coincident match per query point

    Returns:
        (n,) distances
    """
    query_scaled, mean, scale = standardize(query, reference)
    ref_scaled = (np.asarray(reference, dtype=float) - mean) / scale
    if weights is not None:
        weights = np.clip(np.asarray(weights, dtype=float), 0.0, None)
        query_scaled = query_scaled * weights
        ref_scaled = ref_scaled * weights
    return sample_to_domain(query_scaled, ref_scaled, exclude_self=exclude_self)


def distance_summary(
    points: np.ndarray,
    domain: np.ndarray,
    labels: np.ndarray | None = None,
    metric: Metric = "euclidean",
) -> pd.DataFrame:
    """Long-format table of the three distance distributions for diagnostics.

    Args:
        points: (n, d) sample locations
        domain: (m, d) prediction locations
        labels: Optional fold labels; adds the CV distances
        metric: "euclidean" or "haversine"

    Returns:
        DataFrame with columns ``distance`` and ``what``
    """
    frames = [
        pd.DataFrame(
            {"distance": sample_to_sample(points, metric), "what": "sample-to-sample"}
        ),
        pd.DataFrame(
            {
                "distance": domain_to_sample(domain, points, metric),
                "what": "prediction-to-sample",
            }
        ),
    ]
    if labels is not None:
        frames.append(
            pd.DataFrame(
                {
                    "distance": fold_heldout_to_train(points, labels, metric),
                    "what": "CV-distances",
                }
            )
        )
    return pd.concat(frames, ignore_index=True)
