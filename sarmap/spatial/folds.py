"""Spatial fold construction.

Two strategies partition the samples into k folds:

- kNNDM (k-fold nearest-neighbour distance matching): candidate partitions
  are built by clustering the samples into q >= k groups and merging the
  groups into k folds. The candidate whose held-out-to-train nearest-neighbour
  distances best match the prediction-to-sample distances of the prediction
  domain wins. q = n is the random k-fold partition, so random CV is chosen
  whenever the samples already cover the domain evenly.
- Block: square blocks laid over the sample extent are assigned to folds.

References:
    Linnenbrink, J., Milà, C., Ludwig, M., Meyer, H. (2024). kNNDM: k-fold
    Nearest Neighbour Distance Matching Cross-Validation for map accuracy
    estimation. Geoscientific Model Development 17, 5897-5912.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field

import numpy as np
from scipy.cluster.hierarchy import fcluster, linkage  # type: ignore[import-untyped]
from scipy.stats import ks_2samp, wasserstein_distance  # type: ignore[import-untyped]
from sklearn.cluster import KMeans  # type: ignore[import-untyped]

from sarmap.config.settings import FoldConfig
from sarmap.data import PredictorGrid, SampleSet
from sarmap.exceptions import InsufficientDataError, InvalidFoldCountError
from sarmap.spatial.distances import (
    domain_to_sample,
    fold_heldout_to_train,
    standardize,
)
from sarmap.utils.helpers import make_rng
from sarmap.utils.logger import setup_logger

logger = setup_logger("spatial_folds")


@dataclass(frozen=True)
class FoldAssignment:
    """Frozen k-way partition of the samples.

    Attributes:
        labels: Fold identifier (1..k) per sample
        k: Number of folds
        method: "knndm" or "block"
        statistic: Value of the matching statistic for this partition
        statistic_name: "wasserstein" or "ks"
        n_clusters: Number of clusters merged into folds (kNNDM), or occupied
            blocks (block method)
        target_distances: Prediction-to-sample distances the folds were matched to
        cv_distances: Held-out-to-train distance per sample
    """

    labels: np.ndarray
    k: int
    method: str
    statistic: float
    statistic_name: str
    n_clusters: int
    target_distances: np.ndarray = field(repr=False)
    cv_distances: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        for name in ("labels", "target_distances", "cv_distances"):
            array = np.array(getattr(self, name), copy=True)
            array.setflags(write=False)
            object.__setattr__(self, name, array)

    @property
    def n_samples(self) -> int:
        return len(self.labels)

    @property
    def fold_sizes(self) -> dict[int, int]:
        return {fold: int(np.sum(self.labels == fold)) for fold in range(1, self.k + 1)}

    @property
    def test_index(self) -> list[np.ndarray]:
        """Held-out sample indices per fold."""
        return [np.flatnonzero(self.labels == fold) for fold in range(1, self.k + 1)]

    @property
    def train_index(self) -> list[np.ndarray]:
        """Training sample indices per fold (complement of the held-out fold)."""
        return [np.flatnonzero(self.labels != fold) for fold in range(1, self.k + 1)]

    def splits(self) -> Iterator[tuple[np.ndarray, np.ndarray]]:
        """Yield (train, test) index pairs, sklearn ``cv`` compatible."""
        yield from zip(self.train_index, self.test_index)


def _validate_k(k: int, n_samples: int) -> None:
    if n_samples < 2:
        raise InsufficientDataError(n_samples, 2, what="samples")
    if k < 2:
        raise InvalidFoldCountError(k, n_samples, "k must be at least 2")
    if k >= n_samples:
        raise InvalidFoldCountError(k, n_samples, "k must be smaller than the sample count")


def _match_statistic(target: np.ndarray, candidate: np.ndarray, name: str) -> float:
    if name == "ks":
        return float(ks_2samp(target, candidate).statistic)
    return float(wasserstein_distance(target, candidate))


def _merge_clusters(clusters: np.ndarray, k: int) -> np.ndarray:
    """Merge cluster ids into k folds of similar size.

    The k largest clusters seed the folds; every remaining cluster (largest
    first) joins the currently smallest fold. Ties break on the lower id.
    """
    cluster_ids, sizes = np.unique(clusters, return_counts=True)
    order = np.lexsort((cluster_ids, -sizes))
    fold_of_cluster: dict[int, int] = {}
    fold_sizes = np.zeros(k, dtype=int)
    for rank, pos in enumerate(order):
        fold = rank if rank < k else int(np.argmin(fold_sizes))
        fold_of_cluster[int(cluster_ids[pos])] = fold
        fold_sizes[fold] += sizes[pos]
    return np.array([fold_of_cluster[int(c)] + 1 for c in clusters])


def _random_folds(n_samples: int, k: int, rng: np.random.Generator) -> np.ndarray:
    labels = np.tile(np.arange(1, k + 1), int(np.ceil(n_samples / k)))[:n_samples]
    return rng.permutation(labels)


def _to_cartesian(lonlat: np.ndarray) -> np.ndarray:
    """Unit-sphere xyz for clustering lon/lat points with Euclidean methods."""
    lon, lat = np.radians(lonlat[:, 0]), np.radians(lonlat[:, 1])
    return np.column_stack(
        [np.cos(lat) * np.cos(lon), np.cos(lat) * np.sin(lon), np.sin(lat)]
    )


class SpatialFoldBuilder:
    """Build spatial CV folds whose difficulty matches the prediction task.

    Args:
        config: Fold settings (k, method, statistic, ...)
        seed: Integer seed or generator; the only source of randomness
    """

    def __init__(
        self,
        config: FoldConfig | None = None,
        seed: int | np.random.Generator | None = 42,
    ):
        self.config = config or FoldConfig()
        self.seed = seed

    def build(self, samples: SampleSet, grid: PredictorGrid) -> FoldAssignment:
        """Partition samples into folds for the given prediction domain.

        Args:
            samples: Labeled samples
            grid: Prediction domain

        Returns:
            Frozen FoldAssignment

        Raises:
            InvalidFoldCountError: If k < 2 or k >= number of samples
            InsufficientDataError: If fewer than 2 samples or grid cells
        """
        cfg = self.config
        _validate_k(cfg.k, samples.n_samples)
        rng = make_rng(self.seed)

        if cfg.space == "feature":
            domain_features = grid.features(samples.feature_names).to_numpy()
            points, mean, scale = standardize(samples.features.to_numpy())
            domain = (domain_features - mean) / scale
            metric = "euclidean"
        else:
            points = samples.coordinates
            domain = grid.cell_centers()
            metric = cfg.distance_metric

        if len(domain) > cfg.reference_sample_size:
            keep = np.sort(
                rng.choice(len(domain), size=cfg.reference_sample_size, replace=False)
            )
            domain = domain[keep]

        target = domain_to_sample(domain, points, metric)
        logger.info(
            f"Matching {cfg.method} folds (k={cfg.k}, n={samples.n_samples}) "
            f"against {len(target)} prediction-to-sample distances "
            f"(median {np.median(target):.3f})"
        )

        if cfg.method == "block":
            return self._build_blocks(points, target, metric, rng)
        return self._build_knndm(points, target, metric, rng)

    def _score(
        self, points: np.ndarray, labels: np.ndarray, target: np.ndarray, metric: str
    ) -> tuple[float, np.ndarray]:
        cv_distances = fold_heldout_to_train(points, labels, metric)  # type: ignore[arg-type]
        return _match_statistic(target, cv_distances, self.config.statistic), cv_distances

    def _candidate_clusters(
        self, points: np.ndarray, metric: str, rng: np.random.Generator
    ) -> Iterator[tuple[int, np.ndarray]]:
        """Yield (q, cluster ids) for the candidate cluster counts."""
        cfg = self.config
        n_samples = len(points)
        cluster_input = _to_cartesian(points) if metric == "haversine" else points
        counts = np.unique(
            np.round(np.linspace(cfg.k, n_samples, cfg.n_candidates)).astype(int)
        )

        tree = None
        if cfg.clustering == "hierarchical":
            tree = linkage(cluster_input, method="ward")

        for q in counts:
            if q >= n_samples:
                yield int(q), _random_folds(n_samples, cfg.k, rng)
            elif tree is not None:
                yield int(q), fcluster(tree, t=q, criterion="maxclust")
            else:
                kmeans = KMeans(
                    n_clusters=int(q),
                    n_init=10,
                    random_state=int(rng.integers(0, 2**31 - 1)),
                )
                yield int(q), kmeans.fit_predict(cluster_input)

    def _build_knndm(
        self,
        points: np.ndarray,
        target: np.ndarray,
        metric: str,
        rng: np.random.Generator,
    ) -> FoldAssignment:
        cfg = self.config
        n_samples = len(points)
        max_fold_size = int(np.ceil(cfg.max_fold_fraction * n_samples))

        best: tuple[float, int, np.ndarray, np.ndarray] | None = None
        n_rejected = 0
        for q, clusters in self._candidate_clusters(points, metric, rng):
            labels = clusters if q >= n_samples else _merge_clusters(clusters, cfg.k)
            sizes = np.bincount(labels, minlength=cfg.k + 1)[1:]
            if sizes.min() < cfg.min_fold_size or sizes.max() > max_fold_size:
                n_rejected += 1
                continue
            statistic, cv_distances = self._score(points, labels, target, metric)
            logger.debug(f"q={q}: {cfg.statistic}={statistic:.5f}")
            if best is None or statistic < best[0]:
                best = (statistic, q, labels, cv_distances)

        if best is None:
            raise InvalidFoldCountError(
                cfg.k,
                n_samples,
                f"no candidate partition satisfies min_fold_size={cfg.min_fold_size} "
                f"and max_fold_fraction={cfg.max_fold_fraction}",
            )

        statistic, q, labels, cv_distances = best
        logger.info(
            f"Selected kNNDM partition from q={q} clusters "
            f"({cfg.statistic}={statistic:.5f}, {n_rejected} candidates rejected)"
        )
        return FoldAssignment(
            labels=labels.astype(int),
            k=cfg.k,
            method="knndm",
            statistic=statistic,
            statistic_name=cfg.statistic,
            n_clusters=q,
            target_distances=target,
            cv_distances=cv_distances,
        )

    def _build_blocks(
        self,
        points: np.ndarray,
        target: np.ndarray,
        metric: str,
        rng: np.random.Generator,
    ) -> FoldAssignment:
        cfg = self.config
        n_samples = len(points)
        block_size = cfg.block_size_multiplier * float(np.median(target))
        if metric == "haversine":
            # metres to degrees of latitude
            block_size = np.degrees(block_size / 6_371_008.8)
        if block_size <= 0:
            raise InvalidFoldCountError(
                cfg.k, n_samples, "block size is zero (samples coincide with the domain)"
            )

        origin = points.min(axis=0) - rng.uniform(0.0, block_size, size=points.shape[1])
        cells = np.floor((points - origin) / block_size).astype(int)
        _, blocks = np.unique(cells, axis=0, return_inverse=True)
        blocks = np.ravel(blocks)
        n_blocks = int(blocks.max()) + 1
        if n_blocks < cfg.k:
            raise InvalidFoldCountError(
                cfg.k,
                n_samples,
                f"only {n_blocks} occupied blocks of size {block_size:.3f}",
            )

        # shuffle block ids so equal-sized blocks are not assigned in scan order
        relabel = rng.permutation(n_blocks)
        labels = _merge_clusters(relabel[blocks], cfg.k)
        smallest = int(np.bincount(labels, minlength=cfg.k + 1)[1:].min())
        if smallest < cfg.min_fold_size:
            raise InvalidFoldCountError(
                cfg.k,
                n_samples,
                f"smallest block fold holds {smallest} samples "
                f"(min_fold_size={cfg.min_fold_size})",
            )
        statistic, cv_distances = self._score(points, labels, target, metric)
        logger.info(
            f"Assigned {n_blocks} blocks of size {block_size:.3f} to {cfg.k} folds "
            f"({cfg.statistic}={statistic:.5f})"
        )
        return FoldAssignment(
            labels=labels.astype(int),
            k=cfg.k,
            method="block",
            statistic=statistic,
            statistic_name=cfg.statistic,
            n_clusters=n_blocks,
            target_distances=target,
            cv_distances=cv_distances,
        )
