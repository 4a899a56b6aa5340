"""Sample and predictor grid containers.

Both containers are read-only once built: arrays are flagged non-writeable
so that worker processes and the applicability profile can share them
without copying.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import geopandas as gpd
import numpy as np
import pandas as pd
import xarray as xr


def _frozen(array: np.ndarray) -> np.ndarray:
    array = np.array(array, dtype=float, copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class SampleSet:
    """Labeled point measurements.

    Attributes:
        coordinates: (n, 2) array of x/y in a projected CRS (or lon/lat degrees)
        target: Sediment accumulation rate per sample, non-negative
        features: Predictor values extracted at the samples, one named column
            per raster band
    """

    coordinates: np.ndarray
    target: np.ndarray
    features: pd.DataFrame

    def __post_init__(self) -> None:
        coords = _frozen(self.coordinates)
        target = _frozen(np.ravel(self.target))
        features = self.features.reset_index(drop=True).astype(float)

        if coords.ndim != 2 or coords.shape[1] != 2:
            raise ValueError(f"coordinates must have shape (n, 2), got {coords.shape}")
        if not len(coords) == len(target) == len(features):
            raise ValueError(
                "coordinates, target and features must have the same length "
                f"({len(coords)}, {len(target)}, {len(features)})"
            )
        if not np.all(np.isfinite(coords)):
            raise ValueError("coordinates contain non-finite values")
        if not np.all(np.isfinite(target)):
            raise ValueError("target contains non-finite values")
        if np.any(target < 0):
            raise ValueError("target (sedimentation rate) must be non-negative")
        if not np.all(np.isfinite(features.to_numpy())):
            raise ValueError("features contain non-finite values")

        object.__setattr__(self, "coordinates", coords)
        object.__setattr__(self, "target", target)
        object.__setattr__(self, "features", features)

    @property
    def n_samples(self) -> int:
        return len(self.target)

    @property
    def feature_names(self) -> list[str]:
        return [str(c) for c in self.features.columns]

    def check_grid(self, grid: PredictorGrid) -> None:
        """Raise ValueError if feature columns do not follow the grid bands."""
        if self.feature_names != grid.band_names:
            raise ValueError(
                f"Sample features {self.feature_names} do not match grid bands "
                f"{grid.band_names}"
            )

    @classmethod
    def from_geodataframe(
        cls,
        gdf: gpd.GeoDataFrame,
        target: str,
        features: Sequence[str],
    ) -> SampleSet:
        """Build a sample set from point geometries.

        Args:
            gdf: GeoDataFrame with point geometries
            target: Name of the target column
            features: Predictor column names, in grid band order

        Returns:
            SampleSet with coordinates taken from the geometries
        """
        if not all(gdf.geometry.geom_type == "Point"):
            raise ValueError("All sample geometries must be points")
        coords = np.column_stack([gdf.geometry.x.to_numpy(), gdf.geometry.y.to_numpy()])
        return cls(
            coordinates=coords,
            target=gdf[target].to_numpy(),
            features=pd.DataFrame(gdf[list(features)]),
        )


@dataclass(frozen=True)
class PredictorGrid:
    """Regular raster of predictor bands.

    Attributes:
        dataset: One data variable per band on ("y", "x") dims
        crs: Coordinate reference system identifier (e.g. "EPSG:3035")
    """

    dataset: xr.Dataset
    crs: str | None = None

    def __post_init__(self) -> None:
        if not self.dataset.data_vars:
            raise ValueError("PredictorGrid needs at least one band")
        for name, band in self.dataset.data_vars.items():
            if band.dims != ("y", "x"):
                raise ValueError(f"Band {name} must have dims ('y', 'x'), got {band.dims}")

    @classmethod
    def from_arrays(
        cls,
        bands: Mapping[str, np.ndarray],
        x: np.ndarray,
        y: np.ndarray,
        crs: str | None = None,
    ) -> PredictorGrid:
        """Build a grid from 2D arrays of shape (len(y), len(x)).

        Args:
            bands: Band name to 2D array, in band order
            x: Cell centre x coordinates
            y: Cell centre y coordinates
            crs: Coordinate reference system identifier

        Returns:
            PredictorGrid
        """
        dataset = xr.Dataset(
            {name: (("y", "x"), np.asarray(values, dtype=float)) for name, values in bands.items()},
            coords={"x": np.asarray(x, dtype=float), "y": np.asarray(y, dtype=float)},
            attrs={"crs": crs} if crs else {},
        )
        return cls(dataset=dataset, crs=crs)

    @property
    def band_names(self) -> list[str]:
        return [str(name) for name in self.dataset.data_vars]

    @property
    def shape(self) -> tuple[int, int]:
        return self.dataset.sizes["y"], self.dataset.sizes["x"]

    @property
    def resolution(self) -> tuple[float, float]:
        """Absolute cell size along x and y (NaN along a single-cell axis)."""
        x = self.dataset["x"].to_numpy()
        y = self.dataset["y"].to_numpy()
        dx = float(np.abs(np.diff(x)).mean()) if len(x) > 1 else float("nan")
        dy = float(np.abs(np.diff(y)).mean()) if len(y) > 1 else float("nan")
        return dx, dy

    def valid_mask(self, bands: Sequence[str] | None = None) -> np.ndarray:
        """2D boolean mask of cells where every requested band is finite."""
        names = list(bands) if bands is not None else self.band_names
        stack = np.stack([self.dataset[name].to_numpy() for name in names])
        return np.all(np.isfinite(stack), axis=0)

    def cell_centers(self, bands: Sequence[str] | None = None) -> np.ndarray:
        """(m, 2) x/y coordinates of valid cells, row-major."""
        mask = self.valid_mask(bands)
        xx, yy = np.meshgrid(self.dataset["x"].to_numpy(), self.dataset["y"].to_numpy())
        return np.column_stack([xx[mask], yy[mask]])

    def features(self, bands: Sequence[str] | None = None) -> pd.DataFrame:
        """Feature table of valid cells, row-major, columns in band order."""
        names = list(bands) if bands is not None else self.band_names
        mask = self.valid_mask(names)
        return pd.DataFrame(
            {name: self.dataset[name].to_numpy()[mask] for name in names}
        )

    def to_surface(
        self,
        values: np.ndarray,
        name: str,
        bands: Sequence[str] | None = None,
    ) -> xr.DataArray:
        """Scatter per-valid-cell values back onto the grid.

        Args:
            values: One value per valid cell, in ``features()`` order
            name: Name of the output variable
            bands: Bands defining validity (same as used for ``features``)

        Returns:
            DataArray on the grid, NaN outside valid cells
        """
        mask = self.valid_mask(bands)
        values = np.asarray(values)
        if values.shape[0] != int(mask.sum()):
            raise ValueError(
                f"Expected {int(mask.sum())} values for {name}, got {values.shape[0]}"
            )
        dtype = float if values.dtype != bool else bool
        fill = np.nan if dtype is float else False
        surface = np.full(self.shape, fill, dtype=dtype)
        surface[mask] = values
        return xr.DataArray(
            surface,
            dims=("y", "x"),
            coords={"x": self.dataset["x"], "y": self.dataset["y"]},
            name=name,
        )
