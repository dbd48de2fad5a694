"""
Raster substrate: where scenes, population grids and ancillary layers come from,
plus the zonal reduction every backend shares.

Everything a substrate hands back is a lazy xarray object on an EPSG:4326 grid
with ``x``/``y`` coordinates and a written CRS. Nothing is computed until a
reduction or an explicit ``compute()``.
"""

from __future__ import annotations

import logging
import math
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Tuple

import numpy as np
import xarray as xr
import rioxarray  # noqa: F401 - registers the rio accessor
from rioxarray.exceptions import NoDataInBounds

from flood_mapper.aoi import AreaOfInterest
from flood_mapper.config import (
    ACCEPTED_MODES,
    MAX_PIXELS,
    M_PER_DEGREE,
    REQUIRED_POLARISATIONS,
    RESOLUTION_METERS,
    PopulationSource,
    TimeWindow,
)
from flood_mapper.errors import PixelBudgetExceededError, ReductionApproximationWarning


LOGGER = logging.getLogger(__name__)

SCENE_COORDS: Tuple[str, ...] = ("scene_id", "instrument_mode", "orbit_pass", "resolution_meters")


@dataclass(frozen=True)
class SceneQuery:
    aoi: AreaOfInterest
    window: TimeWindow
    polarisations: Tuple[str, ...] = REQUIRED_POLARISATIONS
    modes: Tuple[str, ...] = ACCEPTED_MODES
    resolution_meters: int = RESOLUTION_METERS


@dataclass(frozen=True)
class SceneCollection:
    """
    Stack of radar scenes along ``time``.

    ``data`` holds one variable per polarisation with dims (time, y, x) and the
    per-scene metadata in ``SCENE_COORDS`` as coordinates on ``time``. It is
    ``None`` for an empty collection.
    """

    data: Optional[xr.Dataset]
    query: Optional[SceneQuery] = None

    def __post_init__(self) -> None:
        if self.data is not None:
            missing = [c for c in SCENE_COORDS if c not in self.data.coords]
            if missing:
                raise ValueError(f"Scene stack is missing metadata coordinates: {missing}")

    @property
    def size(self) -> int:
        if self.data is None:
            return 0
        return int(self.data.sizes.get("time", 0))

    @property
    def is_empty(self) -> bool:
        return self.size == 0

    def _subset(self, keep: np.ndarray) -> "SceneCollection":
        if self.data is None or not keep.any():
            return SceneCollection(None, self.query)
        return SceneCollection(self.data.isel(time=np.flatnonzero(keep)), self.query)

    def select_mode(self, mode: str) -> "SceneCollection":
        if self.data is None:
            return self
        return self._subset(np.asarray(self.data["instrument_mode"].values) == mode)

    def select_group(self, mode: str, orbit_pass: str) -> "SceneCollection":
        if self.data is None:
            return self
        modes = np.asarray(self.data["instrument_mode"].values)
        passes = np.asarray(self.data["orbit_pass"].values)
        return self._subset((modes == mode) & (passes == orbit_pass))

    def groups(self) -> Iterator[Tuple[Tuple[str, str], "SceneCollection"]]:
        """(mode, orbit pass) groups in order of first acquisition."""
        if self.data is None:
            return
        ordered = self.data.sortby("time")
        seen: list[Tuple[str, str]] = []
        for mode, orbit in zip(ordered["instrument_mode"].values, ordered["orbit_pass"].values):
            key = (str(mode), str(orbit))
            if key not in seen:
                seen.append(key)
        for mode, orbit in seen:
            yield (mode, orbit), self.select_group(mode, orbit)


class ReductionMode(str, Enum):
    EXACT = "exact"
    BEST_EFFORT = "best_effort"


@dataclass(frozen=True)
class ReductionResult:
    value: float
    pixel_count: int
    scale: float
    approximate: bool = False

    @property
    def is_defined(self) -> bool:
        return math.isfinite(self.value)


def pixel_size_m(da: xr.DataArray | xr.Dataset) -> float:
    """Nominal pixel size in meters, from the x spacing of the grid."""
    x = np.asarray(da["x"].values, dtype="float64")
    if x.size < 2:
        raise ValueError("Need at least two x coordinates to infer pixel size.")
    step = float(np.median(np.abs(np.diff(x))))
    crs = da.rio.crs
    if crs is None or crs.is_geographic:
        return step * M_PER_DEGREE
    return step


def clip_to_aoi(obj, aoi: AreaOfInterest, drop: bool = False):
    """Mask everything outside the AOI; falls back to all-touched for sub-pixel AOIs."""
    if obj.rio.crs is None:
        obj = obj.rio.write_crs(aoi.crs)
    try:
        return obj.rio.clip([aoi.geojson], crs=aoi.crs, drop=drop, all_touched=False)
    except NoDataInBounds:
        return obj.rio.clip([aoi.geojson], crs=aoi.crs, drop=drop, all_touched=True)


def _coarsen(da: xr.DataArray, factor: int, how: str) -> xr.DataArray:
    if factor <= 1:
        return da
    coarse = da.coarsen(x=factor, y=factor, boundary="pad")
    if how == "sum":
        return coarse.sum(min_count=1)
    # Mean over the valid cells, weighted by how many there are; padding and
    # cells outside the AOI carry no weight.
    return coarse.mean() * coarse.count()


class Substrate(ABC):
    """Data access the pipeline consumes; implementations stay lazy."""

    @abstractmethod
    def query_scenes(self, query: SceneQuery) -> SceneCollection:
        ...

    @abstractmethod
    def query_optical(self, query: SceneQuery) -> Optional[xr.Dataset]:
        """Optical scenes (``B4``, ``B3``, ``B2``, ``QA60``) along time, or None."""

    @abstractmethod
    def load_population(self, source: PopulationSource, aoi: AreaOfInterest) -> xr.DataArray:
        ...

    def load_water_occurrence(self, aoi: AreaOfInterest) -> Optional[xr.DataArray]:
        """Percentage of valid observations where water was present, 0-100."""
        return None

    def load_terrain(self, aoi: AreaOfInterest) -> Optional[xr.Dataset]:
        """Dataset with ``elevation`` (m) and ``slope`` (degrees)."""
        return None

    def reduce_region(
        self,
        raster: xr.DataArray,
        aoi: AreaOfInterest,
        reducer: str = "sum",
        scale: Optional[float] = None,
        max_pixels: float = MAX_PIXELS,
        mode: ReductionMode = ReductionMode.BEST_EFFORT,
    ) -> ReductionResult:
        return reduce_region(raster, aoi, reducer, scale, max_pixels, mode)


def reduce_region(
    raster: xr.DataArray,
    aoi: AreaOfInterest,
    reducer: str = "sum",
    scale: Optional[float] = None,
    max_pixels: float = MAX_PIXELS,
    mode: ReductionMode = ReductionMode.BEST_EFFORT,
) -> ReductionResult:
    """
    Reduce ``raster`` over the AOI at ``scale`` meters.

    ``scale`` defaults to the raster's own pixel size and may not be finer than
    it. When the pixel count at ``scale`` exceeds ``max_pixels``, EXACT mode
    raises and BEST_EFFORT coarsens until it fits and flags the result.
    """
    if reducer not in ("sum", "mean"):
        raise ValueError(f"Unsupported reducer: {reducer}")
    mode = ReductionMode(mode)
    native = pixel_size_m(raster)
    if scale is None:
        scale = native
    if scale < native * (1 - 1e-6):
        raise ValueError(
            f"Requested scale {scale:.1f} m is finer than the native {native:.1f} m grid."
        )

    try:
        clipped = clip_to_aoi(raster, aoi, drop=True)
    except NoDataInBounds:
        LOGGER.warning("AOI does not overlap raster %s; reduction undefined.", raster.name)
        return ReductionResult(float("nan"), 0, float(scale))

    factor = max(1, int(round(scale / native)))
    ny = math.ceil(clipped.sizes["y"] / factor)
    nx = math.ceil(clipped.sizes["x"] / factor)
    pixel_count = ny * nx

    approximate = False
    if pixel_count > max_pixels:
        if mode is ReductionMode.EXACT:
            raise PixelBudgetExceededError(pixel_count, max_pixels)
        extra = math.ceil(math.sqrt(pixel_count / max_pixels))
        factor *= extra
        approximate = True
        pixel_count = math.ceil(clipped.sizes["y"] / factor) * math.ceil(clipped.sizes["x"] / factor)
        warnings.warn(
            f"Reduction of {raster.name} exceeded {max_pixels:.0f} pixels; "
            f"using best effort at {native * factor:.0f} m.",
            ReductionApproximationWarning,
            stacklevel=2,
        )
        LOGGER.warning(
            "Best-effort reduction for %s at %.0f m (%d pixels).",
            raster.name,
            native * factor,
            pixel_count,
        )

    if reducer == "mean":
        value = clipped.mean(skipna=True)
    elif approximate:
        value = _coarsen(clipped, factor, "weighted_mean").sum(min_count=1)
    else:
        value = _coarsen(clipped, factor, "sum").sum(min_count=1)

    return ReductionResult(
        value=float(value.compute()),
        pixel_count=int(pixel_count),
        scale=float(native * factor),
        approximate=approximate,
    )
