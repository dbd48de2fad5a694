"""
In-process substrate backed by numpy arrays.

Scenes share one regular EPSG:4326 grid; population and ancillary layers may
sit on grids of their own. Arrays are dask-chunked on the way out so the
pipeline builds the same lazy graph it would against Earth Engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Mapping, Optional, Sequence

import numpy as np
import xarray as xr
import rioxarray  # noqa: F401 - registers the rio accessor
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from flood_mapper.aoi import AOI_CRS, AreaOfInterest
from flood_mapper.config import (
    MAX_CLOUDY_PIXEL_PERCENTAGE,
    M_PER_DEGREE,
    OPTICAL_BANDS,
    PopulationSource,
)
from flood_mapper.substrate import SceneCollection, SceneQuery, Substrate


LOGGER = logging.getLogger(__name__)


def grid_coords(
    west: float,
    north: float,
    nx: int,
    ny: int,
    pixel_m: float = 10.0,
) -> tuple[np.ndarray, np.ndarray]:
    """Pixel-centre coordinates for a north-up grid; y descends."""
    step = pixel_m / M_PER_DEGREE
    x = west + step * (np.arange(nx) + 0.5)
    y = north - step * (np.arange(ny) + 0.5)
    return x, y


def grid_array(
    values: np.ndarray,
    x: np.ndarray,
    y: np.ndarray,
    name: Optional[str] = None,
    crs: str = AOI_CRS,
) -> xr.DataArray:
    values = np.asarray(values, dtype="float64")
    if values.shape != (y.size, x.size):
        raise ValueError(f"Array shape {values.shape} does not match grid {(y.size, x.size)}")
    da = xr.DataArray(values, dims=("y", "x"), coords={"y": y, "x": x}, name=name)
    return da.rio.write_crs(crs)


def _as_datetime64(when: date | datetime) -> np.datetime64:
    if not isinstance(when, datetime):
        when = datetime(when.year, when.month, when.day)
    return np.datetime64(when.replace(tzinfo=None), "ns")


@dataclass
class SceneRecord:
    scene_id: str
    acquired: datetime
    bands: Mapping[str, np.ndarray]
    instrument_mode: str = "IW"
    orbit_pass: str = "ASCENDING"
    resolution_meters: int = 10
    footprint: Optional[BaseGeometry] = None

    @property
    def polarisations(self) -> tuple[str, ...]:
        return tuple(self.bands)


@dataclass
class OpticalRecord:
    scene_id: str
    acquired: datetime
    bands: Mapping[str, np.ndarray]
    cloudy_pixel_percentage: float = 0.0
    footprint: Optional[BaseGeometry] = None


@dataclass
class InMemorySubstrate(Substrate):
    x: np.ndarray
    y: np.ndarray
    scenes: Sequence[SceneRecord] = field(default_factory=list)
    optical: Sequence[OpticalRecord] = field(default_factory=list)
    population: Mapping[str, xr.DataArray] = field(default_factory=dict)
    water_occurrence: Optional[xr.DataArray] = None
    terrain: Optional[xr.Dataset] = None
    crs: str = AOI_CRS
    chunks: Optional[Mapping[str, int]] = None

    def __post_init__(self) -> None:
        self.x = np.asarray(self.x, dtype="float64")
        self.y = np.asarray(self.y, dtype="float64")

    @property
    def extent(self) -> BaseGeometry:
        half = abs(float(self.x[1] - self.x[0])) / 2 if self.x.size > 1 else 0.0
        return box(
            float(self.x.min()) - half,
            float(self.y.min()) - half,
            float(self.x.max()) + half,
            float(self.y.max()) + half,
        )

    def _footprint(self, record) -> BaseGeometry:
        return record.footprint if record.footprint is not None else self.extent

    def _lazy(self, obj):
        return obj.chunk(self.chunks or {})

    def _stack(self, records: Sequence, names: Sequence[str], coords: dict) -> xr.Dataset:
        times = np.array([_as_datetime64(r.acquired) for r in records])
        data_vars = {
            name: (("time", "y", "x"), np.stack([np.asarray(r.bands[name], dtype="float64") for r in records]))
            for name in names
        }
        ds = xr.Dataset(
            data_vars,
            coords={"time": times, "y": self.y, "x": self.x, **{k: ("time", v) for k, v in coords.items()}},
        )
        return self._lazy(ds.rio.write_crs(self.crs))

    def query_scenes(self, query: SceneQuery) -> SceneCollection:
        matched = [
            r
            for r in self.scenes
            if all(p in r.bands for p in query.polarisations)
            and r.instrument_mode in query.modes
            and r.resolution_meters == query.resolution_meters
            and query.aoi.intersects(self._footprint(r))
            and query.window.contains(r.acquired)
        ]
        if not matched:
            LOGGER.info(
                "No scenes in %s..%s for the AOI.",
                query.window.start.isoformat(),
                query.window.end.isoformat(),
            )
            return SceneCollection(None, query)
        matched.sort(key=lambda r: (r.acquired, r.scene_id))
        ds = self._stack(
            matched,
            query.polarisations,
            {
                "scene_id": np.array([r.scene_id for r in matched]),
                "instrument_mode": np.array([r.instrument_mode for r in matched]),
                "orbit_pass": np.array([r.orbit_pass for r in matched]),
                "resolution_meters": np.array([r.resolution_meters for r in matched]),
            },
        )
        return SceneCollection(ds, query)

    def query_optical(self, query: SceneQuery) -> Optional[xr.Dataset]:
        matched = [
            r
            for r in self.optical
            if r.cloudy_pixel_percentage < MAX_CLOUDY_PIXEL_PERCENTAGE
            and query.aoi.intersects(self._footprint(r))
            and query.window.contains(r.acquired)
        ]
        if not matched:
            return None
        matched.sort(key=lambda r: (r.acquired, r.scene_id))
        return self._stack(
            matched,
            (*OPTICAL_BANDS, "QA60"),
            {"scene_id": np.array([r.scene_id for r in matched])},
        )

    def load_population(self, source: PopulationSource, aoi: AreaOfInterest) -> xr.DataArray:
        try:
            da = self.population[source.name]
        except KeyError:
            raise KeyError(
                f"Population source '{source.name}' not loaded. Available: {list(self.population)}"
            ) from None
        if da.rio.crs is None:
            da = da.rio.write_crs(self.crs)
        return self._lazy(da.rename(source.band))

    def load_water_occurrence(self, aoi: AreaOfInterest) -> Optional[xr.DataArray]:
        if self.water_occurrence is None:
            return None
        return self._lazy(self.water_occurrence)

    def load_terrain(self, aoi: AreaOfInterest) -> Optional[xr.Dataset]:
        if self.terrain is None:
            return None
        return self._lazy(self.terrain)
