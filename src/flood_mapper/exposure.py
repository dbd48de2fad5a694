"""
Population exposed to high-confidence flooding, per population source.

Each source is reduced on its own native grid. The flood mask is carried onto
that grid as the fraction of each population pixel covered by class-3 pixels,
so counts are never resampled and coarse sources are not biased by where a
single mask sample happens to fall.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import xarray as xr
import rioxarray  # noqa: F401 - registers the rio accessor
from rasterio.enums import Resampling

from flood_mapper.aoi import AreaOfInterest
from flood_mapper.classify import FloodRaster
from flood_mapper.config import HIGH_CONFIDENCE, MAX_PIXELS, POPULATION_SOURCES, PopulationSource
from flood_mapper.substrate import ReductionMode, Substrate


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExposureResult:
    counts: Mapping[str, int]
    approximate: frozenset = field(default_factory=frozenset)
    unavailable: frozenset = field(default_factory=frozenset)
    params_version: Optional[int] = None

    @property
    def is_exact(self) -> bool:
        return not self.approximate

    def to_dict(self) -> dict:
        return {
            "counts": dict(self.counts),
            "approximate": sorted(self.approximate),
            "unavailable": sorted(self.unavailable),
            "params_version": self.params_version,
        }

    def to_frame(self) -> pd.DataFrame:
        """One row per source, ready for a comparison bar chart."""
        rows = [
            {"source": name, "population": count, "approximate": name in self.approximate}
            for name, count in self.counts.items()
        ]
        return pd.DataFrame(rows, columns=["source", "population", "approximate"])


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def high_confidence_fraction(classes: xr.DataArray, population: xr.DataArray) -> xr.DataArray:
    """Fraction (0-1) of every ``population`` pixel covered by class-3 flood pixels."""
    mask = (classes == HIGH_CONFIDENCE).astype("float32")
    if mask.rio.crs is None:
        mask = mask.rio.write_crs(population.rio.crs)
    mask = mask.rio.write_nodata(np.nan)
    fraction = mask.rio.reproject_match(population, resampling=Resampling.average)
    fraction = fraction.assign_coords(x=population["x"], y=population["y"])
    return fraction.fillna(0.0).clip(0.0, 1.0)


def calculate_affected_population(
    flood: FloodRaster,
    aoi: AreaOfInterest,
    substrate: Substrate,
    sources: Sequence[PopulationSource] = POPULATION_SOURCES,
    max_pixels: float = MAX_PIXELS,
    mode: ReductionMode = ReductionMode.BEST_EFFORT,
) -> ExposureResult:
    """
    Sum each source under the high-confidence mask within the AOI.

    Raises whatever made ``flood`` unavailable; no partial report is produced.
    """
    classes = flood.require().compute()
    counts: dict[str, int] = {}
    approximate: set[str] = set()
    unavailable: set[str] = set()

    for source in sources:
        population = substrate.load_population(source, aoi)
        fraction = high_confidence_fraction(classes, population)
        exposed = (population * fraction).rename(source.band)
        if exposed.rio.crs is None:
            exposed = exposed.rio.write_crs(population.rio.crs)
        result = substrate.reduce_region(
            exposed,
            aoi,
            reducer="sum",
            scale=source.native_scale,
            max_pixels=max_pixels,
            mode=mode,
        )
        if not result.is_defined:
            LOGGER.warning("No population data from %s inside the AOI.", source.name)
            unavailable.add(source.name)
            continue
        if result.value < 0:
            LOGGER.error(
                "Negative population sum %.3f from %s; nodata leaked into the grid.",
                result.value,
                source.name,
            )
            unavailable.add(source.name)
            continue
        counts[source.name] = round_half_up(result.value)
        if result.approximate:
            approximate.add(source.name)
        LOGGER.info(
            "%s: %d exposed (scale %.0f m%s).",
            source.name,
            counts[source.name],
            result.scale,
            ", approximate" if result.approximate else "",
        )

    return ExposureResult(
        counts=counts,
        approximate=frozenset(approximate),
        unavailable=frozenset(unavailable),
        params_version=flood.params_version,
    )
