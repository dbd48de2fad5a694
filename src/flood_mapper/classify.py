"""
Flood classification from VV/VH anomalies.

Classes (ordinal in confidence, 4 is context):
    0  no anomaly
    1  VV anomaly only
    2  VH anomaly only
    3  VV and VH anomalies (high confidence flood)
    4  permanent open water
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np
import xarray as xr

from flood_mapper.config import (
    FLOOD_CLASSES,
    HIGH_CONFIDENCE,
    NO_FLOOD,
    OPEN_WATER,
    VH_ONLY,
    VV_ONLY,
    FloodThresholds,
)
from flood_mapper.errors import FloodMapperError


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FloodContext:
    """Ancillary layers; any of them may be missing."""

    water_occurrence: Optional[xr.DataArray] = None
    elevation: Optional[xr.DataArray] = None
    slope: Optional[xr.DataArray] = None


@dataclass(frozen=True)
class FloodRaster:
    """
    Categorical flood map for one parameter snapshot.

    ``classes`` is float with NaN as no data, or None when the map could not be
    built; ``failure`` then says why.
    """

    classes: Optional[xr.DataArray]
    params_version: int
    thresholds: FloodThresholds = FloodThresholds()
    failure: Optional[FloodMapperError] = None

    @property
    def available(self) -> bool:
        return self.classes is not None

    def require(self) -> xr.DataArray:
        if self.classes is None:
            if self.failure is not None:
                raise self.failure
            raise FloodMapperError("Flood map unavailable.")
        return self.classes

    def compute(self) -> "FloodRaster":
        return replace(self, classes=self.require().compute())

    def high_confidence_mask(self) -> xr.DataArray:
        return self.require() == HIGH_CONFIDENCE

    def class_counts(self) -> dict[int, int]:
        values = np.asarray(self.require().values)
        return {cls: int(np.count_nonzero(values == cls)) for cls in FLOOD_CLASSES}


def _on_grid(layer: xr.DataArray, like: xr.DataArray) -> xr.DataArray:
    """Nearest-neighbour pick of ``layer`` at ``like``'s pixel centres."""
    if layer.sizes.get("x") == like.sizes.get("x") and layer.sizes.get("y") == like.sizes.get("y"):
        if np.allclose(layer["x"].values, like["x"].values) and np.allclose(
            layer["y"].values, like["y"].values
        ):
            return layer.assign_coords(x=like["x"], y=like["y"])
    tolerance = None
    if layer.sizes["x"] > 1:
        tolerance = float(np.median(np.abs(np.diff(np.asarray(layer["x"].values)))))
    return layer.reindex_like(like, method="nearest", tolerance=tolerance)


def map_floods(
    z: xr.Dataset,
    thresholds: FloodThresholds = FloodThresholds(),
    context: Optional[FloodContext] = None,
) -> xr.DataArray:
    """
    Vote VV and VH anomaly candidates into flood classes.

    A channel is a candidate when its anomaly is at or below its threshold.
    Pixels masked in either anomaly stay masked unless they are open water.
    """
    context = context or FloodContext()
    vv = z["VV"]
    vh = z["VH"]
    valid = vv.notnull() & vh.notnull()

    vv_flag = (vv <= thresholds.zvv_threshold).astype("float32")
    vh_flag = (vh <= thresholds.zvh_threshold).astype("float32")
    flood_class = vv_flag * VV_ONLY + vh_flag * VH_ONLY

    open_water = xr.zeros_like(valid)
    if context.water_occurrence is not None:
        occurrence = _on_grid(context.water_occurrence, flood_class)
        open_water = occurrence >= thresholds.confidence_vote_percent
        flood_class = flood_class.where(~open_water, OPEN_WATER)

    if thresholds.elevation_threshold is not None and context.elevation is not None:
        high = _on_grid(context.elevation, flood_class) > thresholds.elevation_threshold
        flood_class = flood_class.where(~(high & ~open_water), NO_FLOOD)
    if thresholds.slope_threshold is not None and context.slope is not None:
        steep = _on_grid(context.slope, flood_class) > thresholds.slope_threshold
        flood_class = flood_class.where(~(steep & ~open_water), NO_FLOOD)

    flood_class = flood_class.where(valid | open_water)
    flood_class.attrs.update(
        {
            "long_name": "flood_class",
            "flag_values": list(FLOOD_CLASSES),
            "high_confidence_class": HIGH_CONFIDENCE,
        }
    )
    return flood_class.rename("flood_class")
