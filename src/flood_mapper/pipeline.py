"""
Wire SceneFilter -> CompositeBuilder -> ZScoreEngine -> FloodClassifier for one
parameter snapshot.

``build_graph`` is synchronous and only assembles lazy arrays; the session
decides when and where to compute them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import xarray as xr

from flood_mapper.aoi import AreaOfInterest
from flood_mapper.classify import FloodContext, FloodRaster, map_floods
from flood_mapper.composite import Composite, create_s1_composite
from flood_mapper.config import BASELINE, EVENT, SCORED_MODE, FloodThresholds, PipelineParams
from flood_mapper.errors import DegenerateStatisticsError, EmptyCollectionError
from flood_mapper.scenes import get_sentinel1_within_date_range
from flood_mapper.substrate import SceneCollection, Substrate, clip_to_aoi
from flood_mapper.zscore import calc_zscore, mean_zscore


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineGraph:
    params: PipelineParams
    collections: Tuple[SceneCollection, SceneCollection]
    composites: Tuple[Composite, Composite]
    flood: FloodRaster

    @property
    def version(self) -> int:
        return self.params.version


def load_flood_context(substrate: Substrate, aoi: AreaOfInterest, thresholds: FloodThresholds) -> FloodContext:
    water = substrate.load_water_occurrence(aoi)
    elevation = slope = None
    if thresholds.elevation_threshold is not None or thresholds.slope_threshold is not None:
        terrain = substrate.load_terrain(aoi)
        if terrain is not None:
            elevation = terrain.get("elevation")
            slope = terrain.get("slope")
        else:
            LOGGER.warning("Terrain thresholds set but no terrain layer is available; ignoring.")
    return FloodContext(water_occurrence=water, elevation=elevation, slope=slope)


def get_flood_image(
    baseline: SceneCollection,
    event: SceneCollection,
    aoi: AreaOfInterest,
    thresholds: FloodThresholds = FloodThresholds(),
    context: Optional[FloodContext] = None,
) -> xr.DataArray:
    """Lazy flood classes for the AOI. Raises when the anomaly is undefined."""
    z = mean_zscore(calc_zscore(baseline, event, mode=SCORED_MODE))
    classes = map_floods(z, thresholds, context)
    if classes.rio.crs is None and baseline.data is not None:
        classes = classes.rio.write_crs(baseline.data.rio.crs)
    return clip_to_aoi(classes, aoi)


def build_graph(substrate: Substrate, params: PipelineParams) -> PipelineGraph:
    """
    Assemble composites and the flood raster for ``params``.

    A flood map that cannot be defined is returned as an unavailable
    FloodRaster carrying the reason, never raised.
    """
    aoi = params.aoi
    collections = tuple(
        get_sentinel1_within_date_range(substrate, window, aoi) for window in params.windows
    )
    composites = tuple(
        create_s1_composite(collection, aoi, window_index=index)
        for index, collection in enumerate(collections)
    )

    try:
        context = load_flood_context(substrate, aoi, params.thresholds)
        classes = get_flood_image(
            collections[BASELINE],
            collections[EVENT],
            aoi,
            params.thresholds,
            context,
        )
        flood = FloodRaster(classes, params.version, params.thresholds)
    except (EmptyCollectionError, DegenerateStatisticsError) as exc:
        LOGGER.warning("Flood map unavailable for v%d: %s", params.version, exc)
        flood = FloodRaster(None, params.version, params.thresholds, failure=exc)

    return PipelineGraph(params, collections, composites, flood)
