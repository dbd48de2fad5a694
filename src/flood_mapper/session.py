"""
Interactive flood mapping session.

Holds the current parameter snapshot, coalesces edits into recomputes, and
keeps the newest materialized composites, flood raster and exposure report.
Flood recomputes and exposure reductions run on separate pools so a slow
population reduction never delays the map.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import date
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from shapely.geometry.base import BaseGeometry

from flood_mapper.aoi import AreaOfInterest
from flood_mapper.classify import FloodRaster
from flood_mapper.composite import Composite
from flood_mapper.config import (
    MAX_PIXELS,
    POPULATION_SOURCES,
    FloodThresholds,
    PipelineParams,
    PopulationSource,
)
from flood_mapper.errors import FloodMapperError, LayerNotFoundError
from flood_mapper.exposure import ExposureResult, calculate_affected_population
from flood_mapper.materialize import Debouncer, Materializer, ResultSlot, VersionedFuture
from flood_mapper.pipeline import PipelineGraph, build_graph
from flood_mapper.substrate import ReductionMode, Substrate


LOGGER = logging.getLogger(__name__)


class FloodMapState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    UNAVAILABLE = "unavailable"


def as_area_of_interest(geometry: Any) -> AreaOfInterest:
    """Accept an AreaOfInterest, a shapely geometry or a GeoJSON mapping."""
    if isinstance(geometry, AreaOfInterest):
        return geometry
    if isinstance(geometry, BaseGeometry):
        return AreaOfInterest(geometry)
    if isinstance(geometry, Mapping):
        return AreaOfInterest.from_geojson(geometry)
    return AreaOfInterest(geometry)


def materialize_graph(substrate: Substrate, params: PipelineParams) -> PipelineGraph:
    graph = build_graph(substrate, params)
    composites = tuple(c.compute() if c.available else c for c in graph.composites)
    flood = graph.flood.compute() if graph.flood.available else graph.flood
    return replace(graph, composites=composites, flood=flood)


class FloodMapper:
    """
    Session over one substrate.

    ``set_area_of_interest`` and ``set_window`` replace the parameter snapshot
    and schedule a recompute (debounced by ``debounce_seconds``). Getters
    return the newest materialized results, which may lag the parameters
    while a recompute is in flight; ``state`` tells which.
    """

    def __init__(
        self,
        substrate: Substrate,
        aoi: Any = None,
        params: Optional[PipelineParams] = None,
        debounce_seconds: float = 0.0,
        max_workers: int = 2,
        sources: Sequence[PopulationSource] = POPULATION_SOURCES,
        max_pixels: float = MAX_PIXELS,
        reduction_mode: ReductionMode = ReductionMode.BEST_EFFORT,
        auto_recompute: bool = True,
    ) -> None:
        if params is None:
            if aoi is None:
                raise ValueError("FloodMapper needs an aoi or a PipelineParams snapshot.")
            params = PipelineParams(as_area_of_interest(aoi))
        self.substrate = substrate
        self.sources = tuple(sources)
        self.max_pixels = max_pixels
        self.reduction_mode = ReductionMode(reduction_mode)
        self.auto_recompute = auto_recompute

        self._lock = threading.Lock()
        self._params = params
        self._last_future: Optional[VersionedFuture[PipelineGraph]] = None

        self._graphs: ResultSlot[PipelineGraph] = ResultSlot("flood map")
        self._exposures: ResultSlot[ExposureResult] = ResultSlot("exposure")
        self._flood_pool = Materializer(max_workers=max_workers, name="flood")
        self._exposure_pool = Materializer(max_workers=1, name="exposure")
        self._debouncer = Debouncer(debounce_seconds, self._recompute_from_debounce)

    # ------------------------------------------------------------------ params

    @property
    def params(self) -> PipelineParams:
        with self._lock:
            return self._params

    def _update(self, params: PipelineParams) -> None:
        with self._lock:
            self._params = params
        LOGGER.info("Parameters changed -> v%d.", params.version)
        if self.auto_recompute:
            self._debouncer.trigger()

    def set_area_of_interest(self, geometry: Any) -> None:
        """Replace the AOI. Invalid geometry raises before anything is scheduled."""
        aoi = as_area_of_interest(geometry)
        self._update(self.params.with_aoi(aoi))

    def set_window(self, index: int, start_date: date, span_days: int) -> None:
        self._update(self.params.with_window(index, start_date, span_days))

    def set_thresholds(self, thresholds: FloodThresholds) -> None:
        self._update(self.params.with_thresholds(thresholds))

    # --------------------------------------------------------------- compute

    def _recompute_from_debounce(self) -> None:
        self.recompute()

    def recompute(self) -> VersionedFuture[PipelineGraph]:
        """Materialize the current snapshot; the future resolves to its PipelineGraph."""
        params = self.params
        future = self._flood_pool.submit(
            self._graphs,
            params.version,
            lambda: materialize_graph(self.substrate, params),
        )
        with self._lock:
            if self._last_future is None or future.version >= self._last_future.version:
                self._last_future = future
        return future

    def wait(self, timeout: Optional[float] = None) -> Optional[PipelineGraph]:
        """Flush any pending edit and block until the newest recompute finishes."""
        self._debouncer.flush()
        with self._lock:
            future = self._last_future
        if future is None:
            return None
        future.exception(timeout=timeout)
        item = self._graphs.get()
        return item.value if item is not None else None

    @property
    def state(self) -> FloodMapState:
        item = self._graphs.get()
        if item is None or item.version < self.params.version:
            return FloodMapState.PENDING
        if item.ok and item.value.flood.available:
            return FloodMapState.READY
        return FloodMapState.UNAVAILABLE

    @property
    def failure(self) -> Optional[BaseException]:
        item = self._graphs.get()
        if item is None:
            return None
        if not item.ok:
            return item.error
        return item.value.flood.failure

    def _latest_graph(self) -> PipelineGraph:
        item = self._graphs.get()
        if item is None:
            raise LayerNotFoundError("Nothing has been computed yet.")
        if not item.ok:
            raise item.error
        return item.value

    def get_composite(self, window_index: int) -> Composite:
        graph = self._latest_graph()
        if window_index not in (0, 1):
            raise IndexError(f"window index must be 0 or 1, got {window_index}")
        return graph.composites[window_index]

    def get_flood_raster(self) -> FloodRaster:
        """Newest materialized flood raster; raises the reason it is unavailable."""
        flood = self._latest_graph().flood
        flood.require()
        return flood

    # -------------------------------------------------------------- exposure

    def compute_exposure(
        self,
        flood_raster: Optional[FloodRaster] = None,
        aoi: Any = None,
    ) -> VersionedFuture[ExposureResult]:
        """
        Population under class-3 pixels for every configured source.

        Defaults to the newest materialized flood raster and the current AOI.
        Raises LayerNotFoundError right away when there is no flood raster.
        """
        if flood_raster is None:
            try:
                flood_raster = self.get_flood_raster()
            except FloodMapperError as exc:
                if isinstance(exc, LayerNotFoundError):
                    raise
                raise LayerNotFoundError(f"No flood raster for exposure: {exc}") from exc
        elif not flood_raster.available:
            raise LayerNotFoundError("Flood raster is unavailable.") from flood_raster.failure

        region = as_area_of_interest(aoi) if aoi is not None else self.params.aoi
        LOGGER.info("Exposure requested for flood map v%d.", flood_raster.params_version)
        return self._exposure_pool.submit(
            self._exposures,
            flood_raster.params_version,
            lambda: calculate_affected_population(
                flood_raster,
                region,
                self.substrate,
                sources=self.sources,
                max_pixels=self.max_pixels,
                mode=self.reduction_mode,
            ),
        )

    def latest_exposure(self) -> Optional[ExposureResult]:
        item = self._exposures.get()
        if item is None or not item.ok:
            return None
        return item.value

    # ------------------------------------------------------------- lifecycle

    def close(self, wait: bool = True) -> None:
        self._debouncer.cancel()
        self._flood_pool.shutdown(wait=wait)
        self._exposure_pool.shutdown(wait=wait)

    def __enter__(self) -> "FloodMapper":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
