"""
Earth Engine substrate: server-side filtering, lazy xarray access through xee.

Requires an authenticated Earth Engine account; call ``ee_init`` first.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Mapping, Optional

import ee
import xarray as xr
import xee  # noqa: F401 - registers the xarray "ee" engine
import rioxarray  # noqa: F401 - registers the rio accessor
from shapely.geometry import shape

from flood_mapper.aoi import AOI_CRS, AreaOfInterest
from flood_mapper.config import (
    ADMIN_BOUNDARIES,
    DEFAULT_COUNTRY,
    DEFAULT_STATE,
    ELEVATION_IMAGE,
    MAX_CLOUDY_PIXEL_PERCENTAGE,
    M_PER_DEGREE,
    OPTICAL_BANDS,
    S1_COLLECTION,
    S2_COLLECTION,
    SURFACE_WATER_IMAGE,
    PopulationSource,
)
from flood_mapper.errors import InvalidGeometryError
from flood_mapper.substrate import SceneCollection, SceneQuery, Substrate


LOGGER = logging.getLogger(__name__)

SPATIAL_RENAMES = {"lon": "x", "lat": "y", "longitude": "x", "latitude": "y", "X": "x", "Y": "y"}


def ee_init(project_id: str, retries: int = 5, wait: float = 5.0) -> None:
    last_exc: Optional[Exception] = None
    for attempt in range(1, max(1, retries) + 1):
        try:
            ee.Initialize(project=project_id)
            LOGGER.info("Earth Engine initialised (project %s).", project_id)
            return
        except Exception as exc:
            last_exc = exc
            if attempt >= retries:
                break
            delay = wait * (2 ** (attempt - 1))
            LOGGER.warning(
                "Earth Engine init failed (%s). Retrying in %.0fs (%d/%d)...",
                type(exc).__name__,
                delay,
                attempt,
                retries,
            )
            time.sleep(delay)
    if last_exc is not None:
        raise last_exc


def aoi_to_ee(aoi: AreaOfInterest) -> ee.Geometry:
    return ee.Geometry(aoi.geojson, aoi.crs, False)


def open_xee_dataset(
    ic: ee.ImageCollection,
    geometry: ee.Geometry,
    crs: Optional[str] = None,
    projection: Optional[ee.Projection] = None,
    scale: Optional[float] = None,
    chunks: Optional[Mapping[str, int]] = None,
) -> xr.Dataset:
    kwargs = {"engine": "ee", "geometry": geometry}
    if crs is not None:
        kwargs["crs"] = crs
    if projection is not None:
        kwargs["projection"] = projection
    if scale is not None:
        # Xee expects scale in CRS units. Convert meters -> degrees for EPSG:4326.
        crs_value = crs
        if crs_value is None and projection is not None:
            crs_value = projection.crs().getInfo()
        if isinstance(crs_value, str) and crs_value.upper() == "EPSG:4326" and scale > 1:
            scale = scale / M_PER_DEGREE
        kwargs["scale"] = scale
    if chunks is not None:
        kwargs["chunks"] = dict(chunks)
    return xr.open_dataset(ic, **kwargs)


def normalize_grid(ds: xr.Dataset, crs: str) -> xr.Dataset:
    """Rename spatial dims to y/x, put them last, make y descend and write the CRS."""
    ds = ds.rename({k: v for k, v in SPATIAL_RENAMES.items() if k in ds.dims})
    ds = ds.transpose(..., "y", "x")
    if ds.sizes["y"] > 1 and float(ds["y"][0]) < float(ds["y"][-1]):
        ds = ds.sortby("y", ascending=False)
    # XEE may inject a scale_factor tied to coordinate resolution.
    for var in ds.data_vars.values():
        for key in ("scale_factor", "add_offset"):
            var.attrs.pop(key, None)
            var.encoding.pop(key, None)
    ds = ds.rio.set_spatial_dims(x_dim="x", y_dim="y")
    return ds.rio.write_crs(crs)


def s1_collection(region: ee.Geometry, query: SceneQuery) -> ee.ImageCollection:
    start = ee.Date(query.window.start.isoformat())
    ic = ee.ImageCollection(S1_COLLECTION)
    for polarisation in query.polarisations:
        ic = ic.filter(ee.Filter.listContains("transmitterReceiverPolarisation", polarisation))
    modes = [ee.Filter.eq("instrumentMode", mode) for mode in query.modes]
    return (
        ic.filter(ee.Filter.Or(*modes) if len(modes) > 1 else modes[0])
        .filterBounds(region)
        .filterDate(start, start.advance(query.window.span_days + 1, "day"))
        .filter(ee.Filter.eq("resolution_meters", query.resolution_meters))
        .sort("system:time_start")
    )


def s2_collection(region: ee.Geometry, query: SceneQuery) -> ee.ImageCollection:
    start = ee.Date(query.window.start.isoformat())
    return (
        ee.ImageCollection(S2_COLLECTION)
        .filterBounds(region)
        .filterDate(start, start.advance(query.window.span_days + 1, "day"))
        .filter(ee.Filter.lt("CLOUDY_PIXEL_PERCENTAGE", MAX_CLOUDY_PIXEL_PERCENTAGE))
        .select([*OPTICAL_BANDS, "QA60"])
        .sort("system:time_start")
    )


def population_image(source: PopulationSource) -> ee.Image:
    if not source.is_collection:
        return ee.Image(source.asset_id).select(source.band)
    ic = ee.ImageCollection(source.asset_id)
    if source.date_range is not None:
        ic = ic.filterDate(*source.date_range)
    return ee.Image(ic.first()).select(source.band)


@dataclass
class EarthEngineSubstrate(Substrate):
    """
    Scenes, population and ancillary layers straight from the EE catalog.

    Radar and optical stacks are opened on an EPSG:4326 grid at the query
    resolution; population images keep their native projection and scale.
    """

    crs: str = AOI_CRS
    optical_scale: float = 10.0
    ancillary_scale: float = 30.0
    chunks: Optional[Mapping[str, int]] = None

    def _open(self, ic: ee.ImageCollection, region: ee.Geometry, scale: float) -> xr.Dataset:
        ds = open_xee_dataset(ic, region, crs=self.crs, scale=scale, chunks=self.chunks)
        return normalize_grid(ds, self.crs)

    def query_scenes(self, query: SceneQuery) -> SceneCollection:
        region = aoi_to_ee(query.aoi)
        ic = s1_collection(region, query)
        count = int(ic.size().getInfo())
        if count == 0:
            LOGGER.info(
                "No Sentinel-1 scenes in %s..%s.",
                query.window.start.isoformat(),
                query.window.end.isoformat(),
            )
            return SceneCollection(None, query)

        props = ["system:index", "instrumentMode", "orbitProperties_pass", "resolution_meters"]
        meta = ic.reduceColumns(ee.Reducer.toList(len(props)), props).get("list").getInfo()
        ds = self._open(ic.select(list(query.polarisations)), region, query.resolution_meters)
        ds = ds.sortby("time")
        if ds.sizes["time"] != len(meta):
            raise RuntimeError(
                f"Scene metadata ({len(meta)}) does not match opened stack ({ds.sizes['time']})."
            )
        ds = ds.assign_coords(
            scene_id=("time", [str(row[0]) for row in meta]),
            instrument_mode=("time", [str(row[1]) for row in meta]),
            orbit_pass=("time", [str(row[2]) for row in meta]),
            resolution_meters=("time", [int(row[3]) for row in meta]),
        )
        return SceneCollection(ds, query)

    def query_optical(self, query: SceneQuery) -> Optional[xr.Dataset]:
        region = aoi_to_ee(query.aoi)
        ic = s2_collection(region, query)
        if int(ic.size().getInfo()) == 0:
            return None
        return self._open(ic, region, self.optical_scale)

    def load_population(self, source: PopulationSource, aoi: AreaOfInterest) -> xr.DataArray:
        region = aoi_to_ee(aoi)
        image = population_image(source)
        projection = image.projection()
        scale = source.native_scale or float(projection.nominalScale().getInfo())
        ds = open_xee_dataset(
            ee.ImageCollection.fromImages([image]),
            region,
            projection=projection,
            scale=scale,
            chunks=self.chunks,
        )
        ds = normalize_grid(ds, projection.wkt().getInfo())
        da = ds[source.band]
        if "time" in da.dims:
            da = da.isel(time=0, drop=True)
        return da

    def load_water_occurrence(self, aoi: AreaOfInterest) -> Optional[xr.DataArray]:
        region = aoi_to_ee(aoi)
        image = ee.Image(SURFACE_WATER_IMAGE).select("occurrence")
        ds = self._open(ee.ImageCollection.fromImages([image]), region, self.ancillary_scale)
        return ds["occurrence"].isel(time=0, drop=True)

    def load_terrain(self, aoi: AreaOfInterest) -> Optional[xr.Dataset]:
        region = aoi_to_ee(aoi)
        elevation = ee.Image(ELEVATION_IMAGE).select("elevation")
        image = elevation.addBands(ee.Terrain.slope(elevation).rename("slope"))
        ds = self._open(ee.ImageCollection.fromImages([image]), region, self.ancillary_scale)
        return ds[["elevation", "slope"]].isel(time=0, drop=True)

    def admin_area(
        self,
        country: str = DEFAULT_COUNTRY,
        state: str = DEFAULT_STATE,
        max_error: float = 100.0,
    ) -> AreaOfInterest:
        """Dissolved FAO GAUL level-2 units of ``state`` in ``country``."""
        units = (
            ee.FeatureCollection(ADMIN_BOUNDARIES)
            .filter(ee.Filter.eq("ADM0_NAME", country))
            .filter(ee.Filter.eq("ADM1_NAME", state))
        )
        count = int(units.size().getInfo())
        if count == 0:
            raise InvalidGeometryError(f"No GAUL units for {state}, {country}.")
        info = units.geometry(max_error).dissolve(max_error).simplify(max_error).getInfo()
        geom = shape(info)
        if not geom.is_valid:
            geom = geom.buffer(0)
        LOGGER.info("AOI: %s, %s (%d GAUL units dissolved).", state, country, count)
        return AreaOfInterest(geom)
