"""
Area of interest: the polygon every filter, clip and reduction is bounded by.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon, Polygon, box, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from flood_mapper.errors import InvalidGeometryError


AOI_CRS = "EPSG:4326"


@dataclass(frozen=True)
class AreaOfInterest:
    geometry: BaseGeometry
    crs: str = AOI_CRS

    def __post_init__(self) -> None:
        validate_geometry(self.geometry)

    @classmethod
    def from_geojson(cls, geojson: Mapping[str, Any]) -> "AreaOfInterest":
        if geojson.get("type") == "Feature":
            geojson = geojson.get("geometry") or {}
        try:
            geom = shape(geojson)
        except (AttributeError, IndexError, KeyError, TypeError, ValueError, ShapelyError) as exc:
            raise InvalidGeometryError(f"Cannot read AOI geometry: {exc}") from exc
        return cls(geom)

    @classmethod
    def from_bounds(cls, west: float, south: float, east: float, north: float) -> "AreaOfInterest":
        return cls(box(west, south, east, north))

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return tuple(self.geometry.bounds)

    @property
    def geojson(self) -> dict[str, Any]:
        return dict(mapping(self.geometry))

    def intersects(self, footprint: BaseGeometry) -> bool:
        return self.geometry.intersects(footprint)

    def bounds_label(self) -> str:
        """South/west/north/east with two decimals, used in export file names."""
        west, south, east, north = self.bounds
        return f"{south:.2f}_{west:.2f}_{north:.2f}_{east:.2f}"


def validate_geometry(geom: Any) -> None:
    if not isinstance(geom, BaseGeometry):
        raise InvalidGeometryError(f"AOI must be a shapely geometry, got {type(geom)!r}")
    if geom.is_empty:
        raise InvalidGeometryError("AOI geometry is empty")
    if not isinstance(geom, (Polygon, MultiPolygon)):
        raise InvalidGeometryError(f"AOI must be polygonal, got {geom.geom_type}")
    if not geom.is_valid:
        raise InvalidGeometryError(f"AOI geometry is invalid: {explain_validity(geom)}")
    if geom.area <= 0:
        raise InvalidGeometryError("AOI geometry has zero area")


def _km_to_deg_lat(km: float) -> float:
    return km / 110.574


def _km_to_deg_lon(km: float, lat: float) -> float:
    return km / (111.320 * math.cos(math.radians(lat)))


def make_aoi(
    lat: float,
    lon: float,
    buffer_km: float = 20.0,
    width_km: float = 0.0,
    height_km: float = 0.0,
) -> AreaOfInterest:
    """Rectangle of width x height km around a point, or the square bounds of a buffer."""
    if width_km > 0 and height_km > 0:
        half_w = _km_to_deg_lon(width_km / 2.0, lat)
        half_h = _km_to_deg_lat(height_km / 2.0)
    else:
        half_w = _km_to_deg_lon(buffer_km, lat)
        half_h = _km_to_deg_lat(buffer_km)
    return AreaOfInterest.from_bounds(lon - half_w, lat - half_h, lon + half_w, lat + half_h)
