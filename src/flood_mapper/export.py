"""
GeoTIFF export for composites and flood rasters.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import rasterio
import xarray as xr
from affine import Affine

import rioxarray  # noqa: F401 - enables .rio accessors

from flood_mapper.classify import FloodRaster
from flood_mapper.composite import Composite
from flood_mapper.config import FLOOD_CLASS_LABELS, FLOOD_NODATA, FLOOD_PALETTE, PipelineParams


def export_stem(params: PipelineParams) -> str:
    """``GFM_<baseline>_<event>_<s>_<w>_<n>_<e>``."""
    return f"GFM_{params.baseline.label()}_{params.event.label()}_{params.aoi.bounds_label()}"


def _is_regular(values: np.ndarray) -> tuple[bool, float]:
    if values.size < 2:
        return False, np.nan
    diffs = np.diff(values)
    step = float(np.median(diffs))
    atol = max(1e-12, abs(step) * 1e-6)
    return bool(np.allclose(diffs, step, rtol=1e-6, atol=atol)), step


def _transform_from_coords(da: xr.DataArray) -> Affine:
    x = np.asarray(da["x"].values, dtype="float64")
    y = np.asarray(da["y"].values, dtype="float64")
    x_ok, x_step = _is_regular(x)
    y_ok, y_step = _is_regular(y)
    if not x_ok or not y_ok:
        raise ValueError("Cannot write GeoTIFF: x/y coordinates are not a regular grid.")
    return Affine(x_step, 0.0, float(x[0] - x_step / 2.0), 0.0, y_step, float(y[0] - y_step / 2.0))


def _prepare(da: xr.DataArray, nodata: Any, dtype: str) -> xr.DataArray:
    if da.rio.crs is None:
        raise ValueError("CRS missing before write.")
    attrs = {k: v for k, v in da.attrs.items() if k not in ("_FillValue", "missing_value", "nodata", "long_name")}
    da = da.copy(deep=False)
    da.attrs = attrs
    da.encoding = {}
    da = da.rio.set_spatial_dims(x_dim="x", y_dim="y", inplace=False)
    da = da.rio.write_transform(_transform_from_coords(da), inplace=False)
    da = da.fillna(nodata).astype(dtype)
    return da.rio.write_nodata(nodata, inplace=False)


def _write(da: xr.DataArray, path: str | Path, dtype: str) -> Path:
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    da.rio.to_raster(
        out_path,
        dtype=dtype,
        compress="DEFLATE",
        tiled=True,
        blockxsize=256,
        blockysize=256,
        BIGTIFF="IF_SAFER",
    )
    return out_path


def _hex_to_rgba(color: str) -> tuple[int, int, int, int]:
    color = color.lstrip("#")
    return int(color[0:2], 16), int(color[2:4], 16), int(color[4:6], 16), 255


def export_flood_raster(flood: FloodRaster, path: str | Path) -> Path:
    """Single-band uint8 classes, nodata 255, flood palette as the colour table."""
    classes = flood.require()
    out_path = _write(_prepare(classes, FLOOD_NODATA, "uint8"), path, "uint8")
    with rasterio.open(out_path, "r+") as dst:
        dst.write_colormap(1, {i: _hex_to_rgba(c) for i, c in enumerate(FLOOD_PALETTE)})
        dst.update_tags(params_version=str(flood.params_version))
        dst.set_band_description(1, "flood_class")
        dst.update_tags(1, **{f"class_{code}": label for code, label in FLOOD_CLASS_LABELS.items()})
    return out_path


def export_composite(composite: Composite, path: str | Path) -> Path:
    """Float32 bands in composite order, NaN as nodata."""
    image = composite.require()
    out_path = _write(_prepare(image, np.nan, "float32"), path, "float32")
    with rasterio.open(out_path, "r+") as dst:
        for index, name in enumerate(composite.band_names, start=1):
            dst.set_band_description(index, name)
    return out_path
