"""
Per-window composites: temporal mean of radar (and optical) scenes, clipped to the AOI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

import xarray as xr

from flood_mapper.aoi import AreaOfInterest
from flood_mapper.config import (
    COMPOSITE_BANDS,
    OPTICAL_BANDS,
    QA60_CIRRUS_BIT,
    QA60_CLOUD_BIT,
    TimeWindow,
)
from flood_mapper.errors import EmptyCollectionError
from flood_mapper.substrate import SceneCollection, SceneQuery, Substrate, clip_to_aoi


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Composite:
    """
    A window's working image, dims (band, y, x).

    Bands are positional (1..n); ``band_names`` records what each one holds.
    ``image`` is None when the window had no scenes.
    """

    window: TimeWindow
    image: Optional[xr.DataArray]
    scene_count: int
    band_names: tuple[str, ...] = COMPOSITE_BANDS
    window_index: Optional[int] = None

    @property
    def available(self) -> bool:
        return self.image is not None

    def require(self) -> xr.DataArray:
        if self.image is None:
            raise EmptyCollectionError(
                f"No scenes between {self.window.start.isoformat()} and "
                f"{self.window.end.isoformat()}; composite is undefined.",
                window_index=self.window_index,
            )
        return self.image

    def compute(self) -> "Composite":
        return replace(self, image=self.require().compute())


def _stack_bands(layers: Sequence[xr.DataArray], names: Sequence[str], name: str) -> xr.DataArray:
    image = xr.concat(list(layers), dim="band", coords="minimal", compat="override")
    image = image.assign_coords(band=list(range(1, len(names) + 1)))
    image.attrs["long_name"] = tuple(names)
    return image.rename(name)


def create_s1_composite(
    collection: SceneCollection,
    aoi: AreaOfInterest,
    window_index: Optional[int] = None,
) -> Composite:
    """Mean of each polarisation across the window, packed as VH, VV, VH."""
    if collection.query is None:
        raise ValueError("Scene collection carries no query; its time window is unknown.")
    window = collection.query.window
    if collection.is_empty:
        return Composite(window, None, 0, COMPOSITE_BANDS, window_index)

    means = {band: collection.data[band].mean("time") for band in set(COMPOSITE_BANDS)}
    image = _stack_bands([means[b] for b in COMPOSITE_BANDS], COMPOSITE_BANDS, "s1_composite")
    return Composite(window, clip_to_aoi(image, aoi), collection.size, COMPOSITE_BANDS, window_index)


def mask_s2_clouds(scenes: xr.Dataset) -> xr.Dataset:
    """Drop pixels flagged as opaque cloud or cirrus in QA60."""
    qa = scenes["QA60"].fillna(0).astype("int64")
    clear = ((qa & (1 << QA60_CLOUD_BIT)) == 0) & ((qa & (1 << QA60_CIRRUS_BIT)) == 0)
    return scenes[list(OPTICAL_BANDS)].where(clear)


def get_optical_composite(
    substrate: Substrate,
    window: TimeWindow,
    aoi: AreaOfInterest,
    window_index: Optional[int] = None,
) -> Composite:
    scenes = substrate.query_optical(SceneQuery(aoi=aoi, window=window))
    if scenes is None or scenes.sizes.get("time", 0) == 0:
        LOGGER.info("No optical scenes in %s -> %s.", window.start, window.end)
        return Composite(window, None, 0, OPTICAL_BANDS, window_index)
    masked = mask_s2_clouds(scenes).mean("time")
    image = _stack_bands([masked[b] for b in OPTICAL_BANDS], OPTICAL_BANDS, "s2_composite")
    return Composite(
        window, clip_to_aoi(image, aoi), int(scenes.sizes["time"]), OPTICAL_BANDS, window_index
    )
