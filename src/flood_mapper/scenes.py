"""
Scene selection for a time window.
"""

from __future__ import annotations

import logging

import pandas as pd

from flood_mapper.aoi import AreaOfInterest
from flood_mapper.config import TimeWindow
from flood_mapper.substrate import SceneCollection, SceneQuery, Substrate


LOGGER = logging.getLogger(__name__)


def get_sentinel1_within_date_range(
    substrate: Substrate,
    window: TimeWindow,
    aoi: AreaOfInterest,
) -> SceneCollection:
    """
    Dual-pol (VV+VH) IW/SM scenes at 10 m intersecting the AOI in
    ``[window.start, window.start + span + 1)``. Empty is a valid answer.
    """
    collection = substrate.query_scenes(SceneQuery(aoi=aoi, window=window))
    LOGGER.info(
        "Sentinel-1 scenes %s -> %s: %d",
        window.start.isoformat(),
        window.end.isoformat(),
        collection.size,
    )
    return collection


def scene_availability(collection: SceneCollection) -> pd.DataFrame:
    """Scene count per acquisition date and orbit pass (rows: dates, columns: passes)."""
    if collection.data is None:
        return pd.DataFrame(dtype="int64")
    frame = pd.DataFrame(
        {
            "date": pd.to_datetime(collection.data["time"].values).normalize(),
            "orbit_pass": [str(v) for v in collection.data["orbit_pass"].values],
        }
    )
    table = frame.groupby(["date", "orbit_pass"]).size().unstack("orbit_pass", fill_value=0)
    table.columns.name = None
    return table.sort_index()
