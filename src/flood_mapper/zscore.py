"""
Standardized backscatter anomaly of the event window against the baseline window.

Scoring runs per (instrument mode, orbit pass) group so that each group is
compared with a baseline acquired under the same geometry. Group anomalies are
stacked in acquisition order and averaged; a single noisy group cannot dominate.
"""

from __future__ import annotations

import logging
from typing import Sequence, Tuple

import xarray as xr

from flood_mapper.config import BASELINE, EVENT, MIN_BASELINE_SCENES, SCORED_MODE
from flood_mapper.errors import DegenerateStatisticsError, EmptyCollectionError
from flood_mapper.substrate import SceneCollection


LOGGER = logging.getLogger(__name__)

CHANNELS: Tuple[str, str] = ("VV", "VH")


def baseline_statistics(
    baseline: xr.Dataset,
    channels: Sequence[str] = CHANNELS,
) -> Tuple[xr.Dataset, xr.Dataset]:
    """
    Per-pixel mean and standard deviation over ``time``.

    A standard deviation that is zero or undefined is returned as NaN, which
    masks the pixel in every anomaly computed from it.
    """
    scenes = baseline[list(channels)]
    mean = scenes.mean("time")
    std = scenes.std("time")
    return mean, std.where(std > 0)


def calc_zscore(
    baseline: SceneCollection,
    event: SceneCollection,
    mode: str = SCORED_MODE,
    channels: Sequence[str] = CHANNELS,
) -> xr.Dataset:
    """
    One anomaly layer per orbit group of ``mode``, stacked along ``time``.

    Raises EmptyCollectionError when either window has no ``mode`` scenes and
    DegenerateStatisticsError when no group has enough baseline scenes.
    """
    event_mode = event.select_mode(mode)
    baseline_mode = baseline.select_mode(mode)
    if event_mode.is_empty:
        raise EmptyCollectionError(f"No {mode} scenes in the event window.", window_index=EVENT)
    if baseline_mode.is_empty:
        raise EmptyCollectionError(f"No {mode} scenes in the baseline window.", window_index=BASELINE)

    layers = []
    for (group_mode, orbit), group in event_mode.groups():
        reference = baseline_mode.select_group(group_mode, orbit)
        if reference.size < MIN_BASELINE_SCENES:
            LOGGER.warning(
                "Skipping %s %s: %d baseline scenes (need %d).",
                group_mode,
                orbit,
                reference.size,
                MIN_BASELINE_SCENES,
            )
            continue
        mean, std = baseline_statistics(reference.data, channels)
        anomaly = (group.data[list(channels)].mean("time") - mean) / std
        first = group.data["time"].values.min()
        anomaly = anomaly.expand_dims(time=[first]).assign_coords(
            instrument_mode=("time", [group_mode]),
            orbit_pass=("time", [orbit]),
        )
        LOGGER.info(
            "Scored %s %s: %d event vs %d baseline scenes.",
            group_mode,
            orbit,
            group.size,
            reference.size,
        )
        layers.append(anomaly)

    if not layers:
        raise DegenerateStatisticsError(
            f"No {mode} orbit group has {MIN_BASELINE_SCENES}+ baseline scenes; "
            "anomalies are undefined."
        )
    return xr.concat(layers, dim="time").sortby("time")


def mean_zscore(zscores: xr.Dataset) -> xr.Dataset:
    """Mean of the group anomalies; NaN only where every group is masked."""
    return zscores.mean("time", skipna=True)
