from datetime import date

import numpy as np
import pytest
import xarray as xr

from flood_mapper.classify import FloodContext, FloodRaster, map_floods
from flood_mapper.config import HIGH_CONFIDENCE, NO_FLOOD, OPEN_WATER, VH_ONLY, VV_ONLY, FloodThresholds, TimeWindow
from flood_mapper.errors import EmptyCollectionError, FloodMapperError
from flood_mapper.pipeline import get_flood_image
from flood_mapper.scenes import get_sentinel1_within_date_range


def _z(vv, vh):
    vv = np.atleast_2d(np.asarray(vv, dtype="float64"))
    vh = np.atleast_2d(np.asarray(vh, dtype="float64"))
    coords = {"y": np.arange(vv.shape[0])[::-1] * 1.0, "x": np.arange(vv.shape[1]) * 1.0}
    return xr.Dataset({"VV": (("y", "x"), vv), "VH": (("y", "x"), vh)}, coords=coords)


def test_stronger_anomaly_never_ranks_lower():
    """(-4, -4) is at least as flooded as (-1, -1)."""
    classes = map_floods(_z([-4.0, -1.0], [-4.0, -1.0])).values[0]
    assert classes[0] >= classes[1]
    assert classes[0] == HIGH_CONFIDENCE
    assert classes[1] == NO_FLOOD


@pytest.mark.parametrize(
    "vv, vh, expected",
    [
        (-4.0, -4.0, HIGH_CONFIDENCE),
        (-4.0, -1.0, VV_ONLY),
        (-1.0, -4.0, VH_ONLY),
        (-1.0, -1.0, NO_FLOOD),
        (-3.0, -3.0, HIGH_CONFIDENCE),
    ],
)
def test_vote_of_channels(vv, vh, expected):
    assert map_floods(_z([vv], [vh])).values[0, 0] == expected


def test_custom_thresholds():
    thresholds = FloodThresholds(zvv_threshold=-1.0, zvh_threshold=-5.0)
    assert map_floods(_z([-2.0], [-4.0]), thresholds).values[0, 0] == VV_ONLY


def test_masked_anomaly_stays_masked():
    classes = map_floods(_z([np.nan, -4.0], [-4.0, -4.0])).values[0]
    assert np.isnan(classes[0])
    assert classes[1] == HIGH_CONFIDENCE


def test_permanent_water_is_its_own_class():
    """Occurrence at or above the vote percent is open water, even where anomalies are masked."""
    z = _z([-4.0, -4.0, np.nan], [-4.0, -4.0, np.nan])
    occurrence = xr.DataArray([[80.0, 70.0, 90.0]], dims=("y", "x"), coords=z.coords)
    classes = map_floods(z, FloodThresholds(), FloodContext(water_occurrence=occurrence)).values[0]
    assert classes.tolist() == [OPEN_WATER, HIGH_CONFIDENCE, OPEN_WATER]


def test_occurrence_on_a_coarser_grid_is_picked_nearest():
    z = _z([[-4.0, -4.0, -4.0, -4.0]], [[-4.0, -4.0, -4.0, -4.0]])
    occurrence = xr.DataArray([[0.0, 100.0]], dims=("y", "x"), coords={"y": [0.0], "x": [0.5, 2.5]})
    classes = map_floods(z, FloodThresholds(), FloodContext(water_occurrence=occurrence)).values[0]
    assert classes.tolist() == [HIGH_CONFIDENCE, HIGH_CONFIDENCE, OPEN_WATER, OPEN_WATER]


def test_terrain_exclusion():
    z = _z([-4.0, -4.0, -4.0], [-4.0, -4.0, -4.0])
    elevation = xr.DataArray([[50.0, 500.0, 50.0]], dims=("y", "x"), coords=z.coords)
    slope = xr.DataArray([[1.0, 1.0, 20.0]], dims=("y", "x"), coords=z.coords)
    thresholds = FloodThresholds(elevation_threshold=100.0, slope_threshold=5.0)
    classes = map_floods(z, thresholds, FloodContext(elevation=elevation, slope=slope)).values[0]
    assert classes.tolist() == [HIGH_CONFIDENCE, NO_FLOOD, NO_FLOOD]


def test_block_at_minus_five_sigma_is_exactly_class_three(flooded_substrate, aoi):
    """10x10 composite with a 3x3 block at -5 sigma in both channels."""
    baseline = get_sentinel1_within_date_range(flooded_substrate, TimeWindow(date(2020, 5, 1), 60), aoi)
    event = get_sentinel1_within_date_range(flooded_substrate, TimeWindow(date(2020, 7, 20), 8), aoi)
    classes = get_flood_image(baseline, event, aoi).compute().values

    expected = np.zeros((10, 10), dtype=bool)
    expected[3:6, 3:6] = True
    np.testing.assert_array_equal(classes == HIGH_CONFIDENCE, expected)
    assert (classes[~expected] < HIGH_CONFIDENCE).all()


def test_flood_raster_counts_and_failure():
    classes = xr.DataArray([[0.0, 3.0], [3.0, np.nan]], dims=("y", "x"))
    flood = FloodRaster(classes, params_version=7)
    assert flood.available
    assert flood.class_counts()[HIGH_CONFIDENCE] == 2
    assert flood.high_confidence_mask().values.sum() == 2

    failed = FloodRaster(None, params_version=8, failure=EmptyCollectionError("no event scenes"))
    assert not failed.available
    with pytest.raises(EmptyCollectionError):
        failed.require()
    with pytest.raises(FloodMapperError):
        FloodRaster(None, params_version=9).require()
