from datetime import date, datetime

import numpy as np
import pytest

from conftest import MEAN_VH, MEAN_VV
from flood_mapper.composite import create_s1_composite, get_optical_composite
from flood_mapper.config import COMPOSITE_BANDS, BASELINE, EVENT, TimeWindow
from flood_mapper.errors import EmptyCollectionError
from flood_mapper.memory import InMemorySubstrate, OpticalRecord
from flood_mapper.scenes import get_sentinel1_within_date_range
from flood_mapper.substrate import SceneCollection


BASELINE_WINDOW = TimeWindow(date(2020, 5, 1), 60)
EVENT_WINDOW = TimeWindow(date(2020, 7, 20), 8)


@pytest.fixture
def baseline(flooded_substrate, aoi):
    return get_sentinel1_within_date_range(flooded_substrate, BASELINE_WINDOW, aoi)


def test_bands_are_vh_vv_vh(baseline, aoi):
    composite = create_s1_composite(baseline, aoi, window_index=BASELINE).compute()
    image = composite.image
    assert composite.band_names == COMPOSITE_BANDS == ("VH", "VV", "VH")
    assert list(image["band"].values) == [1, 2, 3]
    np.testing.assert_allclose(image.sel(band=1).values, MEAN_VH)
    np.testing.assert_allclose(image.sel(band=2).values, MEAN_VV)
    np.testing.assert_array_equal(image.sel(band=1).values, image.sel(band=3).values)
    assert composite.scene_count == 4


def test_composite_is_invariant_to_scene_order(baseline, aoi):
    """Reordering the input scenes does not change the mean composite."""
    reversed_scenes = SceneCollection(baseline.data.isel(time=slice(None, None, -1)), baseline.query)
    shuffled_scenes = SceneCollection(baseline.data.isel(time=[2, 0, 3, 1]), baseline.query)
    expected = create_s1_composite(baseline, aoi).compute().image.values
    for collection in (reversed_scenes, shuffled_scenes):
        actual = create_s1_composite(collection, aoi).compute().image.values
        np.testing.assert_allclose(actual, expected)


def test_composite_stays_lazy_until_computed(baseline, aoi):
    composite = create_s1_composite(baseline, aoi)
    assert composite.image.chunks is not None


def test_empty_window_composite_is_undefined(grid, aoi):
    """No scenes -> no composite; asking for the image says which window."""
    x, y = grid
    empty = get_sentinel1_within_date_range(InMemorySubstrate(x=x, y=y), EVENT_WINDOW, aoi)
    composite = create_s1_composite(empty, aoi, window_index=EVENT)
    assert not composite.available
    assert composite.scene_count == 0
    with pytest.raises(EmptyCollectionError) as excinfo:
        composite.require()
    assert excinfo.value.window_index == EVENT


def test_collection_without_query_is_rejected(baseline, aoi):
    with pytest.raises(ValueError, match="no query"):
        create_s1_composite(SceneCollection(baseline.data), aoi)


def test_stack_without_scene_metadata_is_rejected(baseline):
    with pytest.raises(ValueError, match="orbit_pass"):
        SceneCollection(baseline.data.drop_vars("orbit_pass"), baseline.query)


def test_optical_composite_masks_clouds_and_drops_cloudy_scenes(grid, aoi):
    x, y = grid
    shape = (y.size, x.size)
    qa_cloud = np.zeros(shape)
    qa_cloud[0, 0] = 1 << 10
    qa_cirrus = np.zeros(shape)
    qa_cirrus[1, 1] = 1 << 11

    def bands(value, qa):
        return {"B4": np.full(shape, value), "B3": np.full(shape, value), "B2": np.full(shape, value), "QA60": qa}

    optical = [
        OpticalRecord("clear", datetime(2020, 7, 21), bands(100.0, np.zeros(shape))),
        OpticalRecord("patchy", datetime(2020, 7, 23), bands(300.0, qa_cloud + qa_cirrus)),
        OpticalRecord("overcast", datetime(2020, 7, 24), bands(5000.0, np.zeros(shape)), cloudy_pixel_percentage=85.0),
    ]
    substrate = InMemorySubstrate(x=x, y=y, optical=optical)
    composite = get_optical_composite(substrate, EVENT_WINDOW, aoi, window_index=EVENT).compute()
    red = composite.image.sel(band=1).values
    assert composite.scene_count == 2
    assert red[0, 0] == pytest.approx(100.0)
    assert red[1, 1] == pytest.approx(100.0)
    assert red[5, 5] == pytest.approx(200.0)


def test_optical_composite_without_scenes(grid, aoi):
    x, y = grid
    composite = get_optical_composite(InMemorySubstrate(x=x, y=y), EVENT_WINDOW, aoi)
    assert not composite.available
