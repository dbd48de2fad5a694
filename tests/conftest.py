from datetime import datetime

import numpy as np
import pytest

from flood_mapper.aoi import AreaOfInterest
from flood_mapper.classify import FloodRaster
from flood_mapper.config import GHSL_POPULATION, GPW_POPULATION, LANDSCAN_POPULATION
from flood_mapper.memory import InMemorySubstrate, SceneRecord, grid_array, grid_coords

WEST = 85.0
NORTH = 25.6
NX = NY = 10

MEAN_VV = -10.0
MEAN_VH = -17.0

BASELINE_DATES = [datetime(2020, 5, 5), datetime(2020, 5, 17), datetime(2020, 5, 29), datetime(2020, 6, 10)]
EVENT_DATE = datetime(2020, 7, 22)


def baseline_scenes(x, y, std=1.0, dates=BASELINE_DATES, orbit_pass="ASCENDING", mode="IW", prefix="B"):
    """Scenes alternating mean +/- std, so the population std is exactly ``std``."""
    shape = (y.size, x.size)
    std = np.broadcast_to(np.asarray(std, dtype="float64"), shape)
    records = []
    for i, when in enumerate(dates):
        sign = 1.0 if i % 2 == 0 else -1.0
        records.append(
            SceneRecord(
                scene_id=f"{prefix}{i}",
                acquired=when,
                bands={"VV": MEAN_VV + sign * std, "VH": MEAN_VH + sign * std},
                instrument_mode=mode,
                orbit_pass=orbit_pass,
            )
        )
    return records


def event_scene(x, y, z_vv=0.0, z_vh=0.0, when=EVENT_DATE, orbit_pass="ASCENDING", mode="IW", scene_id="E0"):
    """Event scene sitting ``z`` baseline standard deviations (std 1) from the mean."""
    shape = (y.size, x.size)
    return SceneRecord(
        scene_id=scene_id,
        acquired=when,
        bands={
            "VV": MEAN_VV + np.broadcast_to(np.asarray(z_vv, dtype="float64"), shape),
            "VH": MEAN_VH + np.broadcast_to(np.asarray(z_vh, dtype="float64"), shape),
        },
        instrument_mode=mode,
        orbit_pass=orbit_pass,
    )


def flood_block(value=-5.0):
    z = np.zeros((NY, NX))
    z[3:6, 3:6] = value
    return z


@pytest.fixture
def grid():
    return grid_coords(WEST, NORTH, NX, NY)


@pytest.fixture
def flooded_substrate(grid):
    """Four baseline scenes and one event scene with a 3x3 block at -5 sigma."""
    x, y = grid
    scenes = baseline_scenes(x, y) + [event_scene(x, y, flood_block(), flood_block())]
    return InMemorySubstrate(x=x, y=y, scenes=scenes)


@pytest.fixture
def aoi(flooded_substrate):
    return AreaOfInterest(flooded_substrate.extent)


# Exposure: a 2 km x 2 km square at 10 m, with population on 100 m and 1 km grids.

EXPOSURE_TOTALS = {
    GHSL_POPULATION.name: 1000.0,
    GPW_POPULATION.name: 950.0,
    LANDSCAN_POPULATION.name: 1100.0,
}


def population_grid(total, pixel_m, extent_m=2000.0):
    n = int(round(extent_m / pixel_m))
    x, y = grid_coords(WEST, NORTH, n, n, pixel_m)
    return grid_array(np.full((n, n), total / (n * n)), x, y)


@pytest.fixture
def exposure_substrate():
    x, y = grid_coords(WEST, NORTH, 200, 200, 10.0)
    population = {
        GHSL_POPULATION.name: population_grid(EXPOSURE_TOTALS[GHSL_POPULATION.name], 100.0),
        GPW_POPULATION.name: population_grid(EXPOSURE_TOTALS[GPW_POPULATION.name], 1000.0),
        LANDSCAN_POPULATION.name: population_grid(EXPOSURE_TOTALS[LANDSCAN_POPULATION.name], 1000.0),
    }
    return InMemorySubstrate(x=x, y=y, population=population)


@pytest.fixture
def exposure_aoi(exposure_substrate):
    return AreaOfInterest(exposure_substrate.extent)


@pytest.fixture
def full_flood(exposure_substrate):
    """Every 10 m pixel is class 3."""
    s = exposure_substrate
    return FloodRaster(grid_array(np.full((s.y.size, s.x.size), 3.0), s.x, s.y), params_version=0)


@pytest.fixture
def half_flood(exposure_substrate):
    """Western half class 3, eastern half class 0."""
    s = exposure_substrate
    classes = np.zeros((s.y.size, s.x.size))
    classes[:, : s.x.size // 2] = 3.0
    return FloodRaster(grid_array(classes, s.x, s.y), params_version=0)
