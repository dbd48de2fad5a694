import warnings

import numpy as np
import pytest
from shapely.geometry import Polygon

from conftest import EXPOSURE_TOTALS, WEST, NORTH
from flood_mapper.aoi import AreaOfInterest
from flood_mapper.classify import FloodRaster
from flood_mapper.config import (
    GHSL_POPULATION,
    GPW_POPULATION,
    LANDSCAN_POPULATION,
    M_PER_DEGREE,
    POPULATION_SOURCES,
)
from flood_mapper.errors import EmptyCollectionError, PixelBudgetExceededError, ReductionApproximationWarning
from flood_mapper.exposure import ExposureResult, calculate_affected_population, round_half_up
from flood_mapper.memory import InMemorySubstrate, grid_array, grid_coords
from flood_mapper.substrate import ReductionMode, reduce_region


def test_same_mask_reports_each_source_total(exposure_substrate, exposure_aoi, full_flood):
    """1000 / 950 / 1100 under one mask, whatever the native resolution."""
    result = calculate_affected_population(full_flood, exposure_aoi, exposure_substrate)
    assert result.counts == {
        GHSL_POPULATION.name: 1000,
        GPW_POPULATION.name: 950,
        LANDSCAN_POPULATION.name: 1100,
    }
    assert result.is_exact
    assert not result.unavailable


def test_masked_sum_is_bounded_by_total(exposure_substrate, exposure_aoi, half_flood):
    result = calculate_affected_population(half_flood, exposure_aoi, exposure_substrate)
    for name, total in EXPOSURE_TOTALS.items():
        assert 0 <= result.counts[name] <= total
        assert result.counts[name] == pytest.approx(total / 2, abs=1)


def test_no_flood_means_no_exposure(exposure_substrate, exposure_aoi):
    s = exposure_substrate
    dry = FloodRaster(grid_array(np.zeros((s.y.size, s.x.size)), s.x, s.y), params_version=0)
    result = calculate_affected_population(dry, exposure_aoi, s)
    assert set(result.counts.values()) == {0}


def test_exposure_is_idempotent(exposure_substrate, exposure_aoi, half_flood):
    first = calculate_affected_population(half_flood, exposure_aoi, exposure_substrate)
    second = calculate_affected_population(half_flood, exposure_aoi, exposure_substrate)
    assert first == second


def test_best_effort_flags_approximate_sources(exposure_substrate, exposure_aoi, full_flood):
    """The 100 m grid blows a tiny pixel budget; the 1 km grids do not."""
    with pytest.warns(ReductionApproximationWarning):
        result = calculate_affected_population(
            full_flood,
            exposure_aoi,
            exposure_substrate,
            max_pixels=50,
            mode=ReductionMode.BEST_EFFORT,
        )
    assert result.approximate == frozenset({GHSL_POPULATION.name})
    assert not result.is_exact
    assert result.counts[GPW_POPULATION.name] == 950
    assert result.counts[GHSL_POPULATION.name] <= 1000
    assert result.counts[GHSL_POPULATION.name] == pytest.approx(1000, abs=1)


def test_best_effort_masked_sum_is_bounded_by_total(exposure_substrate, exposure_aoi, half_flood):
    with pytest.warns(ReductionApproximationWarning):
        result = calculate_affected_population(
            half_flood, exposure_aoi, exposure_substrate, max_pixels=50, mode=ReductionMode.BEST_EFFORT
        )
    for name, total in EXPOSURE_TOTALS.items():
        assert 0 <= result.counts[name] <= total
    assert result.counts[GHSL_POPULATION.name] == pytest.approx(500, abs=1)


def test_best_effort_matches_exact_sum_over_a_triangle(exposure_substrate):
    """Coarse windows cut by the AOI edge only count the cells inside it."""
    population = exposure_substrate.population[GHSL_POPULATION.name]
    side = 2000.0 / M_PER_DEGREE
    triangle = AreaOfInterest(Polygon([(WEST, NORTH), (WEST + side, NORTH), (WEST, NORTH - side)]))
    exact = reduce_region(population, triangle, mode=ReductionMode.EXACT)
    with pytest.warns(ReductionApproximationWarning):
        coarse = reduce_region(population, triangle, max_pixels=10, mode=ReductionMode.BEST_EFFORT)
    assert coarse.approximate
    assert coarse.scale > exact.scale
    assert 400 < exact.value < 600
    assert coarse.value == pytest.approx(exact.value)
    assert coarse.value <= exact.value + 1e-6


def test_negative_population_sum_is_unavailable(exposure_substrate, exposure_aoi, full_flood):
    x, y = grid_coords(WEST, NORTH, 2, 2, 1000.0)
    population = dict(exposure_substrate.population)
    population[LANDSCAN_POPULATION.name] = grid_array(np.full((2, 2), -9999.0), x, y)
    substrate = InMemorySubstrate(x=exposure_substrate.x, y=exposure_substrate.y, population=population)
    result = calculate_affected_population(full_flood, exposure_aoi, substrate)
    assert LANDSCAN_POPULATION.name in result.unavailable
    assert LANDSCAN_POPULATION.name not in result.counts
    assert result.counts[GPW_POPULATION.name] == 950


def test_exact_mode_refuses_to_approximate(exposure_substrate, exposure_aoi, full_flood):
    with pytest.raises(PixelBudgetExceededError):
        calculate_affected_population(
            full_flood,
            exposure_aoi,
            exposure_substrate,
            max_pixels=50,
            mode=ReductionMode.EXACT,
        )


def test_exact_mode_within_budget_does_not_warn(exposure_substrate, exposure_aoi, full_flood):
    with warnings.catch_warnings():
        warnings.simplefilter("error", ReductionApproximationWarning)
        result = calculate_affected_population(
            full_flood, exposure_aoi, exposure_substrate, mode=ReductionMode.EXACT
        )
    assert result.is_exact


def test_source_without_data_is_unavailable(exposure_substrate, exposure_aoi, full_flood):
    x, y = grid_coords(WEST, NORTH, 2, 2, 1000.0)
    population = dict(exposure_substrate.population)
    population[LANDSCAN_POPULATION.name] = grid_array(np.full((2, 2), np.nan), x, y)
    substrate = InMemorySubstrate(x=exposure_substrate.x, y=exposure_substrate.y, population=population)
    result = calculate_affected_population(full_flood, exposure_aoi, substrate)
    assert LANDSCAN_POPULATION.name in result.unavailable
    assert LANDSCAN_POPULATION.name not in result.counts
    assert result.counts[GHSL_POPULATION.name] == 1000


def test_unavailable_flood_map_aborts(exposure_substrate, exposure_aoi):
    failed = FloodRaster(None, params_version=3, failure=EmptyCollectionError("no event scenes"))
    with pytest.raises(EmptyCollectionError):
        calculate_affected_population(failed, exposure_aoi, exposure_substrate)


def test_result_as_frame_and_dict(exposure_substrate, exposure_aoi, full_flood):
    result = calculate_affected_population(full_flood, exposure_aoi, exposure_substrate)
    frame = result.to_frame()
    assert list(frame["source"]) == [s.name for s in POPULATION_SOURCES]
    assert frame["population"].sum() == 3050
    assert result.to_dict()["counts"][GPW_POPULATION.name] == 950


def test_reduce_region_rejects_finer_than_native_scale(exposure_substrate, exposure_aoi):
    population = exposure_substrate.population[GPW_POPULATION.name]
    with pytest.raises(ValueError, match="finer"):
        reduce_region(population, exposure_aoi, scale=100.0)


@pytest.mark.parametrize("value, expected", [(0.5, 1), (1.49, 1), (2.5, 3), (949.5, 950), (0.0, 0)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def test_empty_result_is_exact():
    assert ExposureResult(counts={}).is_exact
