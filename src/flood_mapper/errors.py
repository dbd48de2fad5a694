"""
Failure taxonomy for the flood mapping pipeline.
"""

from __future__ import annotations


class FloodMapperError(Exception):
    """Base class for pipeline failures reported to collaborators."""


class EmptyCollectionError(FloodMapperError):
    """No scenes matched a window, so its composite or anomaly is undefined."""

    def __init__(self, message: str, window_index: int | None = None) -> None:
        super().__init__(message)
        self.window_index = window_index


class DegenerateStatisticsError(FloodMapperError):
    """Baseline statistics are undefined for every orbit group."""


class InvalidGeometryError(FloodMapperError):
    """AOI is empty, self-intersecting or not a polygon."""


class LayerNotFoundError(FloodMapperError):
    """Exposure was requested before a flood raster exists for the current parameters."""


class PixelBudgetExceededError(FloodMapperError):
    """An exact reduction would touch more pixels than the budget allows."""

    def __init__(self, pixel_count: int, max_pixels: float) -> None:
        super().__init__(
            f"Reduction needs {pixel_count} pixels, budget is {max_pixels:.0f}. "
            "Use best-effort mode or a coarser scale."
        )
        self.pixel_count = pixel_count
        self.max_pixels = max_pixels


class ReductionApproximationWarning(UserWarning):
    """A reduction fell back to a coarser best-effort scale."""
