"""
Pipeline parameters, dataset identifiers and visualization constants.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from flood_mapper.aoi import AreaOfInterest


# ============================================================================
# DATASETS
# ============================================================================

S1_COLLECTION = "COPERNICUS/S1_GRD"
S2_COLLECTION = "COPERNICUS/S2"
SURFACE_WATER_IMAGE = "JRC/GSW1_4/GlobalSurfaceWater"
ELEVATION_IMAGE = "USGS/SRTMGL1_003"
ADMIN_BOUNDARIES = "FAO/GAUL/2015/level2"

REQUIRED_POLARISATIONS: Tuple[str, ...] = ("VV", "VH")
ACCEPTED_MODES: Tuple[str, ...] = ("IW", "SM")
SCORED_MODE = "IW"
RESOLUTION_METERS = 10

# Band order handed to the renderer; VH is repeated on purpose (RGB packing).
COMPOSITE_BANDS: Tuple[str, str, str] = ("VH", "VV", "VH")
OPTICAL_BANDS: Tuple[str, str, str] = ("B4", "B3", "B2")
MAX_CLOUDY_PIXEL_PERCENTAGE = 70.0
QA60_CLOUD_BIT = 10
QA60_CIRRUS_BIT = 11

# ============================================================================
# DEFAULTS
# ============================================================================

DEFAULT_COUNTRY = "India"
DEFAULT_STATE = "Bihar"
DEFAULT_BASELINE_START = date(2020, 5, 1)
DEFAULT_BASELINE_SPAN = 60
DEFAULT_EVENT_START = date(2020, 7, 20)
DEFAULT_EVENT_SPAN = 8

BASELINE = 0
EVENT = 1

MAX_PIXELS = 1e13
M_PER_DEGREE = 111320.0
MIN_BASELINE_SCENES = 2

# ============================================================================
# FLOOD CLASSES
# ============================================================================

NO_FLOOD = 0
VV_ONLY = 1
VH_ONLY = 2
HIGH_CONFIDENCE = 3
OPEN_WATER = 4
FLOOD_CLASSES: Tuple[int, ...] = (NO_FLOOD, VV_ONLY, VH_ONLY, HIGH_CONFIDENCE, OPEN_WATER)
FLOOD_NODATA = 255

FLOOD_PALETTE: Tuple[str, ...] = ("#000000", "#ffff00", "#ffa500", "#ff0000", "#0000ff")
FLOOD_CLASS_LABELS = {
    NO_FLOOD: "No flood",
    VV_ONLY: "VV anomaly only",
    VH_ONLY: "VH anomaly only",
    HIGH_CONFIDENCE: "Flood (high confidence)",
    OPEN_WATER: "Permanent open water",
}

S1_VIZ_PARAMS = {"min": [-25, -20, -25], "max": [0, 10, 0]}
S2_VIZ_PARAMS = {"bands": list(OPTICAL_BANDS), "max": 3048, "gamma": 1}
FLOOD_VIZ_PARAMS = {"min": 0, "max": 4, "palette": list(FLOOD_PALETTE)}


@dataclass(frozen=True)
class TimeWindow:
    start: date
    span_days: int

    def __post_init__(self) -> None:
        if isinstance(self.start, datetime):
            object.__setattr__(self, "start", self.start.date())
        if self.span_days < 0:
            raise ValueError(f"span_days must be >= 0, got {self.span_days}")

    @property
    def end(self) -> date:
        """Exclusive end of the effective range."""
        return self.start + timedelta(days=self.span_days + 1)

    def contains(self, when: date | datetime) -> bool:
        day = when.date() if isinstance(when, datetime) else when
        return self.start <= day < self.end

    def label(self) -> str:
        return self.start.strftime("%Y%m%d")


@dataclass(frozen=True)
class FloodThresholds:
    zvv_threshold: float = -3.0
    zvh_threshold: float = -3.0
    confidence_vote_percent: float = 75.0
    elevation_threshold: Optional[float] = None
    slope_threshold: Optional[float] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence_vote_percent <= 100.0:
            raise ValueError(
                f"confidence_vote_percent must be in [0, 100], got {self.confidence_vote_percent}"
            )


@dataclass(frozen=True)
class PopulationSource:
    """A population raster reduced at its own native scale."""

    name: str
    asset_id: str
    band: str
    native_scale: Optional[float] = None
    is_collection: bool = False
    date_range: Optional[Tuple[str, str]] = None


GHSL_POPULATION = PopulationSource(
    name="GHSL (100m)",
    asset_id="JRC/GHSL/P2023A/GHS_POP/2020",
    band="population_count",
    native_scale=100.0,
)
GPW_POPULATION = PopulationSource(
    name="GPW (~1km)",
    asset_id="CIESIN/GPWv411/GPW_UNWPP-Adjusted_Population_Count",
    band="unwpp-adjusted_population_count",
    is_collection=True,
)
LANDSCAN_POPULATION = PopulationSource(
    name="LandScan (~1km)",
    asset_id="projects/sat-io/open-datasets/ORNL/LANDSCAN_GLOBAL",
    band="b1",
    is_collection=True,
    date_range=("2020-01-01", "2020-12-31"),
)
POPULATION_SOURCES: Tuple[PopulationSource, ...] = (
    GHSL_POPULATION,
    GPW_POPULATION,
    LANDSCAN_POPULATION,
)


def default_windows() -> Tuple[TimeWindow, TimeWindow]:
    return (
        TimeWindow(DEFAULT_BASELINE_START, DEFAULT_BASELINE_SPAN),
        TimeWindow(DEFAULT_EVENT_START, DEFAULT_EVENT_SPAN),
    )


@dataclass(frozen=True)
class PipelineParams:
    """
    Immutable snapshot of everything one recompute reads.

    Every change produces a new snapshot with a higher version; results are
    matched against the version they were built from.
    """

    aoi: "AreaOfInterest"
    windows: Tuple[TimeWindow, TimeWindow] = field(default_factory=default_windows)
    thresholds: FloodThresholds = field(default_factory=FloodThresholds)
    version: int = 0

    @property
    def baseline(self) -> TimeWindow:
        return self.windows[BASELINE]

    @property
    def event(self) -> TimeWindow:
        return self.windows[EVENT]

    def with_aoi(self, aoi: "AreaOfInterest") -> "PipelineParams":
        return replace(self, aoi=aoi, version=self.version + 1)

    def with_window(self, index: int, start: date, span_days: int) -> "PipelineParams":
        if index not in (BASELINE, EVENT):
            raise IndexError(f"window index must be 0 (baseline) or 1 (event), got {index}")
        windows = list(self.windows)
        windows[index] = TimeWindow(start, span_days)
        return replace(self, windows=(windows[0], windows[1]), version=self.version + 1)

    def with_thresholds(self, thresholds: FloodThresholds) -> "PipelineParams":
        return replace(self, thresholds=thresholds, version=self.version + 1)
