"""
Radar flood mapping from Sentinel-1 backscatter anomalies, with population exposure.
"""

from flood_mapper.aoi import AreaOfInterest, make_aoi
from flood_mapper.classify import FloodContext, FloodRaster, map_floods
from flood_mapper.composite import Composite, create_s1_composite, get_optical_composite
from flood_mapper.config import (
    FLOOD_PALETTE,
    POPULATION_SOURCES,
    S1_VIZ_PARAMS,
    S2_VIZ_PARAMS,
    FloodThresholds,
    PipelineParams,
    PopulationSource,
    TimeWindow,
)
from flood_mapper.errors import (
    DegenerateStatisticsError,
    EmptyCollectionError,
    FloodMapperError,
    InvalidGeometryError,
    LayerNotFoundError,
    PixelBudgetExceededError,
    ReductionApproximationWarning,
)
from flood_mapper.exposure import ExposureResult, calculate_affected_population
from flood_mapper.memory import InMemorySubstrate, SceneRecord
from flood_mapper.scenes import get_sentinel1_within_date_range, scene_availability
from flood_mapper.session import FloodMapper, FloodMapState
from flood_mapper.substrate import ReductionMode, SceneQuery, Substrate
from flood_mapper.zscore import calc_zscore, mean_zscore

__version__ = "0.1.0"
