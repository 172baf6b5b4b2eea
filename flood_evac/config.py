"""
Pydantic configuration model for scenario.json.

Usage::

    from flood_evac.config import SimulationConfig

    config = SimulationConfig.from_package("/path/to/package")
    print(config.run_label)        # "run_riverside"
    print(config.model_dump())     # dict, suitable for JSON serialisation
"""

from __future__ import annotations

import json
import os
import re
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from flood_evac import defaults


class WaterSourceConfig(BaseModel):
    """A point inflow, in degrees, injecting ``rate`` metres per simulated second."""

    lon: float
    lat: float
    rate: float = Field(default=0.001, ge=0)


class TargetConfig(BaseModel):
    """An evacuation target, snapped to the nearest road node at run time."""

    lon: float
    lat: float


class SimulationConfig(BaseModel):
    """Validated configuration for a flood evacuation run."""

    format_version: str = "1.0"
    name: Optional[str] = None
    description: Optional[str] = None
    bounds: Optional[Tuple[float, float, float, float]] = None

    duration: float = Field(default=600.0, gt=0)
    frame_dt: float = Field(default=defaults.STALL_FRAME_DT_S, gt=0)
    time_multiplier: float = Field(default=1.0, gt=0)
    seed: Optional[int] = None

    agent_count: int = Field(default=200, ge=0)
    walking_speed: Tuple[float, float] = defaults.WALKING_SPEED_MS
    driving_speed: Tuple[float, float] = defaults.DRIVING_SPEED_MS
    reaction_time: Tuple[float, float] = defaults.REACTION_TIME_S
    spawn_jitter: float = Field(default=defaults.SPAWN_JITTER_M, ge=0)
    spawn_grid_size: int = Field(default=defaults.SPAWN_GRID_SIZE, ge=1)

    safe_distance: float = Field(default=defaults.SAFE_DISTANCE_M, gt=0)
    stop_distance: float = Field(default=defaults.STOP_DISTANCE_M, ge=0)
    cone_threshold: float = Field(default=defaults.CONE_THRESHOLD, ge=-1, le=1)

    gravity: float = Field(default=defaults.GRAVITY, gt=0)
    flood_timestep: float = Field(default=defaults.FLOOD_TIMESTEP_S, gt=0)
    friction: float = Field(default=defaults.FRICTION, ge=0)
    min_water_height: float = Field(default=defaults.MIN_WATER_HEIGHT_M, ge=0)
    evaporation_rate: float = Field(default=defaults.EVAPORATION_RATE_M, ge=0)
    max_substeps: int = Field(default=defaults.MAX_SUBSTEPS, ge=1)
    terrain_resolution: int = Field(default=defaults.TERRAIN_RESOLUTION, ge=1)
    terrain_offset: float = defaults.TERRAIN_OFFSET_M

    water_sources: List[WaterSourceConfig] = []
    targets: List[TargetConfig] = []

    elevation: Optional[str] = None
    roads: Optional[str] = None
    buildings: Optional[str] = None
    overpass_url: str = defaults.OVERPASS_URL

    background_routing: bool = False
    record_interval: float = Field(default=defaults.RECORD_INTERVAL_S, gt=0)

    model_config = {"extra": "allow"}

    @field_validator("format_version")
    @classmethod
    def check_format_version(cls, v: str) -> str:
        if v != "1.0":
            raise ValueError(
                f"Unsupported format_version '{v}'. "
                "This version of flood_evac supports '1.0'."
            )
        return v

    @field_validator("walking_speed", "driving_speed", "reaction_time")
    @classmethod
    def check_range(cls, v: Tuple[float, float]) -> Tuple[float, float]:
        low, high = v
        if low < 0 or low > high:
            raise ValueError(f"Expected a range 0 <= low <= high, got [{low}, {high}]")
        return v

    @field_validator("bounds")
    @classmethod
    def check_bounds(cls, v):
        if v is None:
            return v
        min_lon, min_lat, max_lon, max_lat = v
        if not (min_lon < max_lon and min_lat < max_lat):
            raise ValueError(
                f"bounds must be [min_lon, min_lat, max_lon, max_lat], got {list(v)}"
            )
        return v

    @model_validator(mode="after")
    def check_distances(self) -> "SimulationConfig":
        if self.stop_distance >= self.safe_distance:
            raise ValueError(
                f"stop_distance ({self.stop_distance}) must be less than "
                f"safe_distance ({self.safe_distance})"
            )
        return self

    @property
    def run_label(self) -> str:
        """Label used for output directories and filenames."""
        slug = re.sub(r"[^a-z0-9]+", "_", (self.name or "scenario").lower()).strip("_")
        return f"run_{slug or 'scenario'}"

    def flood_kwargs(self) -> dict:
        """Keyword arguments for ``FloodField``."""
        return {
            "gravity": self.gravity,
            "timestep": self.flood_timestep,
            "friction": self.friction,
            "min_water_height": self.min_water_height,
            "evaporation_rate": self.evaporation_rate,
            "max_substeps": self.max_substeps,
        }

    def agent_kwargs(self) -> dict:
        """Keyword arguments for ``Agent``."""
        return {
            "walking_speed": self.walking_speed,
            "driving_speed": self.driving_speed,
            "reaction_time": self.reaction_time,
            "safe_distance": self.safe_distance,
            "stop_distance": self.stop_distance,
            "cone_threshold": self.cone_threshold,
        }

    @classmethod
    def from_package(cls, package_dir: str) -> "SimulationConfig":
        """Load and validate scenario.json from a package directory."""
        scenario_path = os.path.join(package_dir, "scenario.json")
        if not os.path.isfile(scenario_path):
            raise FileNotFoundError(
                f'Could not find "scenario.json" in {package_dir}'
            )
        with open(scenario_path) as f:
            data = json.load(f)
        return cls.model_validate(data)
