"""
Default constants for the flood evacuation simulation.

Override them through scenario.json (see ``flood_evac.config``) or by passing
explicit keyword arguments to the component constructors.
"""

# Node identity
KEY_DECIMALS = 3
"""Decimal places kept when quantizing node coordinates into keys (millimetres)."""

# Flood transport
GRAVITY = 9.8
"""Gravitational acceleration (m/s^2) in the outflow term."""

FLOOD_TIMESTEP_S = 0.016
"""Fixed flood substep (seconds of simulated time)."""

FRICTION = 0.1
"""Dimensionless friction factor applied to every outflow."""

MIN_WATER_HEIGHT_M = 0.5
"""Water height (metres) above which a cell flows and an agent counts as flooded."""

EVAPORATION_RATE_M = 0.00002
"""Water height (metres) removed from every cell per full substep."""

MAX_SUBSTEPS = 10
"""Maximum number of full flood substeps per ``update()`` call."""

SOURCE_CENTRE_SHARE = 0.5
"""Fraction of injected water kept by the source cell; the rest goes to its neighbours."""

# Terrain grid
TERRAIN_RESOLUTION = 200
"""Number of grid segments per side; the flood grid has ``resolution + 1`` cells per side."""

TERRAIN_OFFSET_M = -10.0
"""Vertical offset (metres) applied to every terrain sample."""

# Agents
WALKING_SPEED_MS = (1.0, 3.0)
"""Range (m/s) a walking speed is drawn from at spawn."""

DRIVING_SPEED_MS = (10.0, 20.0)
"""Range (m/s) a driving speed is drawn from at spawn."""

REACTION_TIME_S = (0.0, 300.0)
"""Range (seconds) of the reaction countdown before an agent departs."""

SAFE_DISTANCE_M = 15.0
"""Distance (metres) inside which an agent slows for the agent ahead."""

STOP_DISTANCE_M = 10.0
"""Distance (metres) inside which an agent stops for the agent ahead."""

CONE_THRESHOLD = 0.996
"""Cosine of the half-angle of the forward cone (~5 degrees)."""

SLOWDOWN_FLOOR_MS = 0.1
"""Speed (m/s) added to the scaled speed so slowing agents never fully stall."""

PROGRESS_EPSILON = 1e-9
"""Segment progress within this of 1.0 counts as complete."""

# Orchestrator
MAX_FRAME_DT_S = 1.0
"""Frame durations (seconds) above this are treated as a stall."""

STALL_FRAME_DT_S = 1.0 / 60.0
"""Frame duration (seconds) substituted for a stalled frame."""

SPAWN_JITTER_M = 100.0
"""Side (metres) of the square an agent's spawn point is jittered within."""

SPAWN_GRID_SIZE = 200
"""Cells per side of the building-density spawn grid."""

RECORD_INTERVAL_S = 10.0
"""Simulated seconds between diagnostics records in ``run_sim``."""

# Data acquisition
OVERPASS_URL = "https://overpass-api.de/api/interpreter"
"""Overpass API endpoint for road and building queries."""

OVERPASS_TIMEOUT_S = 25
"""Server-side Overpass timeout, also used as the HTTP read timeout."""

ROAD_CLASSES = (
    "motorway",
    "trunk",
    "primary",
    "secondary",
    "tertiary",
    "residential",
    "unclassified",
    "service",
)
"""OSM highway classes treated as navigable roads."""

EXCLUDED_BUILDING_TYPES = ("no", "shed", "roof", "garage", "kiosk", "toilet")
"""OSM building values that never host residents."""

METRES_PER_DEGREE_LAT = 111132.0
"""Metres per degree of latitude for the local equirectangular projection."""

METRES_PER_DEGREE_LON_EQUATOR = 111320.0
"""Metres per degree of longitude at the equator."""
