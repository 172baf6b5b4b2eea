"""
Grid flood field with explicit, fixed-timestep water transport.

Each cell of a regular 2D grid carries one water height on top of an
immutable terrain height.  Water moves only between axis-aligned neighbours
and only down the combined terrain + water head.  Three mechanisms keep the
explicit scheme stable:

* each outflow is capped at ``h / neighbour_count``, so one exchange never
  takes more than an even share of a cell;
* if a cell's planned outflows still exceed its height they are all scaled
  by ``h / total`` so the cell drains to exactly zero (outflow correction);
* ``update()`` integrates in fixed substeps, caps the number of substeps per
  call, and applies whatever time is left over as one scaled partial step
  rather than dropping it.

Grid geometry: cell ``(row, col)`` is centred at
``(origin_x + col * dx, origin_y + row * dy)`` in local metres; row 0 is the
southern edge.

Usage::

    field = FloodField(terrain, cell_size=(dx, dy), origin=(x0, y0))
    field.add_water_source(row=40, col=75, rate=0.002)
    for frame_dt in frames:
        field.update(frame_dt, time_multiplier=10)
    field.sample(x, y).depth
"""

from __future__ import annotations

import logging
import math
from typing import List, NamedTuple, Tuple

import numpy as np

from flood_evac import defaults
from flood_evac.errors import OutOfBoundsError, check_invariant

logger = logging.getLogger(__name__)

#: Tolerance for float rounding when checking that heights stay non-negative.
NEGATIVE_HEIGHT_TOLERANCE = 1e-9

# (source slice, destination slice) pairs for the four axis-aligned flows:
# east, west, north (row + 1), south (row - 1).
_DIRECTIONS = (
    ((slice(None), slice(0, -1)), (slice(None), slice(1, None))),
    ((slice(None), slice(1, None)), (slice(None), slice(0, -1))),
    ((slice(0, -1), slice(None)), (slice(1, None), slice(None))),
    ((slice(1, None), slice(None)), (slice(0, -1), slice(None))),
)


class WaterSource(NamedTuple):
    row: int
    col: int
    rate: float


class FloodSample(NamedTuple):
    """Water depth at a point; ``in_bounds`` is False when the point is off-grid."""

    depth: float
    in_bounds: bool


def _neighbour_counts(shape: Tuple[int, int]) -> np.ndarray:
    rows, cols = shape
    counts = np.zeros(shape, dtype=float)
    counts[:, :-1] += 1
    counts[:, 1:] += 1
    counts[:-1, :] += 1
    counts[1:, :] += 1
    return counts


class FloodField:
    """
    Water heights over a terrain grid.

    Parameters
    ----------
    terrain : array-like
        2D terrain heights (metres), one per cell.  Copied and frozen.
    cell_size : float or (float, float)
        Cell spacing ``(dx, dy)`` in metres.
    origin : (float, float)
        Local coordinates of the centre of cell ``(0, 0)``.
    gravity, timestep, friction, min_water_height, evaporation_rate, max_substeps
        Transport parameters; see ``flood_evac.defaults``.
    """

    def __init__(
        self,
        terrain,
        cell_size=1.0,
        origin=(0.0, 0.0),
        *,
        gravity: float = defaults.GRAVITY,
        timestep: float = defaults.FLOOD_TIMESTEP_S,
        friction: float = defaults.FRICTION,
        min_water_height: float = defaults.MIN_WATER_HEIGHT_M,
        evaporation_rate: float = defaults.EVAPORATION_RATE_M,
        max_substeps: int = defaults.MAX_SUBSTEPS,
    ):
        terrain = np.array(terrain, dtype=float)
        if terrain.ndim != 2 or terrain.size == 0:
            raise ValueError(f"Terrain must be a non-empty 2D grid, got shape {terrain.shape}")
        if not np.all(np.isfinite(terrain)):
            raise ValueError("Terrain heights must be finite")
        if timestep <= 0:
            raise ValueError(f"timestep must be > 0, got {timestep}")
        if max_substeps < 1:
            raise ValueError(f"max_substeps must be >= 1, got {max_substeps}")
        terrain.setflags(write=False)
        self.terrain = terrain
        self.water = np.zeros_like(terrain)

        if np.ndim(cell_size) == 0:
            cell_size = (float(cell_size), float(cell_size))
        self.cell_size = (float(cell_size[0]), float(cell_size[1]))
        self.origin = (float(origin[0]), float(origin[1]))

        self.gravity = gravity
        self.timestep = timestep
        self.friction = friction
        self.min_water_height = min_water_height
        self.evaporation_rate = evaporation_rate
        self.max_substeps = int(max_substeps)

        self.water_sources: List[WaterSource] = []
        self.simulated_time = 0.0
        self.substeps_taken = 0
        self._accumulator = 0.0
        self._neighbour_count = _neighbour_counts(terrain.shape)

    def __repr__(self) -> str:
        rows, cols = self.shape
        return f"FloodField({rows}x{cols}, volume={self.total_volume():.3f})"

    @property
    def shape(self) -> Tuple[int, int]:
        return self.terrain.shape

    @property
    def cell_area(self) -> float:
        return self.cell_size[0] * self.cell_size[1]

    # ------------------------------------------------------------------
    # Grid addressing
    # ------------------------------------------------------------------

    def in_grid(self, row: int, col: int) -> bool:
        rows, cols = self.shape
        return 0 <= row < rows and 0 <= col < cols

    def neighbours(self, row: int, col: int) -> List[Tuple[int, int]]:
        """Axis-aligned neighbours of ``(row, col)`` that lie on the grid."""
        candidates = ((row, col - 1), (row, col + 1), (row - 1, col), (row + 1, col))
        return [(r, c) for r, c in candidates if self.in_grid(r, c)]

    def cell_at(self, x: float, y: float) -> Tuple[int, int]:
        """Nearest cell to local point ``(x, y)``; raises ``OutOfBoundsError`` off-grid."""
        col = int(math.floor((x - self.origin[0]) / self.cell_size[0] + 0.5))
        row = int(math.floor((y - self.origin[1]) / self.cell_size[1] + 0.5))
        if not self.in_grid(row, col):
            raise OutOfBoundsError(f"Point ({x:.1f}, {y:.1f}) maps to off-grid cell ({row}, {col})")
        return row, col

    def cell_centre(self, row: int, col: int) -> Tuple[float, float]:
        return (
            self.origin[0] + col * self.cell_size[0],
            self.origin[1] + row * self.cell_size[1],
        )

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample(self, x: float, y: float) -> FloodSample:
        """Water depth at the nearest cell; off-grid points read as dry with ``in_bounds=False``."""
        try:
            row, col = self.cell_at(x, y)
        except OutOfBoundsError:
            return FloodSample(0.0, False)
        return FloodSample(float(self.water[row, col]), True)

    def is_flooded(self, x: float, y: float) -> bool:
        return self.sample(x, y).depth > self.min_water_height

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_water_source(self, row: int, col: int, rate: float) -> WaterSource:
        """Register a point source injecting *rate* metres per simulated second."""
        if not self.in_grid(row, col):
            raise OutOfBoundsError(f"Water source cell ({row}, {col}) is off-grid")
        if rate < 0:
            raise ValueError(f"Water source rate must be >= 0, got {rate}")
        source = WaterSource(int(row), int(col), float(rate))
        self.water_sources.append(source)
        return source

    def remove_water_source(self, index: int) -> WaterSource:
        return self.water_sources.pop(index)

    def add_water_at(self, row: int, col: int, rate: float, dt: float) -> None:
        """
        Inject ``rate * dt`` metres of water around ``(row, col)``.

        Half stays in the cell; the other half is shared evenly between its
        up-to-4 neighbours.
        """
        if not self.in_grid(row, col):
            raise OutOfBoundsError(f"Cell ({row}, {col}) is off-grid")
        if rate < 0 or dt < 0:
            raise ValueError(f"rate and dt must be >= 0, got rate={rate}, dt={dt}")
        amount = rate * dt
        neighbours = self.neighbours(row, col)
        if not neighbours:
            self.water[row, col] += amount
            return
        self.water[row, col] += amount * defaults.SOURCE_CENTRE_SHARE
        share = amount * (1.0 - defaults.SOURCE_CENTRE_SHARE) / len(neighbours)
        for r, c in neighbours:
            self.water[r, c] += share

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def step(self, step_scale: float = 1.0) -> None:
        """
        Advance the water by one substep of ``timestep * step_scale`` seconds.

        Flows are computed from the pre-step heights, so the result does not
        depend on cell order.
        """
        h = self.water
        dt = self.timestep * step_scale
        active = h > self.min_water_height

        if active.any():
            cap = h / np.maximum(self._neighbour_count, 1.0)
            coefficient = dt * self.gravity * np.sqrt(h) * self.friction
            head = self.terrain + h

            flows = []
            total = np.zeros_like(h)
            for src, dst in _DIRECTIONS:
                difference = head[src] - head[dst]
                flow = np.where(active[src] & (difference > 0), coefficient[src] * difference, 0.0)
                flow = np.minimum(flow, cap[src])
                total[src] += flow
                flows.append(flow)

            # Outflow correction: scale every flow out of an overdrawn cell
            # so the cell gives up exactly its height.
            scale = np.ones_like(h)
            overdrawn = total > h
            scale[overdrawn] = h[overdrawn] / total[overdrawn]

            delta = np.zeros_like(h)
            for (src, dst), flow in zip(_DIRECTIONS, flows):
                flow = flow * scale[src]
                delta[src] -= flow
                delta[dst] += flow
            new = h + delta
        else:
            new = h.copy()

        check_invariant(
            bool(np.all(new >= -NEGATIVE_HEIGHT_TOLERANCE)),
            f"negative water height {float(new.min()):.3e} after transport",
        )
        np.maximum(new - self.evaporation_rate * step_scale, 0.0, out=new)
        self.water = new
        self.substeps_taken += 1

    def update(self, dt: float, time_multiplier: float = 1.0) -> int:
        """
        Advance by ``dt * time_multiplier`` simulated seconds.

        Registered sources inject for the whole interval first.  Returns the
        number of full substeps taken.
        """
        if dt < 0 or time_multiplier < 0:
            raise ValueError(
                f"dt and time_multiplier must be >= 0, got {dt} and {time_multiplier}"
            )
        sim_dt = dt * time_multiplier
        for source in self.water_sources:
            self.add_water_at(source.row, source.col, source.rate, sim_dt)

        self._accumulator += sim_dt
        steps = 0
        while self._accumulator >= self.timestep and steps < self.max_substeps:
            self.step()
            self._accumulator -= self.timestep
            steps += 1

        if steps == self.max_substeps and self._accumulator > 0:
            logger.debug(
                "Substep cap reached; applying %.4fs as one partial step", self._accumulator
            )
            self.step(self._accumulator / self.timestep)
            self._accumulator = 0.0

        self.simulated_time += sim_dt
        return steps

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def total_volume(self) -> float:
        """Water volume in cubic metres (sum of heights times cell area)."""
        return float(self.water.sum()) * self.cell_area

    def wet_cells(self, threshold: float | None = None) -> int:
        threshold = self.min_water_height if threshold is None else threshold
        return int(np.count_nonzero(self.water > threshold))

    def max_depth(self) -> float:
        return float(self.water.max())
