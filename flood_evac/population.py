"""
Building-density spawn distribution.

The bounding box is cut into a ``grid_size x grid_size`` lattice of
lon/lat cells.  Each building centroid counts toward the cell it falls in,
and spawn points are drawn by picking a cell with probability proportional
to its count, then a uniform point inside it.  With no buildings the whole
box is sampled uniformly.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence, Tuple

import numpy as np

from flood_evac import defaults

logger = logging.getLogger(__name__)


class SpawnDistribution:
    """
    Parameters
    ----------
    bounds : (min_lon, min_lat, max_lon, max_lat)
    buildings : iterable of (lon, lat)
        Building centroids.  Points outside *bounds* are ignored.
    grid_size : int
        Cells per side.
    """

    def __init__(
        self,
        bounds: Sequence[float],
        buildings: Iterable[Tuple[float, float]] = (),
        grid_size: int = defaults.SPAWN_GRID_SIZE,
    ):
        if grid_size < 1:
            raise ValueError(f"grid_size must be >= 1, got {grid_size}")
        min_lon, min_lat, max_lon, max_lat = (float(b) for b in bounds)
        if not (min_lon < max_lon and min_lat < max_lat):
            raise ValueError(f"Degenerate bounds {list(bounds)}")
        self.bounds = (min_lon, min_lat, max_lon, max_lat)
        self.grid_size = int(grid_size)
        self.lon_step = (max_lon - min_lon) / grid_size
        self.lat_step = (max_lat - min_lat) / grid_size

        # counts[row, col]: row indexes latitude, col longitude
        self.counts = np.zeros((grid_size, grid_size), dtype=np.int64)
        points = np.asarray(list(buildings), dtype=float).reshape(-1, 2)
        if len(points):
            cols = np.floor((points[:, 0] - min_lon) / self.lon_step).astype(int)
            rows = np.floor((points[:, 1] - min_lat) / self.lat_step).astype(int)
            inside = (cols >= 0) & (cols < grid_size) & (rows >= 0) & (rows < grid_size)
            np.add.at(self.counts, (rows[inside], cols[inside]), 1)
            if not inside.all():
                logger.debug("Ignored %d buildings outside bounds", int((~inside).sum()))
        self._cumulative = np.cumsum(self.counts.ravel())
        logger.info(
            "Spawn distribution: %d buildings over %dx%d cells",
            self.total_buildings, grid_size, grid_size,
        )

    @property
    def total_buildings(self) -> int:
        return int(self._cumulative[-1])

    def sample(self, rng: np.random.Generator) -> Tuple[float, float]:
        """Draw one ``(lon, lat)`` spawn point."""
        min_lon, min_lat, max_lon, max_lat = self.bounds
        if self.total_buildings == 0:
            return (
                min_lon + rng.random() * (max_lon - min_lon),
                min_lat + rng.random() * (max_lat - min_lat),
            )
        # side="right" never selects an empty cell, even for a draw of exactly 0
        value = rng.random() * self.total_buildings
        index = int(np.searchsorted(self._cumulative, value, side="right"))
        row, col = divmod(index, self.grid_size)
        cell_lon = min_lon + col * self.lon_step
        cell_lat = min_lat + row * self.lat_step
        return (
            cell_lon + rng.random() * self.lon_step,
            cell_lat + rng.random() * self.lat_step,
        )

    def sample_many(self, rng: np.random.Generator, count: int) -> np.ndarray:
        """Draw *count* spawn points as an ``(count, 2)`` array of lon/lat."""
        return np.array([self.sample(rng) for _ in range(count)], dtype=float).reshape(-1, 2)
