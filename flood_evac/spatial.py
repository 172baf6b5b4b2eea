"""Uniform grid index for restricting collision checks to nearby agents."""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Tuple


def _planar_position(item):
    return item.position[0], item.position[1]


class SpatialGrid:
    """
    Buckets items by the planar cell their position falls in.

    Rebuilt once per tick; queries return items from every cell overlapping
    the query square, in cell order then insertion order, so results are
    deterministic for a given item order.  Callers still filter by exact
    distance.

    Parameters
    ----------
    cell_size : float
        Cell side in metres.  Using the query radius keeps a query to 3x3 cells.
    position_of : callable
        Returns ``(x, y)`` for an item; defaults to ``item.position[:2]``.
    """

    def __init__(self, cell_size: float, position_of: Callable = _planar_position):
        if cell_size <= 0:
            raise ValueError(f"cell_size must be > 0, got {cell_size}")
        self.cell_size = float(cell_size)
        self._position_of = position_of
        self._cells: Dict[Tuple[int, int], List] = defaultdict(list)
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def _cell(self, x: float, y: float) -> Tuple[int, int]:
        return math.floor(x / self.cell_size), math.floor(y / self.cell_size)

    def clear(self) -> None:
        self._cells.clear()
        self._count = 0

    def insert(self, item) -> None:
        x, y = self._position_of(item)
        self._cells[self._cell(x, y)].append(item)
        self._count += 1

    def rebuild(self, items: Iterable) -> None:
        self.clear()
        for item in items:
            self.insert(item)

    def query(self, x: float, y: float, radius: float) -> List:
        """Items in cells overlapping the square of half-side *radius* around ``(x, y)``."""
        min_col, min_row = self._cell(x - radius, y - radius)
        max_col, max_row = self._cell(x + radius, y + radius)
        found = []
        for col in range(min_col, max_col + 1):
            for row in range(min_row, max_row + 1):
                bucket = self._cells.get((col, row))
                if bucket:
                    found.extend(bucket)
        return found
