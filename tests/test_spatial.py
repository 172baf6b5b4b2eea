"""Tests for flood_evac.spatial.SpatialGrid."""

from types import SimpleNamespace

import numpy as np
import pytest

from flood_evac.spatial import SpatialGrid


def _item(x, y):
    return SimpleNamespace(position=np.array([x, y, 0.0]))


class TestSpatialGrid:
    def test_rejects_non_positive_cell_size(self):
        with pytest.raises(ValueError):
            SpatialGrid(0.0)

    def test_query_finds_nearby_items(self):
        grid = SpatialGrid(30.0)
        near = _item(5.0, 5.0)
        also_near = _item(-20.0, 10.0)
        far = _item(200.0, 200.0)
        grid.rebuild([near, also_near, far])
        found = grid.query(0.0, 0.0, 30.0)
        assert near in found
        assert also_near in found
        assert far not in found

    def test_query_returns_superset_of_radius(self):
        grid = SpatialGrid(10.0)
        items = [_item(x, y) for x in range(-50, 51, 7) for y in range(-50, 51, 7)]
        grid.rebuild(items)
        found = grid.query(3.0, -4.0, 15.0)
        for item in items:
            if np.hypot(item.position[0] - 3.0, item.position[1] + 4.0) <= 15.0:
                assert item in found

    def test_insertion_order_within_cell(self):
        grid = SpatialGrid(100.0)
        first, second = _item(1.0, 1.0), _item(2.0, 2.0)
        grid.rebuild([first, second])
        assert grid.query(0.0, 0.0, 1.0) == [first, second]

    def test_rebuild_replaces_contents(self):
        grid = SpatialGrid(10.0)
        old = _item(0.0, 0.0)
        grid.insert(old)
        assert len(grid) == 1
        new = _item(1.0, 1.0)
        grid.rebuild([new])
        assert len(grid) == 1
        assert grid.query(0.0, 0.0, 5.0) == [new]

    def test_clear(self):
        grid = SpatialGrid(10.0)
        grid.rebuild([_item(0.0, 0.0), _item(3.0, 3.0)])
        grid.clear()
        assert len(grid) == 0
        assert grid.query(0.0, 0.0, 50.0) == []

    def test_custom_position_accessor(self):
        grid = SpatialGrid(5.0, position_of=lambda point: point)
        grid.rebuild([(0.0, 0.0), (100.0, 0.0)])
        assert grid.query(1.0, 1.0, 2.0) == [(0.0, 0.0)]
