"""Tests for flood_evac.population.SpawnDistribution."""

import numpy as np
import pytest

from flood_evac.population import SpawnDistribution

BOUNDS = (0.0, 0.0, 10.0, 10.0)


class TestGrid:
    def test_building_lands_in_its_cell(self):
        dist = SpawnDistribution(BOUNDS, [(2.5, 7.5)], grid_size=10)
        assert dist.counts[7, 2] == 1
        assert dist.total_buildings == 1

    def test_buildings_outside_bounds_ignored(self):
        dist = SpawnDistribution(BOUNDS, [(2.5, 7.5), (-1.0, 5.0), (5.0, 10.5)], grid_size=10)
        assert dist.total_buildings == 1

    def test_no_buildings(self):
        dist = SpawnDistribution(BOUNDS, [], grid_size=4)
        assert dist.total_buildings == 0
        assert dist.counts.shape == (4, 4)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            SpawnDistribution(BOUNDS, grid_size=0)
        with pytest.raises(ValueError):
            SpawnDistribution((1.0, 0.0, 1.0, 5.0))


class TestSampling:
    def test_only_occupied_cells_sampled(self, rng):
        dist = SpawnDistribution(BOUNDS, [(3.5, 6.5)] * 5, grid_size=10)
        points = dist.sample_many(rng, 200)
        assert points.shape == (200, 2)
        assert np.all((points[:, 0] >= 3.0) & (points[:, 0] < 4.0))
        assert np.all((points[:, 1] >= 6.0) & (points[:, 1] < 7.0))

    def test_cells_weighted_by_building_count(self, rng):
        buildings = [(0.5, 0.5)] + [(9.5, 9.5)] * 3
        dist = SpawnDistribution(BOUNDS, buildings, grid_size=10)
        points = dist.sample_many(rng, 4000)
        east = np.mean(points[:, 0] >= 9.0)
        assert east == pytest.approx(0.75, abs=0.03)

    def test_empty_distribution_samples_whole_box(self, rng):
        dist = SpawnDistribution((151.0, -33.0, 151.01, -32.99), grid_size=5)
        points = dist.sample_many(rng, 500)
        assert np.all((points[:, 0] >= 151.0) & (points[:, 0] <= 151.01))
        assert np.all((points[:, 1] >= -33.0) & (points[:, 1] <= -32.99))
        # spread over the box, not piled in one cell
        assert points[:, 0].std() > 0.002

    def test_seeded_draws_repeat(self):
        dist = SpawnDistribution(BOUNDS, [(1.0, 1.0), (8.0, 3.0)], grid_size=10)
        first = dist.sample_many(np.random.default_rng(5), 10)
        second = dist.sample_many(np.random.default_rng(5), 10)
        np.testing.assert_array_equal(first, second)
