"""Tests for flood_evac.run: scenario loading and the headless driver."""

import json
import os
import shutil

import numpy as np
import pytest

from flood_evac.callbacks import RecordingCallback
from flood_evac.config import SimulationConfig
from flood_evac.elevation import ElevationRaster
from flood_evac.errors import EmptyNetworkError
from flood_evac.run import build_flood_field, load_scenario, output_directory, run_sim

BOUNDS = (151.0, -33.0, 151.01, -32.99)


def _write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


class TestOutputDirectory:
    def test_under_package_outputs(self, tmp_path):
        config = SimulationConfig(name="Low Road")
        assert output_directory(str(tmp_path), config) == os.path.join(str(tmp_path), "outputs", "run_low_road")


class TestBuildFloodField:
    def test_grid_spans_bounds(self):
        config = SimulationConfig(
            bounds=BOUNDS,
            terrain_resolution=10,
            water_sources=[{"lon": 151.005, "lat": -32.995, "rate": 0.01}],
        )
        flood = build_flood_field(config, ElevationRaster.flat(BOUNDS), BOUNDS)
        assert flood.shape == (11, 11)
        np.testing.assert_allclose(flood.terrain, config.terrain_offset)
        assert flood.water_sources[0][:2] == (5, 5)
        assert flood.water_sources[0].rate == 0.01
        # corners of the bounds map to corner cells
        assert flood.cell_at(*flood.cell_centre(0, 0)) == (0, 0)
        assert flood.cell_size[0] == pytest.approx(flood.cell_size[1] * 0.8387, rel=0.01)

    def test_flood_parameters_from_config(self):
        config = SimulationConfig(bounds=BOUNDS, terrain_resolution=4, max_substeps=3, friction=0.2)
        flood = build_flood_field(config, ElevationRaster.flat(BOUNDS), BOUNDS)
        assert flood.max_substeps == 3
        assert flood.friction == 0.2


@pytest.mark.requires_geo
class TestLoadScenario:
    def test_local_inputs(self, minimal_package_copy):
        config = SimulationConfig.from_package(str(minimal_package_copy))
        scenario = load_scenario(str(minimal_package_copy), config)
        assert scenario.bounds == BOUNDS
        # two joined streets survive, the island service road is pruned
        assert len(scenario.graph) == 7
        assert scenario.graph.edge_count() == 12
        assert len(scenario.buildings) == 2

    def test_bounds_from_elevation(self, minimal_package_copy, small_geotiff):
        shutil.copy(str(small_geotiff), str(minimal_package_copy / "inputs" / "elevation.tif"))
        scenario_path = minimal_package_copy / "scenario.json"
        data = json.loads(scenario_path.read_text())
        del data["bounds"]
        data["elevation"] = "inputs/elevation.tif"
        scenario_path.write_text(json.dumps(data))

        config = SimulationConfig.from_package(str(minimal_package_copy))
        scenario = load_scenario(str(minimal_package_copy), config)
        assert scenario.bounds == pytest.approx(BOUNDS)
        heights = [float(node.position[2]) for node in scenario.graph]
        assert max(heights) > min(heights)

    def test_requires_bounds_without_elevation(self, tmp_path):
        config = SimulationConfig()
        with pytest.raises(ValueError, match="bounds"):
            load_scenario(str(tmp_path), config)


@pytest.mark.requires_geo
class TestRunSim:
    def test_minimal_package(self, minimal_package_copy):
        callback = RecordingCallback()
        counts = run_sim(str(minimal_package_copy), callback=callback)
        assert counts.total == 5
        assert counts.arrived + counts.active + counts.idle + counts.failed == 5
        assert callback.statuses[0] == "loading data"
        assert callback.statuses[-1] == "complete"
        assert callback.metrics["road_nodes"] == 7
        assert callback.metrics["agents_spawned"] == 5

        output_dir = minimal_package_copy / "outputs" / "run_minimal_package"
        assert callback.files["summary"] == str(output_dir / "run_summary_1.json")
        summary = json.loads((output_dir / "run_summary_1.json").read_text())
        assert summary["run"]["run_label"] == "run_minimal_package"
        assert summary["evacuation"]["agents"] == 5
        assert summary["network"]["n_nodes"] == 7
        assert summary["run"]["outcome"] in ("completed", "timed_out")

    def test_seeded_runs_repeat(self, minimal_package_copy):
        first = run_sim(str(minimal_package_copy))
        second = run_sim(str(minimal_package_copy))
        assert first == second

    def test_log_file_written(self, minimal_package_copy):
        run_sim(str(minimal_package_copy), batch_number=2)
        log = minimal_package_copy / "outputs" / "run_minimal_package" / "flood_evac_2.log"
        assert "run_sim started" in log.read_text()

    def test_empty_network(self, tmp_path):
        empty = {"type": "FeatureCollection", "features": []}
        _write_json(tmp_path / "inputs" / "roads.geojson", empty)
        _write_json(tmp_path / "inputs" / "buildings.geojson", empty)
        _write_json(tmp_path / "scenario.json", {
            "bounds": list(BOUNDS),
            "roads": "inputs/roads.geojson",
            "buildings": "inputs/buildings.geojson",
        })
        callback = RecordingCallback()
        with pytest.raises(EmptyNetworkError):
            run_sim(str(tmp_path), callback=callback)
        assert "no navigable roads" in callback.statuses
        assert callback.statuses[-1] == "error"
