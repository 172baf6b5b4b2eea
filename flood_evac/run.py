"""
Headless driver: run a scenario package end to end.

A scenario package is a directory holding ``scenario.json`` and, optionally,
local inputs referenced from it (elevation GeoTIFF, roads and buildings
GeoJSON).  Anything not supplied locally is fetched from Overpass.
Outputs go to ``<package>/outputs/<run_label>/``.
"""

from __future__ import annotations

import logging
import os
import time
from typing import List, NamedTuple, Optional, Tuple

from flood_evac.callbacks import NullCallback, SimulationCallback
from flood_evac.config import SimulationConfig
from flood_evac.diagnostics import SimulationMonitor
from flood_evac.elevation import ElevationRaster, terrain_grid
from flood_evac.errors import EmptyNetworkError
from flood_evac.flood import FloodField
from flood_evac.graph import Graph
from flood_evac.logging_setup import configure_simulation_logging, teardown_simulation_logging
from flood_evac.network import (
    OverpassClient,
    build_road_graph,
    load_buildings_geojson,
    load_roads_geojson,
    project_to_local,
)
from flood_evac.population import SpawnDistribution
from flood_evac.simulation import Simulation, SimulationCounts

logger = logging.getLogger(__name__)


class Scenario(NamedTuple):
    bounds: Tuple[float, float, float, float]
    elevation: ElevationRaster
    graph: Graph
    buildings: List[Tuple[float, float]]


def output_directory(package_dir: str, config: SimulationConfig) -> str:
    return os.path.join(package_dir, "outputs", config.run_label)


def load_scenario(package_dir: str, config: SimulationConfig) -> Scenario:
    """Load elevation, roads and buildings for a package, fetching what is not local."""
    elevation = None
    if config.elevation:
        elevation = ElevationRaster.from_geotiff(os.path.join(package_dir, config.elevation))

    bounds = config.bounds
    if bounds is None:
        if elevation is None:
            raise ValueError("scenario.json must give 'bounds' when no elevation raster is supplied")
        bounds = elevation.bounds
        logger.info("Using elevation raster bounds %s", bounds)
    if elevation is None:
        logger.info("No elevation raster; using flat terrain")
        elevation = ElevationRaster.flat(bounds)

    client = None
    if config.roads:
        polylines = load_roads_geojson(os.path.join(package_dir, config.roads))
    else:
        client = OverpassClient(config.overpass_url)
        polylines = client.fetch_roads(bounds)

    if config.buildings:
        buildings = load_buildings_geojson(os.path.join(package_dir, config.buildings))
    else:
        client = client or OverpassClient(config.overpass_url)
        buildings = client.fetch_buildings(bounds)

    graph = build_road_graph(polylines, elevation, bounds)
    return Scenario(tuple(bounds), elevation, graph, buildings)


def build_flood_field(config: SimulationConfig, elevation: ElevationRaster, bounds) -> FloodField:
    """Terrain lattice over *bounds* with the configured water sources registered."""
    min_lon, min_lat, max_lon, max_lat = bounds
    resolution = config.terrain_resolution
    terrain = terrain_grid(elevation, bounds, resolution, config.terrain_offset)
    x0, y0 = project_to_local(min_lon, min_lat, bounds)
    x1, y1 = project_to_local(max_lon, max_lat, bounds)
    flood = FloodField(
        terrain,
        cell_size=((x1 - x0) / resolution, (y1 - y0) / resolution),
        origin=(x0, y0),
        **config.flood_kwargs(),
    )
    for source in config.water_sources:
        row, col = flood.cell_at(*project_to_local(source.lon, source.lat, bounds))
        flood.add_water_source(row, col, source.rate)
        logger.info("Water source at cell (%d, %d), rate %.4f m/s", row, col, source.rate)
    return flood


def _memory_mb() -> float:
    try:
        import psutil
    except ImportError:
        return 0.0
    return psutil.Process().memory_info().rss / (1024 ** 2)


def run_sim(
    package_dir: str,
    callback: Optional[SimulationCallback] = None,
    batch_number: int = 1,
) -> SimulationCounts:
    """
    Run the scenario in *package_dir* to completion.

    Stops when ``duration`` simulated seconds have passed or every agent has
    arrived, failed or otherwise stopped.  Returns the final counts.
    """
    config = SimulationConfig.from_package(package_dir)
    output_dir = output_directory(package_dir, config)
    sim_logger = configure_simulation_logging(output_dir, batch_number)
    callback = callback or NullCallback()
    sim_logger.info("run_sim started: %s (batch %s)", config.run_label, batch_number)

    sim = None
    try:
        callback.on_status("loading data")
        scenario = load_scenario(package_dir, config)
        if len(scenario.graph) == 0:
            callback.on_status("no navigable roads")
            raise EmptyNetworkError(f"No navigable roads inside {scenario.bounds}")
        callback.on_metric("road_nodes", len(scenario.graph))

        callback.on_status("building flood model")
        flood = build_flood_field(config, scenario.elevation, scenario.bounds)
        sim = Simulation(scenario.graph, flood, config, callback)

        for target in config.targets:
            x, y = project_to_local(target.lon, target.lat, scenario.bounds)
            z = scenario.elevation.sample(target.lat, target.lon).height
            sim.add_target(scenario.graph.nearest_node((x, y, z)))
        if config.background_routing:
            sim.planner.wait()

        def locate(lon, lat):
            x, y = project_to_local(lon, lat, scenario.bounds)
            return x, y, scenario.elevation.sample(lat, lon).height

        distribution = SpawnDistribution(scenario.bounds, scenario.buildings, config.spawn_grid_size)
        sim.spawn_agents(config.agent_count, distribution=distribution, locate=locate)

        monitor = SimulationMonitor(sim, output_dir, batch_number, config.run_label, config)
        sim.start()
        started = time.time()
        while sim.elapsed < config.duration and not sim.is_finished:
            sim.tick(config.frame_dt)
            if monitor.due():
                rec = monitor.record(time.time() - started, _memory_mb())
                percentage_done = round(min(sim.elapsed / config.duration, 1.0) * 100, 1)
                callback.on_status(f"{percentage_done}%")
                sim_logger.info("%.1f%% | %s", percentage_done, monitor.format_log_suffix(rec))
        sim.pause()

        monitor.record(time.time() - started, _memory_mb())
        monitor.finalize()
        callback.on_file("diagnostics", monitor.csv_path)
        callback.on_file("summary", monitor.summary_path)

        counts = sim.counts
        callback.on_metric("arrived", counts.arrived)
        callback.on_metric("flooded", counts.flooded)
        callback.on_status("complete")
        sim_logger.info(
            "finished run %s: %d/%d arrived, %d flooded, %d idle, %d failed",
            config.run_label, counts.arrived, counts.total, counts.flooded, counts.idle, counts.failed,
        )
        return counts
    except Exception:
        callback.on_status("error")
        sim_logger.exception("run_sim failed for %s", package_dir)
        raise
    finally:
        if sim is not None:
            sim.close()
        teardown_simulation_logging()
