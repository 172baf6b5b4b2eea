"""Shared fixtures and auto-skip logic for the flood_evac test suite."""

import json
import os
import shutil

import numpy as np
import pytest

from flood_evac._imports import geo_available
from flood_evac.graph import Graph

FIXTURE_DIR = os.path.join(os.path.dirname(__file__), "data", "minimal_package")


# ── Geo stack detection ───────────────────────────────────────────────

def pytest_collection_modifyitems(config, items):
    if geo_available():
        return
    skip = pytest.mark.skip(reason="geo deps (shapely/rasterio) not installed")
    for item in items:
        if "requires_geo" in item.keywords:
            item.add_marker(skip)


# ── Graph helpers ─────────────────────────────────────────────────────

def connect(graph, a, b, weight=None):
    """Add edges both ways between *a* and *b*, weighted by distance unless given."""
    weight = a.distance_to(b) if weight is None else weight
    graph.add_edge(a, b, weight)
    graph.add_edge(b, a, weight)


@pytest.fixture
def line_graph():
    """A(0,0,0) - B(10,0,0) - C(20,0,0), bidirectional, weights 10."""
    graph = Graph()
    a = graph.add_node((0.0, 0.0, 0.0))
    b = graph.add_node((10.0, 0.0, 0.0))
    c = graph.add_node((20.0, 0.0, 0.0))
    connect(graph, a, b)
    connect(graph, b, c)
    return graph, a, b, c


@pytest.fixture
def grid_graph():
    """5x5 lattice with 50 m spacing, bidirectional edges."""
    graph = Graph()
    nodes = {}
    for i in range(5):
        for j in range(5):
            nodes[i, j] = graph.add_node((i * 50.0, j * 50.0, 0.0))
    for i in range(5):
        for j in range(5):
            if i + 1 < 5:
                connect(graph, nodes[i, j], nodes[i + 1, j])
            if j + 1 < 5:
                connect(graph, nodes[i, j], nodes[i, j + 1])
    return graph, nodes


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


# ── Scenario packages ─────────────────────────────────────────────────

@pytest.fixture
def scenario_package(tmp_path):
    """Create a minimal scenario package (config only) for unit tests."""
    (tmp_path / "inputs").mkdir()
    (tmp_path / "scenario.json").write_text(json.dumps({
        "format_version": "1.0",
        "name": "Unit Test",
        "bounds": [151.0, -33.0, 151.01, -32.99],
        "duration": 600,
        "agent_count": 10,
    }))
    return tmp_path


@pytest.fixture
def minimal_package_copy(tmp_path):
    """Copy of tests/data/minimal_package (outputs are written inside the package)."""
    dst = tmp_path / "minimal_package"
    shutil.copytree(FIXTURE_DIR, str(dst))
    return dst


@pytest.fixture
def small_geotiff(tmp_path):
    """Create a tiny 10x10 lon/lat GeoTIFF sloping up to the east."""
    rasterio = pytest.importorskip("rasterio")
    from rasterio.transform import from_bounds

    path = tmp_path / "elevation.tif"
    data = np.tile(np.arange(10, dtype=np.float32) + 50.0, (10, 1))
    transform = from_bounds(151.0, -33.0, 151.01, -32.99, 10, 10)

    with rasterio.open(
        str(path), "w", driver="GTiff",
        height=10, width=10, count=1, dtype="float32",
        crs="EPSG:4326", transform=transform,
    ) as dst:
        dst.write(data, 1)
    return path
