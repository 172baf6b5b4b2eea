#!/usr/bin/env python3
"""
Prepare a synthetic demo scenario package for flood-evac.

Writes a small town to examples/demo/: a street grid, a house on every block,
a GeoTIFF valley that slopes down towards a river on the southern edge, and a
scenario.json with one evacuation point on the high ground.  No network access
is needed to run the result.

Usage:
    python scripts/prepare_demo_scenario.py [--out examples/demo] [--streets 6]
"""

import argparse
import json
from pathlib import Path

import numpy as np

# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------
BOUNDS = (151.0, -33.0, 151.01, -32.99)  # west, south, east, north
DEM_SIZE = 100  # pixels per side
VALLEY_RISE_M = 25.0  # south edge to north edge
RIVER_ROWS = 5  # southernmost pixel rows cut 2 m below the valley floor


def grid_lines(n_streets: int) -> tuple[list[float], list[float]]:
    """Evenly spaced street positions inside the bounds, leaving a margin."""
    west, south, east, north = BOUNDS
    margin = 0.1
    lons = np.linspace(west + margin * (east - west), east - margin * (east - west), n_streets)
    lats = np.linspace(south + margin * (north - south), north - margin * (north - south), n_streets)
    return [round(float(v), 6) for v in lons], [round(float(v), 6) for v in lats]


def _feature(geometry: dict, **properties) -> dict:
    return {"type": "Feature", "properties": properties, "geometry": geometry}


def _collection(features: list) -> dict:
    return {"type": "FeatureCollection", "features": features}


# ---------------------------------------------------------------------------
# Step 1: roads: one LineString per street, vertices at every crossing
# ---------------------------------------------------------------------------
def make_roads(lons: list[float], lats: list[float]) -> dict:
    features = []
    osm_id = 1
    for i, lat in enumerate(lats):
        highway = "secondary" if i == len(lats) // 2 else "residential"
        coords = [[lon, lat] for lon in lons]
        features.append(_feature({"type": "LineString", "coordinates": coords}, highway=highway, osm_id=osm_id))
        osm_id += 1
    for lon in lons:
        coords = [[lon, lat] for lat in lats]
        features.append(_feature({"type": "LineString", "coordinates": coords}, highway="residential", osm_id=osm_id))
        osm_id += 1
    return _collection(features)


# ---------------------------------------------------------------------------
# Step 2: buildings: a square house in the middle of every block
# ---------------------------------------------------------------------------
def make_buildings(lons: list[float], lats: list[float]) -> dict:
    half = 0.0001
    features = []
    for lon_a, lon_b in zip(lons, lons[1:]):
        for lat_a, lat_b in zip(lats, lats[1:]):
            cx, cy = (lon_a + lon_b) / 2, (lat_a + lat_b) / 2
            ring = [
                [cx - half, cy - half], [cx + half, cy - half],
                [cx + half, cy + half], [cx - half, cy + half],
                [cx - half, cy - half],
            ]
            features.append(_feature({"type": "Polygon", "coordinates": [ring]}, building="house"))
    return _collection(features)


# ---------------------------------------------------------------------------
# Step 3: DEM: valley rising north, river channel along the south edge
# ---------------------------------------------------------------------------
def make_dem(path: Path) -> None:
    import rasterio
    from rasterio.transform import from_bounds

    # row 0 is the northern edge in a north-up raster
    rise = np.linspace(VALLEY_RISE_M, 0.0, DEM_SIZE, dtype=np.float32)
    data = np.repeat(rise[:, None], DEM_SIZE, axis=1)
    data[-RIVER_ROWS:, :] -= 2.0

    transform = from_bounds(*BOUNDS, DEM_SIZE, DEM_SIZE)
    with rasterio.open(
        path, "w", driver="GTiff", height=DEM_SIZE, width=DEM_SIZE, count=1,
        dtype="float32", crs="EPSG:4326", transform=transform, nodata=-9999.0,
    ) as dst:
        dst.write(data, 1)


# ---------------------------------------------------------------------------
# Step 4: scenario.json
# ---------------------------------------------------------------------------
def make_scenario(lons: list[float], lats: list[float]) -> dict:
    west, south, east, north = BOUNDS
    return {
        "format_version": "1.0",
        "name": "Demo Valley",
        "description": "Synthetic street grid evacuating uphill away from a flooding river",
        "duration": 900,
        "frame_dt": 0.5,
        "seed": 7,
        "agent_count": 150,
        "reaction_time": [0, 30],
        "record_interval": 30,
        "terrain_resolution": 40,
        "elevation": "inputs/dem.tif",
        "roads": "inputs/roads.geojson",
        "buildings": "inputs/buildings.geojson",
        "targets": [{"lon": lons[len(lons) // 2], "lat": lats[-1]}],
        "water_sources": [
            {"lon": round(west + 0.2 * (east - west), 6), "lat": south, "rate": 0.02},
            {"lon": round(west + 0.8 * (east - west), 6), "lat": south, "rate": 0.02},
        ],
    }


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--out", default="examples/demo", help="Package directory to write")
    parser.add_argument("--streets", type=int, default=6, help="Streets in each direction")
    args = parser.parse_args()

    out_dir = Path(args.out)
    inputs = out_dir / "inputs"
    inputs.mkdir(parents=True, exist_ok=True)
    lons, lats = grid_lines(args.streets)

    print("Writing roads…")
    (inputs / "roads.geojson").write_text(json.dumps(make_roads(lons, lats), indent=1))
    print("Writing buildings…")
    (inputs / "buildings.geojson").write_text(json.dumps(make_buildings(lons, lats), indent=1))
    print("Writing DEM…")
    make_dem(inputs / "dem.tif")
    (out_dir / "scenario.json").write_text(json.dumps(make_scenario(lons, lats), indent=2))

    print(f"Done. Run it with: flood-evac run {out_dir}")


if __name__ == "__main__":
    main()
