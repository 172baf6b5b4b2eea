"""
Road and building suppliers, and the road-graph builder.

Roads and buildings come either from the Overpass API or from local GeoJSON
files.  Every failure (network, HTTP status, undecodable or malformed payload,
unreadable file) raises ``DataAcquisitionError``; an empty result is only ever
returned when the source genuinely has nothing in the area.

Positions are projected from lon/lat to local metres with an
equirectangular projection centred on the bounding box::

    x = (lon - lon_centre) * 111320 * cos(lat_centre)
    y = (lat - lat_centre) * 111132
"""

from __future__ import annotations

import json
import logging
import math
from typing import Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from flood_evac import defaults
from flood_evac._imports import import_optional
from flood_evac.errors import DataAcquisitionError
from flood_evac.graph import Graph

logger = logging.getLogger(__name__)

# Raised by payloads whose structure is not what the source promises.
_MALFORMED = (KeyError, IndexError, TypeError, AttributeError, ValueError)


class RoadPolyline(NamedTuple):
    """One road way: ordered ``(lon, lat)`` vertices plus its highway class."""

    coords: List[Tuple[float, float]]
    highway: Optional[str] = None
    osm_id: Optional[int] = None


def _scales(bounds: Sequence[float]) -> Tuple[float, float, float, float]:
    min_lon, min_lat, max_lon, max_lat = bounds
    lon_centre = (min_lon + max_lon) / 2.0
    lat_centre = (min_lat + max_lat) / 2.0
    lon_scale = defaults.METRES_PER_DEGREE_LON_EQUATOR * math.cos(math.radians(lat_centre))
    return lon_centre, lat_centre, lon_scale, defaults.METRES_PER_DEGREE_LAT


def project_to_local(lon: float, lat: float, bounds: Sequence[float]) -> Tuple[float, float]:
    """Lon/lat to metres east/north of the centre of *bounds*."""
    lon_centre, lat_centre, lon_scale, lat_scale = _scales(bounds)
    return (lon - lon_centre) * lon_scale, (lat - lat_centre) * lat_scale


def local_to_lonlat(x: float, y: float, bounds: Sequence[float]) -> Tuple[float, float]:
    """Inverse of ``project_to_local``."""
    lon_centre, lat_centre, lon_scale, lat_scale = _scales(bounds)
    return lon_centre + x / lon_scale, lat_centre + y / lat_scale


# ----------------------------------------------------------------------
# Overpass
# ----------------------------------------------------------------------

class OverpassClient:
    """
    Minimal Overpass API client.

    Parameters
    ----------
    url : str
        Interpreter endpoint.
    timeout : float
        Request timeout in seconds, also passed to the query.
    session : requests.Session, optional
    """

    def __init__(
        self,
        url: str = defaults.OVERPASS_URL,
        timeout: float = defaults.OVERPASS_TIMEOUT_S,
        session=None,
    ):
        self._requests = import_optional("requests")
        self.url = url
        self.timeout = timeout
        self.session = session if session is not None else self._requests.Session()

    @staticmethod
    def _bbox(bounds: Sequence[float]) -> str:
        min_lon, min_lat, max_lon, max_lat = bounds
        return f"{min_lat},{min_lon},{max_lat},{max_lon}"

    def roads_query(self, bounds: Sequence[float]) -> str:
        classes = "|".join(defaults.ROAD_CLASSES)
        return (
            f"[out:json][timeout:{int(self.timeout)}];"
            f'(way["highway"]["highway"~"^({classes})$"]({self._bbox(bounds)}););'
            "out geom;"
        )

    def buildings_query(self, bounds: Sequence[float]) -> str:
        excluded = "|".join(defaults.EXCLUDED_BUILDING_TYPES)
        bbox = self._bbox(bounds)
        return (
            f"[out:json][timeout:{int(self.timeout)}];"
            f'(way[building][building!~"^({excluded})$"]({bbox});'
            f'relation[building][building!~"^({excluded})$"]({bbox}););'
            "out center;"
        )

    def _elements(self, query: str) -> list:
        try:
            response = self.session.get(self.url, params={"data": query}, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except self._requests.RequestException as exc:
            raise DataAcquisitionError(f"Overpass request to {self.url} failed: {exc}") from exc
        except ValueError as exc:
            raise DataAcquisitionError(f"Overpass returned an undecodable response: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("elements"), list):
            raise DataAcquisitionError("Overpass response has no 'elements' list")
        return payload["elements"]

    def fetch_roads(self, bounds: Sequence[float]) -> List[RoadPolyline]:
        polylines = []
        for element in self._elements(self.roads_query(bounds)):
            try:
                geometry = element.get("geometry") or []
                if element.get("type") != "way" or len(geometry) < 2:
                    continue
                polylines.append(RoadPolyline(
                    coords=[(float(point["lon"]), float(point["lat"])) for point in geometry],
                    highway=(element.get("tags") or {}).get("highway"),
                    osm_id=element.get("id"),
                ))
            except _MALFORMED as exc:
                raise DataAcquisitionError(f"Malformed Overpass way: {exc!r}") from exc
        logger.info("Fetched %d road ways from Overpass", len(polylines))
        return polylines

    def fetch_buildings(self, bounds: Sequence[float]) -> List[Tuple[float, float]]:
        centres = []
        for element in self._elements(self.buildings_query(bounds)):
            try:
                centre = element.get("center")
                if element.get("type") in ("way", "relation") and centre:
                    centres.append((float(centre["lon"]), float(centre["lat"])))
            except _MALFORMED as exc:
                raise DataAcquisitionError(f"Malformed Overpass building: {exc!r}") from exc
        logger.info("Fetched %d buildings from Overpass", len(centres))
        return centres


# ----------------------------------------------------------------------
# GeoJSON
# ----------------------------------------------------------------------

def _read_features(path: str) -> list:
    try:
        with open(path) as f:
            collection = json.load(f)
    except (OSError, ValueError) as exc:
        raise DataAcquisitionError(f"Could not read GeoJSON {path}: {exc}") from exc
    if not isinstance(collection, dict) or collection.get("type") != "FeatureCollection":
        raise DataAcquisitionError(f"{path} is not a GeoJSON FeatureCollection")
    features = collection.get("features", [])
    if not isinstance(features, list):
        raise DataAcquisitionError(f"{path}: 'features' is not a list")
    return features


def _read_shapes(path: str) -> Iterator[Tuple[dict, object]]:
    """Yield ``(properties, shapely geometry)`` for each feature in the collection at *path*."""
    geometry = import_optional("shapely.geometry")
    shapely_errors = import_optional("shapely.errors")
    for index, feature in enumerate(_read_features(path)):
        try:
            properties = dict(feature.get("properties") or {})
            shape = geometry.shape(feature["geometry"])
        except (*_MALFORMED, shapely_errors.ShapelyError) as exc:
            raise DataAcquisitionError(f"{path}: feature {index} is malformed: {exc!r}") from exc
        yield properties, shape


def load_roads_geojson(path: str, road_classes: Optional[Iterable[str]] = None) -> List[RoadPolyline]:
    """
    Read LineString and MultiLineString features as road polylines.

    When *road_classes* is given, features whose ``highway`` property is set
    and not in it are skipped.
    """
    allowed = set(road_classes) if road_classes is not None else None
    polylines = []
    for properties, shape in _read_shapes(path):
        highway = properties.get("highway")
        if allowed is not None and highway is not None and highway not in allowed:
            continue
        if shape.geom_type == "LineString":
            lines = [shape]
        elif shape.geom_type == "MultiLineString":
            lines = list(shape.geoms)
        else:
            continue
        for line in lines:
            coords = [(x, y) for x, y, *_ in line.coords]
            if len(coords) >= 2:
                polylines.append(RoadPolyline(coords, highway, properties.get("id")))
    logger.info("Loaded %d road polylines from %s", len(polylines), path)
    return polylines


def load_buildings_geojson(path: str) -> List[Tuple[float, float]]:
    """Building centroids as ``(lon, lat)``."""
    excluded = set(defaults.EXCLUDED_BUILDING_TYPES)
    centres = []
    for properties, shape in _read_shapes(path):
        if properties.get("building") in excluded:
            continue
        if shape.is_empty:
            continue
        centroid = shape.centroid
        centres.append((centroid.x, centroid.y))
    logger.info("Loaded %d buildings from %s", len(centres), path)
    return centres


# ----------------------------------------------------------------------
# Graph construction
# ----------------------------------------------------------------------

def build_road_graph(
    polylines: Iterable[RoadPolyline],
    elevation,
    bounds: Sequence[float],
    key_decimals: int = defaults.KEY_DECIMALS,
) -> Graph:
    """
    Build the routable graph from road polylines.

    Each pair of consecutive vertices becomes two directed edges weighted by
    the 3D distance between the projected ``(x, y, height)`` nodes.  The
    graph is then pruned to its largest connected component.
    """
    graph = Graph(key_decimals=key_decimals)
    segments = 0
    for polyline in polylines:
        previous = None
        for lon, lat in polyline.coords:
            x, y = project_to_local(lon, lat, bounds)
            node = graph.add_node((x, y, elevation.sample(lat, lon).height))
            if previous is not None and previous is not node:
                weight = previous.distance_to(node)
                graph.add_edge(previous, node, weight)
                graph.add_edge(node, previous, weight)
                segments += 1
            previous = node
    logger.info("Road graph: %d nodes from %d segments", len(graph), segments)
    graph.prune_to_largest_component()
    return graph
