"""
Terrain elevation sampling from a lon/lat raster.

Heights are bilinear between the four pixels around a point and are
reported relative to the raster minimum, so the lowest ground sits at 0.
``height()`` raises ``OutOfBoundsError`` when the 2x2 neighbourhood leaves
the raster; ``sample()`` instead falls back to the nearest pixel and says so.

Usage::

    raster = ElevationRaster.from_geotiff("inputs/elevation.tif")
    raster.height(lat=-32.93, lon=151.76)
    grid = terrain_grid(raster, bounds, resolution=200, offset=-10.0)
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Sequence, Tuple

import numpy as np

from flood_evac import defaults
from flood_evac._imports import import_optional
from flood_evac.errors import DataAcquisitionError, OutOfBoundsError

logger = logging.getLogger(__name__)


class ElevationSample(NamedTuple):
    height: float
    in_bounds: bool


class ElevationRaster:
    """
    Parameters
    ----------
    data : 2D array
        Pixel heights, row 0 at the northern edge.  NaN marks nodata.
    west, north : float
        Lon/lat of the top-left corner of pixel ``(0, 0)``.
    x_res, y_res : float
        Pixel size in degrees; ``y_res`` is negative for north-up rasters.
    """

    def __init__(self, data, west: float, north: float, x_res: float, y_res: float):
        data = np.array(data, dtype=float)
        if data.ndim != 2 or data.size == 0:
            raise ValueError(f"Elevation data must be a non-empty 2D array, got shape {data.shape}")
        valid = np.isfinite(data)
        if not valid.any():
            raise ValueError("Elevation raster has no valid pixels")
        self.min_height = float(data[valid].min())
        # nodata reads as the lowest ground
        data[~valid] = self.min_height
        self.data = data
        self.west = float(west)
        self.north = float(north)
        self.x_res = float(x_res)
        self.y_res = float(y_res)

    def __repr__(self) -> str:
        rows, cols = self.data.shape
        return f"ElevationRaster({rows}x{cols}, bounds={self.bounds})"

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """``(west, south, east, north)`` in degrees."""
        rows, cols = self.data.shape
        east = self.west + cols * self.x_res
        south = self.north + rows * self.y_res
        return (min(self.west, east), min(south, self.north), max(self.west, east), max(south, self.north))

    @classmethod
    def from_array(cls, data, bounds: Sequence[float]) -> "ElevationRaster":
        """Wrap a north-up array covering ``(min_lon, min_lat, max_lon, max_lat)``."""
        data = np.asarray(data, dtype=float)
        min_lon, min_lat, max_lon, max_lat = bounds
        rows, cols = data.shape
        return cls(
            data,
            west=min_lon,
            north=max_lat,
            x_res=(max_lon - min_lon) / cols,
            y_res=-(max_lat - min_lat) / rows,
        )

    @classmethod
    def flat(cls, bounds: Sequence[float]) -> "ElevationRaster":
        """Level ground over *bounds*, with a one-pixel margin so the edges interpolate."""
        min_lon, min_lat, max_lon, max_lat = bounds
        lon_span = max_lon - min_lon
        lat_span = max_lat - min_lat
        return cls(
            np.zeros((4, 4)),
            west=min_lon - lon_span,
            north=max_lat + lat_span,
            x_res=lon_span,
            y_res=-lat_span,
        )

    @classmethod
    def from_geotiff(cls, path: str) -> "ElevationRaster":
        """Read band 1 of a GeoTIFF in geographic (lon/lat) coordinates."""
        rasterio = import_optional("rasterio")
        try:
            with rasterio.open(path) as dataset:
                data = dataset.read(1, masked=True).astype(float).filled(np.nan)
                transform = dataset.transform
        except (OSError, rasterio.errors.RasterioError) as exc:
            raise DataAcquisitionError(f"Could not read elevation raster {path}: {exc}") from exc
        raster = cls(data, west=transform.c, north=transform.f, x_res=transform.a, y_res=transform.e)
        logger.info("Loaded elevation %s: %dx%d pixels, min %.1fm", path, *data.shape, raster.min_height)
        return raster

    def _interpolate(self, lat, lon):
        lat = np.asarray(lat, dtype=float)
        lon = np.asarray(lon, dtype=float)
        rows, cols = self.data.shape
        col = (lon - self.west) / self.x_res
        row = (lat - self.north) / self.y_res
        x0 = np.floor(col).astype(int)
        y0 = np.floor(row).astype(int)
        inside = (x0 >= 0) & (x0 + 1 < cols) & (y0 >= 0) & (y0 + 1 < rows)

        xc = np.clip(x0, 0, max(cols - 2, 0))
        yc = np.clip(y0, 0, max(rows - 2, 0))
        x1 = np.minimum(xc + 1, cols - 1)
        y1 = np.minimum(yc + 1, rows - 1)
        fx = np.clip(col - xc, 0.0, 1.0)
        fy = np.clip(row - yc, 0.0, 1.0)
        bilinear = (
            self.data[yc, xc] * (1 - fx) * (1 - fy)
            + self.data[yc, x1] * fx * (1 - fy)
            + self.data[y1, xc] * (1 - fx) * fy
            + self.data[y1, x1] * fx * fy
        )
        nearest = self.data[
            np.clip(np.floor(row + 0.5).astype(int), 0, rows - 1),
            np.clip(np.floor(col + 0.5).astype(int), 0, cols - 1),
        ]
        heights = np.where(inside, bilinear, nearest) - self.min_height
        return heights, inside

    def height(self, lat: float, lon: float) -> float:
        """Relative height at a point; raises ``OutOfBoundsError`` off the raster."""
        heights, inside = self._interpolate(lat, lon)
        if not bool(inside):
            raise OutOfBoundsError(f"Point (lat={lat}, lon={lon}) is outside the elevation raster")
        return float(heights)

    def sample(self, lat: float, lon: float) -> ElevationSample:
        """Relative height, falling back to the nearest pixel off the raster."""
        heights, inside = self._interpolate(lat, lon)
        return ElevationSample(float(heights), bool(inside))

    def sample_grid(self, lats, lons) -> np.ndarray:
        """Vectorised ``sample().height`` over broadcast arrays of lat/lon."""
        heights, inside = self._interpolate(lats, lons)
        if not np.all(inside):
            logger.debug("%d grid points fell back to the nearest pixel", int(np.size(inside) - np.count_nonzero(inside)))
        return heights


def terrain_grid(
    elevation: ElevationRaster,
    bounds: Sequence[float],
    resolution: int = defaults.TERRAIN_RESOLUTION,
    offset: float = defaults.TERRAIN_OFFSET_M,
) -> np.ndarray:
    """
    Terrain heights on a ``(resolution + 1, resolution + 1)`` lattice spanning *bounds*.

    Row 0 is the southern edge and column 0 the western edge, matching
    ``FloodField`` cell addressing.
    """
    min_lon, min_lat, max_lon, max_lat = bounds
    steps = np.linspace(0.0, 1.0, resolution + 1)
    lats = min_lat + steps * (max_lat - min_lat)
    lons = min_lon + steps * (max_lon - min_lon)
    lat_grid, lon_grid = np.meshgrid(lats, lons, indexing="ij")
    return elevation.sample_grid(lat_grid, lon_grid) + offset
