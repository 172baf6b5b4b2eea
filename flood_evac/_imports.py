"""
Lazy imports for the ``sim`` extra.

The simulation core needs only numpy and pydantic.  Reading GeoTIFF
elevation, GeoJSON geometry and fetching OpenStreetMap data pull in
rasterio, shapely and requests; those are imported on first use so a bare
install can still build graphs and run synthetic scenarios.
"""

from __future__ import annotations

import importlib
from importlib.metadata import PackageNotFoundError, distribution

# top-level import name -> (pip extra, what needs it)
_OPTIONAL = {
    "rasterio": ("sim", "reading elevation GeoTIFFs"),
    "shapely": ("sim", "loading GeoJSON roads and buildings"),
    "requests": ("sim", "fetching OpenStreetMap data from Overpass"),
    "psutil": ("sim", "memory diagnostics"),
    "pytest": ("test", "running the test suite"),
}


def _installed(top_level: str) -> bool:
    try:
        distribution(top_level)
    except PackageNotFoundError:
        return False
    return True


def import_optional(module_name: str, *, extra: str | None = None):
    """
    Import *module_name*, or raise an ImportError naming the pip extra.

    ``extra`` overrides the extra looked up from the top-level package.  A
    package that is installed but fails to import (rasterio without its GDAL
    libraries, say) re-raises with the underlying error instead.
    """
    try:
        return importlib.import_module(module_name)
    except ImportError as exc:
        top_level = module_name.split(".")[0]
        if _installed(top_level):
            raise ImportError(
                f"'{top_level}' is installed but '{module_name}' failed to import: {exc}"
            ) from exc
        default_extra, purpose = _OPTIONAL.get(top_level, ("sim", None))
        needed_for = f" (needed for {purpose})" if purpose else ""
        raise ImportError(
            f"'{module_name}' is not installed{needed_for}. "
            f'Install it with: pip install "flood-evac[{extra or default_extra}]"'
        ) from None


def geo_available() -> bool:
    """True when both rasterio and shapely import cleanly."""
    try:
        import_optional("rasterio")
        import_optional("shapely.geometry")
    except ImportError:
        return False
    return True
