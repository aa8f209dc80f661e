"""
Tile pyramid cache and chunk loading for multi-resolution rasters.
"""

from .geometry import Camera, LngLat, TileKey, Viewport
from .region import Region, RegionResult
from .sources import ArrayStoreSource, WindowedImageSource, source_from_location
from .tiles import Tiles

__all__ = (
    "Camera",
    "LngLat",
    "TileKey",
    "Viewport",
    "Region",
    "RegionResult",
    "ArrayStoreSource",
    "WindowedImageSource",
    "source_from_location",
    "Tiles",
)
