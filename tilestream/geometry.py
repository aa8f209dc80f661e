"""
Quad-tree pyramid geometry.

Tiles follow the usual Web Mercator layout: level ``z`` has ``2**z`` columns
and rows, ``x`` grows eastwards from the antimeridian and ``y`` grows
southwards from the northern Mercator limit. "Camera space" is the fractional
tile coordinate at a given level, so ``floor`` of it is the tile address and
its fractional part is the position within that tile.
"""

import math

import numpy as np
from pydantic import BaseModel, ConfigDict, model_validator

MAX_LATITUDE = 85.0511287798066

ActiveSet = dict["TileKey", list[tuple[int, int]]]


class TileKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    z: int

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.z < 0:
            raise ValueError(f"Negative level {self.z}")

        n = 2**self.z

        if not (0 <= self.x < n and 0 <= self.y < n):
            raise ValueError(f"Tile ({self.x}, {self.y}) outside level {self.z}")

        return self

    @property
    def hash(self) -> str:
        return f"{self.x}.{self.y}.{self.z}"

    def parent(self) -> "TileKey | None":
        if self.z == 0:
            return None

        return TileKey(x=self.x // 2, y=self.y // 2, z=self.z - 1)

    def ancestors(self) -> list["TileKey"]:
        """
        All ancestors, closest first.
        """
        ancestors = []
        parent = self.parent()

        while parent is not None:
            ancestors.append(parent)
            parent = parent.parent()

        return ancestors

    def children(self) -> list["TileKey"]:
        return [
            TileKey(x=2 * self.x + dx, y=2 * self.y + dy, z=self.z + 1)
            for dy in (0, 1)
            for dx in (0, 1)
        ]

    def is_ancestor_of(self, other: "TileKey") -> bool:
        if other.z <= self.z:
            return False

        shift = other.z - self.z

        return (other.x >> shift) == self.x and (other.y >> shift) == self.y


class LngLat(BaseModel):
    lng: float
    lat: float


class Camera(BaseModel):
    center: LngLat
    zoom: float


class Viewport(BaseModel):
    width: float = 0.0
    height: float = 0.0
    pixel_ratio: float = 1.0


class ViewState(BaseModel):
    """
    Everything needed to place tiles of one level on screen.
    """

    level: int
    zoom: float
    camera: tuple[float, float]
    width: float
    height: float
    tile_pixels: float

    def tile_size(self, level: int | None = None) -> float:
        """
        Edge length in viewport pixels of a tile at ``level`` (defaults to the
        view's own level).
        """
        level = self.level if level is None else level
        return self.tile_pixels * 2 ** (self.zoom - level)


def zoom_to_level(zoom: float, max_zoom: int | None = None) -> int:
    level = max(0, int(math.floor(zoom)))

    if max_zoom is not None:
        level = min(level, max_zoom)

    return level


def point_to_camera(lng: float, lat: float, zoom: int) -> tuple[float, float]:
    z2 = 2**zoom
    lat = min(max(lat, -MAX_LATITUDE), MAX_LATITUDE)
    sin = math.sin(math.radians(lat))

    x = z2 * (lng / 360.0 + 0.5)
    y = z2 * (0.5 - 0.25 * math.log((1 + sin) / (1 - sin)) / math.pi)

    return x % z2, y


def point_to_tile(lng: float, lat: float, zoom: int) -> TileKey:
    x, y = point_to_camera(lng, lat, zoom)
    n = 2**zoom

    return TileKey(
        x=min(int(math.floor(x)), n - 1),
        y=min(max(int(math.floor(y)), 0), n - 1),
        z=zoom,
    )


def camera_to_point(x, y, zoom: int):
    """
    Inverse of ``point_to_camera``. Accepts scalars or numpy arrays.
    """
    z2 = 2.0**zoom
    lng = 360.0 * x / z2 - 180.0
    y2 = 180.0 - 360.0 * y / z2
    lat = 360.0 / np.pi * np.arctan(np.exp(np.radians(y2))) - 90.0

    return lng, lat


def siblings(tile: TileKey, view: ViewState) -> ActiveSet:
    """
    Every occurrence of every tile at ``tile.z`` that intersects the viewport.

    Columns are not clamped, so a viewport that spans the antimeridian (or is
    wider than the world) yields several occurrences of the same key, each with
    its own unwrapped offset.
    """
    n = 2**tile.z
    size = view.tile_size(tile.z)
    cx, cy = view.camera

    half_width = view.width / 2.0 / size
    half_height = view.height / 2.0 / size

    x_start = min(math.floor(cx - half_width), tile.x)
    x_end = max(math.ceil(cx + half_width) - 1, tile.x)
    y_start = max(min(math.floor(cy - half_height), tile.y), 0)
    y_end = min(max(math.ceil(cy + half_height) - 1, tile.y), n - 1)

    active: ActiveSet = {}

    for x in range(x_start, x_end + 1):
        for y in range(y_start, y_end + 1):
            key = TileKey(x=x % n, y=y, z=tile.z)
            active.setdefault(key, []).append((x, y))

    return active


def offset_to_pixels(
    offset: tuple[int, int], level: int, view: ViewState
) -> tuple[float, float, float]:
    """
    Top-left corner and edge length, in viewport pixels, of a tile drawn at
    ``level`` with the given unwrapped offset.
    """
    size = view.tile_size(level)
    scale = 2.0 ** (level - view.level)
    cx, cy = view.camera

    left = view.width / 2.0 + (offset[0] - cx * scale) * size
    top = view.height / 2.0 + (offset[1] - cy * scale) * size

    return left, top, size


def tiles_of_region(
    lng: float, lat: float, radius_deg: float, level: int
) -> list[TileKey]:
    """
    Keys at ``level`` covering the bounding box of a spherical cap.
    """
    n = 2**level

    top = lat + radius_deg
    bottom = lat - radius_deg

    if top >= 90.0 or bottom <= -90.0:
        columns = range(n)
    else:
        ratio = math.sin(math.radians(radius_deg)) / math.cos(math.radians(lat))
        half_span = math.degrees(math.asin(min(1.0, ratio)))

        first = math.floor(n * ((lng - half_span) / 360.0 + 0.5))
        last = math.floor(n * ((lng + half_span) / 360.0 + 0.5))

        if last - first + 1 >= n:
            columns = range(n)
        else:
            columns = [x % n for x in range(first, last + 1)]

    first_row = point_to_tile(lng, min(top, MAX_LATITUDE), level).y
    last_row = point_to_tile(lng, max(bottom, -MAX_LATITUDE), level).y

    keys = {}

    for x in columns:
        for y in range(first_row, last_row + 1):
            keys[TileKey(x=x, y=y, z=level)] = None

    return list(keys)
