"""
Resolving which tiles are visible, and what to actually draw for them.
"""

import numpydantic
from pydantic import BaseModel

from tilestream.geometry import (
    ActiveSet,
    Camera,
    TileKey,
    ViewState,
    Viewport,
    point_to_camera,
    point_to_tile,
    siblings,
    zoom_to_level,
)
from tilestream.index import TileIndex
from tilestream.settings import settings


class DrawableProps(BaseModel):
    key: TileKey
    bands: dict[str, numpydantic.NDArray]
    level: int
    offset: tuple[int, int]


def keys_to_render(key: TileKey, index: TileIndex, max_zoom: int) -> list[TileKey]:
    """
    What to draw in place of ``key``: the tile itself once its buffers are
    populated, otherwise its closest populated ancestor, otherwise its
    populated descendants at the shallowest level that has any, otherwise
    the (empty) tile itself.
    """
    for candidate in [key, *key.ancestors()]:
        if candidate in index and index.get(candidate).is_buffer_populated():
            return [candidate]

    generation = [key]

    for _ in range(key.z, max_zoom):
        generation = [child for parent in generation for child in parent.children()]
        populated = [
            child
            for child in generation
            if child in index and index.get(child).is_buffer_populated()
        ]

        if populated:
            return populated

    return [key]


def adjusted_offset(
    offset: tuple[int, int], target: TileKey, rendered: TileKey
) -> tuple[int, int]:
    """
    Rescale the offset of ``target`` to the level of ``rendered``, keeping the
    horizontal wrap of the original occurrence.
    """
    difference = rendered.z - target.z

    if difference <= 0:
        factor = 2 ** (-difference)
        return offset[0] // factor, offset[1] // factor

    factor = 2**difference
    wrap = offset[0] - target.x

    return rendered.x + wrap * factor, rendered.y


def has_overlapping_descendant(key: TileKey, keys) -> bool:
    return any(key.is_ancestor_of(other) for other in keys)


class ActiveSetResolver:
    """
    Turns camera state into the active set of visible tiles.
    """

    tile_pixels: float

    def __init__(self, tile_pixels: float | None = None):
        self.tile_pixels = tile_pixels or settings.tile_pixels

    def view_state(
        self, camera: Camera, viewport: Viewport, max_zoom: int | None
    ) -> ViewState:
        level = zoom_to_level(camera.zoom, max_zoom)

        return ViewState(
            level=level,
            zoom=camera.zoom,
            camera=point_to_camera(camera.center.lng, camera.center.lat, level),
            width=viewport.width,
            height=viewport.height,
            tile_pixels=self.tile_pixels * viewport.pixel_ratio,
        )

    def resolve(
        self, camera: Camera, viewport: Viewport, max_zoom: int | None
    ) -> tuple[ActiveSet, ViewState]:
        view = self.view_state(camera, viewport, max_zoom)
        home = point_to_tile(camera.center.lng, camera.center.lat, view.level)

        return siblings(home, view), view

    def drawable_props(
        self, active: ActiveSet, index: TileIndex, max_zoom: int
    ) -> list[DrawableProps]:
        adjusted: dict[TileKey, list[tuple[int, int]]] = {}

        for key, offsets in active.items():
            if key not in index:
                continue

            for rendered in keys_to_render(key, index, max_zoom):
                seen = adjusted.setdefault(rendered, [])

                for offset in offsets:
                    offset = adjusted_offset(offset, key, rendered)
                    if offset not in seen:
                        seen.append(offset)

        props = []

        for key, offsets in adjusted.items():
            # An ancestor drawn as a fallback gives way to any descendant
            # that is drawn as well.
            if has_overlapping_descendant(key, adjusted):
                continue

            buffers = index.get(key).buffers
            bands = {band: buffer.data for band, buffer in buffers.items()}

            for offset in offsets:
                props.append(
                    DrawableProps(key=key, bands=bands, level=key.z, offset=offset)
                )

        return props
