import asyncio

from conftest import FILL_VALUE

from tilestream.active import (
    ActiveSetResolver,
    adjusted_offset,
    has_overlapping_descendant,
    keys_to_render,
)
from tilestream.buffers import buffer_factory
from tilestream.geometry import Camera, LngLat, TileKey, Viewport
from tilestream.index import TileIndex


async def populated_index(source, keys):
    index = TileIndex(
        source=source,
        bands=["value"],
        initialize_buffer=buffer_factory("texture", FILL_VALUE),
        fill_value=FILL_VALUE,
    )
    await index.wait_initialized()

    for key in keys:
        store = index.get(key)
        await store.populate_buffers(store.required_chunks({}), {})

    return index


def test_keys_to_render_falls_back(make_source):
    async def main():
        root = TileKey(x=0, y=0, z=0)
        key = TileKey(x=1, y=1, z=1)

        index = await populated_index(make_source(), [])
        assert keys_to_render(key, index, 1) == [key]

        index = await populated_index(make_source(), [root])
        assert keys_to_render(key, index, 1) == [root]
        assert keys_to_render(root, index, 1) == [root]

        children = [TileKey(x=0, y=0, z=1), TileKey(x=1, y=0, z=1)]
        index = await populated_index(make_source(), children)
        assert keys_to_render(root, index, 1) == children

    asyncio.run(main())


def test_adjusted_offset_for_ancestor():
    target = TileKey(x=3, y=1, z=2)

    assert adjusted_offset((3, 1), target, TileKey(x=1, y=0, z=1)) == (1, 0)
    # one world to the east
    assert adjusted_offset((7, 1), target, TileKey(x=0, y=0, z=0)) == (1, 0)


def test_adjusted_offset_for_descendant():
    target = TileKey(x=1, y=0, z=1)

    assert adjusted_offset((1, 0), target, TileKey(x=2, y=1, z=2)) == (2, 1)
    assert adjusted_offset((3, 0), target, TileKey(x=2, y=1, z=2)) == (6, 1)


def test_has_overlapping_descendant():
    keys = [TileKey(x=0, y=0, z=0), TileKey(x=1, y=1, z=2)]

    assert has_overlapping_descendant(TileKey(x=0, y=0, z=0), keys)
    assert not has_overlapping_descendant(TileKey(x=1, y=1, z=2), keys)


def test_resolve_home_tile():
    resolver = ActiveSetResolver(tile_pixels=256)
    camera = Camera(center=LngLat(lng=-100.0, lat=40.0), zoom=1.6)

    active, view = resolver.resolve(camera, Viewport(pixel_ratio=2.0), max_zoom=3)

    assert view.level == 1
    assert view.tile_pixels == 512
    assert active == {TileKey(x=0, y=0, z=1): [(0, 0)]}


def test_fallback_ancestor_is_drawn_once(make_source):
    async def main():
        root = TileKey(x=0, y=0, z=0)
        index = await populated_index(make_source(), [root])

        active = {
            TileKey(x=0, y=0, z=1): [(0, 0)],
            TileKey(x=1, y=0, z=1): [(1, 0)],
        }
        props = ActiveSetResolver().drawable_props(active, index, 1)

        assert [(p.key, p.level, p.offset) for p in props] == [(root, 0, (0, 0))]

    asyncio.run(main())


def test_ancestor_gives_way_to_drawn_descendant(make_source):
    async def main():
        drawn = TileKey(x=0, y=0, z=1)
        index = await populated_index(make_source(), [TileKey(x=0, y=0, z=0), drawn])

        active = {
            drawn: [(0, 0)],
            TileKey(x=1, y=0, z=1): [(1, 0)],
        }
        props = ActiveSetResolver().drawable_props(active, index, 1)

        assert len(props) == 1
        assert props[0].key == drawn
        assert props[0].level == 1
        assert props[0].offset == (0, 0)
        assert props[0].bands["value"].shape == (2, 2)

    asyncio.run(main())
