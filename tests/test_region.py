import asyncio

import astropy.units as u
import pytest
from conftest import FILL_VALUE, settle, tile_value

from tilestream.buffers import buffer_factory
from tilestream.geometry import LngLat
from tilestream.index import TileIndex
from tilestream.region import Region, RegionQueryEngine, RegionSubscription

TIMES = [2000, 2001, 2002]


def make_engine(source, variable="value"):
    index = TileIndex(
        source=source,
        bands=[variable],
        initialize_buffer=buffer_factory("texture", FILL_VALUE),
        fill_value=FILL_VALUE,
    )

    return RegionQueryEngine(index, variable)


def whole_world(lng=0.0, lat=0.0):
    return Region(center=LngLat(lng=lng, lat=lat), radius=180.0, units="degrees")


def test_angular_radius_units():
    center = LngLat(lng=0.0, lat=0.0)

    degrees = Region(center=center, radius=2.0, units="degrees").angular_radius()
    assert degrees.to_value(u.deg) == pytest.approx(2.0)

    radians = Region(center=center, radius=1.0, units="radians").angular_radius()
    assert radians.to_value(u.rad) == pytest.approx(1.0)

    kilometers = Region(center=center, radius=6371.0088).angular_radius()
    meters = Region(center=center, radius=6371008.8, units="meters").angular_radius()
    assert kilometers.to_value(u.rad) == pytest.approx(1.0)
    assert meters.to_value(u.rad) == pytest.approx(1.0)

    miles = Region(center=center, radius=1.0, units="miles").angular_radius()
    assert miles.to_value(u.rad) == pytest.approx(1609.344 / 6371008.8)


def test_zero_radius_is_empty(make_source):
    async def main():
        engine = make_engine(make_source(max_zoom=0, tile_size=4))
        region = Region(center=LngLat(lng=10.0, lat=10.0), radius=0.0)

        result = await engine.query_region(region, {}, 0)

        assert result.values == []
        assert result.coordinates == {"lat": [], "lon": []}
        assert result.dimensions == ["lat", "lon"]

    asyncio.run(main())


def test_whole_world_returns_every_pixel(make_source):
    async def main():
        source = make_source(max_zoom=1, tile_size=4)
        engine = make_engine(source)

        result = await engine.query_region(whole_world(), {}, 1)

        assert len(result.values) == 4 * 16
        assert len(result.coordinates["lat"]) == 4 * 16
        assert len(result.coordinates["lon"]) == 4 * 16
        assert set(result.values) == {
            tile_value(x, y, 1) for x in range(2) for y in range(2)
        }
        assert len(source.calls) == 4

    asyncio.run(main())


def test_level_is_clamped_to_pyramid(make_source):
    async def main():
        source = make_source(max_zoom=0, tile_size=2)
        engine = make_engine(source)

        result = await engine.query_region(whole_world(), {}, 5)

        assert set(result.values) == {tile_value(0, 0, 0)}
        assert source.calls == [(0, (0, 0))]

    asyncio.run(main())


def test_small_region_keeps_nearby_pixels(make_source):
    async def main():
        engine = make_engine(make_source(max_zoom=0, tile_size=4))

        # pixel centres of a 4 x 4 world tile sit at +-45 and +-135 degrees
        region = Region(
            center=LngLat(lng=45.0, lat=0.0), radius=45.0, units="degrees"
        )
        result = await engine.query_region(region, {}, 0)

        assert len(result.values) == 2
        assert result.coordinates["lon"] == [45.0, 45.0]
        assert result.coordinates["lat"][0] == pytest.approx(
            -result.coordinates["lat"][1]
        )

    asyncio.run(main())


def test_free_dimension_nests_values(make_source):
    async def main():
        source = make_source(max_zoom=0, tile_size=2, times=TIMES, time_chunk=2)
        engine = make_engine(source)

        result = await engine.query_region(whole_world(), {}, 0)
        base = tile_value(0, 0, 0)

        assert result.dimensions == ["time", "lat", "lon"]
        assert result.coordinates["time"] == TIMES
        assert set(result.values) == set(TIMES)
        assert result.values[2001] == [base + 1000] * 4
        assert result.as_dict()["value"] is result.values

    asyncio.run(main())


def test_array_selector_nests_over_its_values(make_source):
    async def main():
        source = make_source(max_zoom=0, tile_size=2, times=TIMES, time_chunk=2)
        engine = make_engine(source)

        result = await engine.query_region(whole_world(), {"time": [2000, 2002]}, 0)

        assert result.coordinates["time"] == [2000, 2002]
        assert set(result.values) == {2000, 2002}

    asyncio.run(main())


def test_pinned_dimension_is_flat(make_source):
    async def main():
        source = make_source(max_zoom=0, tile_size=2, times=TIMES, time_chunk=2)
        engine = make_engine(source)

        result = await engine.query_region(whole_world(), {"time": 2002}, 0)

        assert result.dimensions == ["lat", "lon"]
        assert result.coordinates["time"] == [2002]
        assert result.values == [tile_value(0, 0, 0) + 2000] * 4
        assert source.calls == [(0, (1, 0, 0))]

    asyncio.run(main())


class GatedEngine:
    def __init__(self):
        self.gates = []

    async def query_region(self, region, selector, level=None):
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()

        return selector["tag"]


def test_subscription_last_request_wins():
    async def main():
        engine = GatedEngine()
        published = []
        subscription = RegionSubscription(engine, published.append)
        region = whole_world()

        older = asyncio.ensure_future(subscription.request(region, {"tag": "older"}))
        await settle()
        newer = asyncio.ensure_future(subscription.request(region, {"tag": "newer"}))
        await settle()

        engine.gates[1].set()
        assert await newer == "newer"

        engine.gates[0].set()
        assert await older is None

        assert published == [None, None, "newer"]

    asyncio.run(main())


def test_subscription_refresh_repeats_last_request():
    async def main():
        engine = GatedEngine()
        published = []
        subscription = RegionSubscription(engine, published.append)

        assert await subscription.refresh() is None

        first = asyncio.ensure_future(
            subscription.request(whole_world(), {"tag": "a"}, 3)
        )
        await settle()
        engine.gates[0].set()
        await first

        refresh = asyncio.ensure_future(subscription.refresh())
        await settle()
        engine.gates[1].set()

        assert await refresh == "a"
        assert published == [None, "a", None, "a"]
        assert subscription.level == 3

    asyncio.run(main())
