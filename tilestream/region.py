"""
Point samples of a source within a circular region.
"""

import asyncio
from time import perf_counter
from typing import Any, Callable, Literal

import astropy.units as u
import numpy as np
import structlog
from astropy.coordinates import angular_separation
from astropy.units import imperial
from pydantic import BaseModel

from tilestream.geometry import LngLat, camera_to_point, tiles_of_region
from tilestream.index import TileIndex
from tilestream.selectors import SPATIAL_DIMENSIONS, Selector, is_multiple
from tilestream.settings import settings

DISTANCE_UNITS = {
    "meters": u.m,
    "kilometers": u.km,
    "miles": imperial.mi,
}

ANGLE_UNITS = {
    "degrees": u.deg,
    "radians": u.rad,
}


class Region(BaseModel):
    center: LngLat
    radius: float
    units: Literal["meters", "kilometers", "miles", "degrees", "radians"] = (
        "kilometers"
    )

    def angular_radius(self) -> u.Quantity:
        """
        Radius as a great-circle angle.
        """
        if self.units in ANGLE_UNITS:
            return (self.radius * ANGLE_UNITS[self.units]).to(u.deg)

        distance = self.radius * DISTANCE_UNITS[self.units]
        ratio = (distance / (settings.earth_radius_m * u.m)).to_value(
            u.dimensionless_unscaled
        )

        return (ratio * u.rad).to(u.deg)


class RegionResult(BaseModel):
    variable: str
    dimensions: list[str]
    coordinates: dict[str, list[Any]]
    values: list[float] | dict[Any, Any]

    def as_dict(self) -> dict[str, Any]:
        return {
            self.variable: self.values,
            "dimensions": self.dimensions,
            "coordinates": self.coordinates,
        }


def _set_nested(values: dict, path: tuple, value: float):
    node = values

    for key in path[:-1]:
        node = node.setdefault(key, {})

    node.setdefault(path[-1], []).append(value)


class RegionQueryEngine:
    """
    Answers region queries from the tiles of a ``TileIndex``, fetching any
    chunks the query needs that are not cached yet. Each call is independent;
    discarding stale results is left to the caller (see
    ``RegionSubscription``).
    """

    index: TileIndex
    variable: str

    def __init__(self, index: TileIndex, variable: str):
        self.index = index
        self.variable = variable
        self.logger = structlog.get_logger()

    async def query_region(
        self, region: Region, selector: Selector, level: int | None = None
    ) -> RegionResult:
        metadata = await self.index.wait_initialized()

        available = [z for z in metadata.levels if level is None or z <= level]
        level = max(available) if available else min(metadata.levels)

        radius = region.angular_radius()

        log = self.logger.bind(
            lng=region.center.lng,
            lat=region.center.lat,
            radius_deg=radius.to_value(u.deg),
            level=level,
        )

        start = perf_counter()

        keys = [
            key
            for key in tiles_of_region(
                region.center.lng, region.center.lat, radius.to_value(u.deg), level
            )
            if key in self.index
        ]
        stores = [self.index.get(key) for key in keys]

        await asyncio.gather(
            *(store.load_chunks(store.required_chunks(selector)) for store in stores)
        )

        non_spatial = [d for d in metadata.dimensions if d not in SPATIAL_DIMENSIONS]
        free = [
            d
            for d in non_spatial
            if selector.get(d) is None or is_multiple(selector.get(d))
        ]

        values: list[float] | dict[Any, Any] = {} if free else []
        lat: list[float] = []
        lon: list[float] = []

        centers = (np.arange(metadata.tile_size) + 0.5) / metadata.tile_size
        center_lng = region.center.lng * u.deg
        center_lat = region.center.lat * u.deg

        for store in stores:
            key = store.key
            lng_grid, lat_grid = np.broadcast_arrays(
                *camera_to_point(
                    key.x + centers[np.newaxis, :],
                    key.y + centers[:, np.newaxis],
                    key.z,
                )
            )

            separation = angular_separation(
                lng_grid * u.deg, lat_grid * u.deg, center_lng, center_lat
            )

            for j, i in zip(*np.nonzero(separation < radius)):
                lon.append(float(lng_grid[j, i]))
                lat.append(float(lat_grid[j, i]))

                for path, value in store.point_sample(selector, int(i), int(j)):
                    if free:
                        _set_nested(values, path, value)
                    else:
                        values.append(value)

        if len(metadata.dimensions) > 2:
            coordinates = {}

            for dimension in non_spatial:
                value = selector.get(dimension)

                if value is None:
                    coordinates[dimension] = list(metadata.coordinates[dimension])
                elif is_multiple(value):
                    coordinates[dimension] = list(value)
                else:
                    coordinates[dimension] = [value]

            dimensions = [*free, "lat", "lon"]
        else:
            coordinates = {}
            dimensions = ["lat", "lon"]

        coordinates["lat"] = lat
        coordinates["lon"] = lon

        log = log.bind(
            n_tiles=len(stores), n_points=len(lat), dt=perf_counter() - start
        )
        log.info("region.built")

        return RegionResult(
            variable=self.variable,
            dimensions=dimensions,
            coordinates=coordinates,
            values=values,
        )


class RegionSubscription:
    """
    Publishes region results to ``set_data`` so that the last request wins: a
    result is dropped if a newer request was started while it was computed.
    """

    engine: RegionQueryEngine

    def __init__(
        self,
        engine: RegionQueryEngine,
        set_data: Callable[[RegionResult | None], None],
    ):
        self.engine = engine
        self.set_data = set_data
        self.region: Region | None = None
        self.selector: Selector = {}
        self.level: int | None = None

        self._generation = 0
        self.logger = structlog.get_logger()

    async def request(
        self, region: Region, selector: Selector, level: int | None = None
    ) -> RegionResult | None:
        self._generation += 1
        generation = self._generation

        self.region = region
        self.selector = selector
        self.level = level

        self.set_data(None)

        result = await self.engine.query_region(region, selector, level)

        if generation != self._generation:
            self.logger.debug(
                "region.stale", generation=generation, latest=self._generation
            )
            return None

        self.set_data(result)

        return result

    async def refresh(self) -> RegionResult | None:
        if self.region is None:
            return None

        return await self.request(self.region, self.selector, self.level)
