"""
In-memory pyramid sources for driving the engine without any files.
"""

import asyncio
from typing import Any, Literal

import numpy as np
import pytest
import structlog
from pydantic import ConfigDict, PrivateAttr

from tilestream.loaders.core import ChunkLoader
from tilestream.selectors import SPATIAL_DIMENSIONS, ChunkCoordinate
from tilestream.sources.core import PyramidMetadata, PyramidSource

FILL_VALUE = -9999.0


class MemoryLoader(ChunkLoader):
    """
    Serves chunks out of full tile arrays. Records every call; a coordinate
    with a gate waits for it, a coordinate in ``failures`` raises.
    """

    def __init__(self, level, tiles, dimensions, chunks):
        self.tiles = tiles
        self.dimensions = list(dimensions)
        self.chunks = list(chunks)
        self.calls: list[ChunkCoordinate] = []
        self.gates: dict[ChunkCoordinate, asyncio.Event] = {}
        self.failures: set[ChunkCoordinate] = set()
        super().__init__(level=level)

    async def load(self, chunk):
        self.calls.append(chunk)

        gate = self.gates.get(chunk)

        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)

        if chunk in self.failures:
            raise RuntimeError(f"Failed to load {chunk}")

        x = chunk[self.dimensions.index("x")]
        y = chunk[self.dimensions.index("y")]
        data = self.tiles.get((x, y))

        if data is None:
            return None

        index = tuple(
            slice(None) if d in SPATIAL_DIMENSIONS else slice(c * n, (c + 1) * n)
            for d, c, n in zip(self.dimensions, chunk, self.chunks)
        )

        return data[index]


class MemorySource(PyramidSource):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    provider_type: Literal["memory"] = "memory"
    metadata: PyramidMetadata
    tiles: dict[int, dict[tuple[int, int], Any]] = {}

    _loaders: dict[int, MemoryLoader] = PrivateAttr(default_factory=dict)
    _resolves: int = PrivateAttr(default=0)

    @property
    def resolves(self) -> int:
        return self._resolves

    async def resolve(self) -> PyramidMetadata:
        self._resolves += 1
        await asyncio.sleep(0)
        return self.metadata

    def loader(self, level: int) -> MemoryLoader:
        if level not in self._loaders:
            self._loaders[level] = MemoryLoader(
                level=level,
                tiles=self.tiles.get(level, {}),
                dimensions=self.metadata.dimensions,
                chunks=self.metadata.chunks,
            )

        return self._loaders[level]

    @property
    def calls(self) -> list[tuple[int, ChunkCoordinate]]:
        return [
            (level, chunk)
            for level, loader in sorted(self._loaders.items())
            for chunk in loader.calls
        ]


def tile_value(x: int, y: int, z: int) -> float:
    return float(100 * z + 10 * y + x)


def build_source(
    max_zoom: int = 1,
    tile_size: int = 2,
    times: list | None = None,
    time_chunk: int | None = None,
    missing: tuple = (),
) -> MemorySource:
    """
    Every tile holds ``tile_value`` of its key; with ``times`` the tile grows
    a leading ``time`` dimension and step ``t`` adds ``1000 * t``.
    """
    levels = list(range(max_zoom + 1))

    if times is None:
        dimensions = ["y", "x"]
        shape = [tile_size, tile_size]
        chunks = [tile_size, tile_size]
        coordinates = {}
    else:
        dimensions = ["time", "y", "x"]
        shape = [len(times), tile_size, tile_size]
        chunks = [time_chunk or len(times), tile_size, tile_size]
        coordinates = {"time": list(times)}

    tiles = {}

    for z in levels:
        tiles[z] = {}

        for x in range(2**z):
            for y in range(2**z):
                if (x, y, z) in missing:
                    continue

                plane = np.full((tile_size, tile_size), tile_value(x, y, z))

                if times is None:
                    tiles[z][(x, y)] = plane
                else:
                    tiles[z][(x, y)] = np.stack(
                        [plane + 1000 * t for t in range(len(times))]
                    )

    return MemorySource(
        metadata=PyramidMetadata(
            levels=levels,
            max_zoom=max_zoom,
            tile_size=tile_size,
            dimensions=dimensions,
            shape=shape,
            chunks=chunks,
            coordinates=coordinates,
        ),
        tiles=tiles,
    )


async def settle(rounds: int = 20):
    """
    Let every runnable task advance until it blocks.
    """
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def make_source():
    return build_source


@pytest.fixture(autouse=True)
def reset_logging():
    # the command line client points structlog at its own stderr
    yield
    structlog.reset_defaults()
