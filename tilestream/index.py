"""
The full set of tiles of one data source.
"""

import asyncio
import itertools
from time import perf_counter
from typing import Callable, Iterator, Sequence

import structlog

from tilestream.buffers import BandBuffer
from tilestream.geometry import TileKey
from tilestream.sources.core import PyramidMetadata, PyramidSource
from tilestream.store import ChunkStore


class UnknownTileError(Exception):
    pass


class TileIndex:
    """
    Owns one ``ChunkStore`` per tile of every pyramid level.

    The key set is built once, when the source metadata has been resolved,
    and never changes afterwards.
    """

    source: PyramidSource
    metadata: PyramidMetadata | None

    def __init__(
        self,
        source: PyramidSource,
        bands: Sequence[str],
        initialize_buffer: Callable[[], BandBuffer],
        fill_value: float,
    ):
        self.source = source
        self.bands = list(bands)
        self.metadata = None

        self._initialize_buffer = initialize_buffer
        self._fill_value = fill_value
        self._tiles: dict[TileKey, ChunkStore] = {}
        self._initializing: asyncio.Task | None = None

        self.logger = structlog.get_logger()

    @property
    def is_initialized(self) -> bool:
        return self.metadata is not None

    async def _initialize(self) -> PyramidMetadata:
        log = self.logger.bind(provider_type=self.source.provider_type)
        start = perf_counter()

        metadata = await self.source.resolve()

        tiles = {}

        for level in metadata.levels:
            loader = self.source.loader(level)
            n = 2**level

            for x, y in itertools.product(range(n), range(n)):
                key = TileKey(x=x, y=y, z=level)
                tiles[key] = ChunkStore(
                    key=key,
                    loader=loader,
                    shape=metadata.shape,
                    chunks=metadata.chunks,
                    dimensions=metadata.dimensions,
                    coordinates=metadata.coordinates,
                    bands=self.bands,
                    initialize_buffer=self._initialize_buffer,
                    fill_value=self._fill_value,
                )

        self._tiles = tiles
        self.metadata = metadata

        log = log.bind(
            levels=metadata.levels, n_tiles=len(tiles), dt=perf_counter() - start
        )
        log.info("index.initialized")

        return metadata

    def start(self) -> asyncio.Task:
        """
        Start resolving the source metadata, once. Later calls return the same
        task.
        """
        if self._initializing is None:
            self._initializing = asyncio.ensure_future(self._initialize())

        return self._initializing

    async def wait_initialized(self) -> PyramidMetadata:
        return await asyncio.shield(self.start())

    def get(self, key: TileKey) -> ChunkStore:
        try:
            return self._tiles[key]
        except KeyError:
            raise UnknownTileError(f"Tile {key.hash} is not part of the pyramid")

    def all_keys(self) -> set[TileKey]:
        return set(self._tiles)

    def __contains__(self, key: TileKey) -> bool:
        return key in self._tiles

    def __iter__(self) -> Iterator[TileKey]:
        return iter(self._tiles)

    def __len__(self) -> int:
        return len(self._tiles)
