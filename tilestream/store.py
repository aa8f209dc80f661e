"""
Per-tile chunk cache and band buffers.
"""

import asyncio
import itertools
from time import perf_counter
from typing import Any, Callable, Mapping, Sequence

import numpy as np
import structlog

from tilestream.buffers import BandBuffer
from tilestream.geometry import TileKey
from tilestream.loaders.core import ChunkLoader
from tilestream.selectors import (
    SPATIAL_DIMENSIONS,
    ChunkCoordinate,
    Selector,
    coordinate_index,
    get_band_information,
    get_chunks,
    is_multiple,
    selector_hash,
)


class MissingChunkError(Exception):
    pass


class ChunkStore:
    """
    Owns the fetched chunks and the band buffers of one tile.

    Chunks are fetched at most once: cached coordinates are skipped and
    coordinates that are already being fetched are awaited rather than
    requested again. ``ready`` is a fresh ``asyncio.Event`` for every call to
    ``load_chunks`` and is set once that call's whole batch has settled.
    """

    key: TileKey
    loading: bool
    ready: asyncio.Event
    chunked_data: dict[ChunkCoordinate, np.ndarray]

    def __init__(
        self,
        key: TileKey,
        loader: ChunkLoader,
        shape: Sequence[int],
        chunks: Sequence[int],
        dimensions: Sequence[str],
        coordinates: Mapping[str, Sequence[Any]],
        bands: Sequence[str],
        initialize_buffer: Callable[[], BandBuffer],
        fill_value: float,
    ):
        self.key = key
        self.shape = tuple(shape)
        self.chunks = tuple(chunks)
        self.dimensions = tuple(dimensions)
        self.coordinates = coordinates
        self.bands = list(bands)
        self.fill_value = fill_value

        self.loading = False
        self.ready = asyncio.Event()
        self.chunked_data = {}

        self._loader = loader
        self._in_flight: dict[ChunkCoordinate, asyncio.Task] = {}
        self._buffers = {band: initialize_buffer() for band in self.bands}
        self._buffer_cache: str | None = None

        self._data_keys: set[ChunkCoordinate] = set()
        self._data: np.ndarray | None = None

        self.logger = structlog.get_logger().bind(tile=key.hash)

    @property
    def buffers(self) -> dict[str, BandBuffer]:
        return self._buffers

    def required_chunks(self, selector: Selector) -> list[ChunkCoordinate]:
        return get_chunks(
            selector,
            self.dimensions,
            self.coordinates,
            self.shape,
            self.chunks,
            self.key.x,
            self.key.y,
        )

    async def _fetch(self, chunk: ChunkCoordinate) -> bool:
        start = perf_counter()

        try:
            data = await self._loader.load(chunk)
        finally:
            self._in_flight.pop(chunk, None)

        log = self.logger.bind(chunk=chunk, dt=perf_counter() - start)

        if data is None:
            log.debug("chunkstore.no_data")
            return False

        self.chunked_data[chunk] = np.asarray(data)
        log.debug("chunkstore.fetched")

        return True

    async def _load_chunk(self, chunk: ChunkCoordinate) -> bool:
        if chunk in self.chunked_data:
            return False

        pending = self._in_flight.get(chunk)

        if pending is not None:
            self.logger.debug("chunkstore.in_flight", chunk=chunk)
            await asyncio.shield(pending)
            return False

        task = asyncio.ensure_future(self._fetch(chunk))
        self._in_flight[chunk] = task

        return await asyncio.shield(task)

    async def load_chunks(self, chunks: Sequence[ChunkCoordinate]) -> bool:
        """
        Fetch every chunk in ``chunks`` that is not cached yet.

        Returns
        -------
        bool
            True if this call fetched at least one chunk that was not there
            before.
        """
        self.loading = True
        ready = self.ready = asyncio.Event()

        try:
            results = await asyncio.gather(
                *(self._load_chunk(tuple(chunk)) for chunk in chunks),
                return_exceptions=True,
            )
        finally:
            ready.set()
            self.loading = bool(self._in_flight)

        for result in results:
            if isinstance(result, BaseException):
                raise result

        return any(results)

    async def populate_buffers(
        self, chunks: Sequence[ChunkCoordinate], selector: Selector
    ) -> bool:
        updated = await self.load_chunks(chunks)
        self.populate_buffers_sync(selector)

        return updated

    def populate_buffers_sync(self, selector: Selector):
        band_information = get_band_information(selector)

        for band in self.bands:
            info = band_information.get(band, selector)
            chunk = self.required_chunks(info)[0]
            data = self.chunked_data.get(chunk)

            if data is None:
                raise MissingChunkError(
                    f"Missing data for chunk {'.'.join(map(str, chunk))} "
                    f"of tile {self.key.hash}"
                )

            indices = []

            for i, dimension in enumerate(self.dimensions):
                value = info.get(dimension)
                pinned = value is not None and not is_multiple(value)

                if dimension in SPATIAL_DIMENSIONS or not pinned:
                    indices.append(slice(None))
                else:
                    index = coordinate_index(self.coordinates[dimension], value)
                    indices.append(index % self.chunks[i])

            self._buffers[band].update(data[tuple(indices)])

        self._buffer_cache = selector_hash(selector)

    def is_buffer_populated(self) -> bool:
        return self._buffer_cache is not None

    def has_loaded_chunks(self, chunks: Sequence[ChunkCoordinate]) -> bool:
        return all(tuple(chunk) in self.chunked_data for chunk in chunks)

    def has_populated_buffer(self, selector: Selector) -> bool:
        return (
            self._buffer_cache is not None
            and self._buffer_cache == selector_hash(selector)
        )

    def materialize_full(self) -> np.ndarray:
        """
        Dense array of this tile over the full non-spatial extent. Regions
        whose chunks have not been fetched hold ``fill_value``. Only chunks
        that were not merged by a previous call are copied.
        """
        new_keys = [key for key in self.chunked_data if key not in self._data_keys]

        if self._data is None:
            self._data = np.full(self.shape, self.fill_value, dtype=np.float32)

        for chunk in new_keys:
            chunk_data = self.chunked_data[chunk]
            target = []
            source = []

            for i, dimension in enumerate(self.dimensions):
                if dimension in SPATIAL_DIMENSIONS:
                    start = 0
                else:
                    start = chunk[i] * self.chunks[i]

                stop = min(self.shape[i], start + chunk_data.shape[i])
                target.append(slice(start, stop))
                source.append(slice(0, stop - start))

            self._data[tuple(target)] = chunk_data[tuple(source)]
            self._data_keys.add(chunk)

        return self._data

    def point_sample(
        self, selector: Selector, i: int, j: int
    ) -> list[tuple[tuple[Any, ...], float]]:
        """
        Values at column ``i``, row ``j`` of this tile.

        Dimensions pinned to a single value by ``selector`` are fixed; every
        other non-spatial dimension is iterated (over the selector's values
        when it gives a list, over the full coordinate array otherwise). Each
        value is tagged with its coordinate path along those dimensions.
        """
        data = self.materialize_full()
        index: list[int] = [0] * len(self.dimensions)
        free = []

        for d, dimension in enumerate(self.dimensions):
            if dimension == "x":
                index[d] = i
            elif dimension == "y":
                index[d] = j
            else:
                coordinates = self.coordinates[dimension]
                value = selector.get(dimension)

                if value is not None and not is_multiple(value):
                    index[d] = coordinate_index(coordinates, value)
                    continue

                values = value if value is not None else coordinates
                free.append(
                    (d, [(v, coordinate_index(coordinates, v)) for v in values])
                )

        samples = []

        for combination in itertools.product(*(options for _, options in free)):
            for (d, _), (_, position) in zip(free, combination):
                index[d] = position

            path = tuple(value for value, _ in combination)
            samples.append((path, float(data[tuple(index)])))

        return samples
