"""
Chunk loader for chunked-array (zarr) stores: one coordinate is one block.
"""

import asyncio
from time import perf_counter
from typing import Any

import numpy as np

from tilestream.selectors import ChunkCoordinate

from .core import ChunkLoader


class ArrayStoreLoader(ChunkLoader):
    array: Any

    def __init__(self, array: Any, level: int, internal_loader_id: str | None = None):
        self.array = array
        super().__init__(level=level, internal_loader_id=internal_loader_id)

    def _read(self, chunk: ChunkCoordinate) -> np.ndarray:
        return np.asarray(self.array.blocks[tuple(chunk)])

    async def load(self, chunk: ChunkCoordinate) -> np.ndarray | None:
        log = self.logger.bind(level=self.level, chunk=chunk)

        start = perf_counter()

        try:
            data = await asyncio.to_thread(self._read, chunk)
        except IndexError:
            log.debug("zarr.out_of_bounds")
            return None

        log.debug("zarr.pulled", dt=perf_counter() - start)

        return data
