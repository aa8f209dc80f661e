"""
Chunk loader that reads windows out of a single (large) FITS image.
"""

import asyncio
from time import perf_counter

import numpy as np
from astropy.io import fits

from tilestream.selectors import ChunkCoordinate

from .core import ChunkLoader


def resample_nearest(window: np.ndarray, size: int) -> np.ndarray:
    """
    Nearest-neighbour resample of a 2D window to ``size`` x ``size``.
    """
    rows = ((np.arange(size) + 0.5) * window.shape[0] / size).astype(int)
    columns = ((np.arange(size) + 0.5) * window.shape[1] / size).astype(int)

    return window[np.ix_(rows, columns)]


def window_slices(
    chunk: ChunkCoordinate, level: int, image_shape: tuple[int, int]
) -> tuple[slice, slice]:
    """
    Pixel window of chunk ``(row, column)`` at ``level``. Each level splits
    the image into ``2**level`` windows per side. FITS rows run south to
    north, tile rows north to south, so rows are counted from the far end.
    """
    row, column = chunk[0], chunk[1]
    ny, nx = image_shape
    factor = 2**level

    height = ny / factor
    width = nx / factor

    left = int(round(column * width))
    right = max(int(round((column + 1) * width)), left + 1)
    top = int(round(row * height))
    bottom = max(int(round((row + 1) * height)), top + 1)

    return slice(ny - bottom, ny - top), slice(left, right)


class WindowedImageLoader(ChunkLoader):
    filename: str
    hdu: int
    index: int | None
    output_size: int

    def __init__(
        self,
        filename: str,
        level: int,
        output_size: int,
        hdu: int = 0,
        index: int | None = None,
        internal_loader_id: str | None = None,
    ):
        self.filename = filename
        self.hdu = hdu
        self.index = index
        self.output_size = output_size
        super().__init__(level=level, internal_loader_id=internal_loader_id)

    def _read(self, chunk: ChunkCoordinate) -> np.ndarray:
        with fits.open(self.filename) as handle:
            hdu = handle[self.hdu]
            rows, columns = window_slices(chunk, self.level, hdu.shape[-2:])

            if self.index is not None:
                window = hdu.section[self.index, rows, columns]
            else:
                window = hdu.section[rows, columns]

        window = np.flipud(np.asarray(window, dtype=np.float32))

        return resample_nearest(window, self.output_size)

    async def load(self, chunk: ChunkCoordinate) -> np.ndarray | None:
        log = self.logger.bind(level=self.level, chunk=chunk, filename=self.filename)

        start = perf_counter()
        data = await asyncio.to_thread(self._read, chunk)

        log.debug("fits.pulled", dt=perf_counter() - start)

        return data
