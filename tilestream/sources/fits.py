"""
Windowed-image sources: one FITS image, cut into ``2**z`` x ``2**z`` windows
at level ``z`` and resampled to a fixed output size on read.
"""

import asyncio
import math
from typing import Literal

import structlog
from astropy.io import fits
from pydantic import Field

from tilestream.loaders.fits import WindowedImageLoader
from tilestream.settings import settings

from .core import PyramidMetadata, PyramidSource


class WindowedImageSource(PyramidSource):
    provider_type: Literal["fits"] = "fits"
    filename: str
    hdu: int = 0
    index: int | None = None
    output_size: int = Field(default_factory=lambda: settings.window_output_size)
    max_zoom: int | None = None

    def image_shape(self) -> tuple[int, int]:
        with fits.open(self.filename) as handle:
            header = handle[self.hdu].header
            return int(header["NAXIS2"]), int(header["NAXIS1"])

    def calculate_max_zoom(self, image_shape: tuple[int, int]) -> int:
        """
        Deepest level at which a window still holds at least ``output_size``
        image pixels along its longest side.
        """
        largest = max(image_shape)

        if largest <= self.output_size:
            return 0

        return int(math.floor(math.log2(largest / self.output_size)))

    async def resolve(self) -> PyramidMetadata:
        log = structlog.get_logger().bind(filename=self.filename, hdu=self.hdu)

        image_shape = await asyncio.to_thread(self.image_shape)

        max_zoom = self.max_zoom

        if max_zoom is None:
            max_zoom = self.calculate_max_zoom(image_shape)

        log = log.bind(image_shape=image_shape, max_zoom=max_zoom)
        log.info("fits.resolved")

        return PyramidMetadata(
            levels=list(range(max_zoom + 1)),
            max_zoom=max_zoom,
            tile_size=self.output_size,
            dimensions=["y", "x"],
            shape=[self.output_size, self.output_size],
            chunks=[self.output_size, self.output_size],
            coordinates={},
        )

    def loader(self, level: int) -> WindowedImageLoader:
        return WindowedImageLoader(
            filename=self.filename,
            level=level,
            output_size=self.output_size,
            hdu=self.hdu,
            index=self.index,
        )
