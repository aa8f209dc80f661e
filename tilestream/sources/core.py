"""
Pyramid metadata and the base class for source descriptors.
"""

from abc import abstractmethod
from typing import Any, Literal

from pydantic import BaseModel

from tilestream.loaders.core import ChunkLoader


class PyramidMetadata(BaseModel):
    levels: list[int]
    max_zoom: int
    tile_size: int
    dimensions: list[str]
    shape: list[int]
    chunks: list[int]
    coordinates: dict[str, list[Any]] = {}


class PyramidSource(BaseModel):
    """
    Base class for source descriptors. A descriptor knows how to resolve the
    pyramid metadata of its source and how to build the chunk loader of one
    level; which loader variant is used is fixed by the descriptor type.

    Subclasses must implement both ``resolve`` and ``loader``.
    """

    provider_type: Literal["zarr", "fits"]

    @abstractmethod
    async def resolve(self) -> PyramidMetadata:
        """
        Read the pyramid metadata of the source.
        """
        raise NotImplementedError

    @abstractmethod
    def loader(self, level: int) -> ChunkLoader:
        """
        Chunk loader for one level of the pyramid.
        """
        raise NotImplementedError
