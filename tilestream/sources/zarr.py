"""
Chunked-array store sources: a zarr group laid out as a multiscale pyramid.

The group carries a ``multiscales`` attribute whose first entry lists one
dataset per level:

```json
{
  "multiscales": [
    {
      "datasets": [
        {"path": "0", "pixels_per_tile": 128},
        {"path": "1", "pixels_per_tile": 128}
      ]
    }
  ]
}
```

Level ``z`` holds the variable at ``{z}/{variable}``, chunked so that one
spatial chunk is one tile, and non-spatial coordinate arrays at ``{z}/{dim}``.
"""

import asyncio
from typing import Any, Literal

import structlog
import zarr
from pydantic import PrivateAttr

from tilestream.loaders.zarr import ArrayStoreLoader
from tilestream.selectors import SPATIAL_DIMENSIONS

from .core import PyramidMetadata, PyramidSource


class ArrayStoreSource(PyramidSource):
    provider_type: Literal["zarr"] = "zarr"
    store: str
    variable: str

    _group: Any = PrivateAttr(default=None)

    def group(self):
        if self._group is None:
            self._group = zarr.open_group(self.store, mode="r")

        return self._group

    def _read_metadata(self) -> PyramidMetadata:
        log = structlog.get_logger().bind(store=self.store, variable=self.variable)

        group = self.group()
        datasets = group.attrs["multiscales"][0]["datasets"]

        levels = sorted(int(dataset["path"]) for dataset in datasets)
        tile_size = int(datasets[0]["pixels_per_tile"])

        base = group[str(levels[0])]
        array = base[self.variable]

        dimensions = array.attrs.get("_ARRAY_DIMENSIONS") or getattr(
            array.metadata, "dimension_names", None
        )

        if not dimensions:
            raise ValueError(
                f"Array {levels[0]}/{self.variable} does not name its dimensions"
            )

        dimensions = list(dimensions)
        shape = list(array.shape)

        coordinates = {}

        for i, dimension in enumerate(dimensions):
            if dimension in SPATIAL_DIMENSIONS:
                continue

            if dimension in base:
                coordinates[dimension] = base[dimension][:].tolist()
            else:
                coordinates[dimension] = list(range(shape[i]))

        log = log.bind(levels=levels, dimensions=dimensions, shape=shape)
        log.info("zarr.resolved")

        return PyramidMetadata(
            levels=levels,
            max_zoom=max(levels),
            tile_size=tile_size,
            dimensions=dimensions,
            shape=shape,
            chunks=list(array.chunks),
            coordinates=coordinates,
        )

    async def resolve(self) -> PyramidMetadata:
        return await asyncio.to_thread(self._read_metadata)

    def loader(self, level: int) -> ArrayStoreLoader:
        return ArrayStoreLoader(
            array=self.group()[f"{level}/{self.variable}"], level=level
        )
