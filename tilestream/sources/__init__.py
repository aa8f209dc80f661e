"""
Source descriptors. The descriptor type decides, once, which loader variant
serves every chunk of the source.
"""

from pathlib import Path
from typing import Annotated

import structlog
from pydantic import Field, TypeAdapter

from .core import PyramidMetadata, PyramidSource
from .fits import WindowedImageSource
from .zarr import ArrayStoreSource

SourceType = Annotated[
    ArrayStoreSource | WindowedImageSource, Field(discriminator="provider_type")
]

FITS_SUFFIXES = (".fits", ".fit", ".fits.gz", ".fits.fz")


def source_from_location(location: str, variable: str) -> PyramidSource:
    """
    Build a descriptor from a path or URL, choosing the backend by suffix.
    """
    if location.lower().endswith(FITS_SUFFIXES):
        return WindowedImageSource(filename=location)

    return ArrayStoreSource(store=location, variable=variable)


def parse_source(config: Path) -> PyramidSource:
    log = structlog.get_logger()
    log = log.bind(config_path=str(config))

    with open(config, "r") as handle:
        source = TypeAdapter(SourceType).validate_json(handle.read())

    log = log.bind(provider_type=source.provider_type)
    log.info("config.parsed")

    return source


__all__ = [
    "ArrayStoreSource",
    "PyramidMetadata",
    "PyramidSource",
    "SourceType",
    "WindowedImageSource",
    "parse_source",
    "source_from_location",
]
