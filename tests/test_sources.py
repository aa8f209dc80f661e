import json

import pytest
from pydantic import ValidationError

from tilestream.sources import (
    ArrayStoreSource,
    WindowedImageSource,
    parse_source,
    source_from_location,
)
from tilestream.sources.core import PyramidSource


def test_source_from_location_picks_backend():
    assert isinstance(source_from_location("map.fits", "data"), WindowedImageSource)
    assert isinstance(source_from_location("MAP.FITS.GZ", "data"), WindowedImageSource)

    source = source_from_location("s3://bucket/pyramid.zarr", "tavg")
    assert isinstance(source, ArrayStoreSource)
    assert source.variable == "tavg"


def test_parse_source(tmp_path):
    config = tmp_path / "source.json"
    config.write_text(
        json.dumps({"provider_type": "fits", "filename": "map.fits", "hdu": 1})
    )

    source = parse_source(config)

    assert isinstance(source, WindowedImageSource)
    assert source.hdu == 1
    assert source.output_size == 128

    config.write_text(
        json.dumps({"provider_type": "zarr", "store": "p.zarr", "variable": "tavg"})
    )
    assert isinstance(parse_source(config), ArrayStoreSource)


def test_parse_source_rejects_unknown_provider(tmp_path):
    config = tmp_path / "source.json"
    config.write_text(json.dumps({"provider_type": "tiff", "filename": "map.tif"}))

    with pytest.raises(ValidationError):
        parse_source(config)


def test_source_without_loader_cannot_be_built():
    class MetadataOnly(PyramidSource):
        provider_type: str = "zarr"

        async def resolve(self):
            return None

    with pytest.raises(TypeError):
        MetadataOnly()

    with pytest.raises(TypeError):
        PyramidSource(provider_type="zarr")


def test_fits_levels_from_image_size():
    source = WindowedImageSource(filename="map.fits", output_size=128)

    assert source.calculate_max_zoom((100, 120)) == 0
    assert source.calculate_max_zoom((512, 1024)) == 3
    assert source.calculate_max_zoom((512, 1000)) == 2
