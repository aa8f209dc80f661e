"""
CLI components (using typer)
"""

import asyncio
import logging
import sys
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from tilestream.geometry import Camera, LngLat, zoom_to_level
from tilestream.region import Region
from tilestream.rendering import ImageRenderer
from tilestream.selectors import Selector
from tilestream.sources import PyramidSource, parse_source, source_from_location
from tilestream.tiles import Tiles

CONSOLE = Console()

APP = typer.Typer()


@APP.callback()
def configure(verbose: bool = False):
    """
    Stream and query multi-resolution raster pyramids.
    """
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.WARNING
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _coerce(value: str):
    for kind in (int, float):
        try:
            return kind(value)
        except ValueError:
            continue

    return value


def parse_selector(select: list[str]) -> Selector:
    """
    Turn ``dim=value`` (or ``dim=a,b,c``) arguments into a selector.
    """
    selector = {}

    for item in select:
        dimension, sep, value = item.partition("=")

        if not sep or not dimension:
            raise typer.BadParameter(f"Expected dim=value, got '{item}'")

        values = [_coerce(v) for v in value.split(",")]
        selector[dimension] = values if len(values) > 1 else values[0]

    return selector


def load_source(source: str, variable: str) -> PyramidSource:
    if source.endswith(".json"):
        return parse_source(Path(source))

    return source_from_location(source, variable)


@APP.command()
def info(source: str, variable: str = "data"):
    """
    Print the pyramid metadata of a source.
    """
    metadata = asyncio.run(load_source(source, variable).resolve())

    table = Table(title=source)
    table.add_column("Field")
    table.add_column("Value")

    table.add_row("levels", ", ".join(str(z) for z in metadata.levels))
    table.add_row("max zoom", str(metadata.max_zoom))
    table.add_row("tile size", str(metadata.tile_size))
    table.add_row("dimensions", ", ".join(metadata.dimensions))
    table.add_row("shape", " x ".join(str(s) for s in metadata.shape))
    table.add_row("chunks", " x ".join(str(c) for c in metadata.chunks))

    for dimension, values in metadata.coordinates.items():
        table.add_row(f"coordinates[{dimension}]", f"{len(values)} values")

    CONSOLE.print(table)


@APP.command()
def query(
    source: str,
    lng: float = 0.0,
    lat: float = 0.0,
    radius: float = 100.0,
    units: str = "kilometers",
    zoom: float = 0.0,
    variable: str = "data",
    select: list[str] = typer.Option([], help="dim=value, may be repeated"),
):
    """
    Sample a source within a circular region and print the result as JSON.
    """
    tiles = Tiles(
        source=load_source(source, variable),
        variable=variable,
        selector=parse_selector(select),
    )
    region = Region(center=LngLat(lng=lng, lat=lat), radius=radius, units=units)

    async def run():
        metadata = await tiles.initialize()
        level = zoom_to_level(zoom, metadata.max_zoom)
        return await tiles.region.request(region, tiles.selector, level)

    result = asyncio.run(run())

    CONSOLE.print_json(data=result.as_dict())


@APP.command()
def snapshot(
    source: str,
    output: Path,
    lng: float = 0.0,
    lat: float = 0.0,
    zoom: float = 0.0,
    width: int = 1024,
    height: int = 512,
    cmap: str = "viridis",
    vmin: float = 0.0,
    vmax: float = 1.0,
    variable: str = "data",
    select: list[str] = typer.Option([], help="dim=value, may be repeated"),
):
    """
    Load the tiles visible from a camera and render them to an image.
    """
    tiles = Tiles(
        source=load_source(source, variable),
        variable=variable,
        selector=parse_selector(select),
        colormap=cmap,
        clim=(vmin, vmax),
        renderer=ImageRenderer(output),
    )
    camera = Camera(center=LngLat(lng=lng, lat=lat), zoom=zoom)

    async def run():
        await tiles.initialize()
        tiles.set_viewport(width, height)

        task = tiles.update_camera(camera)

        if task is not None:
            await task

        return tiles.draw()

    props = asyncio.run(run())

    CONSOLE.print(f"Rendered {len(props)} tiles to {output}")


def main():
    global APP

    APP()
