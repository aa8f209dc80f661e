"""
The ``Tiles`` object: everything a map layer needs from one data source.
"""

import asyncio
from typing import Any, Callable, Sequence

import structlog

from tilestream.active import ActiveSetResolver, DrawableProps
from tilestream.buffers import buffer_factory, validate_mode
from tilestream.geometry import Camera
from tilestream.index import TileIndex
from tilestream.orchestrator import LoadOrchestrator
from tilestream.region import (
    Region,
    RegionQueryEngine,
    RegionResult,
    RegionSubscription,
)
from tilestream.rendering import ColormapSpec, ImageRenderer, RenderOptions
from tilestream.selectors import Selector, get_bands
from tilestream.settings import settings
from tilestream.sources.core import PyramidMetadata, PyramidSource


def _noop(*args):
    return


class Tiles:
    """
    Ties a ``TileIndex`` to camera-driven loading, region queries and a
    renderer.

    Bands are fixed by the selector given at construction; later selectors
    may change which coordinates are drawn but not how many bands there are.
    """

    source: PyramidSource
    variable: str
    selector: Selector
    mode: str
    bands: list[str]
    index: TileIndex
    orchestrator: LoadOrchestrator

    def __init__(
        self,
        source: PyramidSource,
        variable: str,
        selector: Selector | None = None,
        mode: str | None = None,
        colormap: ColormapSpec | None = None,
        clim: tuple[float, float] = (0.0, 1.0),
        opacity: float = 1.0,
        display: bool = True,
        uniforms: dict[str, Any] | None = None,
        fill_value: float | None = None,
        invalidate: Callable[[], None] | None = None,
        invalidate_region: Callable[[], None] | None = None,
        set_loading: Callable[[bool], None] | None = None,
        renderer: Callable[[Sequence[DrawableProps]], Any] | None = None,
        region_options: Region | None = None,
        set_region_data: Callable[[RegionResult | None], None] | None = None,
        tile_pixels: float | None = None,
    ):
        self.mode = validate_mode(mode or settings.mode)
        self.source = source
        self.variable = variable
        self.selector = dict(selector or {})
        self.fill_value = settings.fill_value if fill_value is None else fill_value

        self.colormap = colormap if colormap is not None else settings.default_cmap
        self.clim = clim
        self.display = display
        self.uniforms = dict(uniforms or {})
        self.uniforms["opacity"] = opacity if display else 0.0

        self.renderer = renderer
        self.region_options = region_options

        self._invalidate = invalidate or _noop
        self._invalidate_region = invalidate_region or _noop
        self._region_refresh: asyncio.Future | None = None

        self.bands = get_bands(variable, self.selector)

        self.index = TileIndex(
            source=source,
            bands=self.bands,
            initialize_buffer=buffer_factory(self.mode, self.fill_value),
            fill_value=self.fill_value,
        )

        self.orchestrator = LoadOrchestrator(
            index=self.index,
            resolver=ActiveSetResolver(tile_pixels=tile_pixels),
            selector=self.selector,
            invalidate=self._invalidate,
            invalidate_region=self._on_region_invalidated,
            set_loading=set_loading,
        )

        self.region = RegionSubscription(
            engine=RegionQueryEngine(self.index, variable),
            set_data=set_region_data or _noop,
        )

        self.logger = structlog.get_logger().bind(variable=variable, mode=self.mode)

    async def initialize(self) -> PyramidMetadata:
        metadata = await self.index.wait_initialized()
        self._invalidate()

        return metadata

    def _on_region_invalidated(self):
        self._invalidate_region()

        if self.region.region is None:
            return

        task = asyncio.ensure_future(self.region.refresh())

        def done(task: asyncio.Future):
            if task.cancelled() or task.exception() is None:
                return

            self.logger.warning("region.refresh_failed", exc_info=task.exception())

        task.add_done_callback(done)
        self._region_refresh = task

    @property
    def loading(self) -> bool:
        return self.orchestrator.loading

    @property
    def render_options(self) -> RenderOptions:
        return RenderOptions(
            cmap=self.colormap,
            vmin=self.clim[0],
            vmax=self.clim[1],
            opacity=self.uniforms["opacity"],
            fill_value=self.fill_value,
        )

    def update_camera(self, camera: Camera | dict) -> asyncio.Task | None:
        return self.orchestrator.update_camera(Camera.model_validate(camera))

    def set_viewport(self, width: float, height: float, pixel_ratio: float = 1.0):
        self.orchestrator.set_viewport(width, height, pixel_ratio)

    def update_selector(self, selector: Selector):
        self.selector = dict(selector)
        self.orchestrator.update_selector(self.selector)

    def update_uniforms(
        self,
        uniforms: dict[str, Any] | None = None,
        opacity: float | None = None,
        display: bool | None = None,
    ):
        if uniforms:
            self.uniforms.update(uniforms)

        if opacity is not None:
            self.uniforms["opacity"] = opacity

        if display is not None:
            self.display = display

        if not self.display:
            self.uniforms["opacity"] = 0.0

        self._invalidate()

    def update_colormap(
        self, colormap: ColormapSpec, clim: tuple[float, float] | None = None
    ):
        self.colormap = colormap

        if clim is not None:
            self.clim = clim

        self._invalidate()

    async def query_region(
        self, region: Region | None = None, selector: Selector | None = None
    ) -> RegionResult | None:
        """
        Query ``region`` (or the configured region options) at the current
        level. Only the most recent request publishes its result.
        """
        region = region or self.region_options

        if region is None:
            raise ValueError("No region given and no region options configured")

        level = self.orchestrator.level

        return await self.region.request(
            region,
            self.selector if selector is None else selector,
            0 if level is None else level,
        )

    def get_drawable_props(self) -> list[DrawableProps]:
        return self.orchestrator.drawable_props()

    def draw(self) -> list[DrawableProps]:
        props = self.get_drawable_props()

        if self.renderer is None:
            return props

        if isinstance(self.renderer, ImageRenderer):
            self.renderer.view = self.orchestrator.view
            self.renderer.render_options = self.render_options

        self.renderer(props)

        return props
