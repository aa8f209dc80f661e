"""
Drives chunk loads for the tiles that are currently visible.
"""

import asyncio
from typing import Callable

import structlog
from structlog.types import FilteringBoundLogger

from tilestream.active import ActiveSetResolver, DrawableProps
from tilestream.geometry import ActiveSet, Camera, TileKey, ViewState, Viewport
from tilestream.index import TileIndex, UnknownTileError
from tilestream.selectors import ChunkCoordinate, Selector
from tilestream.store import ChunkStore


def _noop(*args):
    return


class LoadOrchestrator:
    """
    Keeps the buffers of every active tile in step with the current selector.

    Tiles whose chunks are cached are populated immediately; the rest are
    loaded concurrently in one batch per camera update. The aggregate loading
    flag is reported through ``set_loading`` on transitions only: it turns
    False once the last pending tile has settled, whether it succeeded or not.
    """

    index: TileIndex
    resolver: ActiveSetResolver
    selector: Selector
    active: ActiveSet
    view: ViewState | None
    viewport: Viewport
    loading: bool
    logger: FilteringBoundLogger

    def __init__(
        self,
        index: TileIndex,
        resolver: ActiveSetResolver,
        selector: Selector | None = None,
        invalidate: Callable[[], None] | None = None,
        invalidate_region: Callable[[], None] | None = None,
        set_loading: Callable[[bool], None] | None = None,
    ):
        self.index = index
        self.resolver = resolver
        self.selector = dict(selector or {})
        self.invalidate = invalidate or _noop
        self.invalidate_region = invalidate_region or _noop
        self.set_loading = set_loading or _noop

        self.active = {}
        self.view = None
        self.viewport = Viewport()
        self.loading = False

        self._pending: set[TileKey] = set()
        self._initializing: asyncio.Task | None = None
        self.logger = structlog.get_logger()

    @property
    def level(self) -> int | None:
        return None if self.view is None else self.view.level

    def _report_loading(self, loading: bool):
        if loading != self.loading:
            self.loading = loading
            self.set_loading(loading)

    def set_viewport(self, width: float, height: float, pixel_ratio: float = 1.0):
        viewport = Viewport(width=width, height=height, pixel_ratio=pixel_ratio)

        if viewport != self.viewport:
            self.viewport = viewport
            self.invalidate()

    def update_selector(self, selector: Selector):
        self.selector = dict(selector)
        self.invalidate()

    def _initialize(self) -> asyncio.Task:
        task = self.index.start()

        if task is self._initializing:
            return task

        def done(task: asyncio.Task):
            if task.cancelled():
                return

            if task.exception() is not None:
                self.logger.warning(
                    "orchestrator.initialize_failed", exc_info=task.exception()
                )
                return

            self.invalidate()

        task.add_done_callback(done)
        self._initializing = task

        return task

    def update_camera(self, camera: Camera) -> asyncio.Task | None:
        """
        Recompute the active set and start whatever loads it needs.

        Returns
        -------
        asyncio.Task | None
            The task loading this update's tiles (or, before the source
            metadata is known, the task resolving it); None when nothing had
            to be fetched.
        """
        if not self.index.is_initialized:
            return self._initialize()

        metadata = self.index.metadata
        selector = self.selector

        self.active, self.view = self.resolver.resolve(
            camera, self.viewport, metadata.max_zoom
        )

        log = self.logger.bind(level=self.view.level, n_active=len(self.active))

        pending: list[tuple[ChunkStore, list[ChunkCoordinate]]] = []

        for key in self.active:
            try:
                store = self.index.get(key)
            except UnknownTileError:
                log.warning("orchestrator.unknown_tile", tile=key.hash)
                continue

            if (
                store.has_populated_buffer(selector)
                or store.loading
                or key in self._pending
            ):
                continue

            chunks = store.required_chunks(selector)

            if store.has_loaded_chunks(chunks):
                store.populate_buffers_sync(selector)
                self.invalidate()
            else:
                pending.append((store, chunks))

        if not pending:
            return None

        self._pending.update(store.key for store, _ in pending)
        self._report_loading(True)

        log.debug("orchestrator.loading", n_pending=len(pending))

        return asyncio.ensure_future(self._load_batch(pending, selector))

    async def _load_tile(
        self, store: ChunkStore, chunks: list[ChunkCoordinate], selector: Selector
    ) -> bool:
        try:
            updated = await store.populate_buffers(chunks, selector)
            self.invalidate()
            return updated
        finally:
            self._pending.discard(store.key)

            if not self._pending:
                self._report_loading(False)

    async def _load_batch(
        self,
        pending: list[tuple[ChunkStore, list[ChunkCoordinate]]],
        selector: Selector,
    ) -> bool:
        results = await asyncio.gather(
            *(self._load_tile(store, chunks, selector) for store, chunks in pending),
            return_exceptions=True,
        )

        failures = []

        for (store, _), result in zip(pending, results):
            if isinstance(result, BaseException):
                self.logger.warning(
                    "orchestrator.tile_failed", tile=store.key.hash, exc_info=result
                )
                failures.append(result)

        updated = any(result is True for result in results)

        if updated:
            self.invalidate_region()

        if failures:
            raise failures[0]

        return updated

    def drawable_props(self) -> list[DrawableProps]:
        if not self.index.is_initialized:
            return []

        return self.resolver.drawable_props(
            self.active, self.index, self.index.metadata.max_zoom
        )
