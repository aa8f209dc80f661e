"""
Colormaps and an offline renderer for drawable tiles.
"""

from pathlib import Path
from typing import BinaryIO, Optional, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np
import structlog
from matplotlib.colors import Colormap, ListedColormap, LogNorm
from pydantic import BaseModel, Field

from tilestream.active import DrawableProps
from tilestream.geometry import ViewState, offset_to_pixels
from tilestream.settings import settings

ColormapSpec = Union[str, list[tuple[float, float, float]]]


def colormap_lut(colormap: ColormapSpec) -> Colormap:
    """
    A matplotlib colormap from either a registered name or a list of RGB
    triples. Triples may be given in 0-255 or 0-1 range.
    """
    if isinstance(colormap, str):
        return plt.get_cmap(colormap)

    colors = np.asarray(colormap, dtype=np.float64)

    if colors.ndim != 2 or colors.shape[1] not in (3, 4):
        raise ValueError("Colormap must be a list of RGB(A) triples")

    if colors.max() > 1.0:
        colors = colors / 255.0

    return ListedColormap(colors)


class RenderOptions(BaseModel):
    cmap: ColormapSpec = Field(default_factory=lambda: settings.default_cmap)
    "Color map name, or list of RGB triples"
    vmin: float = Field(default=0.0)
    "Color map range minimum"
    vmax: float = Field(default=1.0)
    "Color map range maximum"
    log_norm: bool = Field(default=False)
    "Whether to use a log normalization, defaults to False"
    clip: bool = Field(default=False)
    "Whether to clip values outside of the range, defaults to False"
    opacity: float = Field(default=1.0)
    "Global alpha applied to every drawn pixel"
    fill_value: float = Field(default_factory=lambda: settings.fill_value)
    "Values equal to this are drawn transparent"

    @property
    def norm(self) -> plt.Normalize:
        if self.log_norm:
            return LogNorm(vmin=self.vmin, vmax=self.vmax, clip=self.clip)
        else:
            return plt.Normalize(vmin=self.vmin, vmax=self.vmax, clip=self.clip)

    @property
    def colormap(self) -> Colormap:
        return colormap_lut(self.cmap)


def band_image(values: np.ndarray) -> np.ndarray:
    """
    Band buffer as a square 2D image; flattened point buffers are folded back
    into their tile shape.
    """
    if values.ndim == 2:
        return values

    side = int(round(np.sqrt(values.size)))

    if side * side != values.size:
        raise ValueError(f"Cannot fold {values.size} points into a square tile")

    return values.reshape(side, side)


class ImageRenderer:
    """
    Composites the first band of each drawable tile into a viewport-sized
    image and writes it with matplotlib.
    """

    fname: Union[str, Path, BinaryIO]
    render_options: RenderOptions
    view: Optional[ViewState]
    format: Optional[str]

    def __init__(
        self,
        fname: Union[str, Path, BinaryIO],
        render_options: Optional[RenderOptions] = None,
        format: Optional[str] = None,
    ):
        self.fname = fname
        self.render_options = render_options or RenderOptions()
        self.format = format
        self.view = None
        self.logger = structlog.get_logger()

        return

    def composite(
        self, props: Sequence[DrawableProps], view: ViewState
    ) -> np.ndarray:
        """
        Nearest-neighbour composite of the tiles into a float canvas; pixels
        that no tile covers are NaN.
        """
        width = int(round(view.width))
        height = int(round(view.height))
        canvas = np.full((height, width), np.nan, dtype=np.float32)

        for prop in props:
            if not prop.bands:
                continue

            data = band_image(np.asarray(next(iter(prop.bands.values()))))
            left, top, size = offset_to_pixels(prop.offset, prop.level, view)

            x0 = max(int(np.floor(left)), 0)
            x1 = min(int(np.ceil(left + size)), width)
            y0 = max(int(np.floor(top)), 0)
            y1 = min(int(np.ceil(top + size)), height)

            if x0 >= x1 or y0 >= y1:
                continue

            n_rows, n_columns = data.shape
            columns = (np.arange(x0, x1) + 0.5 - left) / size * n_columns
            rows = (np.arange(y0, y1) + 0.5 - top) / size * n_rows

            columns = np.clip(columns.astype(int), 0, n_columns - 1)
            rows = np.clip(rows.astype(int), 0, n_rows - 1)

            canvas[y0:y1, x0:x1] = data[np.ix_(rows, columns)]

        canvas[canvas == self.render_options.fill_value] = np.nan

        return canvas

    def render(self, props: Sequence[DrawableProps], view: ViewState):
        """
        Renders the drawable tiles to ``fname``.

        Parameters
        ----------
        props : Sequence[DrawableProps]
            Tiles to draw, at their own levels and offsets.
        view : ViewState
            View the offsets are relative to.
        """
        options = self.render_options
        canvas = self.composite(props, view)

        cmap = options.colormap.copy()
        cmap.set_bad("#000000", 0.0)

        mapped = cmap(options.norm(np.ma.masked_invalid(canvas)))
        mapped[..., 3] *= options.opacity

        plt.imsave(self.fname, mapped, format=self.format)

        self.logger.info(
            "renderer.saved", n_tiles=len(props), width=view.width, height=view.height
        )

        return

    def __call__(self, props: Sequence[DrawableProps]):
        if self.view is None:
            raise ValueError("ImageRenderer needs a view before it can draw")

        self.render(props, self.view)
