"""
Display buffers for a single band of a single tile.
"""

from typing import Callable, Literal

import numpy as np

Mode = Literal["grid", "dotgrid", "texture"]
VALID_MODES: tuple[str, ...] = ("grid", "dotgrid", "texture")


class InvalidModeError(ValueError):
    pass


class BandBuffer:
    """
    Holds the display-ready values of one band. Textures keep their 2D shape,
    point primitives (``grid``, ``dotgrid``) take one value per point.
    """

    data: np.ndarray
    flatten: bool
    writes: int

    def __init__(self, fill_value: float, flatten: bool = False):
        self.flatten = flatten
        self.writes = 0
        shape = (1,) if flatten else (1, 1)
        self.data = np.full(shape, fill_value, dtype=np.float32)

    def update(self, values: np.ndarray):
        values = np.asarray(values, dtype=np.float32)

        if self.flatten:
            values = values.ravel()

        if values.shape == self.data.shape:
            self.data[...] = values
        else:
            self.data = values.copy()

        self.writes += 1


def validate_mode(mode: str) -> str:
    if mode not in VALID_MODES:
        raise InvalidModeError(
            f"mode '{mode}' invalid, must be one of {', '.join(VALID_MODES)}"
        )

    return mode


def buffer_factory(mode: str, fill_value: float) -> Callable[[], BandBuffer]:
    flatten = validate_mode(mode) != "texture"

    def initialize() -> BandBuffer:
        return BandBuffer(fill_value=fill_value, flatten=flatten)

    return initialize
