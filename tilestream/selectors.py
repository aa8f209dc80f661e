"""
Selectors pin (or restrict) the non-spatial dimensions of a source, e.g.
``{"time": 3}`` or ``{"band": ["red", "green"]}``.
"""

import itertools
import json
import math
from hashlib import md5
from typing import Any, Mapping, Sequence

import numpy as np

SPATIAL_DIMENSIONS = ("x", "y")

Selector = Mapping[str, Any]
ChunkCoordinate = tuple[int, ...]


def _jsonable(value):
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    return str(value)


def selector_hash(selector: Selector) -> str:
    """
    Content hash of a selector; equal selectors give equal hashes regardless
    of key order.
    """
    canonical = json.dumps(dict(selector), sort_keys=True, default=_jsonable)
    return md5(canonical.encode("utf-8")).hexdigest()


def is_multiple(value: Any) -> bool:
    return isinstance(value, (list, tuple, np.ndarray))


def _band_label(dimension: str, value: Any) -> str:
    if isinstance(value, str):
        return value
    return f"{dimension}_{value}"


def get_band_information(selector: Selector) -> dict[str, dict[str, Any]]:
    """
    One band per combination of the array-valued selector entries, mapped to
    the selector with those entries pinned to that combination.
    """
    multiple = [key for key, value in selector.items() if is_multiple(value)]

    if not multiple:
        return {}

    information = {}

    for combination in itertools.product(*(selector[key] for key in multiple)):
        band = "_".join(
            _band_label(key, value) for key, value in zip(multiple, combination)
        )
        pinned = dict(selector)
        pinned.update(zip(multiple, combination))
        information[band] = pinned

    return information


def get_bands(variable: str, selector: Selector) -> list[str]:
    return list(get_band_information(selector)) or [variable]


def coordinate_index(coordinates: Sequence[Any], value: Any) -> int:
    matches = np.flatnonzero(np.asarray(coordinates) == value)

    if matches.size == 0:
        raise ValueError(f"Coordinate value {value!r} not present")

    return int(matches[0])


def get_chunks(
    selector: Selector,
    dimensions: Sequence[str],
    coordinates: Mapping[str, Sequence[Any]],
    shape: Sequence[int],
    chunks: Sequence[int],
    x: int,
    y: int,
) -> list[ChunkCoordinate]:
    """
    Chunk coordinates of tile ``(x, y)`` that hold the data ``selector`` asks
    for. Dimensions missing from the selector need every chunk along them.
    """
    per_dimension = []

    for i, dimension in enumerate(dimensions):
        if dimension == "x":
            per_dimension.append([x])
        elif dimension == "y":
            per_dimension.append([y])
        elif selector.get(dimension) is None:
            per_dimension.append(range(math.ceil(shape[i] / chunks[i])))
        else:
            value = selector[dimension]
            values = value if is_multiple(value) else [value]
            per_dimension.append(
                sorted(
                    {
                        coordinate_index(coordinates[dimension], v) // chunks[i]
                        for v in values
                    }
                )
            )

    return [tuple(c) for c in itertools.product(*per_dimension)]
