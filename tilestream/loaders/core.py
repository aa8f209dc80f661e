"""
Core (abstract) chunk loader.
"""

import uuid
from abc import ABC, abstractmethod

import numpy as np
import structlog
from structlog.types import FilteringBoundLogger

from tilestream.selectors import ChunkCoordinate


class ChunkLoader(ABC):
    """
    Fetches one chunk of one pyramid level. ``load`` returns ``None`` when the
    source has no data for the coordinate; transport and decode failures are
    raised to the caller.
    """

    internal_loader_id: str
    level: int
    logger: FilteringBoundLogger

    def __init__(self, level: int, internal_loader_id: str | None = None):
        self.level = level
        self.internal_loader_id = internal_loader_id or str(uuid.uuid4())
        self.logger = structlog.get_logger()

    @abstractmethod
    async def load(self, chunk: ChunkCoordinate) -> np.ndarray | None:
        raise NotImplementedError
