from .core import ChunkLoader
from .fits import WindowedImageLoader
from .zarr import ArrayStoreLoader

__all__ = ["ArrayStoreLoader", "ChunkLoader", "WindowedImageLoader"]
