"""
Settings for the project.
"""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    tile_pixels: int = 512
    "On-screen size (CSS pixels) of one tile when the continuous zoom equals its level."

    fill_value: float = -9999.0
    "Value used for empty band buffers and for parts of a tile that have not been fetched."

    mode: Literal["grid", "dotgrid", "texture"] = "texture"
    "Default render primitive mode for new tile sets."

    window_output_size: int = 128
    "Output size (pixels per side) of every windowed image read."

    earth_radius_m: float = 6371008.8
    "Mean Earth radius used to turn great-circle angles into distances."

    default_cmap: str = "viridis"
    "Colormap used when none is given."

    class Config:
        env_prefix = "TILESTREAM_"


settings = Settings()
