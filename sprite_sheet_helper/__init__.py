"""Pixel-art sprite sheet helper: chroma key extraction, sheet composition and GIF export."""

from .errors import DecodeError, GenerationError, InvalidInputError
from .image_utils import PixelBuffer, Region, extract_sprite, find_content_region, flip_horizontal, is_background
from .make_gif import encode_animation
from .make_sheet import compose_sheet, export_sheet

__version__ = "0.1.0"
