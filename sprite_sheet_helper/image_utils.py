"""Pixel buffer utilities: chroma key classification, content bounds, sprite extraction and mirroring."""

import base64
import binascii
import colorsys
import io
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, Iterable, TypeVar

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, InvalidInputError

# Declared chroma key: pure magenta, hue 300°
CHROMA_KEY_HEX = "#FF00FF"
CHROMA_HUE_MIN = 285.0
CHROMA_HUE_MAX = 340.0
CHROMA_MIN_SATURATION = 0.4
CHROMA_MIN_LIGHTNESS = 0.2
CHROMA_MAX_LIGHTNESS = 0.95

DEFAULT_MAX_WORKERS = 8

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class PixelBuffer:
    """Immutable RGBA8 pixel grid, row-major, 4 bytes per pixel."""

    width: int
    height: int
    data: bytes

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(f"Buffer dimensions must be non-negative, got {self.width}x{self.height}")
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise ValueError(
                f"Buffer of {self.width}x{self.height} needs {expected} bytes, got {len(self.data)}"
            )

    @classmethod
    def blank(cls, width: int, height: int) -> "PixelBuffer":
        """Fully transparent buffer with zeroed color channels."""
        return cls(width, height, bytes(width * height * 4))

    @classmethod
    def from_image(cls, img: Image.Image) -> "PixelBuffer":
        rgba = img.convert("RGBA")
        w, h = rgba.size
        return cls(w, h, rgba.tobytes())

    def to_image(self) -> Image.Image:
        return Image.frombytes("RGBA", (self.width, self.height), self.data)

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def pixel(self, x: int, y: int) -> tuple[int, int, int, int]:
        i = (y * self.width + x) * 4
        return tuple(self.data[i:i + 4])


@dataclass(frozen=True)
class Region:
    """Axis-aligned integer rectangle. Crop regions may extend outside the source."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        """Inclusive max x."""
        return self.x + self.width - 1

    @property
    def bottom(self) -> int:
        """Inclusive max y."""
        return self.y + self.height - 1


@lru_cache(maxsize=65536)
def is_background(r: int, g: int, b: int) -> bool:
    """Return True if the RGB triple belongs to the magenta chroma key background.

    Tests the HSL representation rather than color equality so that compression
    artifacts and anti-aliased edges around the sprite are still keyed out, while
    skin tones, purples and near-black or near-white pixels are kept:

    - hue in [285°, 340°]
    - saturation > 0.4
    - lightness in (0.2, 0.95)
    """
    hue, lightness, saturation = colorsys.rgb_to_hls(r / 255.0, g / 255.0, b / 255.0)
    hue_deg = hue * 360.0
    return (
        CHROMA_HUE_MIN <= hue_deg <= CHROMA_HUE_MAX
        and saturation > CHROMA_MIN_SATURATION
        and CHROMA_MIN_LIGHTNESS < lightness < CHROMA_MAX_LIGHTNESS
    )


def find_content_region(buffer: PixelBuffer) -> Region | None:
    """Find the minimal rectangle covering every non-background pixel.

    Scans the whole buffer; there is no early exit since any pixel can widen the
    bound. Returns None if every pixel is background.
    """
    w, h = buffer.width, buffer.height
    data = buffer.data
    min_x, min_y = w, h
    max_x, max_y = -1, -1

    for y in range(h):
        row = y * w * 4
        for x in range(w):
            i = row + x * 4
            if is_background(data[i], data[i + 1], data[i + 2]):
                continue
            if x < min_x:
                min_x = x
            if x > max_x:
                max_x = x
            if y < min_y:
                min_y = y
            if y > max_y:
                max_y = y

    if max_x < 0:
        return None
    return Region(min_x, min_y, max_x - min_x + 1, max_y - min_y + 1)


def square_crop(region: Region) -> tuple[float, float, int]:
    """Square that centers `region`, as (crop_x, crop_y, side). Origin may be fractional or negative."""
    side = max(region.width, region.height)
    crop_x = region.x - (side - region.width) / 2
    crop_y = region.y - (side - region.height) / 2
    return crop_x, crop_y, side


def extract_sprite(buffer: PixelBuffer, region: Region | None, target_size: int) -> PixelBuffer:
    """Crop, downsample and key out the background in one pass.

    The content region is centered in a square, each output pixel samples the
    source at the center of its block (nearest neighbor, clamped to the source
    edges), and background samples become fully transparent with zeroed color.
    Foreground samples are copied verbatim.

    Args:
        buffer: Raw image with the chroma key background.
        region: Content bounds from find_content_region, or None if the image is all background.
        target_size: Output edge length in pixels.

    Returns:
        A target_size x target_size RGBA buffer.
    """
    if target_size <= 0:
        raise InvalidInputError(f"Sprite size must be positive, got {target_size}")

    out = bytearray(target_size * target_size * 4)
    if region is None or buffer.is_empty:
        return PixelBuffer(target_size, target_size, bytes(out))

    crop_x, crop_y, side = square_crop(region)
    step = side / target_size
    max_x = buffer.width - 1
    max_y = buffer.height - 1

    xs = [min(max(math.floor(crop_x + x * step + step / 2), 0), max_x) for x in range(target_size)]
    ys = [min(max(math.floor(crop_y + y * step + step / 2), 0), max_y) for y in range(target_size)]

    src = buffer.data
    for y, sy in enumerate(ys):
        src_row = sy * buffer.width
        out_row = y * target_size
        for x, sx in enumerate(xs):
            i = (src_row + sx) * 4
            if is_background(src[i], src[i + 1], src[i + 2]):
                continue
            o = (out_row + x) * 4
            out[o:o + 4] = src[i:i + 4]

    return PixelBuffer(target_size, target_size, bytes(out))


def process_sprite(buffer: PixelBuffer, target_size: int) -> PixelBuffer:
    """Turn a raw chroma-keyed image into a target_size sprite with straight alpha."""
    return extract_sprite(buffer, find_content_region(buffer), target_size)


def flip_horizontal(buffer: PixelBuffer) -> PixelBuffer:
    """Mirror a buffer left to right. Applying it twice returns the original bytes."""
    if buffer.is_empty:
        return buffer
    flipped = buffer.to_image().transpose(Image.Transpose.FLIP_LEFT_RIGHT)
    return PixelBuffer.from_image(flipped)


def to_data_uri(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def _read_source(source: bytes | str | Path) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, str) and source.startswith("data:"):
        header, _, payload = source.partition(",")
        if ";base64" not in header:
            raise DecodeError(f"Unsupported data URI encoding: {header[:40]}")
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise DecodeError(f"Invalid base64 payload in data URI: {e}") from e
    path = Path(source)
    try:
        return path.read_bytes()
    except OSError as e:
        raise DecodeError(f"Could not read image file {path}: {e}") from e


def decode_image(source: bytes | str | Path) -> PixelBuffer:
    """Decode raw bytes, a data URI or an image file path into an RGBA buffer.

    Raises:
        DecodeError: If the source cannot be read or parsed as an image.
    """
    data = _read_source(source)
    try:
        with Image.open(io.BytesIO(data)) as img:
            return PixelBuffer.from_image(img)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Could not decode image ({len(data)} bytes): {e}") from e


def encode_png(buffer: PixelBuffer) -> bytes:
    """Encode a buffer as PNG bytes."""
    if buffer.is_empty:
        raise InvalidInputError("Cannot encode a zero-area image.")
    out = io.BytesIO()
    buffer.to_image().save(out, "PNG")
    return out.getvalue()


def map_bounded(fn: Callable[[T], R], items: Iterable[T], max_workers: int | None = None) -> list[R]:
    """Run `fn` over independent items on a bounded thread pool, preserving order.

    Returns once every task has resolved. If one task raises, tasks that have not
    started yet are cancelled and the exception propagates.
    """
    items = list(items)
    if not items:
        return []
    workers = max(1, min(max_workers or DEFAULT_MAX_WORKERS, len(items)))
    if workers == 1:
        return [fn(item) for item in items]

    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [executor.submit(fn, item) for item in items]
        results = [f.result() for f in futures]
    except BaseException:
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return results


def decode_images(
    sources: Iterable[bytes | str | Path], max_workers: int | None = None
) -> list[PixelBuffer | DecodeError]:
    """Decode several images concurrently.

    Each entry is either the decoded buffer or the DecodeError for that source, so
    one broken input does not abort its siblings.
    """

    def _decode(source):
        try:
            return decode_image(source)
        except DecodeError as e:
            return e

    return map_bounded(_decode, sources, max_workers)