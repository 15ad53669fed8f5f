import io
from types import SimpleNamespace

import pytest
from PIL import Image

from sprite_sheet_helper.image_utils import PixelBuffer

MAGENTA = (255, 0, 255, 255)
BLUE = (0, 0, 255, 255)


def solid(width, height, color=MAGENTA):
    return PixelBuffer.from_image(Image.new("RGBA", (width, height), color))


def with_rect(buffer, x0, y0, x1, y1, color=BLUE):
    """Copy of `buffer` with the inclusive rectangle (x0, y0)-(x1, y1) filled."""
    img = buffer.to_image()
    for y in range(y0, y1 + 1):
        for x in range(x0, x1 + 1):
            img.putpixel((x, y), color)
    return PixelBuffer.from_image(img)


def png_bytes(buffer):
    out = io.BytesIO()
    buffer.to_image().save(out, "PNG")
    return out.getvalue()


def image_response(data):
    """Shape of a google-genai response carrying one inline image."""
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type="image/png"), text=None)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


def text_response(text):
    part = SimpleNamespace(inline_data=None, text=text)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))], text=text)


@pytest.fixture
def raw_character():
    """100x100 magenta image with a 10x20 blue character at x 45..54, y 40..59."""
    return with_rect(solid(100, 100), 45, 40, 54, 59)


@pytest.fixture
def asymmetric_character():
    """Magenta image whose content is not left/right symmetric."""
    img = with_rect(solid(40, 40), 10, 10, 29, 29)
    return with_rect(img, 10, 10, 14, 14, color=(255, 0, 0, 255))
