# tests/test_image_utils.py
import pytest
from conftest import BLUE, MAGENTA, png_bytes, solid, with_rect

from sprite_sheet_helper.errors import DecodeError, InvalidInputError
from sprite_sheet_helper.image_utils import (
    PixelBuffer,
    Region,
    decode_image,
    decode_images,
    encode_png,
    extract_sprite,
    find_content_region,
    flip_horizontal,
    is_background,
    map_bounded,
    process_sprite,
    square_crop,
    to_data_uri,
)


@pytest.mark.parametrize("rgb", [(255, 0, 255), (200, 30, 220), (230, 20, 200), (180, 40, 170)])
def test_magenta_shades_are_background(rgb):
    assert is_background(*rgb)


@pytest.mark.parametrize(
    "rgb",
    [
        (0, 0, 0),        # black
        (255, 255, 255),  # white
        (255, 0, 0),      # red
        (0, 0, 255),      # blue
        (120, 60, 200),   # violet, hue below 285°
        (40, 0, 40),      # dark magenta, lightness below 0.2
        (150, 120, 150),  # greyish magenta, low saturation
    ],
)
def test_other_colors_are_foreground(rgb):
    assert not is_background(*rgb)


def test_single_pixel_region():
    buffer = with_rect(solid(16, 16), 7, 3, 7, 3)
    assert find_content_region(buffer) == Region(7, 3, 1, 1)


def test_region_is_none_for_all_background():
    assert find_content_region(solid(8, 8)) is None


def test_region_covers_scattered_pixels():
    buffer = with_rect(solid(20, 20), 2, 15, 2, 15)
    buffer = with_rect(buffer, 17, 4, 17, 4)
    region = find_content_region(buffer)
    assert region == Region(2, 4, 16, 12)
    assert (region.right, region.bottom) == (17, 15)


def test_square_crop_centers_tall_region():
    assert square_crop(Region(45, 40, 10, 20)) == (40, 40, 20)


def test_all_background_extracts_fully_transparent():
    sprite = process_sprite(solid(50, 30), 8)
    assert sprite.size == (8, 8)
    assert sprite.data == bytes(8 * 8 * 4)


def test_extract_centers_and_keys_out_background(raw_character):
    sprite = process_sprite(raw_character, 16)

    assert sprite.size == (16, 16)
    for y in range(16):
        for x in range(16):
            if 4 <= x <= 11:
                assert sprite.pixel(x, y) == BLUE, (x, y)
            else:
                assert sprite.pixel(x, y) == (0, 0, 0, 0), (x, y)


def test_extract_clamps_samples_to_source_edges():
    # Content touches the right edge, so the centered square hangs off the image
    buffer = with_rect(solid(10, 4), 8, 0, 9, 3)
    sprite = process_sprite(buffer, 4)
    assert sprite.size == (4, 4)
    assert any(sprite.pixel(x, y)[3] for x in range(4) for y in range(4))


def test_extract_rejects_non_positive_size(raw_character):
    with pytest.raises(InvalidInputError):
        extract_sprite(raw_character, find_content_region(raw_character), 0)


def test_flip_twice_is_identity(asymmetric_character):
    assert flip_horizontal(flip_horizontal(asymmetric_character)) == asymmetric_character


def test_flip_moves_pixels_across():
    buffer = with_rect(solid(5, 2), 0, 0, 0, 0)
    flipped = flip_horizontal(buffer)
    assert flipped.pixel(4, 0) == BLUE
    assert flipped.pixel(0, 0) == MAGENTA


def test_flip_empty_buffer():
    empty = PixelBuffer.blank(0, 0)
    assert flip_horizontal(empty) is empty


def test_buffer_rejects_wrong_length():
    with pytest.raises(ValueError):
        PixelBuffer(2, 2, bytes(15))


def test_decode_accepts_bytes_data_uri_and_path(tmp_path, raw_character):
    data = png_bytes(raw_character)
    path = tmp_path / "raw.png"
    path.write_bytes(data)

    assert decode_image(data) == raw_character
    assert decode_image(to_data_uri(data)) == raw_character
    assert decode_image(str(path)) == raw_character


def test_decode_garbage_raises_decode_error(tmp_path):
    with pytest.raises(DecodeError):
        decode_image(b"not an image")
    with pytest.raises(DecodeError):
        decode_image("data:image/png;base64,@@@")
    with pytest.raises(DecodeError):
        decode_image(tmp_path / "missing.png")


def test_decode_images_keeps_failures_per_item(raw_character):
    results = decode_images([png_bytes(raw_character), b"broken", png_bytes(solid(3, 3))], max_workers=3)
    assert results[0] == raw_character
    assert isinstance(results[1], DecodeError)
    assert results[2].size == (3, 3)


def test_encode_png_rejects_empty_buffer():
    with pytest.raises(InvalidInputError):
        encode_png(PixelBuffer.blank(0, 0))


def test_map_bounded_preserves_order():
    assert map_bounded(lambda n: n * n, range(20), max_workers=4) == [n * n for n in range(20)]


def test_map_bounded_propagates_first_error():
    def boom(n):
        if n == 3:
            raise InvalidInputError("bad item")
        return n

    with pytest.raises(InvalidInputError):
        map_bounded(boom, range(10), max_workers=4)
