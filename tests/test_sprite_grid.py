# tests/test_sprite_grid.py
import pytest
from conftest import png_bytes, solid, with_rect

from sprite_sheet_helper.image_utils import flip_horizontal
from sprite_sheet_helper.sprite_grid import (
    VIEWPOINTS,
    animation_filename,
    cell_id,
    column_frames,
    empty_grid,
    grid_shape,
    make_sprite,
    mirror_prompt,
    mirror_sprite,
    process_grid,
    remove_rows,
    replace_with_mirror,
    resize_grid,
    set_cell,
    slugify,
    sprite_from_bytes,
)


def _sprite(sprite_id, buffer=None, prompt=""):
    return make_sprite(sprite_id, buffer if buffer is not None else with_rect(solid(20, 20), 5, 5, 9, 14), 8, prompt)


def test_make_sprite_processes_once(raw_character):
    sprite = make_sprite("0-0", raw_character, 16)
    assert sprite.processed.size == (16, 16)
    assert sprite.processed_at(16) is sprite.processed
    assert sprite.processed_at(8).size == (8, 8)


def test_sprite_from_bytes(raw_character):
    sprite = sprite_from_bytes("x", png_bytes(raw_character), 16, "a knight")
    assert sprite.raw == raw_character
    assert sprite.prompt == "a knight"


def test_mirror_prompt_swaps_facing():
    assert mirror_prompt("The character is idle, facing left.") == "The character is idle, facing right."
    assert mirror_prompt("facing right") == "facing left"
    assert mirror_prompt("facing front") == "facing front"


def test_mirror_sprite_flips_images(asymmetric_character):
    left = make_sprite("0-2", asymmetric_character, 8, "facing left")
    right = mirror_sprite(left, "0-3")

    assert right.id == "0-3"
    assert right.raw == flip_horizontal(left.raw)
    assert right.processed == flip_horizontal(left.processed)
    assert right.prompt == "facing right"
    assert mirror_sprite(right).raw == left.raw


def test_resize_keeps_existing_cells():
    a, b = _sprite("0-0"), _sprite("1-1")
    grid = set_cell(set_cell(empty_grid(2, 2), 0, 0, a), 1, 1, b)

    grown = resize_grid(grid, 3, 4)
    assert grid_shape(grown) == (3, 4)
    assert grown[0][0] is a and grown[1][1] is b
    assert grown[2] == [None] * 4

    shrunk = resize_grid(grown, 1, 1)
    assert shrunk == [[a]]
    assert resize_grid(shrunk, 2, 2)[1][1] is None


def test_set_cell_returns_new_grid():
    grid = empty_grid(1, 2)
    sprite = _sprite("0-1")
    updated = set_cell(grid, 0, 1, sprite)
    assert grid[0][1] is None
    assert updated[0][1] is sprite


def test_set_cell_out_of_range():
    with pytest.raises(IndexError):
        set_cell(empty_grid(1, 1), 1, 0, _sprite("1-0"))


def test_remove_rows():
    rows = [[_sprite(cell_id(r, 0))] for r in range(5)]
    remaining = remove_rows(rows, 1, 2)
    assert [row[0].id for row in remaining] == ["0-0", "3-0", "4-0"]


def test_replace_left_rederives_right(asymmetric_character):
    left_col, right_col = VIEWPOINTS.index("left"), VIEWPOINTS.index("right")
    old_left = _sprite("0-2", prompt="facing left")
    old_right = mirror_sprite(old_left, "0-3")
    grid = set_cell(set_cell(empty_grid(1, 4), 0, left_col, old_left), 0, right_col, old_right)

    new_left = make_sprite("0-2", asymmetric_character, 8, "facing left")
    updated = replace_with_mirror(grid, 0, left_col, new_left)

    assert updated[0][left_col] is new_left
    assert updated[0][right_col].raw == flip_horizontal(new_left.raw)
    assert updated[0][right_col].id == "0-3"
    assert updated[0][right_col].prompt == old_right.prompt


def test_replace_front_leaves_other_cells():
    front = _sprite("0-0")
    grid = set_cell(empty_grid(1, 4), 0, 3, _sprite("0-3"))
    updated = replace_with_mirror(grid, 0, 0, front)
    assert updated[0][0] is front
    assert updated[0][3] is grid[0][3]


def test_process_grid_skips_holes():
    grid = set_cell(empty_grid(2, 2), 1, 0, _sprite("1-0"))
    processed = process_grid(grid, 8, max_workers=2)
    assert list(processed) == [(1, 0)]
    assert processed[(1, 0)].size == (8, 8)


def test_column_frames():
    a = _sprite("1-2")
    grid = set_cell(empty_grid(3, 4), 1, 2, a)
    assert column_frames(grid, 2, 0, 3) == [None, a, None]


def test_slug_and_animation_filename():
    assert slugify("Sir Blue-Knight!") == "sir_blue_knight_"
    assert animation_filename("Walk Cycle", "left") == "walk_cycle_left.gif"
    assert animation_filename("", "front") == "pose_front.gif"
