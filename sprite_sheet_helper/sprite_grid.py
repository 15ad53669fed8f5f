"""Sprites and the pose x viewpoint grid they live in.

Every function here treats a grid as an immutable snapshot and returns a new
grid; callers that show progress re-compose from the latest snapshot.
"""

import re
from dataclasses import dataclass, replace
from typing import Sequence

from .image_utils import (
    PixelBuffer,
    decode_image,
    flip_horizontal,
    map_bounded,
    process_sprite,
)

VIEWPOINTS = ("front", "back", "left", "right")

Grid = list[list["Sprite | None"]]


@dataclass(frozen=True)
class Sprite:
    """A generated sprite: raw image on magenta, its transparent version and the prompt behind it."""

    id: str
    raw: PixelBuffer
    processed: PixelBuffer | None = None
    prompt: str = ""

    def processed_at(self, sprite_size: int) -> PixelBuffer:
        """Return the processed buffer at `sprite_size`, extracting it from `raw` if needed."""
        if self.processed is not None and self.processed.size == (sprite_size, sprite_size):
            return self.processed
        return process_sprite(self.raw, sprite_size)


def make_sprite(sprite_id: str, raw: PixelBuffer, sprite_size: int, prompt: str = "") -> Sprite:
    """Build a Sprite and compute its processed buffer once."""
    return Sprite(id=sprite_id, raw=raw, processed=process_sprite(raw, sprite_size), prompt=prompt)


def sprite_from_bytes(sprite_id: str, data: bytes | str, sprite_size: int, prompt: str = "") -> Sprite:
    """Decode an encoded image (bytes or data URI) and build a Sprite. Raises DecodeError."""
    return make_sprite(sprite_id, decode_image(data), sprite_size, prompt)


def cell_id(row: int, col: int) -> str:
    return f"{row}-{col}"


def mirror_prompt(prompt: str) -> str:
    """Swap facing direction words so a mirrored sprite's prompt describes it."""
    return re.sub(
        r"facing (left|right)",
        lambda m: "facing right" if m.group(1) == "left" else "facing left",
        prompt,
    )


def mirror_sprite(sprite: Sprite, sprite_id: str | None = None) -> Sprite:
    """Derive the mirror-image viewpoint of a sprite without a new generation call.

    Precondition: the character is left/right symmetric. This is a product
    decision made by the caller (a right-facing pose is the mirrored left-facing
    one); nothing here can verify it.
    """
    return Sprite(
        id=sprite_id if sprite_id is not None else sprite.id,
        raw=flip_horizontal(sprite.raw),
        processed=flip_horizontal(sprite.processed) if sprite.processed is not None else None,
        prompt=mirror_prompt(sprite.prompt),
    )


def grid_shape(grid: Grid) -> tuple[int, int]:
    """(rows, cols). Columns come from the first row, like the exported sheet."""
    rows = len(grid)
    cols = len(grid[0]) if rows else 0
    return rows, cols


def get_cell(grid: Grid, row: int, col: int) -> Sprite | None:
    if 0 <= row < len(grid) and 0 <= col < len(grid[row]):
        return grid[row][col]
    return None


def empty_grid(rows: int, cols: int) -> Grid:
    return [[None] * cols for _ in range(rows)]


def resize_grid(grid: Grid, rows: int, cols: int) -> Grid:
    """Resize without clearing: cells whose (row, col) still exist keep their sprite."""
    return [[get_cell(grid, r, c) for c in range(cols)] for r in range(rows)]


def set_cell(grid: Grid, row: int, col: int, sprite: Sprite | None) -> Grid:
    """Return a copy of the grid with one cell replaced."""
    rows, cols = grid_shape(grid)
    if not (0 <= row < rows and 0 <= col < cols):
        raise IndexError(f"Cell ({row}, {col}) is outside a {rows}x{cols} grid")
    new_grid = resize_grid(grid, rows, cols)
    new_grid[row][col] = sprite
    return new_grid


def remove_rows(grid: Grid, start: int, count: int) -> Grid:
    """Drop `count` rows starting at `start` (removing a pose drops all its frame rows)."""
    return [list(r) for i, r in enumerate(grid) if not (start <= i < start + count)]


def replace_with_mirror(
    grid: Grid,
    row: int,
    col: int,
    sprite: Sprite,
    viewpoints: Sequence[str] = VIEWPOINTS,
) -> Grid:
    """Store an edited sprite and keep its mirror counterpart in sync.

    Only "left" drives mirroring: when a left sprite changes and the row already
    has a right sprite, the right cell's images are re-derived by flipping. The
    right sprite keeps its id and prompt.
    """
    new_grid = set_cell(grid, row, col, sprite)
    if col >= len(viewpoints) or viewpoints[col] != "left" or "right" not in viewpoints:
        return new_grid

    right_col = viewpoints.index("right")
    right = get_cell(new_grid, row, right_col)
    if right is None:
        return new_grid
    mirrored = mirror_sprite(sprite)
    return set_cell(new_grid, row, right_col, replace(right, raw=mirrored.raw, processed=mirrored.processed))


def process_grid(grid: Grid, sprite_size: int, max_workers: int | None = None) -> dict[tuple[int, int], PixelBuffer]:
    """Process every present cell at `sprite_size` concurrently.

    Cells are independent, so they fan out on a bounded pool; the result is only
    returned once all of them resolved. Holes are simply absent from the mapping.
    """
    rows, cols = grid_shape(grid)
    cells = [
        (r, c, sprite)
        for r in range(rows)
        for c in range(cols)
        if (sprite := get_cell(grid, r, c)) is not None
    ]
    buffers = map_bounded(lambda cell: cell[2].processed_at(sprite_size), cells, max_workers)
    return {(r, c): buf for (r, c, _), buf in zip(cells, buffers)}


def column_frames(grid: Grid, col: int, start_row: int, count: int) -> list[Sprite | None]:
    """The frames of one pose seen from one viewpoint, top to bottom."""
    return [get_cell(grid, r, col) for r in range(start_row, start_row + count)]


def slugify(name: str) -> str:
    """Lowercase name with every non-alphanumeric character replaced by '_'."""
    return re.sub(r"[^a-z0-9]", "_", name.lower())


def animation_filename(pose_name: str, viewpoint: str) -> str:
    return f"{slugify(pose_name) or 'pose'}_{slugify(viewpoint)}.gif"
