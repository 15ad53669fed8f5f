"""Extract sprites from raw generated images, mirror them, and compose sprite sheets."""

import argparse
import json
import sys
from pathlib import Path

from PIL import Image

from .design import load_design
from .errors import DecodeError, InvalidInputError
from .image_utils import (
    PixelBuffer,
    decode_image,
    encode_png,
    find_content_region,
    extract_sprite,
    flip_horizontal,
)
from .sprite_grid import Grid, grid_shape, process_grid

SHEET_FILENAME = "spritesheet.png"


def compose_sheet(grid: Grid, sprite_size: int, max_workers: int | None = None) -> PixelBuffer:
    """Lay the grid's sprites into one transparent canvas.

    The canvas is cols*sprite_size x rows*sprite_size. Each present cell is
    processed (concurrently) and then pasted at (col*sprite_size, row*sprite_size)
    as a straight overwrite; holes stay fully transparent. A grid with zero rows
    or columns gives a 0x0 buffer.
    """
    if sprite_size <= 0:
        raise InvalidInputError(f"Sprite size must be positive, got {sprite_size}")

    rows, cols = grid_shape(grid)
    if rows == 0 or cols == 0:
        return PixelBuffer.blank(0, 0)

    cells = process_grid(grid, sprite_size, max_workers)

    # Single writer: only this loop touches the canvas
    canvas = Image.new("RGBA", (cols * sprite_size, rows * sprite_size), (0, 0, 0, 0))
    for (row, col), sprite in sorted(cells.items()):
        canvas.paste(sprite.to_image(), (col * sprite_size, row * sprite_size))
    return PixelBuffer.from_image(canvas)


def export_sheet(grid: Grid, sprite_size: int, max_workers: int | None = None) -> bytes:
    """Compose the grid and encode it as PNG bytes.

    Raises:
        InvalidInputError: If the grid has no rows or no columns.
    """
    sheet = compose_sheet(grid, sprite_size, max_workers)
    if sheet.is_empty:
        rows, cols = grid_shape(grid)
        raise InvalidInputError(f"Cannot export an empty sprite sheet ({rows} rows x {cols} cols).")
    return encode_png(sheet)


def extract_file(image_path: str, output_path: str, sprite_size: int) -> str:
    """Turn one raw chroma-keyed image into a transparent sprite PNG."""
    raw = decode_image(image_path)
    region = find_content_region(raw)
    if region is None:
        print(f"  {image_path}: all background, writing a transparent sprite", file=sys.stderr)
    else:
        print(
            f"  {image_path}: {raw.width}x{raw.height} content=({region.x},{region.y} "
            f"{region.width}x{region.height}) -> {sprite_size}x{sprite_size}",
            file=sys.stderr,
        )
    sprite = extract_sprite(raw, region, sprite_size)

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(encode_png(sprite))
    return str(out)


def flip_file(image_path: str, output_path: str) -> str:
    """Write the left-right mirror of an image."""
    flipped = flip_horizontal(decode_image(image_path))
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(encode_png(flipped))
    print(f"Flipped {image_path} ({flipped.width}x{flipped.height})", file=sys.stderr)
    return str(out)


def compose_file(design_path: str, output_path: str, sprite_size: int | None, max_workers: int | None) -> str:
    """Compose the sprite sheet of a design manifest."""
    design = load_design(design_path, max_workers=max_workers)
    size = sprite_size or design.sprite_size
    rows, cols = grid_shape(design.grid)
    filled = sum(1 for row in design.grid for sprite in row if sprite is not None)
    print(f"Composing {rows}x{cols} grid ({filled} sprites) at {size}px", file=sys.stderr)

    data = export_sheet(design.grid, size, max_workers)
    out = Path(output_path)
    if out.is_dir():
        out = out / SHEET_FILENAME
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    print(f"Created sheet: {out} ({cols * size}x{rows * size})", file=sys.stderr)
    return str(out)


def main():
    parser = argparse.ArgumentParser(
        description="Extract sprites from chroma-keyed images, mirror them, and compose sprite sheets."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- extract subcommand ---
    extract_parser = subparsers.add_parser(
        "extract", help="Crop, downscale and key out the magenta background of raw images."
    )
    extract_parser.add_argument("images", nargs="+", help="Raw generated images (magenta background).")
    extract_parser.add_argument(
        "-o", "--output", default="./sprites", help="Output directory for sprite PNGs (default: ./sprites)."
    )
    extract_parser.add_argument(
        "--size", type=int, default=32, help="Sprite edge length in pixels (default: 32)."
    )

    # --- flip subcommand ---
    flip_parser = subparsers.add_parser("flip", help="Mirror an image left to right.")
    flip_parser.add_argument("image_path", help="Image to mirror.")
    flip_parser.add_argument("-o", "--output", required=True, help="Output PNG path.")

    # --- compose subcommand ---
    compose_parser = subparsers.add_parser("compose", help="Compose a design's grid into one sprite sheet PNG.")
    compose_parser.add_argument("design", help="Path to the design manifest JSON.")
    compose_parser.add_argument(
        "-o", "--output", default=f"./{SHEET_FILENAME}", help=f"Output PNG path (default: ./{SHEET_FILENAME})."
    )
    compose_parser.add_argument(
        "--size", type=int, default=None, help="Sprite edge length. Default: the design's sprite size."
    )
    compose_parser.add_argument(
        "--workers", type=int, default=None, help="Max parallel sprite extractions (default: 8)."
    )

    args = parser.parse_args()

    saved = []
    try:
        if args.command == "extract":
            out_dir = Path(args.output)
            for image_path in args.images:
                try:
                    saved.append(
                        extract_file(image_path, str(out_dir / f"{Path(image_path).stem}.png"), args.size)
                    )
                except DecodeError as e:
                    # Keep going: one broken image should not lose the others
                    print(f"Warning: skipping {image_path}: {e}", file=sys.stderr)
        elif args.command == "flip":
            saved.append(flip_file(args.image_path, args.output))
        elif args.command == "compose":
            saved.append(compose_file(args.design, args.output, args.size, args.workers))
    except (DecodeError, InvalidInputError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not saved:
        print("No images were written.", file=sys.stderr)
        sys.exit(1)
    print(json.dumps({"written": saved}, indent=2))


if __name__ == "__main__":
    main()
