"""Encode a pose's sprite frames as a looping, transparent GIF with one shared palette."""

import argparse
import io
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from PIL import GifImagePlugin, Image

from .design import Design, load_design
from .errors import DecodeError, InvalidInputError
from .image_utils import PixelBuffer, decode_images, map_bounded
from .sprite_grid import Sprite, animation_filename, column_frames, make_sprite

MAX_PALETTE_SIZE = 256
DISPOSAL_RESTORE_TO_BACKGROUND = 2
DEFAULT_FPS = 8.0


def frame_delay(fps: float) -> int:
    """Per-frame delay in ms as the GIF stores it: round(1000 / fps) rounded to whole centiseconds."""
    return max(10, round(round(1000 / fps) / 10) * 10)


@dataclass(frozen=True)
class Palette:
    """Opaque RGB colors plus one reserved transparent slot right after them."""

    colors: tuple[tuple[int, int, int], ...]

    @property
    def transparent_index(self) -> int:
        return len(self.colors)

    def __len__(self) -> int:
        return len(self.colors) + 1

    def flat(self) -> list[int]:
        """Flat [r, g, b, ...] list for Image.putpalette (transparent slot is black)."""
        values = [channel for color in self.colors for channel in color]
        return values + [0, 0, 0]


def _opaque_rgb(buffer: PixelBuffer) -> bytes:
    data = buffer.data
    out = bytearray()
    for i in range(0, len(data), 4):
        if data[i + 3]:
            out += data[i:i + 3]
    return bytes(out)


def build_palette(buffer: PixelBuffer, max_size: int = MAX_PALETTE_SIZE) -> Palette:
    """Derive a palette from one frame, reserving one entry for transparency.

    If the frame has few enough distinct opaque colors they are used exactly
    (most frequent first); otherwise the colors are reduced with Pillow's
    fast octree quantizer.
    """
    max_colors = max_size - 1
    rgb = _opaque_rgb(buffer)
    if not rgb:
        return Palette(colors=())

    strip = Image.frombytes("RGB", (len(rgb) // 3, 1), rgb)
    counted = strip.getcolors(maxcolors=max_colors)
    if counted is not None:
        counted.sort(key=lambda item: (-item[0], item[1]))
        return Palette(colors=tuple(color for _, color in counted))

    quantized = strip.quantize(colors=max_colors, method=Image.Quantize.FASTOCTREE)
    raw_palette = quantized.getpalette()
    used = sorted(index for _, index in quantized.getcolors(maxcolors=MAX_PALETTE_SIZE))
    return Palette(colors=tuple(tuple(raw_palette[i * 3:i * 3 + 3]) for i in used))


def apply_palette(buffer: PixelBuffer, palette: Palette) -> bytes:
    """Map every pixel to a palette index; fully transparent pixels get the transparent slot.

    Opaque pixels go to the nearest palette color. The palette is never changed,
    so frames whose colors drift from the reference frame can band.
    """
    transparent = palette.transparent_index
    colors = palette.colors
    nearest: dict[tuple[int, int, int], int] = {}
    data = buffer.data
    out = bytearray(buffer.width * buffer.height)

    for p, i in enumerate(range(0, len(data), 4)):
        if not data[i + 3] or not colors:
            out[p] = transparent
            continue
        rgb = (data[i], data[i + 1], data[i + 2])
        index = nearest.get(rgb)
        if index is None:
            r, g, b = rgb
            index = min(
                range(len(colors)),
                key=lambda k: (colors[k][0] - r) ** 2 + (colors[k][1] - g) ** 2 + (colors[k][2] - b) ** 2,
            )
            nearest[rgb] = index
        out[p] = index
    return bytes(out)


def _palette_image(buffer: PixelBuffer, palette: Palette) -> Image.Image:
    img = Image.frombytes("P", buffer.size, apply_palette(buffer, palette))
    img.putpalette(palette.flat())
    return img


def encode_animation(
    frames: Sequence[Sprite | None],
    sprite_size: int,
    fps: float,
    loop: int = 0,
    max_workers: int | None = None,
) -> bytes:
    """Encode frames as an animated GIF that shares the first frame's palette.

    Args:
        frames: Frames in playback order. None marks a frame that failed to
                decode; it is left out of the animation.
        sprite_size: Edge length every frame is processed at.
        fps: Frames per second. Each frame is shown round(1000 / fps) ms,
             rounded to the nearest centisecond GIF can store (see frame_delay).
        loop: Loop count. 0 = infinite.

    Returns:
        GIF bytes. Every frame uses disposal "restore to background" and the
        palette's transparent slot, and identical consecutive frames are kept.

        The palette comes from the first usable frame only. If that frame is
        fully transparent the palette is empty and every later frame encodes as
        transparent too; a warning is printed in that case.

    Raises:
        InvalidInputError: If no usable frame remains, or size/fps are not positive.
    """
    if sprite_size <= 0:
        raise InvalidInputError(f"Sprite size must be positive, got {sprite_size}")
    if fps <= 0:
        raise InvalidInputError(f"Frames per second must be positive, got {fps}")

    usable = []
    for i, frame in enumerate(frames):
        if frame is None:
            print(f"  frame_{i:03d}: missing or undecodable, excluded from animation", file=sys.stderr)
            continue
        usable.append(frame)
    if not usable:
        raise InvalidInputError("No frames to animate.")

    # Barrier: all frames are processed before the palette is fixed
    buffers = map_bounded(lambda sprite: sprite.processed_at(sprite_size), usable, max_workers)
    palette = build_palette(buffers[0])
    if not palette.colors and len(buffers) > 1:
        print("  Warning: first frame is fully transparent, all frames will be blank", file=sys.stderr)
    delay = frame_delay(fps)

    images = [_palette_image(buf, palette) for buf in buffers]
    frame_params = {
        "duration": delay,
        "disposal": DISPOSAL_RESTORE_TO_BACKGROUND,
        "transparency": palette.transparent_index,
    }

    # Frames are written one by one: Pillow's save_all would merge identical frames
    out = io.BytesIO()
    header, _ = GifImagePlugin.getheader(
        images[0],
        info={
            "loop": loop,
            "background": palette.transparent_index,
            "optimize": False,
            **frame_params,
        },
    )
    for chunk in header:
        out.write(chunk)
    for img in images:
        for chunk in GifImagePlugin.getdata(img, **frame_params):
            out.write(chunk)
    out.write(b";")
    return out.getvalue()


def export_pose_animations(
    design: Design,
    fps: float,
    sprite_size: int | None = None,
    max_workers: int | None = None,
) -> dict[str, bytes]:
    """One GIF per (pose, viewpoint) column that has at least one frame.

    Keys are deterministic filenames built from the pose and viewpoint names.
    """
    size = sprite_size or design.sprite_size
    exports: dict[str, bytes] = {}
    for pose_index, pose in enumerate(design.poses):
        rows = design.pose_rows(pose_index)
        for col, viewpoint in enumerate(design.viewpoints):
            frames = column_frames(design.grid, col, rows.start, len(rows))
            if not any(frames):
                continue
            exports[animation_filename(pose.name, viewpoint)] = encode_animation(
                frames, size, fps, max_workers=max_workers
            )
    return exports


def combine_frames(
    frames_dir: str,
    output_path: str,
    sprite_size: int,
    fps: float,
    loop: int,
    max_workers: int | None = None,
) -> str:
    """Combine raw frame images (sorted by name) into one GIF."""
    frames_path = Path(frames_dir)
    frame_files = sorted(frames_path.glob("*.png"))
    if not frame_files:
        raise InvalidInputError(f"No PNG files found in {frames_dir}.")

    frames: list[Sprite | None] = []
    for i, (path, result) in enumerate(zip(frame_files, decode_images(frame_files, max_workers))):
        if isinstance(result, DecodeError):
            print(f"Warning: {path.name}: {result}", file=sys.stderr)
            frames.append(None)
        else:
            frames.append(make_sprite(f"frame-{i}", result, sprite_size))

    data = encode_animation(frames, sprite_size, fps, loop, max_workers)
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    used = sum(1 for f in frames if f is not None)
    print(
        f"Created GIF: {out} ({used} frames, {frame_delay(fps)}ms per frame, loop={loop})",
        file=sys.stderr,
    )
    return str(out)


def export_design(design_path: str, output_dir: str, fps: float, max_workers: int | None = None) -> list[str]:
    """Write every pose/viewpoint animation of a design manifest."""
    design = load_design(design_path, max_workers=max_workers)
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    saved = []
    for filename, data in export_pose_animations(design, fps, max_workers=max_workers).items():
        filepath = out_dir / filename
        filepath.write_bytes(data)
        print(f"  Saved: {filepath}", file=sys.stderr)
        saved.append(str(filepath))
    return saved


def main():
    parser = argparse.ArgumentParser(
        description="Encode sprite frames as looping transparent GIFs with a shared palette."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- combine subcommand ---
    combine_parser = subparsers.add_parser("combine", help="Combine raw frame PNGs into one GIF.")
    combine_parser.add_argument("frames_dir", help="Directory of raw frame PNGs (sorted alphabetically).")
    combine_parser.add_argument(
        "-o", "--output", default="./animation.gif", help="Output GIF path (default: ./animation.gif)."
    )
    combine_parser.add_argument("--size", type=int, default=32, help="Sprite edge length (default: 32).")
    combine_parser.add_argument(
        "--fps", type=float, default=DEFAULT_FPS, help=f"Frames per second (default: {DEFAULT_FPS:g})."
    )
    combine_parser.add_argument("--loop", type=int, default=0, help="Loop count. 0 = infinite (default: 0).")
    combine_parser.add_argument("--workers", type=int, default=None, help="Max parallel frame extractions.")

    # --- export subcommand ---
    export_parser = subparsers.add_parser(
        "export", help="Write one GIF per pose and viewpoint of a design manifest."
    )
    export_parser.add_argument("design", help="Path to the design manifest JSON.")
    export_parser.add_argument(
        "-o", "--output", default="./animations", help="Output directory (default: ./animations)."
    )
    export_parser.add_argument(
        "--fps", type=float, default=DEFAULT_FPS, help=f"Frames per second (default: {DEFAULT_FPS:g})."
    )
    export_parser.add_argument("--workers", type=int, default=None, help="Max parallel frame extractions.")

    args = parser.parse_args()

    try:
        if args.command == "combine":
            saved = [
                combine_frames(args.frames_dir, args.output, args.size, args.fps, args.loop, args.workers)
            ]
        else:
            saved = export_design(args.design, args.output, args.fps, args.workers)
    except (DecodeError, InvalidInputError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not saved:
        print("No animations were written.", file=sys.stderr)
        sys.exit(1)
    print(json.dumps({"animations": saved}, indent=2))


if __name__ == "__main__":
    main()
