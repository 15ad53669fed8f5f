"""Generate a character's base sprite and sprite sheet with Gemini, on a magenta chroma key background.

Design spec JSON format (for the `base` subcommand):
{
  "name": "Knight",                          // optional, generated from the prompt if missing
  "prompt": "a small knight in blue armor",  // character description
  "reference_image": "knight_photo.png",     // optional
  "sprite_size": 32,
  "model": "flash",                          // "flash" or "pro"
  "animated": false,
  "frame_count": 4,
  "poses": [{"name": "Standing", "prompt": "", "viewpoints": ["front", "left", "right"]}]
}

The `sheet` and `edit` subcommands work on the design manifest written by `base`
(see design.py). Raw images keep the magenta background; transparency is applied
when sheets and animations are exported.
"""

import argparse
import json
import os
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable

from google import genai
from google.genai import types

from .design import BASE_SPRITE_ID, Design, Pose, design_filename, load_design, save_design
from .errors import DecodeError, GenerationError, InvalidInputError
from .image_utils import CHROMA_KEY_HEX, encode_png
from .sprite_grid import (
    Grid,
    Sprite,
    cell_id,
    get_cell,
    mirror_sprite,
    replace_with_mirror,
    resize_grid,
    set_cell,
    sprite_from_bytes,
)

# Model ID mapping
MODELS = {
    "flash": "gemini-2.5-flash-image",
    "pro": "gemini-3-pro-image-preview",
}
TEXT_MODEL = "gemini-2.5-flash"

MAX_CONTEXT_IMAGES = 10
MAX_EDIT_CONTEXT_SPRITES = 5

BACKGROUND_ENHANCER = (
    f"The output MUST be a single, isolated character sprite on a solid magenta background "
    f"(color {CHROMA_KEY_HEX}). The background must be pure, solid magenta. "
    f"Do not include any text, labels, or other elements in the image."
)


def get_client() -> genai.Client:
    api_key = os.environ.get("GEMINI_API_KEY")
    if not api_key:
        raise EnvironmentError("GEMINI_API_KEY environment variable is not set.")
    return genai.Client(api_key=api_key)


def build_base_prompt(description: str, sprite_size: int) -> str:
    """Prompt for the front-facing base character every other sprite is derived from."""
    special = (
        "Perspective is top-down facing front. The character should fill the frame as much as possible. "
        "If the character has feet, they should touch the bottom border of the image. "
        f"The sprite should have the appearance of a {sprite_size}x{sprite_size} pixel art character."
    )
    return f"{description}. {special} {BACKGROUND_ENHANCER}"


def build_sprite_prompt(
    character: str,
    pose_description: str,
    viewpoint: str,
    sprite_size: int,
    frame_index: int | None = None,
    frame_count: int | None = None,
) -> str:
    """Prompt for one grid cell: a pose (or one frame of its animation) seen from one viewpoint."""
    if frame_count:
        animation_state = (
            f'performing a "{pose_description}" animation (frame {frame_index + 1} of {frame_count})'
        )
    else:
        animation_state = f'in a static "{pose_description}" pose'

    prompt = (
        f"A {sprite_size}x{sprite_size} pixel art sprite. The character is {character}. "
        f"The character is {animation_state}, facing {viewpoint}. "
        f"Maintain a consistent character design based on the provided context images."
    )
    return (
        f"{prompt}. {BACKGROUND_ENHANCER} "
        f"The sprite should have the appearance of a {sprite_size}x{sprite_size} pixel art character."
    )


def build_edit_prompt(instruction: str, sprite_size: int) -> str:
    return (
        f'Edit the primary input image based on this instruction: "{instruction}". '
        f"The sprite must maintain the appearance of a {sprite_size}x{sprite_size} pixel art style. "
        f"Use the other images as context for the character's consistent design. {BACKGROUND_ENHANCER}"
    )


def build_contents(context_images: list[bytes], prompt: str) -> list:
    """Image parts first (as visual reference), then the text prompt."""
    parts = [types.Part.from_bytes(data=data, mime_type="image/png") for data in context_images]
    parts.append(types.Part.from_text(text=prompt))
    return parts


def request_image(client: genai.Client, model_id: str, contents: list) -> bytes:
    """Send one generation request and return the first image in the response.

    Raises:
        GenerationError: If the response carries no image (the model's text, if any, is included).
    """
    response = client.models.generate_content(
        model=model_id,
        contents=contents,
        config=types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
        ),
    )

    content = response.candidates[0].content if response.candidates else None
    texts = []
    if content and content.parts:
        for part in content.parts:
            if part.inline_data is not None and part.inline_data.data is not None:
                return part.inline_data.data
            if part.text:
                texts.append(part.text)

    reason = f" Model response: {' '.join(texts)}" if texts else ""
    raise GenerationError(f"No image data found in the response.{reason}")


def generate_sprite(
    client: genai.Client,
    prompt: str,
    context_images: list[bytes],
    model: str = "flash",
) -> bytes:
    """Generate one sprite image from a full prompt and 0..N context images."""
    model_id = MODELS.get(model, MODELS["flash"])
    return request_image(client, model_id, build_contents(context_images, prompt))


def edit_sprite(
    client: genai.Client,
    instruction: str,
    target: Sprite,
    context_sprites: list[Sprite],
    sprite_size: int,
    model: str = "flash",
) -> bytes:
    """Ask the model to edit `target`; the other sprites are sent as design context."""
    images = [encode_png(target.raw)] + [encode_png(s.raw) for s in context_sprites]
    model_id = MODELS.get(model, MODELS["flash"])
    return request_image(client, model_id, build_contents(images, build_edit_prompt(instruction, sprite_size)))


def generate_design_name(client: genai.Client, description: str) -> str:
    """Short, memorable character name (2-3 words) for a new design."""
    prompt = (
        "Generate a very short, cool, and memorable name (2-3 words max) for a game character based on "
        "the following description. Return only the name, with no extra text or quotes.\n\n"
        f'Description: "{description}"'
    )
    response = client.models.generate_content(model=TEXT_MODEL, contents=prompt)
    name = (response.text or "").strip().strip('"').strip()
    return name or "Untitled"


def generate_base_character(
    client: genai.Client,
    design: Design,
    reference_image: bytes | None = None,
    model: str = "flash",
) -> Design:
    """Generate the base character. The existing grid is cleared since it no longer matches."""
    if not design.prompt and reference_image is None:
        raise InvalidInputError("Provide a text description or a reference image.")

    prompt = build_base_prompt(design.prompt, design.sprite_size)
    print(f"Model: {MODELS.get(model, MODELS['flash'])}", file=sys.stderr)
    print(f"Prompt: {prompt}", file=sys.stderr)

    context = [reference_image] if reference_image is not None else []
    data = generate_sprite(client, prompt, context, model)
    base = sprite_from_bytes(BASE_SPRITE_ID, data, design.sprite_size, design.prompt)
    return replace(design, base_character=base, grid=[])


def generate_spritesheet(
    client: genai.Client,
    design: Design,
    model: str = "flash",
    on_update: Callable[[Grid], None] | None = None,
) -> Design:
    """Generate every selected (pose, frame, viewpoint) cell of the design's grid.

    The grid is resized to the design's shape first, keeping existing cells. A
    "right" view is mirrored from the same row's "left" view when the pose has
    both, instead of asking the model. Each finished sprite is added to the
    context images (up to MAX_CONTEXT_IMAGES) to keep the character consistent.
    A failed cell is reported and left as it was; generation continues.

    Args:
        on_update: Called with each new grid snapshot as cells complete.

    Returns:
        A new Design holding the updated grid.
    """
    if design.base_character is None:
        raise InvalidInputError("No base character found.")
    if not design.poses or all(not pose.viewpoints for pose in design.poses):
        raise InvalidInputError("Select at least one viewpoint in a pose to generate.")

    viewpoints = list(design.viewpoints)
    size = design.sprite_size
    frames_per_pose = design.frames_per_pose
    grid = resize_grid(design.grid, design.row_count, len(viewpoints))
    context_images = [encode_png(design.base_character.raw)]

    for pose_index, pose in enumerate(design.poses):
        selected = [v for v in viewpoints if v in pose.viewpoints]
        for frame_index, row in enumerate(design.pose_rows(pose_index)):
            for done, viewpoint in enumerate(selected, start=1):
                col = viewpoints.index(viewpoint)
                label = f"Pose: {pose.name} ({pose_index + 1}/{len(design.poses)})"
                if design.animated:
                    label += f", Frame: {frame_index + 1}/{frames_per_pose}"
                label += f", View: {viewpoint} ({done}/{len(selected)})"

                if viewpoint == "right" and "left" in selected:
                    left = get_cell(grid, row, viewpoints.index("left"))
                    if left is not None:
                        print(f"{label}: mirrored from 'left', no model call", file=sys.stderr)
                        grid = set_cell(grid, row, col, mirror_sprite(left, cell_id(row, col)))
                        if on_update:
                            on_update(grid)
                        continue

                prompt = build_sprite_prompt(
                    design.prompt,
                    pose.description,
                    viewpoint,
                    size,
                    frame_index if design.animated else None,
                    frames_per_pose if design.animated else None,
                )
                print(label, file=sys.stderr)

                try:
                    data = generate_sprite(client, prompt, context_images, model)
                    sprite = sprite_from_bytes(cell_id(row, col), data, size, prompt)
                except (GenerationError, DecodeError) as e:
                    print(f"  Error: {label}: {e}", file=sys.stderr)
                    continue
                except Exception as e:
                    print(
                        f"  Error: Gemini API call failed for {label}.\n"
                        f"  Reason: {e}\n"
                        f"  Tip: Check GEMINI_API_KEY, model name, and API quota.",
                        file=sys.stderr,
                    )
                    # Partial output is still useful
                    continue

                grid = set_cell(grid, row, col, sprite)
                if on_update:
                    on_update(grid)
                if len(context_images) < MAX_CONTEXT_IMAGES:
                    context_images.append(data)

    return replace(design, grid=grid)


def edit_grid_sprite(
    client: genai.Client,
    design: Design,
    row: int,
    col: int,
    instruction: str,
    model: str = "flash",
) -> Design:
    """Apply a text edit to one cell.

    Edits on a "right" cell are redirected to the row's "left" sprite, and a
    changed "left" sprite re-derives "right" by mirroring, so both stay symmetric.
    """
    target = get_cell(design.grid, row, col)
    if target is None:
        raise InvalidInputError(f"No sprite at row {row}, col {col}.")

    viewpoints = list(design.viewpoints)
    edit_col = col
    if col < len(viewpoints) and viewpoints[col] == "right" and "left" in viewpoints:
        left = get_cell(design.grid, row, viewpoints.index("left"))
        if left is not None:
            print("Editing 'left' sprite to mirror changes...", file=sys.stderr)
            target = left
            edit_col = viewpoints.index("left")

    context = [s for r in design.grid for s in r if s is not None and s.id != target.id]
    data = edit_sprite(client, instruction, target, context[:MAX_EDIT_CONTEXT_SPRITES], design.sprite_size, model)
    edited = sprite_from_bytes(target.id, data, design.sprite_size, target.prompt)
    return replace(design, grid=replace_with_mirror(design.grid, row, edit_col, edited, viewpoints))


def _load_spec(path: str | None) -> dict:
    if path:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    return json.load(sys.stdin)


def design_from_spec(spec: dict) -> Design:
    poses = tuple(
        Pose(name=p["name"], prompt=p.get("prompt", ""), viewpoints=tuple(p.get("viewpoints", ["front"])))
        for p in spec.get("poses", [])
    )
    now = time.time()
    return Design(
        name=spec.get("name", ""),
        prompt=spec.get("prompt", ""),
        sprite_size=int(spec.get("sprite_size", 32)),
        poses=poses or (Pose("Standing"),),
        animated=bool(spec.get("animated", False)),
        frame_count=int(spec.get("frame_count", 4)),
        animation_type=spec.get("animation_type", "walk"),
        created_at=now,
        last_modified=now,
    )


def main():
    parser = argparse.ArgumentParser(
        description="Generate a base character and sprite sheet with Gemini on a magenta background."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- base subcommand ---
    base_parser = subparsers.add_parser("base", help="Generate the base character and write a new design.")
    base_parser.add_argument(
        "-s", "--spec", default=None, help="Path to design spec JSON file (default: stdin)."
    )
    base_parser.add_argument(
        "-o", "--output", default=None,
        help="Output manifest path (default: ./pixel-art-spritesheet-<name>.json).",
    )

    # --- sheet subcommand ---
    sheet_parser = subparsers.add_parser("sheet", help="Generate every selected cell of a design's grid.")
    sheet_parser.add_argument("design", help="Path to the design manifest JSON (updated in place).")
    sheet_parser.add_argument("--model", choices=sorted(MODELS), default="flash", help="Model (default: flash).")

    # --- edit subcommand ---
    edit_parser = subparsers.add_parser("edit", help="Edit one sprite of a design with a text instruction.")
    edit_parser.add_argument("design", help="Path to the design manifest JSON (updated in place).")
    edit_parser.add_argument("--row", type=int, required=True, help="Grid row of the sprite.")
    edit_parser.add_argument("--col", type=int, required=True, help="Grid column of the sprite.")
    edit_parser.add_argument("-i", "--instruction", required=True, help="What to change.")
    edit_parser.add_argument("--model", choices=sorted(MODELS), default="flash", help="Model (default: flash).")

    args = parser.parse_args()

    try:
        client = get_client()
        if args.command == "base":
            spec = _load_spec(args.spec)
            design = design_from_spec(spec)
            reference = None
            if spec.get("reference_image"):
                reference = Path(spec["reference_image"]).read_bytes()
            design = generate_base_character(client, design, reference, spec.get("model", "flash"))
            if not design.name:
                design = replace(design, name=generate_design_name(client, design.prompt))
            manifest = save_design(design, args.output or design_filename(design.name))
        elif args.command == "sheet":
            design = generate_spritesheet(client, load_design(args.design), args.model)
            manifest = save_design(design, args.design)
        else:
            design = edit_grid_sprite(
                client, load_design(args.design), args.row, args.col, args.instruction, args.model
            )
            manifest = save_design(design, args.design)
    except (EnvironmentError, InvalidInputError, GenerationError, DecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Saved: {manifest}", file=sys.stderr)
    print(json.dumps({"design": str(manifest)}, indent=2))


if __name__ == "__main__":
    main()
