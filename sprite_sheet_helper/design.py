"""Design manifests: poses, viewpoints, sprite size and the grid's raw images on disk.

Manifest JSON format (schema_version 3):
{
  "schema_version": 3,
  "name": "Knight",
  "prompt": "a small knight in blue armor",
  "sprite_size": 32,
  "animated": false,
  "frame_count": 4,
  "animation_type": "walk",
  "viewpoints": ["front", "back", "left", "right"],
  "poses": [{"name": "Standing", "prompt": "", "viewpoints": ["front", "left", "right"]}],
  "base_character": {"image": "sprites/base.png", "prompt": "..."},   // or null
  "grid": [[{"image": "sprites/r0_c0.png", "prompt": "..."}, null, ...], ...],
  "created_at": 1700000000.0,
  "last_modified": 1700000000.0
}

Cell "image" values are paths relative to the manifest or data URIs. Older
manifests are migrated on load: v1 had no timestamps, v2 stored a flat
"selected_viewpoints" list instead of poses.
"""

import json
import sys
import time
from dataclasses import dataclass, field, replace
from pathlib import Path

from .errors import DecodeError, InvalidInputError
from .image_utils import decode_image, encode_png, map_bounded
from .sprite_grid import (
    VIEWPOINTS,
    Grid,
    Sprite,
    cell_id,
    get_cell,
    grid_shape,
    make_sprite,
    remove_rows,
    slugify,
)

SCHEMA_VERSION = 3
SPRITES_DIRNAME = "sprites"
BASE_SPRITE_ID = "base"


@dataclass(frozen=True)
class Pose:
    name: str
    prompt: str = ""
    viewpoints: tuple[str, ...] = ("front",)

    @property
    def description(self) -> str:
        """The detailed prompt if one was written, otherwise the pose name."""
        return self.prompt.strip() or self.name


@dataclass(frozen=True)
class Design:
    name: str
    prompt: str = ""
    sprite_size: int = 32
    poses: tuple[Pose, ...] = (Pose("Standing"),)
    animated: bool = False
    frame_count: int = 4
    animation_type: str = "walk"
    viewpoints: tuple[str, ...] = VIEWPOINTS
    base_character: Sprite | None = None
    grid: Grid = field(default_factory=list)
    created_at: float = 0.0
    last_modified: float = 0.0

    @property
    def frames_per_pose(self) -> int:
        return self.frame_count if self.animated else 1

    @property
    def row_count(self) -> int:
        return len(self.poses) * self.frames_per_pose

    def pose_rows(self, pose_index: int) -> range:
        """Grid rows holding the frames of one pose."""
        start = pose_index * self.frames_per_pose
        return range(start, start + self.frames_per_pose)


def remove_pose(design: Design, pose_index: int) -> Design:
    """Drop a pose and the grid rows of all its frames."""
    if not 0 <= pose_index < len(design.poses):
        raise IndexError(f"No pose at index {pose_index}")
    rows = design.pose_rows(pose_index)
    poses = design.poses[:pose_index] + design.poses[pose_index + 1:]
    grid = remove_rows(design.grid, rows.start, len(rows)) if design.grid else design.grid
    return replace(design, poses=poses, grid=grid)


def design_filename(name: str) -> str:
    return f"pixel-art-spritesheet-{slugify(name) or 'design'}.json"


def migrate_manifest(data: dict, now: float | None = None) -> dict:
    """Bring a manifest dict of any older schema up to SCHEMA_VERSION."""
    now = time.time() if now is None else now
    migrated = dict(data)
    version = migrated.get("schema_version", 1)

    if version > SCHEMA_VERSION:
        raise InvalidInputError(
            f"Manifest schema_version {version} is newer than supported ({SCHEMA_VERSION})."
        )

    # v1 -> v2: timestamps
    migrated["created_at"] = migrated.get("created_at") or now
    migrated["last_modified"] = migrated.get("last_modified") or now

    # v2 -> v3: flat viewpoint selection becomes a single standing pose
    legacy_viewpoints = migrated.pop("selected_viewpoints", None)
    if legacy_viewpoints is not None and not migrated.get("poses"):
        migrated["poses"] = [{"name": "Standing", "prompt": "", "viewpoints": list(legacy_viewpoints)}]

    migrated["schema_version"] = SCHEMA_VERSION
    return migrated


def _check_manifest(data, manifest_path: Path) -> None:
    if not isinstance(data, dict):
        raise InvalidInputError(f"Manifest {manifest_path} must be a JSON object, got {type(data).__name__}.")
    grid = data.get("grid", [])
    if not isinstance(grid, list) or not all(isinstance(row, list) for row in grid):
        raise InvalidInputError(f"Manifest {manifest_path}: \"grid\" must be a list of rows.")
    entries = [(f"cell ({r}, {c})", entry) for r, row in enumerate(grid) for c, entry in enumerate(row)]
    entries.append(("base_character", data.get("base_character")))
    for label, entry in entries:
        if entry is None:
            continue
        if not isinstance(entry, dict) or not isinstance(entry.get("image"), str):
            raise InvalidInputError(f"Manifest {manifest_path}: {label} needs a string \"image\" reference.")


def _parse_pose(entry: dict) -> Pose:
    if "name" not in entry:
        raise InvalidInputError(f"Pose entry without a name: {entry}")
    return Pose(
        name=entry["name"],
        prompt=entry.get("prompt", "") or "",
        viewpoints=tuple(entry.get("viewpoints", ["front"])),
    )


def _resolve_image(ref: str, base_dir: Path) -> str:
    if ref.startswith("data:"):
        return ref
    return str(base_dir / ref)


def load_design(path: str | Path, max_workers: int | None = None) -> Design:
    """Load a manifest and decode every referenced image concurrently.

    A cell whose image cannot be decoded becomes an empty cell (with a warning)
    so the rest of the design stays usable.
    """
    manifest_path = Path(path)
    with open(manifest_path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidInputError(f"Manifest {manifest_path} is not valid JSON: {e}") from e

    _check_manifest(data, manifest_path)
    data = migrate_manifest(data)
    base_dir = manifest_path.parent
    sprite_size = int(data.get("sprite_size", 32))
    if sprite_size <= 0:
        raise InvalidInputError(f"Manifest sprite_size must be positive, got {sprite_size}")

    cells = []
    for r, row in enumerate(data.get("grid", [])):
        for c, entry in enumerate(row):
            if entry:
                cells.append((cell_id(r, c), entry))
    if data.get("base_character"):
        cells.append((BASE_SPRITE_ID, data["base_character"]))

    def _load(cell):
        sprite_id, entry = cell
        try:
            raw = decode_image(_resolve_image(entry["image"], base_dir))
        except DecodeError as e:
            print(f"Warning: sprite {sprite_id} could not be decoded, leaving it empty: {e}", file=sys.stderr)
            return None
        return make_sprite(sprite_id, raw, sprite_size, entry.get("prompt", ""))

    loaded = dict(zip((sprite_id for sprite_id, _ in cells), map_bounded(_load, cells, max_workers)))

    grid = [
        [loaded.get(cell_id(r, c)) for c in range(len(row))]
        for r, row in enumerate(data.get("grid", []))
    ]

    return Design(
        name=data.get("name", ""),
        prompt=data.get("prompt", ""),
        sprite_size=sprite_size,
        poses=tuple(_parse_pose(p) for p in data.get("poses", [])) or (Pose("Standing"),),
        animated=bool(data.get("animated", False)),
        frame_count=int(data.get("frame_count", 4)),
        animation_type=data.get("animation_type", "walk"),
        viewpoints=tuple(data.get("viewpoints", VIEWPOINTS)),
        base_character=loaded.get(BASE_SPRITE_ID),
        grid=grid,
        created_at=float(data["created_at"]),
        last_modified=float(data["last_modified"]),
    )


def _write_sprite(sprite: Sprite, sprites_dir: Path, filename: str, base_dir: Path) -> dict:
    target = sprites_dir / filename
    target.write_bytes(encode_png(sprite.raw))
    return {"image": target.relative_to(base_dir).as_posix(), "prompt": sprite.prompt}


def save_design(design: Design, path: str | Path) -> Path:
    """Write the manifest and the raw image of every sprite next to it."""
    manifest_path = Path(path)
    base_dir = manifest_path.parent
    sprites_dir = base_dir / SPRITES_DIRNAME
    sprites_dir.mkdir(parents=True, exist_ok=True)

    now = time.time()
    rows, cols = grid_shape(design.grid)
    grid_entries = []
    for r in range(rows):
        row_entries = []
        for c in range(cols):
            sprite = get_cell(design.grid, r, c)
            row_entries.append(
                _write_sprite(sprite, sprites_dir, f"r{r}_c{c}.png", base_dir) if sprite is not None else None
            )
        grid_entries.append(row_entries)

    base_entry = None
    if design.base_character is not None:
        base_entry = _write_sprite(design.base_character, sprites_dir, f"{BASE_SPRITE_ID}.png", base_dir)

    data = {
        "schema_version": SCHEMA_VERSION,
        "name": design.name,
        "prompt": design.prompt,
        "sprite_size": design.sprite_size,
        "animated": design.animated,
        "frame_count": design.frame_count,
        "animation_type": design.animation_type,
        "viewpoints": list(design.viewpoints),
        "poses": [
            {"name": p.name, "prompt": p.prompt, "viewpoints": list(p.viewpoints)} for p in design.poses
        ],
        "base_character": base_entry,
        "grid": grid_entries,
        "created_at": design.created_at or now,
        "last_modified": now,
    }
    manifest_path.parent.mkdir(parents=True, exist_ok=True)
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return manifest_path
