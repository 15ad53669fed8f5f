# tests/test_design.py
import json
from dataclasses import replace

import pytest
from conftest import png_bytes

from sprite_sheet_helper.design import (
    SCHEMA_VERSION,
    Design,
    Pose,
    design_filename,
    load_design,
    migrate_manifest,
    remove_pose,
    save_design,
)
from sprite_sheet_helper.errors import InvalidInputError
from sprite_sheet_helper.image_utils import to_data_uri
from sprite_sheet_helper.sprite_grid import cell_id, empty_grid, make_sprite, set_cell


def _design_with_grid(raw, animated=False):
    poses = (Pose("Walk", viewpoints=("front", "left")), Pose("Idle", prompt="breathing slowly"))
    design = Design(name="Blue Knight", prompt="a knight", sprite_size=16, poses=poses, animated=animated, frame_count=2)
    grid = empty_grid(design.row_count, 4)
    for row in range(design.row_count):
        grid = set_cell(grid, row, 0, make_sprite(cell_id(row, 0), raw, 16, f"row {row}"))
    return replace(design, grid=grid)


def test_rows_follow_poses_and_frames():
    static = Design(name="a", poses=(Pose("A"), Pose("B")), frame_count=4)
    animated = Design(name="a", poses=(Pose("A"), Pose("B")), animated=True, frame_count=4)

    assert static.row_count == 2
    assert animated.row_count == 8
    assert list(animated.pose_rows(1)) == [4, 5, 6, 7]


def test_pose_description_falls_back_to_name():
    assert Pose("Jump").description == "Jump"
    assert Pose("Jump", prompt="  leaping high ").description == "leaping high"


def test_remove_pose_drops_its_frame_rows(raw_character):
    design = _design_with_grid(raw_character, animated=True)

    trimmed = remove_pose(design, 0)

    assert [p.name for p in trimmed.poses] == ["Idle"]
    assert len(trimmed.grid) == 2
    assert [row[0].prompt for row in trimmed.grid] == ["row 2", "row 3"]


def test_remove_pose_out_of_range():
    with pytest.raises(IndexError):
        remove_pose(Design(name="a"), 3)


def test_design_filename():
    assert design_filename("Blue Knight") == "pixel-art-spritesheet-blue_knight.json"


def test_migrate_v1_adds_timestamps():
    migrated = migrate_manifest({"name": "old", "grid": []}, now=123.0)
    assert migrated["created_at"] == 123.0
    assert migrated["last_modified"] == 123.0
    assert migrated["schema_version"] == SCHEMA_VERSION


def test_migrate_v2_viewpoints_become_standing_pose():
    migrated = migrate_manifest(
        {"schema_version": 2, "name": "old", "selected_viewpoints": ["front", "left"], "created_at": 5.0},
        now=9.0,
    )
    assert migrated["poses"] == [{"name": "Standing", "prompt": "", "viewpoints": ["front", "left"]}]
    assert "selected_viewpoints" not in migrated
    assert migrated["created_at"] == 5.0


def test_migrate_rejects_newer_schema():
    with pytest.raises(InvalidInputError):
        migrate_manifest({"schema_version": SCHEMA_VERSION + 1})


def test_save_and_load_round_trip(tmp_path, raw_character):
    design = _design_with_grid(raw_character)
    design = replace(design, base_character=make_sprite("base", raw_character, 16, "a knight"))

    manifest = save_design(design, tmp_path / "knight" / "design.json")
    loaded = load_design(manifest, max_workers=2)

    assert (tmp_path / "knight" / "sprites" / "r0_c0.png").exists()
    assert loaded.name == "Blue Knight"
    assert loaded.poses == design.poses
    assert loaded.base_character.raw == raw_character
    assert len(loaded.grid) == 2 and len(loaded.grid[0]) == 4
    assert loaded.grid[1][0].prompt == "row 1"
    assert loaded.grid[1][0].raw == raw_character
    assert loaded.grid[0][1] is None
    assert loaded.last_modified >= loaded.created_at > 0


def test_load_accepts_data_uri_cells_and_skips_broken(tmp_path, raw_character, capsys):
    manifest = tmp_path / "design.json"
    manifest.write_text(
        json.dumps(
            {
                "schema_version": 2,
                "name": "legacy",
                "sprite_size": 16,
                "selected_viewpoints": ["front"],
                "grid": [[{"image": to_data_uri(png_bytes(raw_character))}, {"image": "sprites/missing.png"}]],
            }
        )
    )

    design = load_design(manifest)

    assert design.poses == (Pose("Standing", viewpoints=("front",)),)
    assert design.grid[0][0].raw == raw_character
    assert design.grid[0][1] is None
    assert "could not be decoded" in capsys.readouterr().err


def test_load_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(InvalidInputError):
        load_design(path)


@pytest.mark.parametrize(
    "manifest",
    [
        [],
        "just a string",
        {"name": "x", "grid": [[{"prompt": "no image"}]]},
        {"name": "x", "grid": [None]},
        {"name": "x", "grid": {"0": []}},
        {"name": "x", "grid": [["sprites/r0_c0.png"]]},
        {"name": "x", "grid": [[{"image": 42}]]},
        {"name": "x", "grid": [], "base_character": {"prompt": "no image"}},
    ],
)
def test_load_malformed_manifest_raises_invalid_input(tmp_path, manifest):
    path = tmp_path / "design.json"
    path.write_text(json.dumps(manifest))
    with pytest.raises(InvalidInputError):
        load_design(path)
