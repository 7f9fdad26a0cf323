import json
import os
import sys

import numpy as np
import pytest

import project_reader
from asset_store import DataAssetStore, StringLogger, image_words_to_pixels
from c_tokenizer import ProjectReadError, TokenizeError
from project_reader import read_project, read_project_source
from project_sources import (
    HEADER,
    animation,
    full_room_project,
    map_data,
    mod,
    sprite,
    tileset,
)


def read(source):
    store = DataAssetStore()
    logger = StringLogger()
    read_project_source(source, store, logger)
    return store, logger


def read_error(source):
    store = DataAssetStore()
    logger = StringLogger()
    with pytest.raises(ProjectReadError) as excinfo:
        read_project_source(source, store, logger)
    return excinfo.value, store


# ----------------------------
# Prefix directive
# ----------------------------


def test_prefix_and_vga_sync_bits():
    store, logger = read("// exported\n#define GAME_DATA_VGA_SYNC_BITS 0x40\n")
    assert store.project_prefix == "GAME"
    assert store.vga_sync_bits == 0x40
    assert "-> got project prefix 'GAME'" in logger.lines
    assert "-> got vga_sync_bits 0x40" in logger.lines


def test_short_prefix_define_spelling():
    store, _ = read("#define Game_VGA_SYNC_BITS 192\nconst struct GAME_IMAGE game_tilesets[] = { };\n")
    assert store.project_prefix == "Game"
    assert store.vga_sync_bits == 0xC0


def test_directives_before_prefix_are_logged():
    _, logger = read("#ifndef GAME_H\n#define GAME_H 1\n#pragma once\n" + HEADER + "#endif\n")
    assert "-> ignoring pre-processor if line: #ifndef GAME_H" in logger.lines
    assert "-> ignoring define 'GAME_H' = '1'" in logger.lines
    assert "-> ignoring unknown pre-processor line: #pragma once" in logger.lines
    assert "-> ignoring pre-processor if line: #endif" in logger.lines


def test_token_before_prefix_define():
    err, _ = read_error("static const int x;\n" + HEADER)
    assert "must have define for vga_sync_bits before this" in err.message


def test_missing_prefix_define():
    err, _ = read_error("")
    assert "must have define for vga_sync_bits before this: EOF" in err.message


def test_vga_sync_bits_too_large():
    err, _ = read_error("#define GAME_DATA_VGA_SYNC_BITS 0x100\n")
    assert err.message == "bad vga_sync_bits value: 0x100"


def test_vga_sync_bits_not_a_number():
    err, _ = read_error("#define GAME_DATA_VGA_SYNC_BITS SYNC\n")
    assert err.message == "bad vga_sync_bits value: SYNC"


# ----------------------------
# Tilesets and sprites
# ----------------------------


def test_tileset():
    store, logger = read(HEADER + tileset(num_tiles=4))
    assert len(store.tilesets) == 1
    ts = store.tilesets[store.ids.tilesets[0]]
    assert ts.asset.name == "castle"
    assert ts.num_tiles == 4
    assert (ts.data == 1).all()
    assert "-> got tileset data 'castle'" in logger.lines
    assert "-> added tileset 'castle' id=0" in logger.lines


def test_tileset_data_length_mismatch():
    err, store = read_error(HEADER + tileset(num_tiles=4, data_len=255))
    assert "256" in err.message
    assert err.message == "unexpected tileset data length: got 255, expected 256 = 4*16*4"
    assert err.line == 4
    assert store.num_assets() == 0


def test_tileset_wrong_size():
    err, _ = read_error(HEADER + tileset(width=8, height=8, stride=2))
    assert err.message == "invalid tileset size: got 8x8, expected 16x16"


def test_tileset_wrong_stride():
    err, _ = read_error(HEADER + tileset(stride=5))
    assert err.message == "tileset stride doesn't match width: got 5, expected 4"


def test_tileset_data_not_found():
    source = HEADER + "const struct GAME_IMAGE game_tilesets[] = { { 16, 16, 4, 1, game_tileset_data_x }, };\n"
    err, _ = read_error(source)
    assert err.message == "tileset data not found: 'game_tileset_data_x'"


def test_sprite_keeps_first_half():
    store, _ = read(HEADER + sprite(num_frames=4))
    spr = store.sprites[store.ids.sprites[0]]
    assert spr.num_frames == 2
    assert spr.data.shape == (16 * 16 * 2,)
    assert (spr.data == 1).all()


def test_sprite_data_matches_first_half_of_blob():
    blob = [(i * 0x01010101) & 0x3F3F3F3F for i in range(4 * 8 * 2)]
    store, _ = read(HEADER + sprite(width=16, height=8, num_frames=2, data=blob))
    spr = store.sprites[store.ids.sprites[0]]
    assert spr.num_frames == 1
    assert np.array_equal(spr.data, image_words_to_pixels(blob[:len(blob) // 2], 16, 8, 1))


def test_sprite_odd_frames_rejected_before_length_check():
    # 3 frames and a blob of the wrong length: the odd count is reported
    err, _ = read_error(HEADER + sprite(num_frames=3, data=[0] * 7))
    assert err.message == "sprite with an odd number of tiles, should be even: 3"


# ----------------------------
# Maps and references
# ----------------------------


def test_map():
    store, logger = read(HEADER + tileset() + map_data())
    m = store.maps[store.ids.maps[0]]
    assert m.tileset_id == store.ids.tilesets[0]
    assert m.fg_tiles == [0, 1, 2, 3]
    assert m.fx_tiles == [8, 9, 10, 11]
    assert m.bg_tiles == [99]
    assert "-> added map 'level1' id=1 with tileset_id=0" in logger.lines


def test_map_before_tileset_fails():
    err, _ = read_error(HEADER + map_data())
    assert "index 0 not found" in err.message


def test_map_reference_past_the_end():
    err, _ = read_error(HEADER + tileset() + map_data(tileset_index=1))
    assert err.message == "index 1 not found in tilesets"


def test_map_reference_to_wrong_collection():
    source = HEADER + tileset() + map_data().replace("&game_tilesets[0]", "&game_sprites[0]")
    err, _ = read_error(source)
    assert err.message == "invalid global name for tilesets: 'game_sprites'"


def test_map_tiles_too_short():
    err, _ = read_error(HEADER + tileset() + map_data(tiles=[0] * 11))
    assert err.message.startswith("map tiles data too short")


def test_map_tile_too_large():
    err, _ = read_error(HEADER + tileset() + map_data(tiles=[256] * 13))
    assert err.message == "array element is too large (expected 0 <= 256 <= 255)"


# ----------------------------
# Sprite animations
# ----------------------------


def test_sprite_animation():
    store, _ = read(HEADER + sprite() + animation())
    anim = store.animations[store.ids.animations[0]]
    assert anim.sprite_id == store.ids.sprites[0]
    assert (anim.clip_rect.x, anim.clip_rect.y, anim.clip_rect.w, anim.clip_rect.h) == (1, 2, 14, 15)
    assert anim.foot_overlap == -2
    assert not anim.use_foot_frames
    assert [[f.head_index for f in aloop.frame_indices] for aloop in anim.loops] == [[0, 1], [1, None]]
    assert all(f.foot_index is None for aloop in anim.loops for f in aloop.frame_indices)


def test_sprite_animation_with_foot_frames():
    store, _ = read(HEADER + sprite() + animation(frames="0, 2, 1, 0xff", use_foot=1, loops="{ 0, 2 },"))
    anim = store.animations[store.ids.animations[0]]
    frames = anim.loops[0].frame_indices
    assert [(f.head_index, f.foot_index) for f in frames] == [(0, 2), (1, None)]


def test_sprite_animation_overlapping_loops():
    store, _ = read(HEADER + sprite() + animation(loops="{ 0, 2 }, { 0, 2 }, { 2, 1 },"))
    anim = store.animations[store.ids.animations[0]]
    assert [aloop.offset for aloop in anim.loops] == [0, 0, 2]
    assert anim.data_size() == 100 + 3


def test_sprite_animation_loop_past_frame_data():
    err, _ = read_error(HEADER + sprite() + animation(loops="{ 3, 2 },"))
    assert "past the frame data" in err.message


def test_sprite_animation_bad_clip_rect():
    source = HEADER + sprite() + animation().replace("{ 1, 2, 14, 15 }", "{ 1, 2, 14 }")
    err, _ = read_error(source)
    assert err.message == "animation clip rectangle must have 4 numbers, found 3"


def test_loop_names():
    enum = ("enum GAME_SPRITE_ANIMATION_WALK_LOOP_NAMES {\n"
            "  GAME_SPRITE_ANIMATION_WALK_LOOP_STAND,\n"
            "  GAME_SPRITE_ANIMATION_WALK_LOOP_COUNT\n"
            "};\n")
    store, _ = read(HEADER + sprite() + animation() + enum)
    anim = store.animations[store.ids.animations[0]]
    assert [aloop.name for aloop in anim.loops] == ["stand", "loop 1"]


def test_too_many_loop_names():
    enum = ("enum GAME_SPRITE_ANIMATION_WALK_LOOP_NAMES { GAME_SPRITE_ANIMATION_WALK_LOOP_A, "
            "GAME_SPRITE_ANIMATION_WALK_LOOP_B, GAME_SPRITE_ANIMATION_WALK_LOOP_C };\n")
    err, _ = read_error(HEADER + sprite() + animation() + enum)
    assert err.message == "animation 'walk' doesn't have loop 2"


# ----------------------------
# Rooms
# ----------------------------


def test_room():
    store, logger = read(full_room_project())
    r = store.rooms[store.ids.rooms[0]]
    assert r.asset.name == "start"
    assert [m.map_id for m in r.maps] == store.ids.maps
    assert [(e.x, e.y, e.data0) for e in r.entities] == [(0, 0, 0), (10, -1, 1)]
    assert r.entities[0].animation_id == store.ids.animations[0]
    t = r.triggers[0]
    assert (t.x, t.y, t.width, t.height, t.data0, t.data3) == (1, 2, 3, 4, 5, 8)
    assert "-> got room entities 'start'" in logger.lines


def test_room_count_mismatch():
    source = full_room_project().replace("{ 1, 2, 1, game_room_maps_start", "{ 2, 2, 1, game_room_maps_start")
    err, _ = read_error(source)
    assert err.message == "unexpected maps length: got 1, expected 2"


def test_entity_names_back_fill():
    enum = ("enum GAME_ROOM_START_ENT_NAMES {\n"
            "  GAME_ROOM_START_ENT_PLAYER,\n"
            "  GAME_ROOM_START_ENT_DOOR,\n"
            "  GAME_ROOM_START_ENT_COUNT\n"
            "};\n")
    store, logger = read(full_room_project() + enum)
    r = store.rooms[store.ids.rooms[0]]
    assert [e.name for e in r.entities] == ["player", "door"]
    assert not any("WARNING" in line for line in logger.lines)


def test_entity_names_third_name_fails():
    enum = ("enum GAME_ROOM_START_ENT_NAMES { GAME_ROOM_START_ENT_PLAYER, GAME_ROOM_START_ENT_DOOR, "
            "GAME_ROOM_START_ENT_KEY, GAME_ROOM_START_ENT_COUNT };\n")
    err, store = read_error(full_room_project() + enum)
    assert "doesn't have entity 2" in err.message
    assert err.message == "room 'start' doesn't have entity 2"
    # assets read before the failure stay in the store
    assert len(store.rooms) == 1


def test_entity_names_without_count_warns():
    enum = "enum GAME_ROOM_START_ENT_NAMES { GAME_ROOM_START_ENT_PLAYER, GAME_ROOM_START_ENT_DOOR };\n"
    store, logger = read(full_room_project() + enum)
    r = store.rooms[store.ids.rooms[0]]
    assert [e.name for e in r.entities] == ["player", "door"]
    assert "-> WARNING: GAME_ROOM_START_ENT_NAMES doesn't end with COUNT" in logger.lines


def test_trigger_names():
    enum = "enum GAME_ROOM_START_TRG_NAMES { GAME_ROOM_START_TRG_EXIT, GAME_ROOM_START_TRG_COUNT };\n"
    store, _ = read(full_room_project() + enum)
    assert store.rooms[store.ids.rooms[0]].triggers[0].name == "exit"


def test_names_for_unknown_room():
    enum = "enum GAME_ROOM_NOWHERE_ENT_NAMES { GAME_ROOM_NOWHERE_ENT_COUNT };\n"
    err, _ = read_error(full_room_project() + enum)
    assert err.message == "room not found: 'nowhere'"


def test_name_with_wrong_item_prefix():
    enum = "enum GAME_ROOM_START_ENT_NAMES { GAME_ROOM_OTHER_ENT_PLAYER };\n"
    err, _ = read_error(full_room_project() + enum)
    assert "expected 'GAME_ROOM_START_ENT_xxx'" in err.message


# ----------------------------
# Sound
# ----------------------------


def test_mod():
    store, logger = read(HEADER + mod())
    m = store.mods[store.ids.mods[0]]
    assert m.asset.name == "song"
    assert m.num_channels == 1
    assert m.song_positions == [0, 0]
    assert len(m.samples) == 31
    kick = m.samples[0]
    assert kick.data == [0, -256, 127 << 8, -128 << 8]
    assert kick.finetune == -7
    assert kick.volume == 64
    assert all(s.data is None for s in m.samples[1:])
    assert len(m.pattern) == 64
    assert (m.pattern[0].sample, m.pattern[0].period, m.pattern[0].effect) == (1, 856, 0x0C40)
    assert "-> got mod sample data 'kick'" in logger.lines


def test_mod_wrong_song_positions():
    err, _ = read_error(HEADER + mod(num_positions=3))
    assert err.message == "mod with invalid num song positions: expected 2, got 3"


def test_mod_wrong_pattern_count():
    err, _ = read_error(HEADER + mod(num_patterns=2, cells=64))
    assert err.message == "mod with invalid num patterns: expected 1, got 2"


def test_mod_sample_bits_mismatch():
    source = HEADER + mod().replace("int8_t game_mod_samples_kick", "int16_t game_mod_samples_kick")
    err, _ = read_error(source)
    assert "data has 16 bits per sample, but sample definition wants 8" in err.message


def test_sample_array_needs_8_or_16_bits():
    err, _ = read_error(HEADER + "static const uint32_t game_mod_samples_x[] = { 1 };\n")
    assert err.message == "invalid array element size: 32 (must be 8 or 16)"


def test_sample_value_out_of_range():
    err, _ = read_error(HEADER + "static const int8_t game_sfx_samples_x[] = { 128 };\n")
    assert err.message == "invalid array element value (expected -128 <= 128 <= 127)"


def test_sfx():
    source = (HEADER
              + "static const int16_t game_sfx_samples_jump[] = { 100, -100, };\n"
              + "const struct GAME_SFX game_sfxs[] = {\n"
              + "  { 2, 0, 1, 16, { .data = game_sfx_samples_jump } },\n"
              + "};\n")
    store, _ = read(source)
    sfx = store.sfxs[store.ids.sfxs[0]]
    assert sfx.asset.name == "jump"
    assert sfx.samples == [100, -100]
    assert (sfx.len, sfx.loop_start, sfx.loop_len, sfx.bits_per_sample) == (2, 0, 1, 16)


def test_sfx_bits_mismatch():
    source = (HEADER
              + "static const int16_t game_sfx_samples_jump[] = { 1 };\n"
              + "const struct GAME_SFX game_sfxs[] = { { 1, 0, 0, 8, { .data = game_sfx_samples_jump } }, };\n")
    err, _ = read_error(source)
    assert err.message == "invalid sample: data has 16 bits per sample, but sfx wants 8"


def test_unknown_sfx_samples():
    source = HEADER + "const struct GAME_SFX game_sfxs[] = { { 1, 0, 0, 8, { .data = game_sfx_samples_x } }, };\n"
    err, _ = read_error(source)
    assert err.message == "sfx samples not found: 'game_sfx_samples_x'"


# ----------------------------
# Fonts
# ----------------------------


def test_fonts():
    source = (HEADER
              + "static const uint8_t game_font_data_small[] = { 1, 2, 3 };\n"
              + "const struct GAME_FONT game_fonts[] = { { 6, 8, game_font_data_small }, };\n"
              + "static const uint8_t game_prop_font_data_big[] = { 1 };\n"
              + "const struct GAME_PROP_FONT game_prop_fonts[] = { { 2, game_prop_font_data_big, { 1 }, { 0 } }, };\n")
    store, logger = read(source)
    font = store.fonts[store.ids.fonts[0]]
    assert (font.width, font.height, font.data) == (6, 8, bytes([1, 2, 3]))
    pfont = store.prop_fonts[store.ids.prop_fonts[0]]
    assert (pfont.height, pfont.max_width) == (2, 4)
    assert "-> added prop font 'big' id=1" in logger.lines


# ----------------------------
# Dispatcher
# ----------------------------


def test_asset_ids_enum():
    source = HEADER + "enum GAME_TILESET_IDS { GAME_TILESET_ID_CASTLE, GAME_TILESET_COUNT };\n"
    _, logger = read(source)
    assert "-> got TILESET asset id 'CASTLE'" in logger.lines
    assert not any("WARNING" in line for line in logger.lines)


def test_asset_ids_enum_without_count():
    _, logger = read(HEADER + "enum GAME_TILESET_IDS { GAME_TILESET_ID_CASTLE, };\n")
    assert "-> WARNING: asset ids for GAME_TILESET_IDS doesn't end with COUNT" in logger.lines


def test_invalid_asset_id():
    err, _ = read_error(HEADER + "enum GAME_TILESET_IDS { GAME_SPRITE_ID_HERO };\n")
    assert err.message == "invalid asset ID: GAME_SPRITE_ID_HERO"


def test_unexpected_identifier():
    err, _ = read_error(HEADER + "\nint game_unknown;\n")
    assert err.message == "unexpected 'int'"
    assert err.line == 3


def test_unexpected_punctuation():
    err, _ = read_error(HEADER + ";\n")
    assert err.message == "unexpected ';'"


def test_preprocessor_lines_in_body_are_ignored():
    _, logger = read(HEADER + "#define GAME_TILE_SIZE 16\n#include <stdint.h>\n")
    assert "-> ignoring define 'GAME_TILE_SIZE' = '16'" in logger.lines
    assert "-> ignoring unknown pre-processor line: #include <stdint.h>" in logger.lines


def test_lexical_error_stops_the_read():
    with pytest.raises(TokenizeError):
        read(HEADER + "static const uint8_t game_map_tiles_x[] = { 0b12 };\n")


def test_failure_keeps_assets_read_before_it():
    err, store = read_error(HEADER + tileset() + sprite(num_frames=3, data=[0] * 12))
    assert "odd number" in err.message
    assert len(store.tilesets) == 1
    assert len(store.sprites) == 0


# ----------------------------
# File driver and CLI
# ----------------------------


def test_read_project_file(tmp_path):
    path = tmp_path / "project.h"
    path.write_text(full_room_project(), encoding="utf-8")
    store = DataAssetStore()
    logger = StringLogger()
    read_project(str(path), store, logger)
    assert logger.lines[0] == f"-> reading file {path}"
    assert logger.lines[-1] == "-> DONE: project read"
    assert store.num_assets() == 5


def test_read_project_file_error(tmp_path):
    path = tmp_path / "project.h"
    path.write_text(HEADER + tileset(data_len=3), encoding="utf-8")
    logger = StringLogger()
    with pytest.raises(ProjectReadError) as excinfo:
        read_project(str(path), DataAssetStore(), logger)
    assert excinfo.value.path == str(path)
    assert logger.lines[-1] == f"ERROR: {excinfo.value}"
    assert logger.lines[-1].startswith("ERROR: line 4: unexpected tileset data length")


def test_read_project_invalid_utf8(tmp_path):
    path = tmp_path / "project.h"
    path.write_bytes(HEADER.encode() + b"// caf\xe9\n")
    logger = StringLogger()
    with pytest.raises(ProjectReadError) as excinfo:
        read_project(str(path), DataAssetStore(), logger)
    assert excinfo.value.line == 2
    assert excinfo.value.path == str(path)
    assert excinfo.value.message == "invalid UTF-8 byte 0xe9"
    assert logger.lines[-1] == "ERROR: line 2: invalid UTF-8 byte 0xe9"


def test_read_project_crlf_line_endings(tmp_path):
    path = tmp_path / "project.h"
    path.write_bytes(full_room_project().replace("\n", "\r\n").encode())
    store = DataAssetStore()
    read_project(str(path), store, StringLogger())
    assert store.vga_sync_bits == 0xC0
    assert store.num_assets() == 5


def test_read_project_missing_file(tmp_path):
    logger = StringLogger()
    with pytest.raises(OSError):
        read_project(str(tmp_path / "missing.h"), DataAssetStore(), logger)
    assert logger.lines[-1].startswith("ERROR: ")


def test_cli_writes_json_and_sym(tmp_path, monkeypatch, capsys):
    src = tmp_path / "project.h"
    src.write_text(full_room_project(), encoding="utf-8")
    out_json = tmp_path / "out" / "project.json"
    out_sym = tmp_path / "out" / "project.sym"
    monkeypatch.setattr(sys, "argv", ["project_reader.py", str(src), "--json", str(out_json),
                                      "--sym", str(out_sym), "--quiet"])
    project_reader.main()

    summary = json.loads(out_json.read_text(encoding="utf-8"))
    assert summary["project_prefix"] == "GAME"
    assert [a["type"] for a in summary["assets"]] == ["tileset", "sprite", "map", "animation", "room"]
    assert summary["assets"][4]["maps"] == [2]
    assert "room       start" in out_sym.read_text(encoding="utf-8")
    out = capsys.readouterr().out
    assert f"Wrote {out_json}" in out
    assert "-> reading file" not in out


def test_cli_error(tmp_path, monkeypatch, capsys):
    src = tmp_path / "project.h"
    src.write_text(HEADER + "\n;\n", encoding="utf-8")
    monkeypatch.setattr(sys, "argv", ["project_reader.py", str(src), "--quiet"])
    with pytest.raises(SystemExit) as excinfo:
        project_reader.main()
    assert excinfo.value.code == 1
    assert capsys.readouterr().err.strip() == f"{os.path.abspath(src)}:3:1: error: unexpected ';'"


def test_cli_invalid_utf8(tmp_path, monkeypatch, capsys):
    src = tmp_path / "project.h"
    src.write_bytes(HEADER.encode() + b"\n\xff\n")
    monkeypatch.setattr(sys, "argv", ["project_reader.py", str(src), "--quiet"])
    with pytest.raises(SystemExit) as excinfo:
        project_reader.main()
    assert excinfo.value.code == 1
    assert capsys.readouterr().err.strip() == f"{os.path.abspath(src)}:3:1: error: invalid UTF-8 byte 0xff"
