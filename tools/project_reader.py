#!/usr/bin/env python3
"""
project_reader.py - Read an exported project (C initializers) back into a DataAssetStore.

Input (as written by the exporter):
  #define GAME_DATA_VGA_SYNC_BITS 0xc0
  static const uint32_t game_tileset_data_castle[] = { 0x01020304, ... };
  const struct GAME_IMAGE game_tilesets[] = {
    { 16, 16, 4, 12, game_tileset_data_castle },
  };
  enum GAME_ROOM_START_ENT_NAMES { GAME_ROOM_START_ENT_PLAYER, GAME_ROOM_START_ENT_COUNT };

Data arrays come before the collection that names them; &game_tilesets[i]
references point back at collection elements already read from this file.
The first error stops the read; assets added before it stay in the store.

Usage:
  python tools/project_reader.py project.h [--json out.json] [--sym out.sym] [--quiet]
"""

from __future__ import annotations

import argparse
import json
import os
import re
import sys
from typing import Callable, List, Optional, Tuple

from asset_index import AssetIndex
from asset_store import (
    AnimationFrame,
    AnimationLoop,
    DataAssetStore,
    FontCreationData,
    MapCreationData,
    ModCell,
    ModCreationData,
    ModSample,
    MOD_NUM_SAMPLES,
    MOD_PATTERN_ROWS,
    PropFontCreationData,
    Rect,
    RoomCreationData,
    RoomEntity,
    RoomMap,
    RoomTrigger,
    SfxCreationData,
    SpriteAnimationCreationData,
    SpriteCreationData,
    StringLogger,
    TILE_SIZE,
    TilesetCreationData,
    get_note_period,
)
from blob_registry import BlobKind, BlobRegistry, SampleBlob
from c_tokenizer import ProjectReadError, Token, Tokenizer, parse_number
from symbols import ProjectPrefix, ascii_lower, prefix_from_define_name

C_KEYWORDS = ("static", "const", "struct", "enum")

C_TYPE_SIZES = {
    "uint8_t": 8,
    "int8_t": 8,
    "uint16_t": 16,
    "int16_t": 16,
    "uint32_t": 32,
    "int32_t": 32,
}

C_STRUCT_NAMES = (
    "FONT",
    "PROP_FONT",
    "MOD_CELL",
    "MOD_DATA",
    "MOD_SAMPLE",
    "SFX",
    "IMAGE",
    "MAP",
    "SPRITE_ANIMATION",
    "ROOM_MAP_INFO",
    "ROOM_ENTITY_INFO",
    "ROOM_TRIGGER_INFO",
    "ROOM",
)

RE_PRE_PROCESSOR_DEFINE = re.compile(r"^#\s*define\s+([A-Za-z0-9_]+)\s+(.*)$")
RE_PRE_PROCESSOR_IF = re.compile(r"^#(if|endif)")

# blob kind -> what it's called in the log
BLOB_LABELS = {
    BlobKind.FONT_DATA: "font data",
    BlobKind.PROP_FONT_DATA: "prop font data",
    BlobKind.MOD_SAMPLES: "mod sample data",
    BlobKind.MOD_PATTERN: "mod pattern",
    BlobKind.SFX_SAMPLES: "sfx sample data",
    BlobKind.TILESET_DATA: "tileset data",
    BlobKind.SPRITE_DATA: "sprite data",
    BlobKind.MAP_TILES: "map tiles",
    BlobKind.SPRITE_ANIMATION_FRAMES: "sprite animation frames",
    BlobKind.ROOM_MAPS: "room maps",
    BlobKind.ROOM_ENTITIES: "room entities",
    BlobKind.ROOM_TRIGGERS: "room triggers",
}

U8_MAX = 0xFF
U16_MAX = 0xFFFF
U32_MAX = 0xFFFFFFFF


class ProjectDataReader:
    def __init__(self, source: str, store: DataAssetStore, logger: StringLogger):
        self.store = store
        self.logger = logger
        self.tok = Tokenizer(source)
        self.unread_token: Optional[Token] = None
        self.last_line = 0
        self.prefix: Optional[ProjectPrefix] = None
        self.blobs = BlobRegistry()
        self.index = AssetIndex()

        # width of the last C integer type keyword, sizes the next sample array
        self.last_type_size = 0

        self.collection_readers = {
            "fonts": self.read_font,
            "prop_fonts": self.read_prop_font,
            "mods": self.read_mod,
            "sfxs": self.read_sfx,
            "tilesets": self.read_tileset,
            "sprites": self.read_sprite,
            "maps": self.read_map,
            "sprite_animations": self.read_sprite_animation,
            "rooms": self.read_room,
        }
        self.blob_readers = {
            BlobKind.FONT_DATA: lambda: self.read_uint_array(U8_MAX),
            BlobKind.PROP_FONT_DATA: lambda: self.read_uint_array(U8_MAX),
            BlobKind.MOD_SAMPLES: lambda: self.read_sample_array(self.last_type_size),
            BlobKind.MOD_PATTERN: self.read_mod_pattern,
            BlobKind.SFX_SAMPLES: lambda: self.read_sample_array(self.last_type_size),
            BlobKind.TILESET_DATA: lambda: self.read_uint_array(U32_MAX),
            BlobKind.SPRITE_DATA: lambda: self.read_uint_array(U32_MAX),
            BlobKind.MAP_TILES: lambda: self.read_uint_array(U8_MAX),
            BlobKind.SPRITE_ANIMATION_FRAMES: lambda: self.read_uint_array(U8_MAX),
            BlobKind.ROOM_MAPS: self.read_room_maps,
            BlobKind.ROOM_ENTITIES: self.read_room_entities,
            BlobKind.ROOM_TRIGGERS: self.read_room_triggers,
        }

        # top level identifiers, first match wins: each predicate returns
        # an argument for its handler or None
        self.dispatch: List[Tuple[Callable[[str], object], Callable[[object, Token], None]]] = [
            (self.match_data_blob, self.handle_data_blob),
            (self.match_collection, self.handle_collection),
            (self.match_skipped_ident, self.handle_skipped_ident),
            (self.match_asset_ids, self.handle_asset_ids),
            (self.match_sprite_animation_enum, self.handle_sprite_animation_enum),
            (self.match_room_enum, self.handle_room_enum),
        ]

    # ----------------------------
    # Tokens
    # ----------------------------

    def error(self, msg: str, line: Optional[int] = None) -> ProjectReadError:
        return ProjectReadError(msg, self.last_line if line is None else line)

    def read(self) -> Token:
        if self.unread_token is not None:
            t = self.unread_token
            self.unread_token = None
        else:
            t = self.tok.read()
        self.last_line = t.line
        return t

    def unread(self, t: Token) -> None:
        if self.unread_token is not None:
            raise self.error("trying to unread a token while a token is already unread", t.line)
        self.unread_token = t

    def expect_punct(self, ch: str) -> Token:
        t = self.read()
        if not t.is_punct(ch):
            raise self.error(f"expected '{ch}', found '{t}'", t.line)
        return t

    def expect_any_punct(self, expected: str) -> Token:
        t = self.read()
        if not t.is_any_punct():
            raise self.error(f"expected {expected}, found '{t}'", t.line)
        return t

    def expect_any_ident(self, expected: str) -> Token:
        t = self.read()
        if not t.is_any_ident():
            raise self.error(f"expected {expected}, found '{t}'", t.line)
        return t

    def read_number(self) -> int:
        t = self.read()
        n = t.get_number()
        if n is None:
            raise self.error(f"expected number, found '{t}'", t.line)
        return n

    def read_signed_number(self) -> int:
        t = self.read()
        n = t.get_number()
        if n is not None:
            return n
        if not t.is_punct("-"):
            raise self.error(f"expected '-' or number, found '{t}'", t.line)
        return -self.read_number()

    def expect_list_end(self) -> bool:
        """Read the ',' or '}' after a list item; True at the end of the list."""
        t = self.expect_any_punct("',' or '}'")
        if t.is_punct("}"):
            return True
        if not t.is_punct(","):
            raise self.error(f"expected ',' or '}}', found '{t}'", t.line)
        return False

    def at_list_end(self) -> bool:
        """True (and consume it) if the next token is '}'."""
        t = self.read()
        if t.is_punct("}"):
            return True
        self.unread(t)
        return False

    def expect_array_decl(self) -> None:
        self.expect_punct("[")
        self.expect_punct("]")
        self.expect_punct("=")

    # ----------------------------
    # Pre-processor
    # ----------------------------

    def handle_pre_processor_line(self, line: str) -> None:
        m = RE_PRE_PROCESSOR_DEFINE.match(line)
        if m:
            self.logger.log(f"-> ignoring define '{m.group(1)}' = '{m.group(2)}'")
        elif RE_PRE_PROCESSOR_IF.match(line):
            self.logger.log(f"-> ignoring pre-processor if line: {line}")
        else:
            self.logger.log(f"-> ignoring unknown pre-processor line: {line}")

    def read_project_prefix(self) -> None:
        while True:
            t = self.read()
            line = t.get_preprocessor()
            if line is None:
                raise self.error(f"must have define for vga_sync_bits before this: {t}", t.line)

            m = RE_PRE_PROCESSOR_DEFINE.match(line)
            prefix = prefix_from_define_name(m.group(1)) if m else None
            if prefix is None:
                self.handle_pre_processor_line(line)
                continue

            value = m.group(2).strip()
            vga_sync_bits = parse_number(value)
            if vga_sync_bits is None:
                raise self.error(f"bad vga_sync_bits value: {value}", t.line)
            if vga_sync_bits > 0xFF:
                raise self.error(f"bad vga_sync_bits value: {vga_sync_bits:#x}", t.line)

            self.logger.log(f"-> got project prefix '{prefix}'")
            self.logger.log(f"-> got vga_sync_bits {vga_sync_bits:#04x}")
            self.prefix = ProjectPrefix.from_name(prefix)
            self.store.vga_sync_bits = vga_sync_bits
            self.store.project_prefix = prefix
            return

    # ----------------------------
    # Arrays
    # ----------------------------

    def read_uint_array(self, max_value: int) -> List[int]:
        self.expect_punct("{")
        data: List[int] = []
        while not self.at_list_end():
            n = self.read_number()
            if n > max_value:
                raise self.error(f"array element is too large (expected 0 <= {n} <= {max_value})")
            data.append(n)
            if self.expect_list_end():
                break
        return data

    def read_sample_array(self, data_size: int) -> SampleBlob:
        """Signed 8 or 16 bit samples; 8 bit samples are stored shifted left by 8."""
        t = self.expect_punct("{")
        if data_size == 8:
            min_el, max_el = -128, 127
        elif data_size == 16:
            min_el, max_el = -32768, 32767
        else:
            raise self.error(f"invalid array element size: {data_size} (must be 8 or 16)", t.line)

        data: List[int] = []
        while not self.at_list_end():
            n = self.read_signed_number()
            if n < min_el or n > max_el:
                raise self.error(f"invalid array element value (expected {min_el} <= {n} <= {max_el})")
            data.append(n << 8 if data_size == 8 else n)
            if self.expect_list_end():
                break
        return SampleBlob(bits=data_size, data=tuple(data))

    # ----------------------------
    # References
    # ----------------------------

    def read_asset_reference(self, collection: str) -> int:
        """&<prefix>_<collection>[<index>]"""
        self.expect_punct("&")
        name = self.read()
        self.expect_punct("[")
        index = self.read_number()
        self.expect_punct("]")

        ident = name.get_ident()
        if ident is None or not self.prefix.is_global_lower(ident, collection):
            raise self.error(f"invalid global name for {collection}: '{name}'", name.line)
        return self.index.resolve(collection, index, name.line)

    def take_blob(self, kind: BlobKind, ident_tok: Token, what: str):
        """Return (name, blob) for a blob identifier like <prefix>_<kind>_<name>."""
        ident = ident_tok.get_ident()
        name = self.prefix.strip_type_lower(ident, kind.type_tag) if ident else None
        blob = self.blobs.take(kind, name) if name is not None else None
        if blob is None:
            raise self.error(f"{what} not found: '{ident_tok}'", ident_tok.line)
        return name, blob

    def added(self, collection: str, label: str, name: str, asset_id: Optional[int], line: int,
              extra: str = "") -> int:
        if asset_id is None:
            raise self.error(f"error adding {label} '{name}'", line)
        self.index.push(collection, asset_id, name)
        self.logger.log(f"-> added {label} '{name}' id={asset_id}{extra}")
        return asset_id

    # ----------------------------
    # Data blobs
    # ----------------------------

    def read_mod_pattern(self) -> List[ModCell]:
        self.expect_punct("{")
        pattern: List[ModCell] = []
        while True:
            t = self.read()
            if t.is_punct("}"):
                break
            if not t.is_punct("{"):
                raise self.error(f"expected '{{' or '}}', found '{t}'", t.line)
            sample = self.read_number()
            self.expect_punct(",")
            note_index = self.read_number()
            self.expect_punct(",")
            effect = self.read_number()
            self.expect_punct(",")
            self.expect_punct("}")
            self.expect_punct(",")

            if note_index == 0xFF:
                period = 0
            else:
                period = get_note_period(note_index % 12, note_index // 12)
            pattern.append(ModCell(sample=sample & 0xFF, period=period, effect=effect & 0xFFFF))
        return pattern

    def read_room_maps(self) -> List[RoomMap]:
        self.expect_punct("{")
        maps: List[RoomMap] = []
        while not self.at_list_end():
            self.expect_punct("{")
            x = self.read_number()
            self.expect_punct(",")
            y = self.read_number()
            self.expect_punct(",")
            map_id = self.read_asset_reference("maps")
            self.expect_punct("}")
            self.expect_punct(",")
            maps.append(RoomMap(x=x, y=y, map_id=map_id))
        return maps

    def read_room_entities(self) -> List[RoomEntity]:
        self.expect_punct("{")
        entities: List[RoomEntity] = []
        while not self.at_list_end():
            self.expect_punct("{")
            x = self.read_signed_number()
            self.expect_punct(",")
            y = self.read_signed_number()
            self.expect_punct(",")
            animation_id = self.read_asset_reference("sprite_animations")
            extra = []
            for _ in range(4):
                self.expect_punct(",")
                extra.append(self.read_number())
            self.expect_punct("}")
            self.expect_punct(",")
            entities.append(RoomEntity(x, y, animation_id, *extra))
        return entities

    def read_room_triggers(self) -> List[RoomTrigger]:
        self.expect_punct("{")
        triggers: List[RoomTrigger] = []
        while not self.at_list_end():
            self.expect_punct("{")
            fields = [self.read_signed_number()]
            for _ in range(7):
                self.expect_punct(",")
                fields.append(self.read_signed_number())
            self.expect_punct("}")
            self.expect_punct(",")
            triggers.append(RoomTrigger(*fields))
        return triggers

    # ----------------------------
    # Collection elements (after the opening '{', through the trailing '},')
    # ----------------------------

    def read_font(self, start: Token) -> None:
        width = self.read_number()
        self.expect_punct(",")
        height = self.read_number()
        self.expect_punct(",")
        ident = self.expect_any_ident("font data identifier")
        self.expect_punct("}")
        self.expect_punct(",")

        name, data = self.take_blob(BlobKind.FONT_DATA, ident, "font data")
        asset_id = self.store.add_font(name, FontCreationData(width=width, height=height, data=data))
        self.added("fonts", "font", name, asset_id, ident.line)

    def read_prop_font(self, start: Token) -> None:
        height = self.read_number()
        self.expect_punct(",")
        ident = self.expect_any_ident("prop font data identifier")
        self.expect_punct(",")
        char_widths = self.read_uint_array(U8_MAX)
        self.expect_punct(",")
        char_offsets = self.read_uint_array(U16_MAX)
        self.expect_punct("}")
        self.expect_punct(",")

        name, data = self.take_blob(BlobKind.PROP_FONT_DATA, ident, "prop font data")
        creation = PropFontCreationData(height=height, data=data, char_widths=char_widths, char_offsets=char_offsets)
        self.added("prop_fonts", "prop font", name, self.store.add_prop_font(name, creation), ident.line)

    def read_mod_sample_defs(self) -> List[ModSample]:
        self.expect_punct("{")
        samples: List[ModSample] = []
        while True:
            t = self.read()
            if t.is_punct("}"):
                break
            if not t.is_punct("{"):
                raise self.error(f"expected '{{' or '}}', found '{t}'", t.line)

            values = [self.read_number()]
            for _ in range(5):
                self.expect_punct(",")
                values.append(self.read_number())
            length, loop_start, loop_len, finetune, volume, bits = values
            self.expect_punct(",")
            self.expect_punct("{")
            self.expect_punct(".")
            self.expect_any_ident("'data', 'data8' or 'data16'")
            self.expect_punct("=")
            data_ident = self.expect_any_ident("NULL or sample data")
            self.expect_punct("}")
            self.expect_punct(",")
            self.expect_punct("}")
            self.expect_punct(",")

            if data_ident.is_ident("NULL"):
                data = None
            else:
                _, blob = self.take_blob(BlobKind.MOD_SAMPLES, data_ident, "sample data")
                if blob.bits != bits:
                    raise self.error(f"invalid sample: data has {blob.bits} bits per sample, "
                                     f"but sample definition wants {bits}", data_ident.line)
                data = list(blob.data)

            samples.append(ModSample(
                len=length,
                loop_start=loop_start,
                loop_len=loop_len,
                finetune=finetune - 16 if finetune > 7 else finetune,
                volume=volume,
                bits_per_sample=bits,
                data=data,
            ))
        return samples

    def read_mod(self, start: Token) -> None:
        samples = self.read_mod_sample_defs()
        self.expect_punct(",")
        num_channels = self.read_number()
        self.expect_punct(",")
        num_song_positions = self.read_number()
        self.expect_punct(",")
        song_positions = self.read_uint_array(U8_MAX)
        self.expect_punct(",")
        num_patterns = self.read_number()
        self.expect_punct(",")
        ident = self.expect_any_ident("pattern data")
        self.expect_punct(",")
        self.expect_punct("}")
        self.expect_punct(",")

        name, pattern = self.take_blob(BlobKind.MOD_PATTERN, ident, "mod pattern")
        if len(samples) != MOD_NUM_SAMPLES:
            raise self.error(f"mod with invalid num samples: expected {MOD_NUM_SAMPLES}, got {len(samples)}",
                             start.line)
        if num_song_positions != len(song_positions):
            raise self.error(f"mod with invalid num song positions: expected {len(song_positions)}, "
                             f"got {num_song_positions}", ident.line)
        if num_channels == 0:
            raise self.error("mod with no channels", ident.line)
        expected_num_patterns = len(pattern) // (num_channels * MOD_PATTERN_ROWS)
        if num_patterns != expected_num_patterns:
            raise self.error(f"mod with invalid num patterns: expected {expected_num_patterns}, "
                             f"got {num_patterns}", ident.line)

        creation = ModCreationData(
            num_channels=num_channels,
            samples=samples,
            pattern=pattern,
            song_positions=song_positions,
        )
        self.added("mods", "mod", name, self.store.add_mod(name, creation), ident.line)

    def read_sfx(self, start: Token) -> None:
        values = [self.read_number()]
        for _ in range(3):
            self.expect_punct(",")
            values.append(self.read_number())
        length, loop_start, loop_len, bits = values
        self.expect_punct(",")
        self.expect_punct("{")
        self.expect_punct(".")
        self.expect_any_ident("'data', 'data8' or 'data16'")
        self.expect_punct("=")
        ident = self.expect_any_ident("sample data")
        self.expect_punct("}")
        self.expect_punct("}")
        self.expect_punct(",")

        name, blob = self.take_blob(BlobKind.SFX_SAMPLES, ident, "sfx samples")
        if blob.bits != bits:
            raise self.error(f"invalid sample: data has {blob.bits} bits per sample, but sfx wants {bits}",
                             ident.line)
        creation = SfxCreationData(
            len=length,
            loop_start=loop_start,
            loop_len=loop_len,
            bits_per_sample=bits,
            samples=blob.data,
        )
        self.added("sfxs", "sfx", name, self.store.add_sfx(name, creation), ident.line)

    def read_image_fields(self, what: str) -> Tuple[int, int, int, int, Token]:
        """{width, height, stride, num_items, ident}"""
        values = [self.read_number()]
        for _ in range(3):
            self.expect_punct(",")
            values.append(self.read_number())
        self.expect_punct(",")
        ident = self.expect_any_ident(f"{what} data identifier")
        self.expect_punct("}")
        self.expect_punct(",")
        width, height, stride, num_items = values
        return width, height, stride, num_items, ident

    def check_image_shape(self, what: str, width: int, height: int, stride: int, num_items: int,
                          data: List[int], line: int) -> None:
        want_stride = (width + 3) // 4
        if stride != want_stride:
            raise self.error(f"{what} stride doesn't match width: got {stride}, expected {want_stride}", line)
        want_len = stride * height * num_items
        if len(data) != want_len:
            raise self.error(f"unexpected {what} data length: got {len(data)}, "
                             f"expected {want_len} = {stride}*{height}*{num_items}", line)

    def read_tileset(self, start: Token) -> None:
        width, height, stride, num_tiles, ident = self.read_image_fields("tileset")
        name, data = self.take_blob(BlobKind.TILESET_DATA, ident, "tileset data")

        if width != TILE_SIZE or height != TILE_SIZE:
            raise self.error(f"invalid tileset size: got {width}x{height}, expected {TILE_SIZE}x{TILE_SIZE}",
                             start.line)
        self.check_image_shape("tileset", width, height, stride, num_tiles, data, start.line)

        creation = TilesetCreationData(width=width, height=height, num_tiles=num_tiles, data=data)
        self.added("tilesets", "tileset", name, self.store.add_tileset(name, creation), ident.line)

    def read_sprite(self, start: Token) -> None:
        width, height, stride, num_frames, ident = self.read_image_fields("sprite")
        name, data = self.take_blob(BlobKind.SPRITE_DATA, ident, "sprite data")

        # every frame is followed by its mirror in the exported data
        if num_frames % 2 != 0:
            raise self.error(f"sprite with an odd number of tiles, should be even: {num_frames}", start.line)
        self.check_image_shape("sprite", width, height, stride, num_frames, data, start.line)

        creation = SpriteCreationData(
            width=width,
            height=height,
            num_frames=num_frames // 2,
            data=data[:len(data) // 2],
        )
        self.added("sprites", "sprite", name, self.store.add_sprite(name, creation), ident.line)

    def read_map(self, start: Token) -> None:
        values = [self.read_number()]
        for _ in range(3):
            self.expect_punct(",")
            values.append(self.read_number())
        width, height, bg_width, bg_height = values
        self.expect_punct(",")
        tileset_id = self.read_asset_reference("tilesets")
        self.expect_punct(",")
        ident = self.expect_any_ident("map tiles identifier")
        self.expect_punct("}")
        self.expect_punct(",")

        name, tiles = self.take_blob(BlobKind.MAP_TILES, ident, "map tiles")
        if len(tiles) < 3 * width * height:
            raise self.error(f"map tiles data too short: got {len(tiles)}, expected at least {3 * width * height}",
                             ident.line)

        creation = MapCreationData(
            tileset_id=tileset_id,
            width=width,
            height=height,
            bg_width=bg_width,
            bg_height=bg_height,
            tiles=tiles,
        )
        self.added("maps", "map", name, self.store.add_map(name, creation), ident.line,
                   extra=f" with tileset_id={tileset_id}")

    def read_animation_loop_windows(self) -> List[Tuple[int, int]]:
        self.expect_punct("{")
        windows: List[Tuple[int, int]] = []
        while True:
            t = self.read()
            if t.is_punct("}"):
                break
            if not t.is_punct("{"):
                raise self.error(f"expected '{{' or '}}', found '{t}'", t.line)
            offset = self.read_number()
            self.expect_punct(",")
            length = self.read_number()
            self.expect_punct("}")
            self.expect_punct(",")
            windows.append((offset, length))
        return windows

    def read_sprite_animation(self, start: Token) -> None:
        frames_ident = self.expect_any_ident("animation frames identifier")
        self.expect_punct(",")
        sprite_id = self.read_asset_reference("sprites")
        self.expect_punct(",")
        clip = self.read_uint_array(U16_MAX)
        self.expect_punct(",")
        use_foot_frames = self.read_number() != 0
        self.expect_punct(",")
        foot_overlap = self.read_signed_number()
        self.expect_punct(",")
        windows = self.read_animation_loop_windows()
        self.expect_punct("}")
        self.expect_punct(",")

        if len(clip) != 4:
            raise self.error(f"animation clip rectangle must have 4 numbers, found {len(clip)}", start.line)
        name, frames = self.take_blob(BlobKind.SPRITE_ANIMATION_FRAMES, frames_ident, "sprite animation frames data")

        stride = 2 if use_foot_frames else 1
        loops: List[AnimationLoop] = []
        for loop_index, (offset, length) in enumerate(windows):
            end = (offset + length) * stride
            if end > len(frames):
                raise self.error(f"animation loop {loop_index} reads past the frame data: "
                                 f"needs {end}, got {len(frames)}", start.line)
            aloop = AnimationLoop(name="", offset=offset)
            for i in range(length):
                pos = (offset + i) * stride
                head = frames[pos]
                foot = frames[pos + 1] if use_foot_frames else U8_MAX
                aloop.frame_indices.append(AnimationFrame(
                    head_index=None if head == U8_MAX else head,
                    foot_index=None if foot == U8_MAX else foot,
                ))
            loops.append(aloop)

        creation = SpriteAnimationCreationData(
            sprite_id=sprite_id,
            clip_rect=Rect(*clip),
            use_foot_frames=use_foot_frames,
            foot_overlap=foot_overlap,
            loops=loops,
        )
        self.added("sprite_animations", "sprite animation", name,
                   self.store.add_sprite_animation(name, creation), start.line,
                   extra=f" with sprite_id={sprite_id}")

    def read_room(self, start: Token) -> None:
        counts = [self.read_number()]
        for _ in range(2):
            self.expect_punct(",")
            counts.append(self.read_number())
        num_maps, num_entities, num_triggers = counts
        self.expect_punct(",")
        maps_ident = self.expect_any_ident("room maps identifier")
        self.expect_punct(",")
        entities_ident = self.expect_any_ident("room entities identifier")
        self.expect_punct(",")
        triggers_ident = self.expect_any_ident("room triggers identifier")
        self.expect_punct("}")
        self.expect_punct(",")

        name, maps = self.take_blob(BlobKind.ROOM_MAPS, maps_ident, "room maps data")
        _, entities = self.take_blob(BlobKind.ROOM_ENTITIES, entities_ident, "room entities data")
        _, triggers = self.take_blob(BlobKind.ROOM_TRIGGERS, triggers_ident, "room triggers data")
        for what, got, expected in (("maps", len(maps), num_maps),
                                    ("entities", len(entities), num_entities),
                                    ("triggers", len(triggers), num_triggers)):
            if got != expected:
                raise self.error(f"unexpected {what} length: got {got}, expected {expected}", start.line)

        creation = RoomCreationData(maps=maps, entities=entities, triggers=triggers)
        self.added("rooms", "room", name, self.store.add_room(name, creation), maps_ident.line)

    # ----------------------------
    # Enumerations
    # ----------------------------

    def read_enum_names(self, item_type: str, count_names: Tuple[str, ...]) -> Tuple[List[str], bool]:
        """
        { <PREFIX>_<item_type>_<NAME>, ..., <PREFIX>_..._COUNT };

        Returns the lower-cased names and whether a COUNT sentinel was seen.
        """
        self.expect_punct("{")
        names: List[str] = []
        got_count = False
        while not self.at_list_end():
            t = self.read()
            ident = t.get_ident()
            if ident in count_names:
                got_count = True
            else:
                name = self.prefix.strip_type_upper(ident, item_type) if ident else None
                if name is None:
                    raise self.error(f"expected '{self.prefix.upper}{item_type}_xxx' or '}}', got {t}", t.line)
                names.append(ascii_lower(name))
            if self.expect_list_end():
                break
        self.expect_punct(";")
        return names, got_count

    def find_enum_asset(self, ident: str, asset_type: str, suffix: str, collection: str,
                        line: int) -> Tuple[int, str]:
        """Return (asset id, ASSET name) for <PREFIX>_<asset_type>_<ASSET>_<suffix>."""
        asset_upper = self.prefix.strip_type_upper_with_suffix(ident, asset_type, suffix)
        if asset_upper is None:
            raise self.error(f"unknown enum for {asset_type}: '{ident}'", line)
        asset_name = ascii_lower(asset_upper)
        asset_id = self.index.find_by_name(collection, asset_name)
        if asset_id is None:
            raise self.error(f"{ascii_lower(asset_type).replace('_', ' ')} not found: '{asset_name}'", line)
        return asset_id, asset_upper

    def read_item_names(self, ident: str, line: int, asset_type: str, item_kind: str, collection: str):
        asset_id, asset_upper = self.find_enum_asset(ident, asset_type, f"{item_kind}_NAMES", collection, line)
        item_type = f"{asset_type}_{asset_upper}_{item_kind}"
        count_names = (
            f"{self.prefix.upper}{item_type}_COUNT",
            f"{self.prefix.upper}{asset_type}_{asset_upper}_COUNT",
        )
        names, got_count = self.read_enum_names(item_type, count_names)
        if not got_count:
            self.logger.log(f"-> WARNING: {ident} doesn't end with COUNT")
        return asset_id, names

    def handle_room_enum(self, ident: str, t: Token) -> None:
        if ident.endswith("_ENT_NAMES"):
            item_kind, label, attr = "ENT", "entity", "entities"
        elif ident.endswith("_TRG_NAMES"):
            item_kind, label, attr = "TRG", "trigger", "triggers"
        else:
            raise self.error(f"unknown room enum: '{ident}'", t.line)

        room_id, names = self.read_item_names(ident, t.line, "ROOM", item_kind, "rooms")
        room = self.store.rooms[room_id]
        items = getattr(room, attr)
        self.logger.log(f"-> reading room {label} names for '{room.asset.name}':")
        for index, name in enumerate(names):
            if index >= len(items):
                raise self.error(f"room '{room.asset.name}' doesn't have {label} {index}", t.line)
            self.logger.log(f"  -> {name}")
            items[index].name = name

    def handle_sprite_animation_enum(self, ident: str, t: Token) -> None:
        if not ident.endswith("_LOOP_NAMES"):
            raise self.error(f"unknown sprite animation enum: '{ident}'", t.line)

        anim_id, names = self.read_item_names(ident, t.line, "SPRITE_ANIMATION", "LOOP", "sprite_animations")
        animation = self.store.animations[anim_id]
        self.logger.log(f"-> reading sprite animation loop names for '{animation.asset.name}':")
        for index, name in enumerate(names):
            if index >= len(animation.loops):
                raise self.error(f"animation '{animation.asset.name}' doesn't have loop {index}", t.line)
            self.logger.log(f"  -> {name}")
            animation.loops[index].name = name
        for index, aloop in enumerate(animation.loops):
            if not aloop.name:
                aloop.name = f"loop {index}"

    def handle_asset_ids(self, ident: str, t: Token) -> None:
        """enum <PREFIX>_<X>_IDS { <PREFIX>_<X>_ID_<NAME>, ..., <PREFIX>_<X>_COUNT };"""
        name = self.prefix.strip_upper_with_suffix(ident, "IDS")
        if name is None:
            raise self.error(f"invalid IDS enum: {ident}", t.line)

        self.expect_punct("{")
        got_count = False
        while not self.at_list_end():
            item = self.read()
            item_ident = item.get_ident()
            if item_ident is None:
                raise self.error(f"expected identifier, found '{item}'", item.line)
            if self.prefix.strip_type_upper(item_ident, name) == "COUNT":
                got_count = True
            else:
                item_name = self.prefix.strip_type_upper(item_ident, f"{name}_ID")
                if item_name is None:
                    raise self.error(f"invalid asset ID: {item_ident}", item.line)
                self.logger.log(f"-> got {name} asset id '{item_name}'")
            if self.expect_list_end():
                break
        self.expect_punct(";")

        if not got_count:
            self.logger.log(f"-> WARNING: asset ids for {ident} doesn't end with COUNT")

    # ----------------------------
    # Dispatch
    # ----------------------------

    def match_data_blob(self, ident: str) -> Optional[Tuple[BlobKind, str]]:
        for kind in BlobKind:
            name = self.prefix.strip_type_lower(ident, kind.type_tag)
            if name is not None:
                return kind, name
        return None

    def handle_data_blob(self, match: Tuple[BlobKind, str], t: Token) -> None:
        kind, name = match
        self.expect_array_decl()
        blob = self.blob_readers[kind]()
        self.expect_punct(";")
        self.logger.log(f"-> got {BLOB_LABELS[kind]} '{name}'")
        self.blobs.put(kind, name, blob)

    def match_collection(self, ident: str) -> Optional[str]:
        rest = self.prefix.strip_lower(ident)
        return rest if rest in self.collection_readers else None

    def handle_collection(self, collection: str, t: Token) -> None:
        read_element = self.collection_readers[collection]
        self.expect_array_decl()
        self.expect_punct("{")
        while True:
            start = self.expect_any_punct("'{' or '}'")
            if start.is_punct("}"):
                break
            if not start.is_punct("{"):
                raise self.error(f"expected '{{' or '}}', got {start}", start.line)
            read_element(start)
        self.expect_punct(";")

    def match_skipped_ident(self, ident: str) -> Optional[str]:
        if ident in C_KEYWORDS or ident in C_TYPE_SIZES:
            return ident
        if self.prefix.strip_upper(ident) in C_STRUCT_NAMES:
            return ident
        return None

    def handle_skipped_ident(self, ident: str, t: Token) -> None:
        if ident in C_TYPE_SIZES:
            self.last_type_size = C_TYPE_SIZES[ident]

    def match_asset_ids(self, ident: str) -> Optional[str]:
        return ident if ident.endswith("IDS") else None

    def match_sprite_animation_enum(self, ident: str) -> Optional[str]:
        return ident if self.prefix.is_type_upper(ident, "SPRITE_ANIMATION") else None

    def match_room_enum(self, ident: str) -> Optional[str]:
        return ident if self.prefix.is_type_upper(ident, "ROOM") else None

    def read_project(self) -> None:
        self.read_project_prefix()

        while True:
            t = self.read()
            if t.is_eof():
                return

            line = t.get_preprocessor()
            if line is not None:
                self.handle_pre_processor_line(line)
                continue

            ident = t.get_ident()
            if ident is not None and self.dispatch_ident(ident, t):
                continue

            raise self.error(f"unexpected '{t}'", t.line)

    def dispatch_ident(self, ident: str, t: Token) -> bool:
        for predicate, handler in self.dispatch:
            match = predicate(ident)
            if match is not None:
                handler(match, t)
                return True
        return False


def read_project_source(source: str, store: DataAssetStore, logger: StringLogger) -> None:
    """Parse project text into `store`. Raises ProjectReadError on the first error."""
    ProjectDataReader(source, store, logger).read_project()


def read_project(path: str, store: DataAssetStore, logger: StringLogger) -> None:
    """
    Read the project file at `path` into `store`.

    Errors are logged as "ERROR: ..." and re-raised: ProjectReadError (with
    .path set) for bad input, bytes that aren't UTF-8 included; OSError if the
    file can't be read.
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        logger.log(f"ERROR: {e}")
        raise

    logger.log(f"-> reading file {path}")
    try:
        try:
            # same newline handling as a text-mode read
            source = raw.decode("utf-8").replace("\r\n", "\n").replace("\r", "\n")
        except UnicodeDecodeError as e:
            line = raw.count(b"\n", 0, e.start) + 1
            raise ProjectReadError(f"invalid UTF-8 byte {raw[e.start]:#04x}", line) from e
        read_project_source(source, store, logger)
    except ProjectReadError as e:
        e.path = path
        logger.log(f"ERROR: {e}")
        raise
    logger.log("-> DONE: project read")


# ----------------------------
# Summaries (--json / --sym)
# ----------------------------


def asset_summary(store: DataAssetStore) -> dict:
    assets = []
    for asset_id in sorted(a for ids in vars(store.ids).values() for a in ids):
        asset = store.get_asset(asset_id)
        entry = {"id": asset.id, "type": asset.asset_type.value, "name": asset.name}
        if asset_id in store.tilesets:
            ts = store.tilesets[asset_id]
            entry.update(width=ts.width, height=ts.height, num_tiles=ts.num_tiles)
        elif asset_id in store.sprites:
            spr = store.sprites[asset_id]
            entry.update(width=spr.width, height=spr.height, num_frames=spr.num_frames)
        elif asset_id in store.maps:
            m = store.maps[asset_id]
            entry.update(width=m.width, height=m.height, bg_width=m.bg_width, bg_height=m.bg_height,
                         tileset_id=m.tileset_id)
        elif asset_id in store.animations:
            anim = store.animations[asset_id]
            entry.update(sprite_id=anim.sprite_id, use_foot_frames=anim.use_foot_frames,
                         loops={aloop.name: len(aloop.frame_indices) for aloop in anim.loops})
        elif asset_id in store.rooms:
            room = store.rooms[asset_id]
            entry.update(maps=[m.map_id for m in room.maps],
                         entities=[e.name for e in room.entities],
                         triggers=[trg.name for trg in room.triggers])
        elif asset_id in store.sfxs:
            sfx = store.sfxs[asset_id]
            entry.update(len=sfx.len, bits_per_sample=sfx.bits_per_sample)
        elif asset_id in store.mods:
            mod = store.mods[asset_id]
            entry.update(num_channels=mod.num_channels, song_positions=mod.song_positions)
        elif asset_id in store.fonts:
            font = store.fonts[asset_id]
            entry.update(width=font.width, height=font.height)
        elif asset_id in store.prop_fonts:
            entry.update(height=store.prop_fonts[asset_id].height)
        assets.append(entry)

    return {
        "project_prefix": store.project_prefix,
        "vga_sync_bits": store.vga_sync_bits,
        "data_size": store.data_size(),
        "assets": assets,
    }


def sym_text(store: DataAssetStore) -> str:
    lines = [f"; project {store.project_prefix}, vga_sync_bits={store.vga_sync_bits:#04x}"]
    for entry in asset_summary(store)["assets"]:
        lines.append(f"{entry['id']:5d} {entry['type']:<10} {entry['name']}")
    lines.append(f"; total data size: {store.data_size()} bytes")
    return "\n".join(lines) + "\n"


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("input", help="Exported project file (.h/.c)")
    ap.add_argument("--json", default="", help="Output asset summary .json")
    ap.add_argument("--sym", default="", help="Output asset listing .sym")
    ap.add_argument("--quiet", action="store_true", help="Don't print the read log")
    args = ap.parse_args()

    store = DataAssetStore()
    logger = StringLogger(echo=not args.quiet)
    try:
        read_project(args.input, store, logger)
    except ProjectReadError as e:
        path = os.path.abspath(e.path or args.input)
        print(f"{path}:{e.line}:1: error: {e.message}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        path = os.path.abspath(args.input)
        print(f"{path}:1:1: error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        os.makedirs(os.path.dirname(os.path.abspath(args.json)), exist_ok=True)
        with open(args.json, "w", encoding="utf-8") as f:
            json.dump(asset_summary(store), f, indent=2)
        print(f"Wrote {args.json}")

    if args.sym:
        os.makedirs(os.path.dirname(os.path.abspath(args.sym)), exist_ok=True)
        with open(args.sym, "w", encoding="utf-8") as f:
            f.write(sym_text(store))
        print(f"Wrote {args.sym}")


if __name__ == "__main__":
    main()
