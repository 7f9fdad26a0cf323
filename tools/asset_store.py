#!/usr/bin/env python3
"""
asset_store.py - In-memory asset model filled by the project reader.

Assets:
  fonts, prop_fonts, mods, sfxs, tilesets, sprites, maps, animations, rooms

Every asset gets a DataAssetId (a plain int) from a single counter shared by
all kinds. add_<kind>() returns the new id, or None when the creation data
refers to an asset the store doesn't have.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

DataAssetId = int

TILE_SIZE = 16
COLOR_BITS = 0b0011_1111

PROP_FONT_FIRST_CHAR = 32
PROP_FONT_NUM_CHARS = 96
PROP_FONT_BG_COLOR = 0b001100
PROP_FONT_FG_COLOR = 0b110000

MOD_NUM_SAMPLES = 31
MOD_PATTERN_ROWS = 64

MOD_PERIOD_TABLE = [
    2 * 1712, 2 * 1616, 2 * 1524, 2 * 1440, 2 * 1356, 2 * 1280, 2 * 1208, 2 * 1140, 2 * 1076, 2 * 1016, 2 * 960, 2 * 906,
    1712, 1616, 1524, 1440, 1356, 1280, 1208, 1140, 1076, 1016, 960, 907,
    856, 808, 762, 720, 678, 640, 604, 570, 538, 508, 480, 453,
    428, 404, 381, 360, 339, 320, 302, 285, 269, 254, 240, 226,
    214, 202, 190, 180, 170, 160, 151, 143, 135, 127, 120, 113,
    107, 101, 95, 90, 85, 80, 75, 71, 67, 63, 60, 56,
    53, 50, 47, 45, 42, 40, 37, 35, 33, 31, 30, 28,
]


def get_note_period(note: int, octave: int) -> int:
    index = octave * 12 + note
    if index < 0 or index >= len(MOD_PERIOD_TABLE):
        return 0
    return MOD_PERIOD_TABLE[index]


def image_words_to_pixels(words: Sequence[int], width: int, height: int, num_items: int) -> np.ndarray:
    """
    Unpack exported image words (4 pixels per u32, low byte first) into one
    byte per pixel. The last word of a row only holds width % 4 pixels when
    the width isn't a multiple of 4.
    """
    stride = (width + 3) // 4
    rows = height * num_items
    if rows == 0 or stride == 0:
        return np.zeros(0, dtype=np.uint8)
    quads = np.asarray(words, dtype=np.uint32).reshape(rows, stride)
    shifts = np.array([0, 8, 16, 24], dtype=np.uint32)
    pixels = (quads[:, :, None] >> shifts) & COLOR_BITS
    pixels = pixels.reshape(rows, stride * 4)[:, :width]
    return pixels.astype(np.uint8).reshape(-1)


def prop_font_bits_to_pixels(bits: Sequence[int], widths: Sequence[int], height: int,
                             offsets: Sequence[int]) -> np.ndarray:
    max_width = 2 * height
    pixels = np.full((PROP_FONT_NUM_CHARS, height, max_width), PROP_FONT_BG_COLOR, dtype=np.uint8)
    if len(widths) != PROP_FONT_NUM_CHARS or len(offsets) != len(widths):
        return pixels.reshape(-1)
    for ch in range(PROP_FONT_NUM_CHARS):
        offset = offsets[ch]
        width = widths[ch]
        stride = (width + 7) // 8
        for y in range(height):
            for x in range(stride):
                pos = offset + y * stride + x
                block = bits[pos] if pos < len(bits) else 0
                for ix in range(min(8, width - x * 8)):
                    if block & (1 << ix) and x * 8 + ix < max_width:
                        pixels[ch, y, x * 8 + ix] = PROP_FONT_FG_COLOR
    return pixels.reshape(-1)


class StringLogger:
    """Line logger: keeps every line and optionally echoes it to stdout."""

    def __init__(self, echo: bool = False):
        self.lines: List[str] = []
        self.echo = echo

    def log(self, msg: str) -> None:
        self.lines.append(msg)
        if self.echo:
            print(msg)

    def text(self) -> str:
        return "".join(line + "\n" for line in self.lines)


class DataAssetType(enum.Enum):
    TILESET = "tileset"
    MAP = "map"
    ROOM = "room"
    SPRITE = "sprite"
    SPRITE_ANIMATION = "animation"
    SFX = "sfx"
    MOD = "mod"
    FONT = "font"
    PROP_FONT = "prop_font"


@dataclass
class DataAsset:
    asset_type: DataAssetType
    id: DataAssetId
    name: str


@dataclass
class Rect:
    x: int
    y: int
    w: int
    h: int


# ----------------------------
# Creation data (what the reader hands to the store)
# ----------------------------


@dataclass
class FontCreationData:
    width: int
    height: int
    data: Sequence[int]


@dataclass
class PropFontCreationData:
    height: int
    data: Sequence[int]
    char_widths: List[int]
    char_offsets: List[int]


@dataclass
class TilesetCreationData:
    width: int
    height: int
    num_tiles: int
    data: Sequence[int]       # packed u32 words


@dataclass
class SpriteCreationData:
    width: int
    height: int
    num_frames: int
    data: Sequence[int]       # packed u32 words, mirror frames already dropped


@dataclass
class MapCreationData:
    tileset_id: DataAssetId
    width: int
    height: int
    bg_width: int
    bg_height: int
    tiles: Sequence[int]


@dataclass
class AnimationFrame:
    head_index: Optional[int]
    foot_index: Optional[int] = None


@dataclass
class AnimationLoop:
    name: str
    frame_indices: List[AnimationFrame] = field(default_factory=list)
    # first frame in the exported frame array; None follows the previous loop
    offset: Optional[int] = None


@dataclass
class SpriteAnimationCreationData:
    sprite_id: DataAssetId
    clip_rect: Rect
    use_foot_frames: bool
    foot_overlap: int
    loops: List[AnimationLoop]


@dataclass
class SfxCreationData:
    len: int
    loop_start: int
    loop_len: int
    bits_per_sample: int
    samples: Sequence[int]


@dataclass
class ModSample:
    len: int
    loop_start: int
    loop_len: int
    finetune: int
    volume: int
    bits_per_sample: int
    data: Optional[List[int]]


@dataclass
class ModCell:
    sample: int
    period: int
    effect: int


@dataclass
class ModCreationData:
    num_channels: int
    samples: List[ModSample]
    pattern: List[ModCell]
    song_positions: List[int]


@dataclass
class RoomMap:
    x: int
    y: int
    map_id: DataAssetId
    name: str = ""


@dataclass
class RoomEntity:
    x: int
    y: int
    animation_id: DataAssetId
    data0: int = 0
    data1: int = 0
    data2: int = 0
    data3: int = 0
    name: str = ""


@dataclass
class RoomTrigger:
    x: int
    y: int
    width: int
    height: int
    data0: int = 0
    data1: int = 0
    data2: int = 0
    data3: int = 0
    name: str = ""


@dataclass
class RoomCreationData:
    maps: List[RoomMap]
    entities: List[RoomEntity]
    triggers: List[RoomTrigger]


# ----------------------------
# Assets
# ----------------------------


@dataclass
class Font:
    asset: DataAsset
    width: int
    height: int
    data: bytes

    def data_size(self) -> int:
        # header: width(1) + height(1) + pad(2) + data<ptr>(4)
        header = 4 + 4
        return header + PROP_FONT_NUM_CHARS * ((self.width + 7) // 8) * self.height


@dataclass
class PropFont:
    asset: DataAsset
    max_width: int
    height: int
    data: np.ndarray          # NUM_CHARS cells of max_width x height pixels
    char_widths: List[int]

    def data_size(self) -> int:
        # header: height(1) + pad(3) + data<ptr>(4) + 96*char_width(1) + 96*char_offset(2)
        header = 4 + 4 + PROP_FONT_NUM_CHARS + PROP_FONT_NUM_CHARS * 2
        return header + sum(self.height * ((w + 7) // 8) for w in self.char_widths)


@dataclass
class Tileset:
    asset: DataAsset
    width: int
    height: int
    num_tiles: int
    data: np.ndarray          # one byte per pixel

    def data_size(self) -> int:
        # header: w(4) + h(4) + stride(4) + num_tiles(4) + data<ptr>(4)
        return 4 * 5 + 4 * ((self.width + 3) // 4) * self.height * self.num_tiles


@dataclass
class Sprite:
    asset: DataAsset
    width: int
    height: int
    num_frames: int
    data: np.ndarray          # one byte per pixel, mirrors not included

    def data_size(self) -> int:
        image = 4 * ((self.width + 3) // 4) * self.height * self.num_frames
        return 4 * 5 + image * 2  # exported with mirror frames


@dataclass
class MapData:
    asset: DataAsset
    tileset_id: DataAssetId
    width: int
    height: int
    bg_width: int
    bg_height: int
    fg_tiles: List[int]
    clip_tiles: List[int]
    fx_tiles: List[int]
    bg_tiles: List[int]

    def data_size(self) -> int:
        # header: u16 * (w,h,bg_w,bg_h) + ptr * (tileset,tiles)
        header = 2 * 4 + 4 * 2
        return header + self.width * self.height * 3 + self.bg_width * self.bg_height


@dataclass
class SpriteAnimation:
    asset: DataAsset
    sprite_id: DataAssetId
    clip_rect: Rect
    use_foot_frames: bool
    foot_overlap: int
    loops: List[AnimationLoop]

    def data_size(self) -> int:
        # frame_indices<ptr> + sprite<ptr> + collision(8) + foot flags(2) + pad(2) + 20 loops * 4
        header = 4 + 4 + 8 + 1 + 1 + 2 + 20 * 4
        # loops are windows into one frame array and may overlap
        end = 0
        frames = 0
        for aloop in self.loops:
            start = end if aloop.offset is None else aloop.offset
            end = start + len(aloop.frame_indices)
            frames = max(frames, end)
        return header + frames * (2 if self.use_foot_frames else 1)


@dataclass
class Sfx:
    asset: DataAsset
    len: int
    loop_start: int
    loop_len: int
    bits_per_sample: int
    samples: List[int]

    def data_size(self) -> int:
        # header: 4 * int32 + samples<ptr>
        return 4 * 4 + 4 + len(self.samples) * (self.bits_per_sample // 8)


@dataclass
class ModData:
    asset: DataAsset
    num_channels: int
    samples: List[ModSample]
    pattern: List[ModCell]
    song_positions: List[int]

    def data_size(self) -> int:
        # 31 sample headers(24) + channels(1) + num_positions(1) + positions(128) + num_patterns(1) + pad(1) + pattern<ptr>
        header = MOD_NUM_SAMPLES * 24 + 1 + 1 + 128 + 1 + 1 + 4
        samples = sum(len(s.data) * (s.bits_per_sample // 8) for s in self.samples if s.data is not None)
        return header + len(self.pattern) * 4 + samples


@dataclass
class Room:
    asset: DataAsset
    maps: List[RoomMap]
    entities: List[RoomEntity]
    triggers: List[RoomTrigger]

    def data_size(self) -> int:
        # header: counts(3) + pad(1) + 3 pointers
        header = 4 + 4 * 3
        return header + len(self.maps) * 8 + len(self.entities) * 16 + len(self.triggers) * 16


# ----------------------------
# Store
# ----------------------------

# DataAssetType -> attribute name of the per-kind dict/list
ASSET_LIST_NAMES = {
    DataAssetType.TILESET: "tilesets",
    DataAssetType.MAP: "maps",
    DataAssetType.ROOM: "rooms",
    DataAssetType.SPRITE: "sprites",
    DataAssetType.SPRITE_ANIMATION: "animations",
    DataAssetType.SFX: "sfxs",
    DataAssetType.MOD: "mods",
    DataAssetType.FONT: "fonts",
    DataAssetType.PROP_FONT: "prop_fonts",
}


@dataclass
class DataAssetIds:
    """Asset ids of each kind in insertion order."""
    tilesets: List[DataAssetId] = field(default_factory=list)
    maps: List[DataAssetId] = field(default_factory=list)
    rooms: List[DataAssetId] = field(default_factory=list)
    sprites: List[DataAssetId] = field(default_factory=list)
    animations: List[DataAssetId] = field(default_factory=list)
    sfxs: List[DataAssetId] = field(default_factory=list)
    mods: List[DataAssetId] = field(default_factory=list)
    fonts: List[DataAssetId] = field(default_factory=list)
    prop_fonts: List[DataAssetId] = field(default_factory=list)

    def of_type(self, asset_type: DataAssetType) -> List[DataAssetId]:
        return getattr(self, ASSET_LIST_NAMES[asset_type])


class DataAssetStore:
    def __init__(self):
        self.next_id = 0
        self.vga_sync_bits = 0xC0
        self.project_prefix = "PROJECT"

        self.tilesets: Dict[DataAssetId, Tileset] = {}
        self.maps: Dict[DataAssetId, MapData] = {}
        self.rooms: Dict[DataAssetId, Room] = {}
        self.sprites: Dict[DataAssetId, Sprite] = {}
        self.animations: Dict[DataAssetId, SpriteAnimation] = {}
        self.sfxs: Dict[DataAssetId, Sfx] = {}
        self.mods: Dict[DataAssetId, ModData] = {}
        self.fonts: Dict[DataAssetId, Font] = {}
        self.prop_fonts: Dict[DataAssetId, PropFont] = {}
        self.ids = DataAssetIds()

    def _all_lists(self) -> Dict[DataAssetType, dict]:
        return {t: getattr(self, attr) for t, attr in ASSET_LIST_NAMES.items()}

    def _new_asset(self, asset_type: DataAssetType, name: str) -> DataAsset:
        asset_id = self.next_id
        self.next_id += 1
        self.ids.of_type(asset_type).append(asset_id)
        return DataAsset(asset_type=asset_type, id=asset_id, name=name)

    def num_assets(self) -> int:
        return sum(len(v) for v in self._all_lists().values())

    def get_asset(self, asset_id: DataAssetId) -> Optional[DataAsset]:
        for assets in self._all_lists().values():
            if asset_id in assets:
                return assets[asset_id].asset
        return None

    def remove_asset(self, asset_id: DataAssetId) -> Optional[DataAsset]:
        for asset_type, assets in self._all_lists().items():
            if asset_id in assets:
                self.ids.of_type(asset_type).remove(asset_id)
                return assets.pop(asset_id).asset
        return None

    def asset_has_dependents(self, asset_id: DataAssetId) -> bool:
        if any(m.tileset_id == asset_id for m in self.maps.values()):
            return True
        if any(a.sprite_id == asset_id for a in self.animations.values()):
            return True
        for room in self.rooms.values():
            if any(m.map_id == asset_id for m in room.maps):
                return True
            if any(e.animation_id == asset_id for e in room.entities):
                return True
        return False

    def data_size(self) -> int:
        return sum(a.data_size() for assets in self._all_lists().values() for a in assets.values())

    # --- add_<kind>

    def add_font(self, name: str, data: FontCreationData) -> Optional[DataAssetId]:
        asset = self._new_asset(DataAssetType.FONT, name)
        self.fonts[asset.id] = Font(asset=asset, width=data.width, height=data.height, data=bytes(data.data))
        return asset.id

    def add_prop_font(self, name: str, data: PropFontCreationData) -> Optional[DataAssetId]:
        asset = self._new_asset(DataAssetType.PROP_FONT, name)
        self.prop_fonts[asset.id] = PropFont(
            asset=asset,
            max_width=2 * data.height,
            height=data.height,
            data=prop_font_bits_to_pixels(data.data, data.char_widths, data.height, data.char_offsets),
            char_widths=list(data.char_widths),
        )
        return asset.id

    def add_tileset(self, name: str, data: TilesetCreationData) -> Optional[DataAssetId]:
        asset = self._new_asset(DataAssetType.TILESET, name)
        self.tilesets[asset.id] = Tileset(
            asset=asset,
            width=data.width,
            height=data.height,
            num_tiles=data.num_tiles,
            data=image_words_to_pixels(data.data, data.width, data.height, data.num_tiles),
        )
        return asset.id

    def add_sprite(self, name: str, data: SpriteCreationData) -> Optional[DataAssetId]:
        asset = self._new_asset(DataAssetType.SPRITE, name)
        self.sprites[asset.id] = Sprite(
            asset=asset,
            width=data.width,
            height=data.height,
            num_frames=data.num_frames,
            data=image_words_to_pixels(data.data, data.width, data.height, data.num_frames),
        )
        return asset.id

    def add_map(self, name: str, data: MapCreationData) -> Optional[DataAssetId]:
        if data.tileset_id not in self.tilesets:
            return None
        fg_size = data.width * data.height
        tiles = list(data.tiles)
        asset = self._new_asset(DataAssetType.MAP, name)
        self.maps[asset.id] = MapData(
            asset=asset,
            tileset_id=data.tileset_id,
            width=data.width,
            height=data.height,
            bg_width=data.bg_width,
            bg_height=data.bg_height,
            fg_tiles=tiles[0:fg_size],
            clip_tiles=tiles[fg_size:2 * fg_size],
            fx_tiles=tiles[2 * fg_size:3 * fg_size],
            bg_tiles=tiles[3 * fg_size:],
        )
        return asset.id

    def add_sprite_animation(self, name: str, data: SpriteAnimationCreationData) -> Optional[DataAssetId]:
        if data.sprite_id not in self.sprites:
            return None
        asset = self._new_asset(DataAssetType.SPRITE_ANIMATION, name)
        self.animations[asset.id] = SpriteAnimation(
            asset=asset,
            sprite_id=data.sprite_id,
            clip_rect=copy.copy(data.clip_rect),
            use_foot_frames=data.use_foot_frames,
            foot_overlap=data.foot_overlap,
            loops=copy.deepcopy(data.loops),
        )
        return asset.id

    def add_sfx(self, name: str, data: SfxCreationData) -> Optional[DataAssetId]:
        asset = self._new_asset(DataAssetType.SFX, name)
        self.sfxs[asset.id] = Sfx(
            asset=asset,
            len=data.len,
            loop_start=data.loop_start,
            loop_len=data.loop_len,
            bits_per_sample=data.bits_per_sample,
            samples=list(data.samples),
        )
        return asset.id

    def add_mod(self, name: str, data: ModCreationData) -> Optional[DataAssetId]:
        asset = self._new_asset(DataAssetType.MOD, name)
        self.mods[asset.id] = ModData(
            asset=asset,
            num_channels=data.num_channels,
            samples=copy.deepcopy(data.samples),
            pattern=copy.deepcopy(data.pattern),
            song_positions=list(data.song_positions),
        )
        return asset.id

    def add_room(self, name: str, data: RoomCreationData) -> Optional[DataAssetId]:
        asset = self._new_asset(DataAssetType.ROOM, name)
        self.rooms[asset.id] = Room(
            asset=asset,
            maps=copy.deepcopy(data.maps),
            entities=copy.deepcopy(data.entities),
            triggers=copy.deepcopy(data.triggers),
        )
        return asset.id
