#!/usr/bin/env python3
"""
blob_registry.py - Staging area for data arrays read before the collection that uses them.

The exporter writes every raw array (tile words, samples, pattern cells, room
lists, ...) as its own global ahead of the struct array naming it, so blobs are
kept here by (kind, decoded name) until the collection element asks for them.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


class BlobKind(enum.Enum):
    # value: type tag in the global's name, e.g. game_tileset_data_castle
    FONT_DATA = "font_data"
    PROP_FONT_DATA = "prop_font_data"
    MOD_SAMPLES = "mod_samples"
    MOD_PATTERN = "mod_pattern"
    SFX_SAMPLES = "sfx_samples"
    TILESET_DATA = "tileset_data"
    SPRITE_DATA = "sprite_data"
    MAP_TILES = "map_tiles"
    SPRITE_ANIMATION_FRAMES = "sprite_animation_frames"
    ROOM_MAPS = "room_maps"
    ROOM_ENTITIES = "room_entities"
    ROOM_TRIGGERS = "room_triggers"

    @property
    def type_tag(self) -> str:
        return self.value


@dataclass(frozen=True)
class SampleBlob:
    """Signed samples scaled to 16 bits; `bits` is the width they were declared with."""
    bits: int
    data: Tuple[int, ...]

    def __len__(self) -> int:
        return len(self.data)


class BlobRegistry:
    def __init__(self):
        self._blobs: Dict[BlobKind, Dict[str, Any]] = {kind: {} for kind in BlobKind}

    def put(self, kind: BlobKind, name: str, blob: Any) -> None:
        # last write wins
        self._blobs[kind][name] = blob

    def take(self, kind: BlobKind, name: str) -> Optional[Any]:
        return self._blobs[kind].get(name)
