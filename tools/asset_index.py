#!/usr/bin/env python3
"""
asset_index.py - Per-kind insertion order of the assets created during one read.

`&game_tilesets[3]` in a map element means "the 4th tileset of this file",
so every collection element appends its new id here and references resolve
by position. Names are kept too, for the *_NAMES enumerations.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from c_tokenizer import ProjectReadError


class AssetIndex:
    def __init__(self):
        self._ids: Dict[str, List[int]] = {}
        self._by_name: Dict[str, Dict[str, int]] = {}

    def push(self, collection: str, asset_id: int, name: Optional[str] = None) -> None:
        self._ids.setdefault(collection, []).append(asset_id)
        if name is not None:
            self._by_name.setdefault(collection, {})[name] = asset_id

    def resolve(self, collection: str, index: int, line: int) -> int:
        ids = self._ids.get(collection, [])
        if index < 0 or index >= len(ids):
            raise ProjectReadError(f"index {index} not found in {collection}", line)
        return ids[index]

    def find_by_name(self, collection: str, name: str) -> Optional[int]:
        return self._by_name.get(collection, {}).get(name)
