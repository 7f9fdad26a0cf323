#!/usr/bin/env python3
"""
symbols.py - Decode exported global names back into asset names.

The exporter names every global after the project prefix:
  <prefix>_<type>_<name>          data blobs (lower case), e.g. game_tileset_data_castle
  <prefix>_<collection>           collection arrays, e.g. game_tilesets
  <PREFIX>_<TYPE>_<NAME>[_SUFFIX] enums (upper case), e.g. GAME_ROOM_START_ENT_NAMES

All matching is plain prefix/suffix slicing on the identifier.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

RE_VGA_SYNC_BITS = re.compile(r"^([A-Za-z0-9_]+?)(?:_DATA)?_VGA_SYNC_BITS$")


def ascii_upper(s: str) -> str:
    return "".join(chr(ord(c) - 32) if "a" <= c <= "z" else c for c in s)


def ascii_lower(s: str) -> str:
    return "".join(chr(ord(c) + 32) if "A" <= c <= "Z" else c for c in s)


def prefix_from_define_name(name: str) -> Optional[str]:
    """Return "<PREFIX>" for "<PREFIX>_VGA_SYNC_BITS" or "<PREFIX>_DATA_VGA_SYNC_BITS"."""
    m = RE_VGA_SYNC_BITS.match(name)
    if not m:
        return None
    return m.group(1)


def _strip_type(rest: str, type_name: str) -> Optional[str]:
    if not rest.startswith(type_name):
        return None
    rest = rest[len(type_name):]
    if not rest.startswith("_"):
        return None
    return rest[1:]


def _strip_suffix(name: str, suffix: str) -> Optional[str]:
    if not name.endswith(suffix):
        return None
    name = name[: len(name) - len(suffix)]
    if not name.endswith("_"):
        return None
    return name[:-1]


@dataclass(frozen=True)
class ProjectPrefix:
    name: str
    lower: str
    upper: str

    @classmethod
    def from_name(cls, name: str) -> "ProjectPrefix":
        return cls(name=name, lower=ascii_lower(name) + "_", upper=ascii_upper(name) + "_")

    # --- lower case (data blobs and collections)

    def strip_lower(self, ident: str) -> Optional[str]:
        """"<x>" for "<prefix>_<x>"."""
        if not ident.startswith(self.lower):
            return None
        return ident[len(self.lower):]

    def strip_type_lower(self, ident: str, type_name: str) -> Optional[str]:
        """"<x>" for "<prefix>_<type_name>_<x>"."""
        rest = self.strip_lower(ident)
        if rest is None:
            return None
        return _strip_type(rest, type_name)

    def is_global_lower(self, ident: str, name: str) -> bool:
        return self.strip_lower(ident) == name

    # --- upper case (enums and struct tags)

    def strip_upper(self, ident: str) -> Optional[str]:
        """"<X>" for "<PREFIX>_<X>"."""
        if not ident.startswith(self.upper):
            return None
        return ident[len(self.upper):]

    def strip_type_upper(self, ident: str, type_name: str) -> Optional[str]:
        """"<X>" for "<PREFIX>_<TYPE_NAME>_<X>"."""
        rest = self.strip_upper(ident)
        if rest is None:
            return None
        return _strip_type(rest, type_name)

    def is_type_upper(self, ident: str, type_name: str) -> bool:
        return self.strip_type_upper(ident, type_name) is not None

    def strip_upper_with_suffix(self, ident: str, suffix: str) -> Optional[str]:
        """"<X>" for "<PREFIX>_<X>_<SUFFIX>"."""
        rest = self.strip_upper(ident)
        if rest is None:
            return None
        return _strip_suffix(rest, suffix)

    def strip_type_upper_with_suffix(self, ident: str, type_name: str, suffix: str) -> Optional[str]:
        """"<X>" for "<PREFIX>_<TYPE_NAME>_<X>_<SUFFIX>"."""
        rest = self.strip_type_upper(ident, type_name)
        if rest is None:
            return None
        return _strip_suffix(rest, suffix)
