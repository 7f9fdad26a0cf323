#!/usr/bin/env python3
"""
asset_png.py - Render tilesets, sprites and proportional fonts of a project as PNG sheets.

Pixels are 6-bit ..BBGGRR colours; every 2-bit channel is spread to 8 bits.
The colour r=0,g=3,b=0 (pure green) is the transparent colour.

Usage:
  python tools/asset_png.py project.h --out-dir build/png [--kind tileset --kind sprite] [--per-row N]
"""

from __future__ import annotations

import argparse
import math
import os
import sys
from typing import Optional

import numpy as np
from PIL import Image

from asset_store import (
    DataAssetStore,
    PROP_FONT_BG_COLOR,
    PROP_FONT_NUM_CHARS,
    PropFont,
    Sprite,
    StringLogger,
    Tileset,
)
from c_tokenizer import ProjectReadError
from project_reader import read_project

TRANSPARENT_COLOR = 0b001100

KINDS = ("tileset", "sprite", "prop_font")


def _spread2(c: np.ndarray) -> np.ndarray:
    return (c << 6) | (c << 4) | (c << 2) | c


def build_palette() -> np.ndarray:
    """64 x RGBA lookup table for 6-bit pixels."""
    idx = np.arange(64, dtype=np.uint8)
    pal = np.zeros((64, 4), dtype=np.uint8)
    pal[:, 0] = _spread2(idx & 3)
    pal[:, 1] = _spread2((idx >> 2) & 3)
    pal[:, 2] = _spread2((idx >> 4) & 3)
    pal[:, 3] = 255
    pal[TRANSPARENT_COLOR, 3] = 0
    return pal


PAL = build_palette()

# prop fonts: background is opaque green, everything else black
FONT_PAL = np.zeros((64, 4), dtype=np.uint8)
FONT_PAL[:, 3] = 255
FONT_PAL[PROP_FONT_BG_COLOR] = (0, 255, 0, 255)


def sheet_layout(num_items: int, items_per_row: Optional[int] = None) -> tuple[int, int]:
    """Return (columns, rows) of the sheet."""
    if num_items <= 0:
        raise ValueError("no items to render")
    if items_per_row is None:
        items_per_row = math.ceil(math.sqrt(num_items))
    if items_per_row < 1 or items_per_row > num_items:
        raise ValueError(f"invalid items per row: {items_per_row} (have {num_items} items)")
    return items_per_row, (num_items + items_per_row - 1) // items_per_row


def make_sheet(pixels: np.ndarray, width: int, height: int, num_items: int,
               items_per_row: Optional[int] = None, fill: int = TRANSPARENT_COLOR) -> np.ndarray:
    """Lay out `num_items` images of width x height (one byte per pixel) on a grid."""
    cols, rows = sheet_layout(num_items, items_per_row)
    items = np.asarray(pixels, dtype=np.uint8).reshape(num_items, height, width)
    sheet = np.full((rows * height, cols * width), fill, dtype=np.uint8)
    for i in range(num_items):
        y, x = divmod(i, cols)
        sheet[y * height:(y + 1) * height, x * width:(x + 1) * width] = items[i]
    return sheet


def idx_to_rgba(sheet: np.ndarray, pal: np.ndarray = PAL) -> Image.Image:
    return Image.fromarray(pal[sheet & 0x3F])


def tileset_image(tileset: Tileset, items_per_row: Optional[int] = None) -> Image.Image:
    sheet = make_sheet(tileset.data, tileset.width, tileset.height, tileset.num_tiles, items_per_row)
    return idx_to_rgba(sheet)


def sprite_image(sprite: Sprite, items_per_row: Optional[int] = None) -> Image.Image:
    sheet = make_sheet(sprite.data, sprite.width, sprite.height, sprite.num_frames, items_per_row)
    return idx_to_rgba(sheet)


def prop_font_image(font: PropFont, items_per_row: Optional[int] = None) -> Image.Image:
    sheet = make_sheet(font.data, font.max_width, font.height, PROP_FONT_NUM_CHARS, items_per_row,
                       fill=PROP_FONT_BG_COLOR)
    return idx_to_rgba(sheet, FONT_PAL)


def export_store(store: DataAssetStore, out_dir: str, kinds=KINDS, items_per_row: Optional[int] = None) -> list:
    """Write one PNG per asset of the selected kinds; returns the written paths.

    Assets without tiles or frames are skipped.
    """
    os.makedirs(out_dir, exist_ok=True)
    jobs = []
    if "tileset" in kinds:
        jobs += [("tileset", store.tilesets[i], tileset_image, store.tilesets[i].num_tiles)
                 for i in store.ids.tilesets]
    if "sprite" in kinds:
        jobs += [("sprite", store.sprites[i], sprite_image, store.sprites[i].num_frames)
                 for i in store.ids.sprites]
    if "prop_font" in kinds:
        jobs += [("prop_font", store.prop_fonts[i], prop_font_image, PROP_FONT_NUM_CHARS)
                 for i in store.ids.prop_fonts]

    written = []
    for kind, asset, render, num_items in jobs:
        path = os.path.join(out_dir, f"{kind}_{asset.asset.name}.png")
        if num_items == 0:
            print(f"Skipped {path}: {kind} '{asset.asset.name}' has no items")
            continue
        render(asset, items_per_row).save(path)
        print(f"Wrote {path}")
        written.append(path)
    return written


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("input", help="Exported project file (.h/.c)")
    ap.add_argument("--out-dir", default="", help="Output directory (default: <input dir>/png)")
    ap.add_argument("--kind", action="append", choices=KINDS, help="Asset kind to export (repeatable)")
    ap.add_argument("--per-row", type=int, default=None, help="Items per sheet row")
    args = ap.parse_args()

    if not args.out_dir:
        args.out_dir = os.path.join(os.path.dirname(os.path.abspath(args.input)), "png")

    store = DataAssetStore()
    try:
        read_project(args.input, store, StringLogger())
    except ProjectReadError as e:
        path = os.path.abspath(e.path or args.input)
        print(f"{path}:{e.line}:1: error: {e.message}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"{os.path.abspath(args.input)}:1:1: error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        export_store(store, args.out_dir, tuple(args.kind or KINDS), args.per_row)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
