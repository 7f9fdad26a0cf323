#!/usr/bin/env python3
"""
watch_project.py - Re-read an exported project whenever the file changes.

Every pass reads into a fresh store; the last store that read without errors
is kept, so a half-written file never replaces good data.

Usage:
  python tools/watch_project.py project.h
  python tools/watch_project.py project.h --json build/project.json
  python tools/watch_project.py project.h --once
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from asset_store import DataAssetStore, StringLogger
from c_tokenizer import ProjectReadError
from project_reader import asset_summary, read_project


def file_mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return 0.0


def load_cache(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}


def save_cache(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def should_run(input_path: Path, cache: dict) -> bool:
    input_m = file_mtime(input_path)
    if input_m == 0.0:
        return False
    return cache.get(str(input_path), {}).get("input_mtime") != input_m


def update_cache_entry(input_path: Path, cache: dict, num_assets: int) -> None:
    cache[str(input_path)] = {
        "input_mtime": file_mtime(input_path),
        "num_assets": num_assets,
    }


class ProjectWatcher:
    def __init__(self, project_path: Path, cache_path: Path, json_path: Optional[Path] = None,
                 verbose: bool = False):
        self.project_path = project_path
        self.cache_path = cache_path
        self.json_path = json_path
        self.verbose = verbose
        self.store: Optional[DataAssetStore] = None

    def read_pass(self, force: bool = False) -> bool:
        """Read the project if it changed since the last good pass. False on error."""
        cache = load_cache(self.cache_path)
        if not force and not should_run(self.project_path, cache):
            return True

        store = DataAssetStore()
        logger = StringLogger(echo=self.verbose)
        try:
            read_project(str(self.project_path), store, logger)
        except ProjectReadError as e:
            print(f"{self.project_path.resolve()}:{e.line}:1: error: {e.message}", file=sys.stderr)
            return False
        except OSError as e:
            print(f"{self.project_path.resolve()}:1:1: error: {e}", file=sys.stderr)
            return False

        self.store = store
        print(f"Read {self.project_path}: {store.num_assets()} assets, {store.data_size()} bytes")
        if self.json_path:
            self.json_path.parent.mkdir(parents=True, exist_ok=True)
            self.json_path.write_text(json.dumps(asset_summary(store), indent=2), encoding="utf-8")
            print(f"Wrote {self.json_path}")

        update_cache_entry(self.project_path, cache, store.num_assets())
        save_cache(self.cache_path, cache)
        return True

    def run_cycle(self, force: bool = False) -> bool:
        print("READ START")
        ok = self.read_pass(force)
        print("READ END")
        return ok


class ProjectHandler(FileSystemEventHandler):
    def __init__(self, watcher: ProjectWatcher):
        super().__init__()
        self.watcher = watcher

    def _handle(self, event) -> None:
        if event.is_directory:
            return
        if os.path.abspath(event.src_path) != os.path.abspath(self.watcher.project_path):
            return
        self.watcher.run_cycle()

    def on_modified(self, event):
        self._handle(event)

    def on_created(self, event):
        self._handle(event)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("input", help="Exported project file (.h/.c)")
    ap.add_argument("--json", default="", help="Write the asset summary here after every good read")
    ap.add_argument("--cache", default="", help="mtime cache (default: <input dir>/build/.project_cache.json)")
    ap.add_argument("--interval", type=float, default=0.5, help="Polling interval in seconds")
    ap.add_argument("--once", action="store_true", help="Run a single pass and exit")
    ap.add_argument("--verbose", action="store_true", help="Print the read log")
    args = ap.parse_args()

    project_path = Path(args.input).resolve()
    if not project_path.is_file():
        print(f"{project_path}:1:1: error: Project file not found", file=sys.stderr)
        sys.exit(1)
    cache_path = Path(args.cache) if args.cache else project_path.parent / "build" / ".project_cache.json"
    json_path = Path(args.json) if args.json else None

    watcher = ProjectWatcher(project_path, cache_path, json_path, verbose=args.verbose)

    if args.once:
        if not watcher.read_pass():
            sys.exit(1)
        return

    observer = Observer()
    observer.schedule(ProjectHandler(watcher), str(project_path.parent), recursive=False)
    observer.start()

    watcher.run_cycle(force=True)

    try:
        while True:
            time.sleep(args.interval)
    except KeyboardInterrupt:
        observer.stop()
    observer.join()


if __name__ == "__main__":
    main()
