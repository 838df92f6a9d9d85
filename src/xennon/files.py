"""Atomic JSON file I/O for store and backup files.

Every write goes to ``<file>.tmp`` under an exclusive flock and is then
renamed over the target, so readers only ever see a complete document.
"""

from __future__ import annotations

import fcntl
import json
import logging
import shutil
from pathlib import Path
from typing import Any

from xennon.errors import StoreCorrupt

logger = logging.getLogger("xennon.files")


def _tmp_path(path: Path) -> Path:
    return path.with_name(path.name + ".tmp")


def ensure_path(path: Path, initial: Any = None) -> bool:
    """Create path's directory, and path itself holding ``initial`` (default {}).

    Returns True if the file was created.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        return False
    write_json(path, {} if initial is None else initial)
    logger.info("created %s", path)
    return True


def read_json(path: Path) -> dict[str, Any]:
    """Read a JSON object under a shared flock. Raises StoreCorrupt otherwise."""
    with path.open(encoding="utf-8") as f:
        fcntl.flock(f, fcntl.LOCK_SH)
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            msg = f"{path} is not valid JSON: {exc}"
            raise StoreCorrupt(msg) from exc
    if not isinstance(data, dict):
        msg = f"{path} does not hold a JSON object (got {type(data).__name__})"
        raise StoreCorrupt(msg)
    return data


def write_json(path: Path, data: dict[str, Any]) -> None:
    """Atomically replace path with data serialized as JSON."""
    tmp = _tmp_path(path)
    try:
        with tmp.open("w", encoding="utf-8") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            json.dump(data, f, ensure_ascii=False, indent=2)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    tmp.replace(path)


def copy_file(src: Path, dst: Path) -> None:
    """Byte-for-byte copy of src onto dst via a tmp file and rename."""
    tmp = _tmp_path(dst)
    try:
        with src.open("rb") as fsrc:
            fcntl.flock(fsrc, fcntl.LOCK_SH)
            with tmp.open("wb") as fdst:
                shutil.copyfileobj(fsrc, fdst)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    tmp.replace(dst)
