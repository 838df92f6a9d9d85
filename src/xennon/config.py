"""StoreOptions: where a store lives and how it is backed up.

Options come from the constructor (dataclass, mapping or keyword overrides)
or from a project file found by walking upward from the cwd:

    xennon.toml           # project config
    XennonStore/
        store.json        # the collection
        store--backup.json

xennon.toml example:

    [store]
    name = "store"
    path = "XennonStore"   # relative to the directory holding xennon.toml

    [backups]
    enabled = true
    interval = "1 hour"    # "30m", "2.5 hrs", "1d", "PT1H", or seconds as a number

Defaults apply field by field: a [backups] table that only sets
``enabled`` keeps the default interval.
"""

from __future__ import annotations

import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any

from xennon.errors import InvalidOptions

_CONFIG_FILENAME = "xennon.toml"
_DEFAULT_NAME = "store"
_DEFAULT_DIRNAME = "XennonStore"
_DEFAULT_INTERVAL = "1 hour"

# ms-style durations: "1 hour", "30m", "2.5 hrs", "500" (milliseconds)
_DURATION_RE = re.compile(
    r"^(?P<n>-?(?:\d+)?\.?\d+)\s*"
    r"(?P<unit>milliseconds?|msecs?|ms|seconds?|secs?|s|minutes?|mins?|m"
    r"|hours?|hrs?|h|days?|d|weeks?|w|years?|yrs?|y)?$",
    re.IGNORECASE,
)
_ISO_RE = re.compile(
    r"^P(?:(?P<w>\d+)W)?(?:(?P<d>\d+)D)?"
    r"(?:T(?:(?P<h>\d+)H)?(?:(?P<m>\d+)M)?(?:(?P<s>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)
_UNIT_SECONDS = {
    "ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0,
    "d": 86400.0, "w": 604800.0, "y": 31557600.0,
}


def _unit_key(unit: str) -> str:
    unit = unit.lower()
    if unit.startswith(("ms", "msec", "milli")):
        return "ms"
    if unit.startswith("h"):
        return "h"
    if unit.startswith("y"):
        return "y"
    return unit[0]


def parse_duration(value: Any) -> float:
    """Return value as a positive number of seconds.

    Numbers are seconds; strings follow the ``ms`` package conventions, where
    a bare numeric string means milliseconds.
    """
    if isinstance(value, bool):
        msg = f"Invalid duration: {value!r}"
        raise InvalidOptions(msg)
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        m = _DURATION_RE.match(text)
        iso = None if m else _ISO_RE.match(text)
        if m:
            unit = _unit_key(m.group("unit") or "ms")
            seconds = float(m.group("n")) * _UNIT_SECONDS[unit]
        elif iso and text.upper() not in ("P", "PT"):
            seconds = timedelta(
                weeks=int(iso.group("w") or 0),
                days=int(iso.group("d") or 0),
                hours=int(iso.group("h") or 0),
                minutes=int(iso.group("m") or 0),
                seconds=float(iso.group("s") or 0),
            ).total_seconds()
        else:
            msg = f"Invalid duration: {value!r}. Use e.g. '1 hour', '30m', 'PT1H' or seconds"
            raise InvalidOptions(msg)
    else:
        msg = f"Invalid duration type: {type(value).__name__}"
        raise InvalidOptions(msg)
    if seconds <= 0:
        msg = f"Duration must be positive: {value!r}"
        raise InvalidOptions(msg)
    return seconds


@dataclass
class BackupOptions:
    enabled: bool = True
    interval: Any = _DEFAULT_INTERVAL   # duration string, seconds, or timedelta

    def __post_init__(self) -> None:
        if not isinstance(self.enabled, bool):
            msg = f"backups.enabled must be true or false, got {self.enabled!r}"
            raise InvalidOptions(msg)

    @property
    def interval_seconds(self) -> float:
        return parse_duration(self.interval)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> BackupOptions:
        _check_keys(cls, d, "backups")
        base = cls()
        return cls(
            enabled=d.get("enabled", base.enabled),
            interval=d.get("interval", base.interval),
        )


@dataclass
class StoreOptions:
    """Resolved options for one XennonStore."""

    name: str = _DEFAULT_NAME
    path: Path = field(default_factory=lambda: Path.cwd() / _DEFAULT_DIRNAME)
    backups: BackupOptions = field(default_factory=BackupOptions)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            msg = f"Store name must be a non-empty string, got {self.name!r}"
            raise InvalidOptions(msg)
        if "/" in self.name or "\\" in self.name:
            msg = f"Store name must not contain path separators: {self.name!r}"
            raise InvalidOptions(msg)
        self.path = Path(self.path).expanduser()
        if isinstance(self.backups, Mapping):
            self.backups = BackupOptions.from_dict(self.backups)
        parse_duration(self.backups.interval)

    @property
    def store_file(self) -> Path:
        return self.path / f"{self.name}.json"

    @property
    def backup_file(self) -> Path:
        return self.path / f"{self.name}--backup.json"

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> StoreOptions:
        """Build options from a (possibly partial) mapping."""
        _check_keys(cls, d, "store options")
        base = cls()
        return cls(
            name=d.get("name", base.name),
            path=Path(d["path"]) if d.get("path") else base.path,
            backups=BackupOptions.from_dict(d.get("backups") or {}),
        )

    def merged(self, **overrides: Any) -> StoreOptions:
        """Copy with overrides; a ``backups`` mapping merges field by field."""
        _check_keys(type(self), overrides, "store options")
        backups = overrides.pop("backups", None)
        opts = replace(self, **overrides)
        if isinstance(backups, Mapping):
            _check_keys(BackupOptions, backups, "backups")
            opts.backups = replace(self.backups, **backups)
            parse_duration(opts.backups.interval)
        elif backups is not None:
            opts.backups = backups
        return opts


def _check_keys(cls: type, d: Mapping[str, Any], what: str) -> None:
    known = {f.name for f in fields(cls)}
    unknown = set(d) - known
    if unknown:
        msg = f"Unknown {what}: {', '.join(sorted(unknown))}"
        raise InvalidOptions(msg)


def resolve_options(options: StoreOptions | Mapping[str, Any] | None = None, **overrides: Any) -> StoreOptions:
    if options is None:
        opts = StoreOptions()
    elif isinstance(options, StoreOptions):
        opts = options
    elif isinstance(options, Mapping):
        opts = StoreOptions.from_dict(options)
    else:
        msg = f"options must be StoreOptions or a mapping, got {type(options).__name__}"
        raise InvalidOptions(msg)
    return opts.merged(**overrides) if overrides else opts


# ---------------------------------------------------------------------------
# xennon.toml
# ---------------------------------------------------------------------------


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for xennon.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def load_options(root: Path | str | None = None) -> StoreOptions:
    """Load xennon.toml from root (or search upward from cwd if root is None).

    Without a config file, returns defaults rooted at the search start.
    """
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            try:
                raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                msg = f"{config_path}: {exc}"
                raise InvalidOptions(msg) from exc

    store_section = raw.get("store", {})
    backups_section = raw.get("backups", {})

    return StoreOptions(
        name=store_section.get("name", _DEFAULT_NAME),
        path=root_path / store_section.get("path", _DEFAULT_DIRNAME),
        backups=BackupOptions.from_dict(backups_section),
    )


def init_config(root: Path, name: str | None = None) -> Path:
    """Write a default xennon.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"xennon.toml already exists at {config_path}"
        raise FileExistsError(msg)

    content = f"""\
[store]
name = "{name or _DEFAULT_NAME}"
# path = "{_DEFAULT_DIRNAME}"   # default, relative to this file

[backups]
enabled = true
interval = "{_DEFAULT_INTERVAL}"   # ms-style ("30m", "2 days") or seconds as a number
"""
    config_path.write_text(content)
    return config_path
