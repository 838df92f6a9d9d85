"""Embedded JSON-file document store for a single process.

Layout:
    <path>/
        <name>.json           # the collection: {"<id>": {...fields}, ...}
        <name>--backup.json   # rolling snapshot written by backup()

Every mutation, backup and restore runs as a job on one FIFO action queue,
so the file on disk never reflects two interleaved operations.
"""

from xennon.config import BackupOptions, StoreOptions, load_options, parse_duration
from xennon.errors import (
    AlreadyRunning,
    BackupMissing,
    InvalidFilter,
    InvalidOptions,
    NotRunning,
    QueueClosed,
    StoreCorrupt,
    XennonError,
)
from xennon.filters import FilterOptions
from xennon.models import ById, Match, Where
from xennon.store import XennonStore

__all__ = [
    "AlreadyRunning",
    "BackupMissing",
    "BackupOptions",
    "ById",
    "FilterOptions",
    "InvalidFilter",
    "InvalidOptions",
    "Match",
    "NotRunning",
    "QueueClosed",
    "StoreCorrupt",
    "StoreOptions",
    "Where",
    "XennonError",
    "XennonStore",
    "load_options",
    "parse_duration",
]
