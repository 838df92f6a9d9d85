"""Exception hierarchy for xennon.

Not-found conditions are never raised: lookups and single-item mutations
report a missing target with ``None``.
"""

from __future__ import annotations


class XennonError(Exception):
    """Base class for every error raised by xennon."""


class InvalidFilter(XennonError, TypeError):
    """Filter is not an identifier, a key/value mapping or a predicate."""


class InvalidOptions(XennonError, ValueError):
    """Store options could not be parsed (bad duration, wrong type...)."""


class StoreCorrupt(XennonError):
    """A store or backup file exists but is not a JSON object."""


class AlreadyRunning(XennonError):
    """start_backups() called while scheduled backups are active."""


class NotRunning(XennonError):
    """stop_backups() called while no scheduled backups are active."""


class BackupMissing(XennonError):
    """restore() called but no backup file exists."""


class QueueClosed(XennonError):
    """A job was submitted after the action queue was closed."""
