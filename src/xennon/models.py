"""Item identifiers, item views and the filter variants."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from xennon.errors import InvalidFilter

ID_KEY = "id"

Fields = dict[str, Any]
Predicate = Callable[[dict[str, Any]], Any]


def new_item_id() -> str:
    """Generate a compact item id: 12 hex chars."""
    return uuid.uuid4().hex[:12]


def item_view(item_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
    """Fields plus identifier, as handed to callers and predicates."""
    return {**fields, ID_KEY: item_id}


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ById:
    """Literal identifier lookup."""

    id: str


@dataclass(frozen=True)
class Match:
    """Key/value match: every key must be present and equal."""

    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Where:
    """Predicate over item views."""

    predicate: Predicate


Filter = ById | Match | Where


def as_filter(value: Any) -> Filter:
    """Convert a raw filter (str, mapping, callable) into a filter variant.

    Already-tagged filters pass through unchanged.
    """
    if isinstance(value, (ById, Match, Where)):
        return value
    if isinstance(value, str):
        return ById(value)
    if isinstance(value, Mapping):
        return Match(dict(value))
    if callable(value):
        return Where(value)
    msg = f"Invalid filter of type {type(value).__name__}: expected an id, a mapping or a predicate"
    raise InvalidFilter(msg)
