"""Filter resolution: turn a filter into one id or an ordered list of items.

Equality rules for key/value filters:

    strict   same type and value, recursively for lists and dicts
             (30 != "30", 1 != True).  int and float are one number
             type, as in JSON (30 == 30.0).
    loose    Python equality (1 == 1.0 == True), plus number/string
             coercion: a str and an int/float match when the stripped
             string parses as an int, or failing that a float, equal to
             the number ("30" ~ 30, " 2.5 " ~ 2.5).  None only matches None.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from xennon.models import ById, Match, Where, as_filter, item_view

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class FilterOptions:
    strict: bool = False


_LOOSE = FilterOptions()


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def strict_equal(a: Any, b: Any) -> bool:
    if _is_number(a) and _is_number(b):
        return bool(a == b)
    if type(a) is not type(b):
        return False
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(strict_equal(v, b[k]) for k, v in a.items())
    if isinstance(a, list):
        return len(a) == len(b) and all(strict_equal(x, y) for x, y in zip(a, b, strict=True))
    return bool(a == b)


def loose_equal(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if a == b:
        return True
    if isinstance(a, str) and _is_number(b):
        a, b = b, a
    if _is_number(a) and isinstance(b, str):
        text = b.strip()
        try:
            return int(text) == a
        except ValueError:
            pass
        try:
            return float(text) == a
        except ValueError:
            return False
    return False


def matches(view: Mapping[str, Any], fields: Mapping[str, Any], *, strict: bool = False) -> bool:
    """True if every key in fields is present in view with an equal value."""
    eq = strict_equal if strict else loose_equal
    for key, expected in fields.items():
        if key not in view:
            return False
        if not eq(view[key], expected):
            return False
    return True


class FilterResolver:
    """Resolve filters against a collection (id -> fields), preserving order."""

    def __init__(self, collection: Mapping[str, Mapping[str, Any]]) -> None:
        self.collection = collection

    def _views(self):
        for item_id, fields in self.collection.items():
            yield item_id, item_view(item_id, fields)

    def resolve_one(self, flt: Any, options: FilterOptions | None = None) -> str | None:
        """Return the id of the first match, or None."""
        flt = as_filter(flt)
        opts = options or _LOOSE
        if isinstance(flt, ById):
            return flt.id if flt.id in self.collection else None
        if isinstance(flt, Match):
            for item_id, view in self._views():
                if matches(view, flt.fields, strict=opts.strict):
                    return item_id
            return None
        if isinstance(flt, Where):
            for item_id, view in self._views():
                if flt.predicate(view):
                    return item_id
            return None
        raise AssertionError(flt)  # pragma: no cover - as_filter is exhaustive

    def resolve_many(self, flt: Any, options: FilterOptions | None = None) -> list[dict[str, Any]]:
        """Return every matching item view, in collection order."""
        flt = as_filter(flt)
        opts = options or _LOOSE
        if isinstance(flt, ById):
            fields = self.collection.get(flt.id)
            return [] if fields is None else [item_view(flt.id, fields)]
        if isinstance(flt, Match):
            return [v for _, v in self._views() if matches(v, flt.fields, strict=opts.strict)]
        if isinstance(flt, Where):
            return [v for _, v in self._views() if flt.predicate(v)]
        raise AssertionError(flt)  # pragma: no cover - as_filter is exhaustive
