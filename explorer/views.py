"""Read-time views over a session's accumulated items.

Sorting and filtering never touch the canonical accumulation order; every
function here returns a new list.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from api.dates import CENTURY_LABELS, century_counts
from api.model import UnifiedItem

SORT_OPTIONS = ("relevance", "date_asc", "date_desc", "title")


def sort_items(items: Sequence[UnifiedItem], sort: str = "relevance") -> List[UnifiedItem]:
    """Order items for display.

    "relevance" keeps arrival order. Date sorts put undated items last in
    both directions.

    Raises:
        ValueError: Unknown sort option
    """
    if sort not in SORT_OPTIONS:
        raise ValueError(f"Unknown sort option: {sort!r} (expected one of {', '.join(SORT_OPTIONS)})")
    if sort == "relevance":
        return list(items)
    if sort == "title":
        return sorted(items, key=lambda i: i.title.casefold())

    dated = [i for i in items if i.filter_date is not None]
    undated = [i for i in items if i.filter_date is None]
    dated.sort(key=lambda i: i.filter_date, reverse=(sort == "date_desc"))
    return dated + undated


def filter_items(
    items: Iterable[UnifiedItem],
    century: str = "all",
    date_from: Optional[int] = None,
    date_to: Optional[int] = None,
) -> List[UnifiedItem]:
    """Keep items in a century bucket and/or an inclusive year range.

    Items without a derived year are excluded once a year range is given.

    Raises:
        ValueError: Unknown century bucket
    """
    if century not in CENTURY_LABELS:
        raise ValueError(f"Unknown century bucket: {century!r}")
    out = []
    for item in items:
        if century != "all" and item.century != century:
            continue
        if date_from is not None or date_to is not None:
            if item.filter_date is None:
                continue
            if date_from is not None and item.filter_date < date_from:
                continue
            if date_to is not None and item.filter_date > date_to:
                continue
        out.append(item)
    return out


def build_view(
    items: Sequence[UnifiedItem],
    sort: str = "relevance",
    century: str = "all",
    date_from: Optional[int] = None,
    date_to: Optional[int] = None,
) -> List[UnifiedItem]:
    """Filter then sort."""
    return sort_items(filter_items(items, century, date_from, date_to), sort)


def count_centuries(items: Iterable[UnifiedItem]) -> Dict[str, int]:
    return century_counts(item.century for item in items)


def paginate(items: Sequence[UnifiedItem], page: int = 1, page_size: int = 20) -> List[UnifiedItem]:
    """Slice one 1-based page out of a view."""
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be positive")
    start = (page - 1) * page_size
    return list(items[start:start + page_size])


__all__ = ["SORT_OPTIONS", "sort_items", "filter_items", "build_view", "count_centuries", "paginate"]
