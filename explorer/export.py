"""CSV export of search results.

One row per item, with nested fields flattened:
    source, id, title, museum, date, filter_date, century, place, creators,
    thumbnail_url, primary_image, full_image, url, rights
"""
from __future__ import annotations

import logging
import os
import threading
from typing import Iterable

import pandas as pd

from api.dates import century_label
from api.model import UnifiedItem

logger = logging.getLogger(__name__)

_csv_lock = threading.Lock()

EXPORT_COLUMNS = [
    "source",
    "id",
    "title",
    "museum",
    "date",
    "filter_date",
    "century",
    "place",
    "creators",
    "thumbnail_url",
    "primary_image",
    "full_image",
    "url",
    "rights",
]


def _creators_text(item: UnifiedItem) -> str:
    return "; ".join(
        f"{c.role}: {c.display_text}" if c.role else c.display_text
        for c in item.creators
        if c.display_text
    )


def items_to_dataframe(items: Iterable[UnifiedItem]) -> pd.DataFrame:
    """Flatten items into a DataFrame with EXPORT_COLUMNS."""
    rows = []
    for item in items:
        rows.append({
            "source": item.source,
            "id": item.id,
            "title": item.title,
            "museum": item.museum,
            "date": item.dates.display,
            "filter_date": item.filter_date,
            "century": century_label(item.century),
            "place": item.location.place if item.location else "",
            "creators": _creators_text(item),
            "thumbnail_url": item.media.thumbnail,
            "primary_image": item.media.primary_image,
            "full_image": item.media.full_image,
            "url": item.url,
            "rights": item.rights,
        })
    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    # Keep years as integers despite missing values
    df["filter_date"] = df["filter_date"].astype("Int64")
    return df


def export_csv(items: Iterable[UnifiedItem], csv_path: str) -> int:
    """Write items to a CSV file.

    Args:
        items: Items in the order they should appear
        csv_path: Destination path (parent directories are created)

    Returns:
        Number of rows written
    """
    df = items_to_dataframe(items)
    parent = os.path.dirname(os.path.abspath(csv_path))
    with _csv_lock:
        os.makedirs(parent, exist_ok=True)
        df.to_csv(csv_path, index=False, encoding="utf-8")
    logger.info("Exported %d item(s) to %s", len(df), csv_path)
    return len(df)


__all__ = ["EXPORT_COLUMNS", "items_to_dataframe", "export_csv"]
