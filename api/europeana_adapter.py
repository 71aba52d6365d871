"""Normalization of Europeana search items and records into UnifiedItem.

Search items are flat (lists of strings keyed by EDM field names), while
record payloads nest everything under "object" with language-keyed maps in
proxies and aggregations.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

from .dates import derive_filter_fields
from .fallbacks import as_list, const, dig, extract, lang, lang_across, path, pick_language
from .model import Creator, Dates, Description, Identifier, Location, Media, UnifiedItem
from .text import clean_markup, format_date_for_display, split_paragraphs

logger = logging.getLogger(__name__)

SOURCE_KEY = "europeana"

DEFAULT_MUSEUM = "European Institution"


def clean_id(value: Any) -> str:
    """Europeana ids start with "/"; drop it so ids are path-safe."""
    if not value:
        return ""
    text = str(value)
    return text[1:] if text.startswith("/") else text


def _lang_values(values: Any) -> List[str]:
    """All values of the preferred language in a language map."""
    if not isinstance(values, dict):
        return [str(v) for v in as_list(values) if v]
    for key in ("en", "def", "und"):
        found = [str(v) for v in as_list(values.get(key)) if v]
        if found:
            return found
    for candidate in values.values():
        found = [str(v) for v in as_list(candidate) if v]
        if found:
            return found
    return []


def _unique(values: List[str]) -> List[str]:
    seen = set()
    out = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


# ----------------------------------------------------------------------------
# Field tables
# ----------------------------------------------------------------------------

SEARCH_FIELDS = {
    "id": [path("id")],
    "title": [lang("dcTitleLangAware"), path("title")],
    "thumbnail": [path("edmPreview")],
    "full_image": [path("edmIsShownBy")],
    "museum": [path("dataProvider"), const(DEFAULT_MUSEUM)],
    "date": [path("year"), lang("dcDateLangAware")],
    "place": [path("country")],
    "rights": [path("rights")],
    "url": [path("guid")],
}

RECORD_FIELDS = {
    "id": [path("about")],
    "title": [lang_across(("proxies",), "dcTitle"), path("title")],
    "full_image": [path("aggregations", 0, "edmIsShownBy")],
    "screen_image": [path("aggregations", 0, "edmObject")],
    "thumbnail": [path("europeanaAggregation", "edmPreview")],
    "created": [lang_across(("proxies",), "dctermsCreated")],
    "published": [
        lang_across(("proxies",), "dcDate"),
        lang_across(("proxies",), "dctermsCreated"),
        lang_across(("timespans",), "prefLabel"),
    ],
    "place": [
        lang_across(("proxies",), "dctermsSpatial"),
        lang_across(("proxies",), "edmCurrentLocation"),
        lang_across(("places",), "prefLabel"),
    ],
    "museum": [
        lang_across(("organizations",), "prefLabel"),
        lang("aggregations", 0, "edmDataProvider"),
        const(DEFAULT_MUSEUM),
    ],
    "rights": [lang("aggregations", 0, "edmRights"), lang("europeanaAggregation", "edmRights")],
    "url": [path("europeanaAggregation", "edmLandingPage"), path("aggregations", 0, "edmIsShownAt")],
}


# ----------------------------------------------------------------------------
# Proxy sections
# ----------------------------------------------------------------------------

def _proxy_values(record: Any, field: str) -> List[str]:
    values: List[str] = []
    for proxy in as_list(record.get("proxies")):
        if isinstance(proxy, dict):
            values.extend(clean_markup(v) for v in _lang_values(proxy.get(field)))
    return _unique(values)


def extract_creators(record: Any) -> List[Creator]:
    names = _proxy_values(record, "dcCreator")
    if not names:
        return []
    return [Creator(role="Creator", names=names, display_text=", ".join(names))]


def extract_descriptions(record: Any) -> List[Description]:
    descriptions = []
    for proxy in as_list(record.get("proxies")):
        if not isinstance(proxy, dict):
            continue
        for raw in _lang_values(proxy.get("dcDescription")):
            content = clean_markup(raw)
            if content and all(d.content != content for d in descriptions):
                descriptions.append(
                    Description(title="Description", content=content, paragraphs=split_paragraphs(content))
                )
    return descriptions


def extract_identifiers(record: Any) -> List[Identifier]:
    return [Identifier(label="Identifier", content=v) for v in _proxy_values(record, "dcIdentifier")]


# ----------------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------------

def normalize(row: Any) -> Optional[UnifiedItem]:
    """Normalize one search item; None if it must be dropped."""
    if not isinstance(row, dict):
        return None
    try:
        fields = extract(row, SEARCH_FIELDS)
        item_id = clean_id(fields["id"])
        if not item_id:
            return None

        thumbnail = str(fields["thumbnail"] or "")
        full_image = str(fields["full_image"] or "")
        raw_date = clean_markup(fields["date"])
        filter_date, century = derive_filter_fields(raw_date)
        published = format_date_for_display(raw_date)
        place = clean_markup(fields["place"])
        creators = [clean_markup(c) for c in as_list(row.get("dcCreator")) if c]

        item = UnifiedItem(
            id=item_id,
            source=SOURCE_KEY,
            title=clean_markup(fields["title"]) or "Untitled",
            thumbnail_url=thumbnail,
            dates=Dates(display=published, published=published),
            location=Location(place=place) if place else None,
            creators=[Creator(role="Creator", names=creators, display_text=", ".join(creators))] if creators else [],
            media=Media(thumbnail=thumbnail, primary_image=full_image or thumbnail, full_image=full_image),
            filter_date=filter_date,
            century=century,
            museum=clean_markup(fields["museum"]) or DEFAULT_MUSEUM,
            url=str(fields["url"] or ""),
            rights=str(fields["rights"] or ""),
        )
    except Exception as e:
        logger.debug("Dropping malformed Europeana item: %s", e)
        return None

    # Search items without a preview are never shown
    if not item.media.thumbnail:
        return None
    return item if item.is_renderable() else None


def normalize_record(payload: Any) -> Optional[UnifiedItem]:
    """Normalize a Record API payload ({"object": {...}})."""
    record = dig(payload, "object")
    if not isinstance(record, dict):
        return None
    try:
        fields = extract(record, RECORD_FIELDS)
        item_id = clean_id(fields["id"])
        if not item_id:
            return None

        full_image = str(fields["full_image"] or "")
        screen_image = str(fields["screen_image"] or "") or full_image
        thumbnail = str(fields["thumbnail"] or "")
        created_raw = clean_markup(fields["created"])
        published_raw = clean_markup(fields["published"])
        filter_date, century = derive_filter_fields(created_raw, published_raw)
        published = format_date_for_display(published_raw)
        place = clean_markup(fields["place"])

        item = UnifiedItem(
            id=item_id,
            source=SOURCE_KEY,
            title=clean_markup(fields["title"]) or "Untitled",
            thumbnail_url=thumbnail,
            dates=Dates(
                display=published,
                created=format_date_for_display(created_raw),
                published=published,
            ),
            location=Location(place=place) if place else None,
            creators=extract_creators(record),
            descriptions=extract_descriptions(record),
            identifiers=extract_identifiers(record),
            media=Media(thumbnail=thumbnail, primary_image=screen_image, full_image=full_image),
            filter_date=filter_date,
            century=century,
            museum=clean_markup(fields["museum"]) or DEFAULT_MUSEUM,
            url=str(fields["url"] or ""),
            rights=str(pick_language(fields["rights"]) or ""),
        )
    except Exception as e:
        logger.debug("Dropping malformed Europeana record: %s", e)
        return None

    return item if item.is_renderable() else None


def rows_of(payload: Any) -> List[Any]:
    """Raw items of a search payload."""
    return as_list(dig(payload, "items"))


def total_of(payload: Any) -> int:
    """Total result count reported by a search payload."""
    try:
        return int(dig(payload, "totalResults") or 0)
    except (TypeError, ValueError):
        return 0


__all__ = ["SOURCE_KEY", "normalize", "normalize_record", "rows_of", "total_of", "clean_id"]
