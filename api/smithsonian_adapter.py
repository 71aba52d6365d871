"""Normalization of Smithsonian Open Access records into UnifiedItem.

Search rows and content-endpoint records share one shape (the content
endpoint wraps it in "response"), so both go through normalize().
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .dates import derive_filter_fields
from .fallbacks import as_list, dig, extract, path, transform
from .model import Creator, Dates, Description, Identifier, Location, Media, UnifiedItem
from .text import clean_markup, format_date_for_display, split_paragraphs

logger = logging.getLogger(__name__)

SOURCE_KEY = "smithsonian"

IDS_DELIVERY_URL = "https://ids.si.edu/ids/deliveryService?id={ids_id}"

DEFAULT_MUSEUM = "Smithsonian Institution"

SMITHSONIAN_MUSEUMS: Dict[str, str] = {
    "AAA": "Archives of American Art",
    "ACM": "Anacostia Community Museum",
    "CHNDM": "Cooper Hewitt, Smithsonian Design Museum",
    "HMSG": "Hirshhorn Museum and Sculpture Garden",
    "NASM": "National Air and Space Museum",
    "NMAAHC": "National Museum of African American History and Culture",
    "NMAH": "National Museum of American History",
    "NMAI": "National Museum of the American Indian",
    "NMAfA": "National Museum of African Art",
    "NMNH": "National Museum of Natural History",
    "NPG": "National Portrait Gallery",
    "NPM": "National Postal Museum",
    "NZP": "Smithsonian's National Zoo & Conservation Biology Institute",
    "SAAM": "Smithsonian American Art Museum",
    "CFCHFOLKLIFE": "Ralph Rinzler Folklife Archives and Collections",
    "EEPA": "Eliot Elisofon Photographic Archives",
    "FBR": "Smithsonian Field Book Project",
    "FSG": "Freer Gallery of Art and Arthur M. Sackler Gallery",
    "HAC": "Smithsonian Gardens",
    "HSFA": "Human Studies Film Archives",
    "NAA": "National Anthropological Archives",
    "SIA": "Smithsonian Institution Archives",
    "SIL": "Smithsonian Libraries",
    "NMNHANTHRO": "National Museum of Natural History - Anthropology Dept.",
    "NMNHBIRDS": "National Museum of Natural History - Birds Division",
    "NMNHBOTANY": "National Museum of Natural History - Botany Dept.",
    "NMNHEDUCATION": "National Museum of Natural History - Education & Outreach",
    "NMNHENTO": "National Museum of Natural History - Entomology Dept.",
    "NMNHFISHES": "National Museum of Natural History - Fishes Division",
    "NMNHHERPS": "National Museum of Natural History - Herpetology Division",
    "NMNHINV": "National Museum of Natural History - Invertebrate Zoology Dept.",
    "NMNHMAMMALS": "National Museum of Natural History - Mammals Division",
    "NMNHMINSCI": "National Museum of Natural History - Mineral Sciences Dept.",
    "NMNHPALEO": "National Museum of Natural History - Paleobiology Dept.",
}


def get_museum_name(code: Optional[str]) -> str:
    """Full museum name for a unit code; unknown codes are returned as-is."""
    if not code:
        return DEFAULT_MUSEUM
    return SMITHSONIAN_MUSEUMS.get(code, code)


# ----------------------------------------------------------------------------
# Freetext helpers
# ----------------------------------------------------------------------------

def _freetext(record: Any, field: str) -> List[Dict[str, Any]]:
    entries = dig(record, "content", "freetext", field)
    return [e for e in as_list(entries) if isinstance(e, dict)]


def freetext_content(field: str, label: Optional[str] = None):
    """Strategy returning the first freetext content, optionally by label."""
    def _strategy(record: Any) -> Any:
        for entry in _freetext(record, field):
            entry_label = str(entry.get("label") or "")
            if label and label not in entry_label:
                continue
            if entry.get("content"):
                return entry["content"]
        return None
    return _strategy


def _media_usage(record: Any) -> Optional[str]:
    for media in as_list(dig(record, "content", "descriptiveNonRepeating", "online_media", "media")):
        access = dig(media, "usage", "access")
        if access:
            return str(access)
    return None


def _join_places(value: Any) -> str:
    return ", ".join(str(v) for v in as_list(value) if v)


# ----------------------------------------------------------------------------
# Field table
# ----------------------------------------------------------------------------

DNR = ("content", "descriptiveNonRepeating")

FIELDS = {
    "id": [path("id"), path("url")],
    "title": [path("title"), path(*DNR, "title", "content")],
    "unit_code": [path("unitCode"), path(*DNR, "unit_code")],
    "url": [path(*DNR, "record_link")],
    "published": [path("content", "indexedStructured", "date"), freetext_content("date")],
    "collected": [freetext_content("date", "Collection Date")],
    "place": [
        freetext_content("place"),
        transform(path("content", "indexedStructured", "place", unwrap=False), _join_places),
    ],
    "rights": [_media_usage, path(*DNR, "metadata_usage", "access")],
}


# ----------------------------------------------------------------------------
# Images
# ----------------------------------------------------------------------------

def extract_best_images(record: Any) -> Tuple[str, str, str]:
    """Pick thumbnail, screen and full-size image URLs from online media.

    Returns:
        Tuple of (thumbnail, screen_image, full_image); empty strings when absent
    """
    media_list = as_list(dig(record, *DNR, "online_media", "media"))
    media = next((m for m in media_list if isinstance(m, dict)), None)
    if media is None:
        return "", "", ""

    ids_id = media.get("idsId")
    full_image = ""
    if ids_id:
        full_image = IDS_DELIVERY_URL.format(ids_id=ids_id)
    elif media.get("content"):
        full_image = str(media["content"])

    screen_image = ""
    thumbnail = ""
    for resource in as_list(media.get("resources")):
        if not isinstance(resource, dict) or not resource.get("url"):
            continue
        url = str(resource["url"])
        label = resource.get("label")
        if not screen_image and (label == "Screen Image" or "_screen" in url):
            screen_image = url
        if not thumbnail and (label == "Thumbnail Image" or "_thumb" in url):
            thumbnail = url

    if not screen_image and ids_id:
        screen_image = IDS_DELIVERY_URL.format(ids_id=f"{ids_id}_screen")
    if not thumbnail and ids_id:
        thumbnail = IDS_DELIVERY_URL.format(ids_id=f"{ids_id}_thumb")
    if not thumbnail and media.get("thumbnail") and media["thumbnail"] != full_image:
        thumbnail = str(media["thumbnail"])

    if not screen_image and full_image:
        screen_image = full_image
    if not thumbnail:
        thumbnail = screen_image or full_image

    return thumbnail, screen_image, full_image


# ----------------------------------------------------------------------------
# Grouped sections
# ----------------------------------------------------------------------------

def _group_by_label(entries: List[Dict[str, Any]], default_label: str) -> List[Tuple[str, List[str]]]:
    groups: Dict[str, List[str]] = {}
    for entry in entries:
        label = clean_markup(entry.get("label")) or default_label
        content = clean_markup(entry.get("content"))
        if not content:
            continue
        groups.setdefault(label, []).append(content)
    return list(groups.items())


def extract_creators(record: Any) -> List[Creator]:
    return [
        Creator(role=role, names=names, display_text=", ".join(names))
        for role, names in _group_by_label(_freetext(record, "name"), "Creator")
    ]


def extract_descriptions(record: Any) -> List[Description]:
    descriptions = []
    for label, contents in _group_by_label(_freetext(record, "notes"), "Description"):
        content = "\n\n".join(contents)
        descriptions.append(Description(title=label, content=content, paragraphs=split_paragraphs(content)))
    return descriptions


def extract_identifiers(record: Any) -> List[Identifier]:
    identifiers = []
    for entry in _freetext(record, "identifier"):
        content = clean_markup(entry.get("content"))
        if content:
            identifiers.append(Identifier(label=clean_markup(entry.get("label")) or "Identifier", content=content))
    return identifiers


# ----------------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------------

def normalize(row: Any) -> Optional[UnifiedItem]:
    """Normalize one Smithsonian row; None if it must be dropped."""
    if not isinstance(row, dict):
        return None
    try:
        fields = extract(row, FIELDS)
        if not fields["id"]:
            return None

        thumbnail, screen_image, full_image = extract_best_images(row)
        if not (thumbnail or screen_image):
            return None
        if not fields["rights"]:
            return None

        published_raw = clean_markup(fields["published"])
        collected_raw = clean_markup(fields["collected"])
        filter_date, century = derive_filter_fields(published_raw, collected_raw)
        published = format_date_for_display(published_raw)
        collected = format_date_for_display(collected_raw)
        place = clean_markup(fields["place"])

        item = UnifiedItem(
            id=str(fields["id"]),
            source=SOURCE_KEY,
            title=clean_markup(fields["title"]) or "Untitled",
            thumbnail_url=thumbnail,
            dates=Dates(display=collected or published, published=published, collected=collected),
            location=Location(place=place) if place else None,
            creators=extract_creators(row),
            descriptions=extract_descriptions(row),
            identifiers=extract_identifiers(row),
            media=Media(thumbnail=thumbnail, primary_image=screen_image, full_image=full_image),
            filter_date=filter_date,
            century=century,
            museum=get_museum_name(fields["unit_code"]),
            url=str(fields["url"] or ""),
            rights=str(fields["rights"]),
        )
    except Exception as e:
        logger.debug("Dropping malformed Smithsonian record: %s", e)
        return None

    return item if item.is_renderable() else None


def normalize_record(payload: Any) -> Optional[UnifiedItem]:
    """Normalize a content-endpoint payload ({"response": {...}})."""
    if not isinstance(payload, dict):
        return None
    record = payload.get("response") if isinstance(payload.get("response"), dict) else payload
    return normalize(record)


def rows_of(payload: Any) -> List[Any]:
    """Raw rows of a search payload."""
    return as_list(dig(payload, "response", "rows"))


def total_of(payload: Any) -> int:
    """Total result count reported by a search payload."""
    try:
        return int(dig(payload, "response", "rowCount") or 0)
    except (TypeError, ValueError):
        return 0


__all__ = ["SOURCE_KEY", "normalize", "normalize_record", "rows_of", "total_of", "get_museum_name"]
