"""Year extraction and century bucketing for date filtering and sorting.

Archive dates are free text ("c. 1920", "4000-2500BC", "15th century",
"1850s"); parse_year reduces them to a single comparable year, negative for
BCE, and categorise_year maps that year to a century bucket label.
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, Optional, Tuple

_BCE = re.compile(r"(?:BCE\s+(\d+)|(\d+)\s*BCE)", re.IGNORECASE)
_BC = re.compile(r"(?:\bBC\s+(\d+)|(\d+)\s*BC\b)", re.IGNORECASE)
_CE = re.compile(r"(?:\bCE\s+(\d+)|(\d+)\s+CE\b)", re.IGNORECASE)
_CENTURY = re.compile(r"(\d+)(?:st|nd|rd|th)\s+century", re.IGNORECASE)
_BC_RANGE = re.compile(r"(\d+)s?[-–—](\d+)s?\s*BC", re.IGNORECASE)
_RANGE = re.compile(r"(\d{3,4})s?\s*[-–—]\s*(\d{3,4})s?")
_DECADE = re.compile(r"(\d+)s\b")
_APPROX = re.compile(r"(?:\bc\.?\s*|\bca\.?\s*|\bcirca\s+)(\d+)", re.IGNORECASE)
_YEAR = re.compile(r"\b(\d{3,4})\b")

CENTURY_LABELS: Dict[str, str] = {
    "all": "All periods",
    "ancient": "Ancient (BCE)",
    "1st": "1st Century",
    "2nd": "2nd Century",
    "3rd": "3rd Century",
    "4th": "4th Century",
    "5th": "5th Century",
    "6th": "6th Century",
    "7th": "7th Century",
    "8th": "8th Century",
    "9th": "9th Century",
    "10th": "10th Century",
    "11th": "11th Century",
    "12th": "12th Century",
    "13th": "13th Century",
    "14th": "14th Century",
    "15th": "15th Century",
    "16th": "16th Century",
    "17th": "17th Century",
    "18th": "18th Century",
    "19th": "19th Century",
    "20th": "20th Century",
    "21st": "21st Century",
    "unknown": "Unknown date",
}

# Ordered bucket keys, excluding the "all" pseudo-bucket
CENTURY_KEYS = [k for k in CENTURY_LABELS if k != "all"]


def _first_group(match: "re.Match[str]") -> int:
    return int(next(g for g in match.groups() if g))


def parse_year(value: Optional[str]) -> Optional[int]:
    """Reduce a free-text date to a single year.

    Args:
        value: Raw date string

    Returns:
        Year as int (negative for BCE), or None if no plausible year found
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()

    m = _BCE.search(text)
    if m:
        return -_first_group(m) or None

    # Ranges must be checked before single BC years so "4000-2500BC" is a midpoint
    m = _BC_RANGE.search(text)
    if m:
        start, end = int(m.group(1)), int(m.group(2))
        return -round((start + end) / 2)

    m = _BC.search(text)
    if m:
        return -_first_group(m) or None

    m = _CE.search(text)
    if m:
        return _first_group(m) or None

    m = _CENTURY.search(text)
    if m:
        century = int(m.group(1))
        return (century - 1) * 100 + 50

    m = _RANGE.search(text)
    if m:
        start, end = int(m.group(1)), int(m.group(2))
        return round((start + end) / 2)

    m = _DECADE.search(text)
    if m:
        return int(m.group(1))

    m = _APPROX.search(text)
    if m:
        return int(m.group(1))

    # Four-digit years win over three-digit ones ("12 May 1920", "0200")
    candidates = sorted(_YEAR.findall(text), key=len, reverse=True)
    for raw in candidates:
        year = int(raw)
        if 1 <= year <= 3000:
            return year

    return None


def categorise_year(year: Optional[int]) -> str:
    """Map a year to its century bucket label."""
    if year is None or isinstance(year, bool) or not isinstance(year, int) or year == 0:
        return "unknown"
    if year < 0:
        return "ancient"
    if year >= 2000:
        return "21st"
    return CENTURY_KEYS[1 + (year // 100)]


def derive_filter_fields(*raw_dates: Optional[str]) -> Tuple[Optional[int], str]:
    """Derive (filter_date, century) from the first parseable raw date."""
    for raw in raw_dates:
        year = parse_year(raw)
        if year is not None:
            return year, categorise_year(year)
    return None, "unknown"


def century_label(category: str) -> str:
    """Human-readable label for a century bucket."""
    return CENTURY_LABELS.get(category, category)


def format_display_year(year: Optional[int]) -> str:
    """Format a derived year for display ("900 BCE", "200 CE", "1890")."""
    if year is None:
        return ""
    if year < 0:
        return f"{abs(year)} BCE"
    if 1 <= year <= 999:
        return f"{year} CE"
    return str(year)


def century_counts(centuries: Iterable[str]) -> Dict[str, int]:
    """Count items per century bucket.

    Args:
        centuries: Century labels of the items to count

    Returns:
        Mapping with an "all" total and every bucket key (zero if empty)
    """
    counts = {"all": 0}
    counts.update({key: 0 for key in CENTURY_KEYS})
    for category in centuries:
        counts["all"] += 1
        counts[category if category in counts else "unknown"] += 1
    return counts
