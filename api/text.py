"""Free-text cleanup helpers shared by source adapters."""
from __future__ import annotations

import re
from typing import Any, List

from bs4 import BeautifulSoup

_EMPTY_PARENS = re.compile(r"\(\s*\)")
_WRAPPED_IN_PARENS = re.compile(r"^\s*\((.*)\)\s*$", re.DOTALL)
_WHITESPACE = re.compile(r"[ \t\r\f\v]+")
_DECADE = re.compile(r"\d+s")

MAX_DISPLAY_DATE_CHARS = 12


def clean_markup(value: Any) -> str:
    """Strip HTML/XML markup and leftover punctuation from a text value.

    Args:
        value: Raw value (non-strings are converted with str())

    Returns:
        Plain text, trimmed; empty string for None
    """
    if value is None:
        return ""
    text = str(value)
    if "<" in text:
        text = BeautifulSoup(text, "html.parser").get_text()
    text = _EMPTY_PARENS.sub("", text)
    text = _WRAPPED_IN_PARENS.sub(r"\1", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def split_paragraphs(content: str) -> List[str]:
    """Split text on blank lines, dropping empty paragraphs."""
    if not content:
        return []
    return [p.strip() for p in re.split(r"\n\s*\n", content) if p.strip()]


def format_date_for_display(value: Any) -> str:
    """Shorten a raw date string for display.

    Multiple decades collapse to a range ("1850s–1890s"); long strings are
    truncated with an ellipsis.
    """
    if not value:
        return ""
    text = clean_markup(value)
    decades = _DECADE.findall(text)
    if len(decades) > 1:
        return f"{decades[0]}–{decades[-1]}"
    if len(text) > MAX_DISPLAY_DATE_CHARS:
        return text[:MAX_DISPLAY_DATE_CHARS] + "..."
    return text
