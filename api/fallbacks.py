"""Declarative ordered-fallback extraction for source adapters.

Each adapter describes its fields as a table mapping a field name to a list
of strategies. A strategy is any callable taking the raw record and returning
a value or None; extract() tries them in order and keeps the first non-empty
result. Strategies never raise: a missing key, a wrong type or an empty list
simply yields None so the next strategy gets its turn.

Example:
    TITLE = [lang("dcTitleLangAware"), path("title", 0), path("title")]
    fields = extract(record, {"title": TITLE})
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

Strategy = Callable[[Any], Any]
FieldTable = Mapping[str, Sequence[Strategy]]

# Language preference for multilingual maps: English, then the default /
# undetermined variant, then whatever is present.
PREFERRED_LANGUAGES = ("en", "def", "und")


def is_empty(value: Any) -> bool:
    """True for None, blank strings and empty containers."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def first_value(value: Any) -> Any:
    """Unwrap single values from lists: ["a", "b"] -> "a"."""
    if isinstance(value, (list, tuple)):
        for v in value:
            if not is_empty(v):
                return v
        return None
    return value


def dig(record: Any, *keys: Any) -> Any:
    """Follow keys (dict keys or list indexes) through nested data."""
    current = record
    for key in keys:
        if isinstance(key, int):
            if not isinstance(current, (list, tuple)) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def path(*keys: Any, unwrap: bool = True) -> Strategy:
    """Strategy reading a nested value; lists are unwrapped to their first item."""
    def _strategy(record: Any) -> Any:
        value = dig(record, *keys)
        return first_value(value) if unwrap else value
    _strategy.__name__ = "path(" + ".".join(str(k) for k in keys) + ")"
    return _strategy


def pick_language(values: Any, languages: Sequence[str] = PREFERRED_LANGUAGES) -> Any:
    """Choose from a language-keyed map: preferred languages first, then any."""
    if not isinstance(values, Mapping):
        return values
    for lang_key in languages:
        candidate = first_value(values.get(lang_key))
        if not is_empty(candidate):
            return candidate
    for candidate in values.values():
        candidate = first_value(candidate)
        if not is_empty(candidate):
            return candidate
    return None


def lang(*keys: Any, languages: Sequence[str] = PREFERRED_LANGUAGES) -> Strategy:
    """Strategy reading a language-keyed map (e.g. {"en": [...], "def": [...]})."""
    def _strategy(record: Any) -> Any:
        return pick_language(dig(record, *keys), languages)
    _strategy.__name__ = "lang(" + ".".join(str(k) for k in keys) + ")"
    return _strategy


def lang_across(items_key: Sequence[Any], *keys: Any, languages: Sequence[str] = PREFERRED_LANGUAGES) -> Strategy:
    """Strategy reading a language-keyed map from every element of a nested list.

    The language preference spans all elements: an English value in the
    second Europeana proxy beats a French value in the first. Only when no
    element carries a preferred language does the first value in any
    language win.
    """
    def _strategy(record: Any) -> Any:
        items = dig(record, *items_key)
        if isinstance(items, Mapping):
            items = [items]
        if not isinstance(items, (list, tuple)):
            return None
        maps = [dig(item, *keys) for item in items]
        for lang_key in languages:
            for values in maps:
                if isinstance(values, Mapping):
                    candidate = first_value(values.get(lang_key))
                    if not is_empty(candidate):
                        return candidate
        for values in maps:
            candidate = first_value(pick_language(values, ()))
            if not is_empty(candidate):
                return candidate
        return None
    _strategy.__name__ = "lang_across(" + ".".join(str(k) for k in keys) + ")"
    return _strategy


def const(value: Any) -> Strategy:
    """Strategy returning a fixed default."""
    return lambda _record: value


def transform(strategy: Strategy, func: Callable[[Any], Any]) -> Strategy:
    """Strategy post-processing another strategy's non-empty result."""
    def _strategy(record: Any) -> Any:
        value = _safe_apply(strategy, record)
        if is_empty(value):
            return None
        return func(value)
    return _strategy


def _safe_apply(strategy: Strategy, record: Any) -> Any:
    try:
        return strategy(record)
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
        logger.debug("Fallback strategy %s failed: %s", getattr(strategy, "__name__", strategy), e)
        return None


def first_of(record: Any, strategies: Iterable[Strategy]) -> Any:
    """Return the first non-empty value produced by the strategies, or None."""
    for strategy in strategies:
        value = _safe_apply(strategy, record)
        if not is_empty(value):
            return value
    return None


def extract(record: Any, table: FieldTable) -> Dict[str, Any]:
    """Apply a field table to a record.

    Args:
        record: Raw source record
        table: Mapping of field name to ordered strategies

    Returns:
        Mapping of field name to the first non-empty value (or None)
    """
    return {name: first_of(record, strategies) for name, strategies in table.items()}


def as_list(value: Any) -> List[Any]:
    """Wrap scalars in a list, drop Nones."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    return [value]


__all__ = [
    "Strategy",
    "FieldTable",
    "is_empty",
    "first_value",
    "dig",
    "path",
    "lang",
    "lang_across",
    "const",
    "transform",
    "pick_language",
    "first_of",
    "extract",
    "as_list",
]
