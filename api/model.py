"""Data models for Archive Explorer.

Provides the UnifiedItem dataclass shared by every source adapter, the
SearchResult returned by the orchestrator, and the error taxonomy used by
repositories, adapters and the cache store.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


# ============================================================================
# Error taxonomy
# ============================================================================

class ArchiveError(Exception):
    """Base class for expected failures raised inside the search core.

    Attributes:
        source: Source key the failure belongs to, if any
    """

    def __init__(self, message: str = "", source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class TransientNetworkError(ArchiveError):
    """Timeout, connection failure or throttling; retryable within a batch."""


class UpstreamError(ArchiveError):
    """Upstream answered with an HTTP error status; not retryable.

    Attributes:
        status: HTTP status code (None when the request was never sent,
            e.g. a missing API key)
        body: Response body text, possibly truncated
    """

    def __init__(
        self,
        message: str = "",
        source: Optional[str] = None,
        status: Optional[int] = None,
        body: str = "",
    ):
        super().__init__(message, source)
        self.status = status
        self.body = body


class MalformedRecordError(ArchiveError):
    """A single raw record could not be normalized."""


class CacheCorruptionError(ArchiveError):
    """A stored cache payload could not be parsed."""


class QuotaExceededError(ArchiveError):
    """The backing key/value store has no room for a write."""


class CancellationError(ArchiveError):
    """The call was superseded or cancelled; never reported as a failure."""


# ============================================================================
# Unified item shape
# ============================================================================

@dataclass
class Dates:
    display: str = ""
    created: str = ""
    published: str = ""
    collected: str = ""


@dataclass
class Location:
    place: str = ""


@dataclass
class Creator:
    role: str
    names: List[str] = field(default_factory=list)
    display_text: str = ""


@dataclass
class Description:
    title: str
    content: str
    paragraphs: List[str] = field(default_factory=list)


@dataclass
class Identifier:
    label: str
    content: str


@dataclass
class Media:
    thumbnail: str = ""
    primary_image: str = ""
    full_image: str = ""


@dataclass
class UnifiedItem:
    """Normalized archive item, identical in shape regardless of origin.

    Attributes:
        id: Source-local identifier (unique together with source)
        source: Source key (e.g., "smithsonian", "europeana")
        title: Display title, markup stripped
        thumbnail_url: Best small image URL (mirrors media.thumbnail)
        dates: Display and typed date strings
        location: Place information, if any
        creators: Ordered creators grouped by role
        descriptions: Ordered free-text descriptions
        identifiers: Ordered labelled identifiers
        media: Image URLs at three sizes
        filter_date: Derived year for sorting/filtering (negative for BCE)
        century: Derived bucket label ("19th", "ancient", "unknown", ...)
        museum: Holding institution display name
        url: Landing page at the source
        rights: Licence or usage statement
    """

    id: str
    source: str
    title: str = ""
    thumbnail_url: str = ""
    dates: Dates = field(default_factory=Dates)
    location: Optional[Location] = None
    creators: List[Creator] = field(default_factory=list)
    descriptions: List[Description] = field(default_factory=list)
    identifiers: List[Identifier] = field(default_factory=list)
    media: Media = field(default_factory=Media)
    filter_date: Optional[int] = None
    century: str = "unknown"
    museum: str = ""
    url: str = ""
    rights: str = ""

    @property
    def key(self) -> tuple[str, str]:
        """Stable identity within a merged result set."""
        return (self.source, self.id)

    def is_renderable(self) -> bool:
        """True if the item has an image to show and a rights signal."""
        has_image = bool(self.media.thumbnail or self.media.primary_image)
        return bool(self.id) and has_image and bool(self.rights and self.rights.strip())

    def to_dict(self) -> Dict[str, Any]:
        """Convert UnifiedItem to a JSON-serializable dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnifiedItem":
        """Create from dictionary (as produced by to_dict)."""
        location = data.get("location")
        return cls(
            id=str(data["id"]),
            source=str(data["source"]),
            title=data.get("title", ""),
            thumbnail_url=data.get("thumbnail_url", ""),
            dates=Dates(**(data.get("dates") or {})),
            location=Location(**location) if location else None,
            creators=[Creator(**c) for c in data.get("creators") or []],
            descriptions=[Description(**d) for d in data.get("descriptions") or []],
            identifiers=[Identifier(**i) for i in data.get("identifiers") or []],
            media=Media(**(data.get("media") or {})),
            filter_date=data.get("filter_date"),
            century=data.get("century", "unknown"),
            museum=data.get("museum", ""),
            url=data.get("url", ""),
            rights=data.get("rights", ""),
        )


@dataclass
class SearchResult:
    """Snapshot of a search session's merged output.

    Attributes:
        items: Accumulated items in arrival order
        total_available: Sum of the totals reported by the sources
        warnings: Human-readable partial-failure messages
        complete: True once the session has settled
        from_cache: True when served from the cache store
    """

    items: List[UnifiedItem] = field(default_factory=list)
    total_available: int = 0
    warnings: List[str] = field(default_factory=list)
    complete: bool = False
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total_available": self.total_available,
            "warnings": list(self.warnings),
            "complete": self.complete,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchResult":
        return cls(
            items=[UnifiedItem.from_dict(d) for d in data.get("items") or []],
            total_available=int(data.get("total_available", 0) or 0),
            warnings=list(data.get("warnings") or []),
            complete=bool(data.get("complete", True)),
        )


__all__ = [
    "ArchiveError",
    "TransientNetworkError",
    "UpstreamError",
    "MalformedRecordError",
    "CacheCorruptionError",
    "QuotaExceededError",
    "CancellationError",
    "Dates",
    "Location",
    "Creator",
    "Description",
    "Identifier",
    "Media",
    "UnifiedItem",
    "SearchResult",
]
