"""Archive Explorer API package.

This package provides the source side of the search core: HTTP access to
museum archives and normalization of their records into one item shape.

Key modules:
- core: Config loading, HTTP session and cancellation tokens
- model: UnifiedItem, SearchResult and the error taxonomy
- providers: Central registry of archive sources
- repository: Base class for source repositories (slot cancellation)
- fallbacks: Declarative ordered-fallback extraction tables
- text: Markup stripping and display formatting
- dates: Year parsing and century buckets

Sources:
- smithsonian_api / smithsonian_adapter: Smithsonian Open Access (US)
- europeana_api / europeana_adapter: Europeana (EU aggregator)

Usage:
    from api.providers import PROVIDERS
    from api.model import UnifiedItem, SearchResult
"""

from .model import ArchiveError, SearchResult, UnifiedItem
from .providers import PROVIDERS

__all__ = [
    "ArchiveError",
    "SearchResult",
    "UnifiedItem",
    "PROVIDERS",
]
