"""Explorer package for Archive Explorer.

This package contains:
- orchestrator: Federated search across sources with progressive results
- session: Live search session handle and its state machine
- progress: Progress events and subscriber list
- cache_store: Quota-aware expiring cache for results and item details
- views: Read-time sort/filter/paging over accumulated items
- export: CSV export of results
- cli: Command-line entry point
"""

__all__ = [
    "orchestrator",
    "session",
    "progress",
    "cache_store",
    "views",
    "export",
    "cli",
]
