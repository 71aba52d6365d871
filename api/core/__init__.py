"""Core utilities for the Archive Explorer API.

- config: Configuration loading and source settings
- network: HTTP session, requests, rate limiting, error mapping
- cancel: Cooperative cancellation tokens
"""

__all__ = [
    "config",
    "network",
    "cancel",
]
