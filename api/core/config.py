"""Configuration management for Archive Explorer.

Handles loading and caching of the JSON configuration file with environment
variable support (ARCHIVE_EXPLORER_CONFIG_PATH) and source-specific settings.

The configuration system provides:
- Centralized config loading with caching
- Source-specific settings (network, batching, relay)
- Search limits (enabled sources, global item and time caps)
- Cache settings (TTL, storage quota, state file)
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_CONFIG_CACHE: Optional[Dict[str, Any]] = None

# Batching defaults per source; fast sources answer with one capped page,
# batched sources are paged sequentially.
DEFAULT_BATCHING: Dict[str, Dict[str, Any]] = {
    "europeana": {
        "mode": "fast",
        "page_size": 100,
        "max_batch_size": 100,
        "max_items": 1000,
        "max_batches": 10,
    },
    "smithsonian": {
        "mode": "batched",
        "page_size": 500,
        "max_batch_size": 500,
        "max_items": 5000,
        "max_batches": 10,
    },
}


def get_config(force_reload: bool = False) -> Dict[str, Any]:
    """Load project configuration JSON.

    Looks for the path in ARCHIVE_EXPLORER_CONFIG_PATH env var; falls back to
    'config.json' in CWD. Caches the result unless force_reload is True.

    Returns:
        Configuration dictionary (empty dict if file not found or invalid)
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    path = os.environ.get("ARCHIVE_EXPLORER_CONFIG_PATH", "config.json")
    try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                _CONFIG_CACHE = json.load(f) or {}
        else:
            _CONFIG_CACHE = {}
    except Exception as e:
        logger.error("Failed to load config from %s: %s", path, e)
        _CONFIG_CACHE = {}

    return _CONFIG_CACHE


def get_provider_setting(provider_key: str, setting: str, default: Any = None) -> Any:
    """Retrieve a source-specific setting from the configuration.

    Args:
        provider_key: Source identifier (e.g., 'smithsonian', 'europeana')
        setting: Setting name to retrieve
        default: Default value if not found

    Returns:
        The setting value or default
    """
    cfg = get_config()
    ps = cfg.get("provider_settings", {})

    aliases = {
        "si": "smithsonian",
    }

    key = provider_key
    if key not in ps:
        key = aliases.get(provider_key, provider_key)

    return ps.get(key, {}).get(setting, default)


def get_network_config(provider_key: Optional[str]) -> Dict[str, Any]:
    """Return network policy for a source, with sensible defaults.

    Args:
        provider_key: Source identifier (may be None for generic defaults)

    Returns:
        Network configuration dictionary with all fields populated
    """
    cfg = get_config()
    prov_cfg = cfg.get("provider_settings", {}).get(provider_key or "", {}) if provider_key else {}
    net = dict(prov_cfg.get("network", {}) or {})

    net.setdefault("delay_ms", 0)
    net.setdefault("jitter_ms", 0)
    net.setdefault("max_attempts", 3)
    net.setdefault("base_backoff_s", 1.0)
    net.setdefault("backoff_multiplier", 1.5)
    net.setdefault("max_backoff_s", 30.0)
    net.setdefault("timeout_s", 15.0)

    if not isinstance(net.get("headers", {}), dict):
        net["headers"] = {}

    return net


def get_search_config() -> Dict[str, Any]:
    """Get search orchestration settings.

    Returns:
        Search configuration dictionary with defaults
    """
    cfg = get_config()
    sc = dict(cfg.get("search", {}) or {})

    sc.setdefault("sources", ["europeana", "smithsonian"])
    # 0 disables the corresponding cap
    sc.setdefault("max_total_items", 6000)
    sc.setdefault("max_duration_s", 120.0)
    sc.setdefault("max_workers", 4)
    # Seconds batched sources wait for fast sources before merging
    sc.setdefault("fast_phase_grace_s", 0.25)

    return sc


def get_batching_config(provider_key: str) -> Dict[str, Any]:
    """Get the batching policy settings for a source.

    Values under provider_settings.<key>.batching override the built-in
    defaults for that source.

    Args:
        provider_key: Source identifier

    Returns:
        Batching configuration dictionary with all fields populated
    """
    batching = dict(DEFAULT_BATCHING.get(provider_key, {}))
    batching.update(get_provider_setting(provider_key, "batching", {}) or {})

    batching.setdefault("mode", "fast")
    batching.setdefault("page_size", 50)
    batching.setdefault("max_batch_size", batching["page_size"])
    batching.setdefault("max_items", 1000)
    batching.setdefault("max_batches", 10)
    batching.setdefault("independent_batches", True)
    batching.setdefault("transient_retries", 1)

    return batching


def get_cache_config() -> Dict[str, Any]:
    """Get cache store settings.

    Returns:
        Cache configuration dictionary with defaults
    """
    cfg = get_config()
    cc = dict(cfg.get("cache", {}) or {})

    cc.setdefault("enabled", True)
    cc.setdefault("ttl_minutes", 30)
    # Mirrors the ~5M character quota of browser local storage
    cc.setdefault("quota_chars", 5_000_000)
    cc.setdefault("near_quota_ratio", 0.9)
    cc.setdefault("state_file", None)

    return cc


def get_cache_ttl_seconds() -> float:
    """Get the cache entry lifetime in seconds."""
    return float(get_cache_config().get("ttl_minutes", 30) or 30) * 60.0
