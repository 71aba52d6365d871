import logging
import os
from typing import Any, Dict, Optional

from .core.config import get_provider_setting
from .europeana_adapter import clean_id
from .model import UpstreamError
from .repository import SourceRepository

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.europeana.eu/record/v2/search.json"
RECORD_API_BASE = "https://api.europeana.eu/record/v2"


def _api_key() -> Optional[str]:
    """Get Europeana API key from environment."""
    # Read at call time so keys loaded from .env or environment later are picked up
    return os.getenv("EUROPEANA_API_KEY")


class EuropeanaRepository(SourceRepository):
    """Europeana Search and Record APIs, restricted to image records."""

    source_key = "europeana"
    display_name = "Europeana"

    def _key(self) -> str:
        key = _api_key()
        if not key:
            logger.warning("Europeana API key not configured (EUROPEANA_API_KEY).")
            raise UpstreamError("Europeana API key not configured", source=self.source_key)
        return key

    def search_url(self) -> str:
        return API_BASE_URL

    def search_params(self, query: str, limit: int, offset: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "wskey": self._key(),
            "query": query or "*",
            "rows": limit,
            "thumbnail": "true",
            "qf": "TYPE:IMAGE",
        }
        # Europeana's start parameter is 1-based
        if offset > 0:
            params["start"] = offset + 1
        sort = get_provider_setting("europeana", "sort")
        if sort and sort != "relevancy":
            params["sort"] = sort
        return params

    def record_url(self, record_id: str) -> str:
        return f"{RECORD_API_BASE}/{clean_id(record_id)}.json"

    def record_params(self) -> Dict[str, Any]:
        profile = get_provider_setting("europeana", "profile", "rich")
        return {"wskey": self._key(), "profile": profile}


__all__ = ["EuropeanaRepository"]
