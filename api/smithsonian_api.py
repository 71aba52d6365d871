import logging
import os
from typing import Any, Dict, Optional

from .core.config import get_provider_setting
from .model import UpstreamError
from .repository import SourceRepository

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.si.edu/openaccess/api/v1.0"
RELAY_SEARCH_PATH = "/api/smithsonian/search"
RELAY_CONTENT_PATH = "/api/smithsonian/content"


def _api_key() -> Optional[str]:
    """Get Smithsonian API key from environment."""
    # Read at call time so keys loaded later are picked up
    return os.getenv("SMITHSONIAN_API_KEY")


def _relay_url() -> Optional[str]:
    relay = get_provider_setting("smithsonian", "relay_url")
    return str(relay).rstrip("/") if relay else None


class SmithsonianRepository(SourceRepository):
    """Smithsonian Open Access API, direct or through the same-origin relay.

    With a relay configured the credential is injected server-side, so no
    api_key parameter is sent.
    """

    source_key = "smithsonian"
    display_name = "Smithsonian"

    def __init__(self, relay_url: Optional[str] = None):
        super().__init__()
        self._relay_override = relay_url

    @property
    def relay_url(self) -> Optional[str]:
        return self._relay_override.rstrip("/") if self._relay_override else _relay_url()

    def _credentials(self) -> Dict[str, Any]:
        if self.relay_url:
            return {}
        key = _api_key()
        if not key:
            logger.warning("Smithsonian API key not configured (SMITHSONIAN_API_KEY).")
            raise UpstreamError("Smithsonian API key not configured", source=self.source_key)
        return {"api_key": key}

    def search_url(self) -> str:
        relay = self.relay_url
        return f"{relay}{RELAY_SEARCH_PATH}" if relay else f"{API_BASE_URL}/search"

    def search_params(self, query: str, limit: int, offset: int) -> Dict[str, Any]:
        params = self._credentials()
        params.update({
            "q": query,
            "start": offset,
            "rows": limit,
            "online_media_type": "Images",
        })
        return params

    def record_url(self, record_id: str) -> str:
        relay = self.relay_url
        if relay:
            return f"{relay}{RELAY_CONTENT_PATH}/{record_id}"
        return f"{API_BASE_URL}/content/{record_id}"

    def record_params(self) -> Dict[str, Any]:
        return self._credentials()


__all__ = ["SmithsonianRepository"]
