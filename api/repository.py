"""Base class for source repositories.

A repository owns the HTTP side of one source: URL building, credentials
and the per-slot cancellation lanes. Every call registers a fresh token in
its slot and cancels whatever call previously held that slot, so a newer
search (or a newer record lookup) always wins.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from .core.cancel import CancelToken
from .core.network import fetch_json

logger = logging.getLogger(__name__)


class SourceRepository:
    """HTTP access to one archive source.

    Subclasses implement search_params/search_url and record_url; this base
    handles slot bookkeeping and delegates transport to fetch_json.
    """

    source_key: str = ""
    display_name: str = ""

    def __init__(self) -> None:
        self._slots: Dict[str, CancelToken] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Slot handling
    # ------------------------------------------------------------------

    def _begin(self, slot: str, parent: Optional[CancelToken]) -> CancelToken:
        token = CancelToken(parents=[parent])
        with self._lock:
            previous = self._slots.get(slot)
            self._slots[slot] = token
        if previous is not None:
            logger.debug("%s: cancelling previous '%s' call", self.source_key, slot)
            previous.cancel()
        return token

    def _end(self, slot: str, token: CancelToken) -> None:
        with self._lock:
            if self._slots.get(slot) is token:
                del self._slots[slot]

    def cancel(self, slot: Optional[str] = None) -> None:
        """Cancel the in-flight call in one slot, or in every slot."""
        with self._lock:
            if slot is None:
                tokens = list(self._slots.values())
                self._slots.clear()
            else:
                token = self._slots.pop(slot, None)
                tokens = [token] if token is not None else []
        for token in tokens:
            token.cancel()

    def _get(self, url: str, params: Dict[str, Any], slot: str, cancel_token: Optional[CancelToken]) -> Dict[str, Any]:
        token = self._begin(slot, cancel_token)
        try:
            return fetch_json(url, params=params, provider=self.source_key, cancel_token=token)
        finally:
            self._end(slot, token)

    # ------------------------------------------------------------------
    # Source-specific hooks
    # ------------------------------------------------------------------

    def search_url(self) -> str:
        raise NotImplementedError

    def search_params(self, query: str, limit: int, offset: int) -> Dict[str, Any]:
        raise NotImplementedError

    def record_url(self, record_id: str) -> str:
        raise NotImplementedError

    def record_params(self) -> Dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        limit: int,
        offset: int = 0,
        cancel_token: Optional[CancelToken] = None,
        slot: str = "search",
    ) -> Dict[str, Any]:
        """Run one search page.

        Args:
            query: Free-text query
            limit: Page size
            offset: Zero-based start row
            cancel_token: Parent token (usually the search session's)
            slot: Cancellation lane; a newer call in the same slot cancels this one

        Returns:
            Raw decoded payload

        Raises:
            TransientNetworkError, UpstreamError, CancellationError
        """
        params = self.search_params(query, max(0, int(limit)), max(0, int(offset)))
        logger.debug("%s search q=%r limit=%s offset=%s slot=%s", self.source_key, query, limit, offset, slot)
        return self._get(self.search_url(), params, slot, cancel_token)

    def get_record(
        self,
        record_id: str,
        cancel_token: Optional[CancelToken] = None,
        slot: str = "record",
    ) -> Dict[str, Any]:
        """Fetch one record's detail payload."""
        return self._get(self.record_url(record_id), self.record_params(), slot, cancel_token)


__all__ = ["SourceRepository"]
