"""Search session: the live, caller-held handle of one search.

The session owns the accumulated items and all state transitions. Every
mutation runs under the session lock and checks the session's cancel token
first, so once a session is superseded or complete nothing can be merged
into it and no further progress event can be published for it.
"""
from __future__ import annotations

import itertools
import logging
import threading
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from api.core.cancel import CancelToken
from api.model import SearchResult, UnifiedItem

from .progress import ProgressCallback, ProgressEvent, ProgressReporter
from .views import build_view, count_centuries

logger = logging.getLogger(__name__)

_GENERATIONS = itertools.count(1)


class SessionState(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"
    SUPERSEDED = "superseded"


_TERMINAL = (SessionState.COMPLETE, SessionState.SUPERSEDED)


class SearchSession:
    """Accumulated, deduplicated results of one search plus its progress feed.

    Attributes:
        session_id: Caller-chosen id; a newer search with the same id supersedes this one
        query: Query as entered
        sources: Source keys searched
        token: Cancellation token shared by every request of this session
        generation: Monotonic number distinguishing sessions with the same id
    """

    def __init__(
        self,
        session_id: str,
        query: str,
        sources: Iterable[str],
        max_items: Optional[int] = None,
    ):
        self.session_id = session_id
        self.query = query
        self.sources: Tuple[str, ...] = tuple(sources)
        self.token = CancelToken()
        self.generation = next(_GENERATIONS)
        self._max_items = max_items
        self._lock = threading.RLock()
        self._done = threading.Event()
        self._reporter = ProgressReporter()
        self._state = SessionState.IDLE
        self._items: List[UnifiedItem] = []
        self._keys: set = set()
        self._total_available = 0
        self._warnings: List[str] = []
        self._from_cache = False

    # ------------------------------------------------------------------
    # Caller-facing API
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def complete(self) -> bool:
        return self.state == SessionState.COMPLETE

    @property
    def items(self) -> List[UnifiedItem]:
        """Accumulated items in arrival order (a copy)."""
        with self._lock:
            return list(self._items)

    @property
    def warnings(self) -> List[str]:
        with self._lock:
            return list(self._warnings)

    def result(self) -> SearchResult:
        """Snapshot of the merged result so far."""
        with self._lock:
            return SearchResult(
                items=list(self._items),
                total_available=self._total_available,
                warnings=list(self._warnings),
                complete=self._state == SessionState.COMPLETE,
                from_cache=self._from_cache,
            )

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Receive progress events; returns an unsubscribe function."""
        return self._reporter.subscribe(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the session is complete or superseded.

        Returns:
            True if the session settled within the timeout
        """
        return self._done.wait(timeout)

    def cancel(self) -> None:
        """Stop the search; in-flight requests are cancelled."""
        self.supersede()

    def view(
        self,
        sort: str = "relevance",
        century: str = "all",
        date_from: Optional[int] = None,
        date_to: Optional[int] = None,
    ) -> List[UnifiedItem]:
        """Sorted/filtered copy of the accumulated items."""
        return build_view(self.items, sort, century, date_from, date_to)

    def century_counts(self) -> Dict[str, int]:
        return count_centuries(self.items)

    # ------------------------------------------------------------------
    # Orchestrator-facing transitions
    # ------------------------------------------------------------------

    def _is_live(self) -> bool:
        return not self.token.cancelled and self._state not in _TERMINAL

    @property
    def is_live(self) -> bool:
        with self._lock:
            return self._is_live()

    @property
    def at_capacity(self) -> bool:
        with self._lock:
            return self._max_items is not None and len(self._items) >= self._max_items

    def _emit(self, message: str, current_batch: int = 0, total_batches: int = 0, complete: bool = False) -> None:
        event = ProgressEvent(
            session_id=self.session_id,
            token=self.generation,
            current_batch=current_batch,
            total_batches=total_batches,
            items_found=len(self._items),
            total_available=self._total_available,
            message=message,
            complete=complete,
            warnings=list(self._warnings),
        )
        self._reporter.publish(event)

    def dispatch(self) -> bool:
        with self._lock:
            if not self._is_live():
                return False
            self._state = SessionState.DISPATCHED
            return True

    def add_total(self, count: int) -> None:
        with self._lock:
            if self._is_live():
                self._total_available += max(0, int(count or 0))

    def add_warning(self, message: str) -> None:
        with self._lock:
            if self._is_live() and message not in self._warnings:
                logger.warning("Session %s: %s", self.session_id, message)
                self._warnings.append(message)

    def add_items(
        self,
        items: Iterable[UnifiedItem],
        message: str,
        current_batch: int = 0,
        total_batches: int = 0,
    ) -> int:
        """Merge items, dropping duplicates by (source, id), and report progress.

        Returns:
            Number of items actually added (0 if the session is no longer live)
        """
        with self._lock:
            if not self._is_live():
                return 0
            added = 0
            for item in items:
                if self._max_items is not None and len(self._items) >= self._max_items:
                    break
                if item.key in self._keys or not item.is_renderable():
                    continue
                self._keys.add(item.key)
                self._items.append(item)
                added += 1
            self._state = SessionState.ACCUMULATING
            self._emit(message, current_batch, total_batches)
            return added

    def finish(self, message: Optional[str] = None) -> bool:
        """Move to COMPLETE and publish the final event.

        Returns:
            False if the session was superseded first
        """
        with self._lock:
            if not self._is_live():
                return False
            self._state = SessionState.COMPLETE
            self._emit(message or f"Search complete: {len(self._items)} items", complete=True)
            self._done.set()
        self._reporter.clear()
        return True

    def load_cached(self, result: SearchResult) -> bool:
        """Complete immediately from a cached result."""
        with self._lock:
            if not self._is_live():
                return False
            for item in result.items:
                if item.key not in self._keys:
                    self._keys.add(item.key)
                    self._items.append(item)
            self._total_available = result.total_available
            self._warnings = list(result.warnings)
            self._from_cache = True
        return self.finish(f"Loaded {len(result.items)} cached items")

    def supersede(self) -> bool:
        """Cancel the session; a no-op once it is complete.

        Returns:
            True if the session moved to SUPERSEDED
        """
        self.token.cancel()
        with self._lock:
            if self._state in _TERMINAL:
                return False
            self._state = SessionState.SUPERSEDED
            self._done.set()
        self._reporter.clear()
        logger.debug("Session %s (generation %d) superseded", self.session_id, self.generation)
        return True


__all__ = ["SessionState", "SearchSession"]
