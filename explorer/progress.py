"""Progress events and the subscriber list they are delivered to."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """Snapshot of a search session's progress.

    Attributes:
        session_id: Session the event belongs to
        token: Generation number of the session (increases per search)
        current_batch: Batch just merged (0 when not batch-driven)
        total_batches: Planned batches of that source (0 when not batch-driven)
        items_found: Items accumulated so far (never decreases)
        total_available: Sum of totals reported by the sources so far
        message: Human-readable status line
        complete: True for the final event of the session
        warnings: Partial-failure messages collected so far
    """

    session_id: str
    token: int
    current_batch: int
    total_batches: int
    items_found: int
    total_available: int
    message: str
    complete: bool = False
    warnings: List[str] = field(default_factory=list)


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Observer list; a failing subscriber never breaks delivery to the rest."""

    def __init__(self) -> None:
        self._subscribers: List[ProgressCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a callback.

        Returns:
            Function that removes the callback again
        """
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Progress subscriber %r failed for session %s", callback, event.session_id)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


__all__ = ["ProgressEvent", "ProgressCallback", "ProgressReporter"]
