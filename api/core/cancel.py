"""Cooperative cancellation tokens for in-flight source requests.

A token is cancelled explicitly or through any of its parents, so a
repository call can be stopped either by a newer call in the same slot or by
the search session that owns it.
"""
from __future__ import annotations

import threading
from typing import Iterable, Optional

from ..model import CancellationError


class CancelToken:
    """Thread-safe cancellation flag linked to optional parent tokens."""

    def __init__(self, parents: Optional[Iterable[Optional["CancelToken"]]] = None):
        self._event = threading.Event()
        self._parents = [p for p in (parents or ()) if p is not None]

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return any(p.cancelled for p in self._parents)

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self, source: Optional[str] = None) -> None:
        """Raise CancellationError if this token or a parent was cancelled."""
        if self.cancelled:
            raise CancellationError("Request cancelled", source=source)

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds, waking early on cancellation.

        Parents are polled in short slices since their events are separate.

        Returns:
            True if cancelled while waiting
        """
        if not self._parents:
            return self._event.wait(timeout)
        remaining = max(0.0, timeout)
        while remaining > 0:
            if self.cancelled:
                return True
            step = min(0.05, remaining)
            self._event.wait(step)
            remaining -= step
        return self.cancelled

    def child(self) -> "CancelToken":
        """Create a token that is cancelled whenever this one is."""
        return CancelToken(parents=[self])


__all__ = ["CancelToken"]
