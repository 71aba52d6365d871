"""Search orchestration across archive sources.

This module fans a query out to the configured sources, merges and
deduplicates their normalized items into a SearchSession, and reports
progress as results arrive.

Flow per search:
1. Cache lookup on the normalized query and source set; a hit completes at once
2. All sources are dispatched together. Fast sources fetch one capped page
   each and are merged first
3. Batched sources: a probe request reads the total, then sequential batches
   (target = min(total, max_items), batches and batch size derived from it).
   A batch fetched while fast sources are still running waits up to
   fast_phase_grace_s before it is merged
4. Completion when every source settles or the item/time cap is hit; the
   merged result is cached unless every source failed

A new search with the same session id supersedes the previous session: its
token is cancelled (stopping every in-flight request) and it can no longer
merge items, publish events or write to the cache.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Dict, Iterable, List, Optional, Union

from api.core.cancel import CancelToken
from api.core.config import get_search_config
from api.model import (
    ArchiveError,
    CancellationError,
    MalformedRecordError,
    SearchResult,
    TransientNetworkError,
    UnifiedItem,
    UpstreamError,
)
from api.providers import PROVIDERS, SourceSpec
from api.repository import SourceRepository

from .cache_store import CacheStore, build_cache_store, item_key, search_key
from .progress import ProgressCallback
from .session import SearchSession

logger = logging.getLogger(__name__)

# Per-source outcomes
OK = "ok"
FAILED = "failed"
CANCELLED = "cancelled"

ALL_FAILED_WARNING = "No results available: all sources failed"
TIME_LIMIT_WARNING = "Search time limit reached; results may be incomplete"

_NOT_SET = object()


def failure_warning(name: str, error: Exception) -> str:
    """Warning text for a source that produced no results at all."""
    if isinstance(error, TransientNetworkError):
        return f"{name} results unavailable: {name} is unreachable"
    if isinstance(error, UpstreamError) and error.status is not None:
        return f"{name} results unavailable: {name} returned HTTP {error.status}"
    return f"{name} results unavailable: {error}"


def incomplete_warning(name: str) -> str:
    return f"{name} results incomplete"


class SearchOrchestrator:
    """Runs searches and item-detail lookups against the registered sources.

    Args:
        providers: Source registry (defaults to api.providers.PROVIDERS)
        cache: Cache store; defaults to the configured one, pass None to disable
        max_workers: Thread pool size for source tasks
        max_total_items: Global cap on merged items per search
        max_duration_s: Global time cap per search
        fast_phase_grace_s: How long batched sources hold their first merge
            back while fast sources are still running
    """

    def __init__(
        self,
        providers: Optional[Dict[str, SourceSpec]] = None,
        cache: Any = _NOT_SET,
        max_workers: Optional[int] = None,
        max_total_items: Optional[int] = None,
        max_duration_s: Optional[float] = None,
        fast_phase_grace_s: Optional[float] = None,
    ):
        sc = get_search_config()
        self._providers = dict(providers if providers is not None else PROVIDERS)
        self._default_sources = [s for s in sc.get("sources", []) if s in self._providers] or list(self._providers)
        # 0 disables a cap
        self._max_total_items = int(max_total_items if max_total_items is not None else sc["max_total_items"]) or None
        self._max_duration_s = float(max_duration_s if max_duration_s is not None else sc["max_duration_s"]) or None
        self._fast_phase_grace_s = float(
            fast_phase_grace_s if fast_phase_grace_s is not None else sc.get("fast_phase_grace_s", 0.25)
        )
        self._cache: Optional[CacheStore] = build_cache_store() if cache is _NOT_SET else cache

        workers = int(max_workers if max_workers is not None else sc.get("max_workers", 4))
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="archive-source")

        self._repositories: Dict[str, SourceRepository] = {}
        self._sessions: Dict[str, SearchSession] = {}
        self._lock = threading.Lock()
        self._closed = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _repository(self, key: str) -> SourceRepository:
        with self._lock:
            repo = self._repositories.get(key)
            if repo is None:
                repo = self._providers[key].repository_factory()
                self._repositories[key] = repo
            return repo

    def _resolve_sources(self, sources: Optional[Iterable[str]]) -> List[str]:
        if sources is None:
            return list(self._default_sources)
        keys: List[str] = []
        for key in sources:
            if key not in self._providers:
                raise ValueError(f"Unsupported source: {key!r} (available: {', '.join(sorted(self._providers))})")
            if key not in keys:
                keys.append(key)
        if not keys:
            raise ValueError("At least one source must be selected")
        return keys

    def _normalize_rows(self, spec: SourceSpec, payload: Dict[str, Any]) -> List[UnifiedItem]:
        rows = spec.adapter.rows_of(payload)
        items = [item for item in (spec.adapter.normalize(row) for row in rows) if item is not None]
        if len(items) < len(rows):
            logger.debug("%s: dropped %d of %d rows during normalization", spec.key, len(rows) - len(items), len(rows))
        return items

    def _cached_result(self, key: str) -> Optional[SearchResult]:
        if self._cache is None:
            return None
        entry = self._cache.get(key)
        if entry is None:
            return None
        try:
            return SearchResult.from_dict(entry.payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Discarding unreadable cached result %s: %s", key, e)
            self._cache.delete(key)
            return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        session_id: str = "default",
        sources: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SearchSession:
        """Start a search and return its live session handle.

        Args:
            query: Free-text query
            session_id: Searches sharing an id supersede each other
            sources: Source keys to query (defaults to the configured set)
            on_progress: Callback subscribed before any event is published

        Returns:
            SearchSession (already complete on a cache hit)

        Raises:
            ValueError: Empty query or unsupported source
        """
        if self._closed:
            raise RuntimeError("SearchOrchestrator has been shut down")
        if not query or not query.strip():
            raise ValueError("Search query must not be empty")
        keys = self._resolve_sources(sources)

        session = SearchSession(session_id, query.strip(), keys, max_items=self._max_total_items)
        if on_progress is not None:
            session.subscribe(on_progress)

        with self._lock:
            previous = self._sessions.get(session_id)
            self._sessions[session_id] = session
        if previous is not None and previous.supersede():
            logger.info("Search %r superseded by %r", previous.query, session.query)

        cache_key = search_key(query, keys)
        cached = self._cached_result(cache_key)
        if cached is not None:
            logger.info("Cache hit for %r (%d items)", session.query, len(cached.items))
            session.load_cached(cached)
            return session

        session.dispatch()
        thread = threading.Thread(
            target=self._run_session,
            args=(session, cache_key),
            name=f"search-{session_id}-{session.generation}",
            daemon=True,
        )
        thread.start()
        return session

    def get_session(self, session_id: str = "default") -> Optional[SearchSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def clear_search(self, session_id: str = "default") -> None:
        """Cancel and forget the session with this id."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.cancel()

    def fetch_item_details(self, source: str, record_id: str) -> Union[UnifiedItem, ArchiveError]:
        """Fetch one item's full record.

        A newer detail request for the same source cancels an older one.

        Returns:
            The normalized item, or the ArchiveError describing the failure

        Raises:
            ValueError: Unsupported source or empty id
        """
        spec = self._providers.get(source)
        if spec is None:
            raise ValueError(f"Unsupported source: {source!r}")
        if not record_id:
            raise ValueError("Record id must not be empty")

        key = item_key(source, record_id)
        if self._cache is not None:
            entry = self._cache.get(key)
            if entry is not None:
                try:
                    return UnifiedItem.from_dict(entry.payload)
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.warning("Discarding unreadable cached item %s: %s", key, e)
                    self._cache.delete(key)

        try:
            payload = self._repository(source).get_record(record_id, slot="record")
        except ArchiveError as e:
            if not isinstance(e, CancellationError):
                logger.warning("%s record %s unavailable: %s", spec.display_name, record_id, e)
            return e

        item = spec.adapter.normalize_record(payload)
        if item is None:
            logger.warning("%s record %s could not be normalized", spec.display_name, record_id)
            return MalformedRecordError(f"{spec.display_name} record {record_id} could not be displayed", source=source)

        if self._cache is not None:
            self._cache.set(key, item.to_dict(), source=source)
        return item

    def shutdown(self, wait_for_workers: bool = False) -> None:
        """Cancel every session and stop the worker pool."""
        self._closed = True
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.cancel()
        self._executor.shutdown(wait=wait_for_workers, cancel_futures=True)

    # ------------------------------------------------------------------
    # Session coordinator
    # ------------------------------------------------------------------

    def _run_session(self, session: SearchSession, cache_key: str) -> None:
        started = time.monotonic()
        deadline = started + self._max_duration_s if self._max_duration_s else None
        work = session.token.child()

        fast = [k for k in session.sources if not self._providers[k].policy().is_batched]
        batched = [k for k in session.sources if self._providers[k].policy().is_batched]
        outcomes: Dict[str, str] = {}

        # Set once every fast source has settled; batched sources fetch
        # meanwhile but hold their first merge until then (or the grace ends)
        fast_settled = threading.Event()
        remaining_fast = [len(fast)]
        fast_lock = threading.Lock()

        def _fast_done(_future: Future) -> None:
            with fast_lock:
                remaining_fast[0] -= 1
                if remaining_fast[0] <= 0:
                    fast_settled.set()

        if not fast:
            fast_settled.set()

        try:
            futures: Dict[Future, str] = {}
            for k in fast:
                future = self._executor.submit(self._run_fast, session, k, work)
                future.add_done_callback(_fast_done)
                futures[future] = k
            for k in batched:
                futures[self._executor.submit(self._run_batched, session, k, work, fast_settled)] = k
            timed_out = self._await(futures, outcomes, session, work, deadline)
        except RuntimeError as e:
            # Executor shut down underneath us
            logger.debug("Session %s stopped: %s", session.session_id, e)
            work.cancel()
            return

        if not session.is_live:
            logger.debug("Session %s ended without completing", session.session_id)
            return

        if timed_out:
            session.add_warning(TIME_LIMIT_WARNING)
            work.cancel()

        all_failed = bool(outcomes) and all(o == FAILED for o in outcomes.values())
        if all_failed:
            session.add_warning(ALL_FAILED_WARNING)

        if not session.finish():
            return

        result = session.result()
        logger.info(
            "Search %r complete: %d items from %d source(s) in %.1fs",
            session.query, len(result.items), len(session.sources), time.monotonic() - started,
        )
        if self._cache is not None and not all_failed:
            self._cache.set(cache_key, result.to_dict(), source=",".join(sorted(session.sources)))

    def _await(
        self,
        futures: Dict[Future, str],
        outcomes: Dict[str, str],
        session: SearchSession,
        work: CancelToken,
        deadline: Optional[float],
    ) -> bool:
        """Collect source outcomes until all settle or the deadline passes.

        Returns:
            True if the time cap was hit
        """
        pending = set(futures)
        while pending:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                for future in pending:
                    future.cancel()
                    outcomes.setdefault(futures[future], CANCELLED)
                return True
            done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
            for future in done:
                key = futures[future]
                if future.cancelled():
                    outcomes[key] = CANCELLED
                    continue
                error = future.exception()
                if error is not None:
                    logger.error("%s task crashed: %s", key, error, exc_info=error)
                    session.add_warning(f"{self._providers[key].display_name} results unavailable: {error}")
                    outcomes[key] = FAILED
                else:
                    outcomes[key] = future.result()
            if session.at_capacity and pending:
                logger.info("Session %s reached the item cap; stopping remaining sources", session.session_id)
                work.cancel()
        return False

    # ------------------------------------------------------------------
    # Source tasks (run on the worker pool)
    # ------------------------------------------------------------------

    def _run_fast(self, session: SearchSession, key: str, work: CancelToken) -> str:
        spec = self._providers[key]
        policy = spec.policy()
        repo = self._repository(key)
        try:
            payload = repo.search(
                session.query,
                limit=policy.page_size,
                offset=0,
                cancel_token=work,
                slot=f"search:{session.session_id}",
            )
        except CancellationError:
            return CANCELLED
        except (TransientNetworkError, UpstreamError) as e:
            logger.warning("%s search failed: %s", spec.display_name, e)
            session.add_warning(failure_warning(spec.display_name, e))
            return FAILED

        session.add_total(spec.adapter.total_of(payload))
        items = self._normalize_rows(spec, payload)
        session.add_items(items, f"Found {len(items)} {spec.display_name} results", 1, 1)
        return OK

    def _fetch_batch(
        self,
        session: SearchSession,
        spec: SourceSpec,
        limit: int,
        offset: int,
        retries: int,
        work: CancelToken,
    ) -> Dict[str, Any]:
        """One batch request with extra attempts for transient failures.

        Raises:
            TransientNetworkError, UpstreamError, CancellationError
        """
        repo = self._repository(spec.key)
        attempt = 0
        while True:
            try:
                return repo.search(
                    session.query,
                    limit=limit,
                    offset=offset,
                    cancel_token=work,
                    slot=f"search:{session.session_id}",
                )
            except TransientNetworkError as e:
                if attempt >= retries:
                    raise
                attempt += 1
                logger.info("%s batch at offset %d failed (%s); retry %d/%d", spec.display_name, offset, e, attempt, retries)

    def _hold_for_fast_sources(self, fast_settled: threading.Event) -> None:
        if not fast_settled.is_set():
            fast_settled.wait(self._fast_phase_grace_s)

    def _run_batched(
        self, session: SearchSession, key: str, work: CancelToken, fast_settled: threading.Event
    ) -> str:
        spec = self._providers[key]
        policy = spec.policy()
        name = spec.display_name
        repo = self._repository(key)

        try:
            probe = repo.search(session.query, limit=1, offset=0, cancel_token=work, slot=f"probe:{session.session_id}")
        except CancellationError:
            return CANCELLED
        except (TransientNetworkError, UpstreamError) as e:
            logger.warning("%s probe failed: %s", name, e)
            session.add_warning(failure_warning(name, e))
            return FAILED

        total = spec.adapter.total_of(probe)
        session.add_total(total)
        batches, batch_size = policy.plan(total)
        target = min(total, policy.max_items)
        logger.info("%s: %d results reported; fetching %d in %d batch(es) of %d", name, total, target, batches, batch_size)
        if batches == 0:
            self._hold_for_fast_sources(fast_settled)
            session.add_items([], f"No {name} results")
            return OK

        succeeded = 0
        first_error: Optional[Exception] = None
        for index in range(batches):
            if work.cancelled or session.at_capacity:
                break
            offset = index * batch_size
            limit = min(batch_size, target - offset)
            if limit <= 0:
                break
            try:
                payload = self._fetch_batch(session, spec, limit, offset, policy.transient_retries, work)
            except CancellationError:
                return CANCELLED
            except (TransientNetworkError, UpstreamError) as e:
                logger.warning("%s batch %d/%d failed: %s", name, index + 1, batches, e)
                first_error = first_error or e
                session.add_warning(incomplete_warning(name))
                if not policy.independent_batches:
                    break
                continue

            succeeded += 1
            items = self._normalize_rows(spec, payload)
            if succeeded == 1:
                self._hold_for_fast_sources(fast_settled)
            session.add_items(items, f"Loaded batch {index + 1} of {batches} from {name}", index + 1, batches)
            if not spec.adapter.rows_of(payload):
                logger.debug("%s returned an empty batch at offset %d; stopping early", name, offset)
                break

        if succeeded == 0 and first_error is not None:
            session.add_warning(failure_warning(name, first_error))
            return FAILED
        return OK


__all__ = ["SearchOrchestrator", "ALL_FAILED_WARNING", "TIME_LIMIT_WARNING", "failure_warning", "incomplete_warning"]
