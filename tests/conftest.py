"""Pytest configuration and shared fixtures for Archive Explorer tests."""
from __future__ import annotations

import json
import os
import shutil
import tempfile
import threading
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import MagicMock, patch

import pytest


# ============================================================================
# Path and Directory Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test files."""
    dirpath = tempfile.mkdtemp(prefix="archive_test_")
    yield dirpath
    shutil.rmtree(dirpath, ignore_errors=True)


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config() -> Dict[str, Any]:
    """Return a sample configuration dictionary."""
    return {
        "search": {
            "sources": ["europeana", "smithsonian"],
            "max_total_items": 500,
            "max_duration_s": 30,
            "max_workers": 2,
        },
        "cache": {
            "enabled": True,
            "ttl_minutes": 10,
            "quota_chars": 100_000,
        },
        "provider_settings": {
            "europeana": {
                "profile": "minimal",
                "batching": {"page_size": 24},
                "network": {
                    "max_attempts": 2,
                    "base_backoff_s": 0.5,
                },
            },
            "smithsonian": {
                "relay_url": "http://localhost:8080/",
                "batching": {"max_batch_size": 250, "independent_batches": False},
                "network": {
                    "delay_ms": 100,
                    "timeout_s": 5,
                },
            },
        },
    }


@pytest.fixture
def config_file(temp_dir: str, sample_config: Dict[str, Any]) -> str:
    """Create a temporary config file."""
    config_path = os.path.join(temp_dir, "config.json")
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(sample_config, f)
    return config_path


@pytest.fixture
def mock_config(sample_config: Dict[str, Any]):
    """Mock the config module to return sample config."""
    with patch("api.core.config._CONFIG_CACHE", sample_config):
        with patch("api.core.config.get_config", return_value=sample_config):
            yield sample_config


@pytest.fixture
def empty_config():
    """Run with an empty configuration (all defaults)."""
    with patch("api.core.config.get_config", return_value={}):
        yield {}


# ============================================================================
# Raw Source Payload Fixtures
# ============================================================================

@pytest.fixture
def smithsonian_row() -> Dict[str, Any]:
    """Return one Smithsonian Open Access search row."""
    return {
        "id": "edanmdm-nmah_1234",
        "title": "Stoneware <i>jug</i>",
        "unitCode": "NMAH",
        "url": "edanmdm:nmah_1234",
        "content": {
            "descriptiveNonRepeating": {
                "record_ID": "nmah_1234",
                "unit_code": "NMAH",
                "title": {"label": "Title", "content": "Stoneware jug"},
                "record_link": "http://n2t.net/ark:/65665/ng49ca746a1-1234",
                "metadata_usage": {"access": "CC0"},
                "online_media": {
                    "mediaCount": 1,
                    "media": [
                        {
                            "type": "Images",
                            "idsId": "NMAH-JN2017-01234",
                            "content": "https://ids.si.edu/ids/deliveryService?id=NMAH-JN2017-01234",
                            "thumbnail": "https://ids.si.edu/ids/deliveryService?id=NMAH-JN2017-01234&max=90",
                            "usage": {"access": "CC0"},
                            "resources": [
                                {
                                    "label": "Screen Image",
                                    "url": "https://ids.si.edu/ids/download?id=NMAH-JN2017-01234_screen",
                                },
                                {
                                    "label": "Thumbnail Image",
                                    "url": "https://ids.si.edu/ids/download?id=NMAH-JN2017-01234_thumb",
                                },
                            ],
                        }
                    ],
                },
            },
            "indexedStructured": {
                "date": ["1850s"],
                "place": ["United States", "New York"],
            },
            "freetext": {
                "name": [
                    {"label": "Maker", "content": "Crolius, Clarkson"},
                    {"label": "Maker", "content": "Remmey, John"},
                    {"label": "Owner", "content": "Smith, Jane"},
                ],
                "notes": [
                    {"label": "Description", "content": "Salt-glazed jug.\n\nCobalt decoration."},
                    {"label": "Description", "content": "Impressed maker's mark."},
                    {"label": "Credit Line", "content": "Gift of Jane Smith"},
                ],
                "date": [
                    {"label": "Date made", "content": "ca. 1850"},
                    {"label": "Collection Date", "content": "1923"},
                ],
                "place": [{"label": "Place made", "content": "New York, New York"}],
                "identifier": [{"label": "ID Number", "content": "1979.0123.01"}],
            },
        },
    }


@pytest.fixture
def smithsonian_search_payload(smithsonian_row: Dict[str, Any]) -> Dict[str, Any]:
    """Return a Smithsonian search response with one usable and one unusable row."""
    no_media = {"id": "edanmdm-nmah_9999", "title": "No picture", "content": {"descriptiveNonRepeating": {}}}
    return {
        "status": 200,
        "responseCode": 1,
        "response": {"rows": [smithsonian_row, no_media], "rowCount": 1234},
    }


@pytest.fixture
def europeana_search_item() -> Dict[str, Any]:
    """Return one Europeana Search API item."""
    return {
        "id": "/2021672/resource_document_mauritshuis_670",
        "title": ["Girl with a Pearl Earring"],
        "dcTitleLangAware": {"en": ["Girl with a Pearl Earring"], "nl": ["Meisje met de parel"]},
        "dcCreator": ["Johannes Vermeer"],
        "edmPreview": ["https://api.europeana.eu/thumbnail/v2/url.json?uri=abc&type=IMAGE"],
        "edmIsShownBy": ["https://www.mauritshuis.nl/670.jpg"],
        "dataProvider": ["Mauritshuis"],
        "year": ["1665"],
        "country": ["Netherlands"],
        "rights": ["http://creativecommons.org/publicdomain/mark/1.0/"],
        "guid": "https://www.europeana.eu/item/2021672/resource_document_mauritshuis_670",
    }


@pytest.fixture
def europeana_search_payload(europeana_search_item: Dict[str, Any]) -> Dict[str, Any]:
    """Return a Europeana search response with one usable and one preview-less item."""
    no_preview = {"id": "/1/no_preview", "title": ["Hidden"], "rights": ["http://rightsstatements.org/vocab/InC/1.0/"]}
    return {"success": True, "itemsCount": 2, "totalResults": 5, "items": [europeana_search_item, no_preview]}


@pytest.fixture
def europeana_record_payload() -> Dict[str, Any]:
    """Return a Europeana Record API response."""
    return {
        "success": True,
        "object": {
            "about": "/2021672/resource_document_mauritshuis_670",
            "proxies": [
                {
                    "dcTitle": {"nl": ["Meisje met de parel"], "en": ["Girl with a Pearl Earring"]},
                    "dcCreator": {"def": ["Johannes Vermeer"], "nl": ["Vermeer, Johannes"]},
                    "dcDate": {"def": ["c. 1665"]},
                    "dcDescription": {"en": ["<p>Tronie of a girl.</p>"], "nl": ["Tronie van een meisje."]},
                    "dcIdentifier": {"def": ["670"]},
                    "dctermsSpatial": {"def": ["Delft"]},
                },
                {
                    "dcCreator": {"en": ["Johannes Vermeer"]},
                    "dcDescription": {"en": ["Oil on canvas."]},
                },
            ],
            "aggregations": [
                {
                    "edmIsShownBy": "https://www.mauritshuis.nl/670.jpg",
                    "edmObject": "https://www.mauritshuis.nl/670_screen.jpg",
                    "edmIsShownAt": "https://www.mauritshuis.nl/en/our-collection/artworks/670",
                    "edmRights": {"def": ["http://creativecommons.org/publicdomain/mark/1.0/"]},
                    "edmDataProvider": {"def": ["Mauritshuis"]},
                }
            ],
            "europeanaAggregation": {
                "edmPreview": "https://api.europeana.eu/thumbnail/v2/url.json?uri=abc&type=IMAGE",
                "edmLandingPage": "https://www.europeana.eu/item/2021672/resource_document_mauritshuis_670",
            },
            "organizations": [{"prefLabel": {"en": ["Mauritshuis"]}}],
            "timespans": [{"prefLabel": {"en": ["17th century"]}}],
        },
    }


# ============================================================================
# Mock Response Fixtures
# ============================================================================

@pytest.fixture
def mock_response():
    """Create a mock HTTP response."""
    def _create_mock(
        status_code: int = 200,
        json_data: Any = None,
        text: str = "",
        headers: Optional[Dict[str, str]] = None,
    ) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        response.ok = 200 <= status_code < 300
        response.json.return_value = json_data if json_data is not None else {}
        response.text = text
        response.headers = headers or {"Content-Type": "application/json"}
        return response
    return _create_mock


# ============================================================================
# Item Fixtures
# ============================================================================

@pytest.fixture
def make_item():
    """Factory for renderable UnifiedItems."""
    from api.dates import categorise_year
    from api.model import Media, UnifiedItem

    def _make(
        item_id: str,
        source: str = "europeana",
        year: Optional[int] = None,
        title: Optional[str] = None,
        rights: str = "CC0",
    ) -> UnifiedItem:
        thumb = f"https://img.example/{source}/{item_id}_thumb.jpg"
        return UnifiedItem(
            id=item_id,
            source=source,
            title=title or f"Item {item_id}",
            thumbnail_url=thumb,
            media=Media(thumbnail=thumb, primary_image=thumb.replace("_thumb", ""), full_image=""),
            filter_date=year,
            century=categorise_year(year),
            museum="Example Museum",
            rights=rights,
        )
    return _make


# ============================================================================
# Fake Sources
# ============================================================================

class FakeAdapter:
    """Adapter over synthetic payloads: {"total": N, "rows": [...]}."""

    def __init__(self, source: str):
        self.source = source

    def normalize(self, row):
        from api.dates import categorise_year
        from api.model import Media, UnifiedItem

        if not isinstance(row, dict) or row.get("broken"):
            return None
        thumb = f"https://img.example/{self.source}/{row['id']}.jpg"
        return UnifiedItem(
            id=str(row["id"]),
            source=self.source,
            title=row.get("title", f"{self.source} {row['id']}"),
            thumbnail_url=thumb,
            media=Media(thumbnail=thumb, primary_image=thumb),
            filter_date=row.get("year"),
            century=categorise_year(row.get("year")),
            rights="CC0",
        )

    def normalize_record(self, payload):
        return self.normalize(payload.get("record"))

    def rows_of(self, payload):
        return list(payload.get("rows") or [])

    def total_of(self, payload):
        return int(payload.get("total") or 0)


def _make_fake_repository_class():
    from api.repository import SourceRepository

    class FakeRepository(SourceRepository):
        """Repository answering from a synthetic result set.

        Args:
            key: Source key
            total: Result count reported by the source
            delay: Simulated latency per request (interruptible)
            failures: offset -> list of exceptions raised by successive calls
            fail_all: Exception raised by every request
            gate: Requests block until this event is set (or cancellation)
            id_mod: Row ids repeat modulo this value (duplicate simulation)
            broken_every: Every n-th row cannot be normalized
        """

        def __init__(
            self,
            key: str,
            total: int = 0,
            delay: float = 0.0,
            failures: Optional[Dict[int, List[Exception]]] = None,
            fail_all: Optional[Exception] = None,
            gate: Optional[threading.Event] = None,
            id_mod: Optional[int] = None,
            broken_every: Optional[int] = None,
        ):
            super().__init__()
            self.source_key = key
            self.total = total
            self.delay = delay
            self.failures = {k: list(v) for k, v in (failures or {}).items()}
            self.fail_all = fail_all
            self.gate = gate
            self.id_mod = id_mod
            self.broken_every = broken_every
            self.calls: List[Dict[str, Any]] = []
            self.started = threading.Event()
            self._calls_lock = threading.Lock()

        def search_url(self) -> str:
            return f"fake://{self.source_key}/search"

        def search_params(self, query, limit, offset):
            return {"query": query, "limit": limit, "offset": offset}

        def record_url(self, record_id):
            return f"fake://{self.source_key}/record/{record_id}"

        def _get(self, url, params, slot, cancel_token):
            token = self._begin(slot, cancel_token)
            try:
                with self._calls_lock:
                    self.calls.append({"url": url, "slot": slot, **params})
                self.started.set()
                if self.gate is not None:
                    while not self.gate.is_set():
                        if token.wait(0.01):
                            break
                if self.delay:
                    token.wait(self.delay)
                token.raise_if_cancelled(self.source_key)
                if self.fail_all is not None:
                    raise self.fail_all
                offset = params.get("offset", 0)
                pending = self.failures.get(offset)
                if pending and params.get("limit", 0) > 1:
                    raise pending.pop(0)
                if "/record/" in url:
                    record_id = url.rsplit("/", 1)[-1]
                    return {"record": {"id": record_id, "year": 1900}}
                return self._page(params["offset"], params["limit"])
            finally:
                self._end(slot, token)

        def _page(self, offset: int, limit: int) -> Dict[str, Any]:
            rows = []
            for i in range(offset, min(offset + limit, self.total)):
                row_id = i % self.id_mod if self.id_mod else i
                row = {"id": f"{self.source_key}-{row_id}", "year": 1500 + (i * 7) % 500}
                if self.broken_every and i % self.broken_every == 0:
                    row["broken"] = True
                rows.append(row)
            return {"total": self.total, "rows": rows}

        @property
        def search_calls(self) -> List[Dict[str, Any]]:
            with self._calls_lock:
                return [c for c in self.calls if "/search" in c["url"]]

    return FakeRepository


@pytest.fixture
def fake_source():
    """Factory building (SourceSpec, FakeRepository) pairs.

    Usage:
        spec, repo = fake_source("smithsonian", total=200, mode="batched", max_batch_size=50)
    """
    from api.providers import BatchingPolicy, SourceSpec

    repository_class = _make_fake_repository_class()

    def _make(
        key: str,
        total: int = 0,
        mode: str = "fast",
        display_name: Optional[str] = None,
        page_size: int = 100,
        max_batch_size: int = 50,
        max_items: int = 1000,
        max_batches: int = 10,
        independent_batches: bool = True,
        transient_retries: int = 0,
        **repo_kwargs: Any,
    ):
        repo = repository_class(key, total=total, **repo_kwargs)
        policy = BatchingPolicy(
            mode=mode,
            page_size=page_size,
            max_batch_size=max_batch_size,
            max_items=max_items,
            max_batches=max_batches,
            independent_batches=independent_batches,
            transient_retries=transient_retries,
        )
        spec = SourceSpec(
            key=key,
            display_name=display_name or key.capitalize(),
            repository_factory=lambda: repo,
            adapter=FakeAdapter(key),
            batching=policy,
        )
        return spec, repo

    return _make


@pytest.fixture
def memory_cache():
    """CacheStore over a fresh MemoryStore."""
    from explorer.cache_store import CacheStore, MemoryStore
    return CacheStore(MemoryStore(quota_chars=1_000_000))


@pytest.fixture
def make_orchestrator(memory_cache):
    """Factory for orchestrators over fake sources; shut down after the test."""
    from explorer.orchestrator import SearchOrchestrator

    created: List[SearchOrchestrator] = []

    def _make(*specs, cache: Any = memory_cache, **kwargs: Any) -> SearchOrchestrator:
        kwargs.setdefault("max_workers", 4)
        kwargs.setdefault("max_total_items", 6000)
        kwargs.setdefault("max_duration_s", 10)
        kwargs.setdefault("fast_phase_grace_s", 2.0)
        orchestrator = SearchOrchestrator(
            providers={spec.key: spec for spec in specs},
            cache=cache,
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.shutdown()


@pytest.fixture
def event_log() -> Callable:
    """Thread-safe progress-event collector."""
    events: List[Any] = []
    lock = threading.Lock()

    def _record(event) -> None:
        with lock:
            events.append(event)

    _record.events = events
    return _record


# ============================================================================
# Reset Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache():
    """Reset config cache before each test."""
    import api.core.config as config_module
    original_cache = config_module._CONFIG_CACHE
    config_module._CONFIG_CACHE = None
    yield
    config_module._CONFIG_CACHE = original_cache


@pytest.fixture(autouse=True)
def reset_network_state():
    """Drop the shared HTTP session and rate limiters between tests."""
    import api.core.network as network_module
    network_module._SESSION = None
    network_module._RATE_LIMITERS.clear()
    yield
    network_module._SESSION = None
    network_module._RATE_LIMITERS.clear()
