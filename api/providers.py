"""Source registry mapping source keys to repository, adapter and batching policy.

Centralizes source imports and the mapping used by the search orchestrator.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from . import europeana_adapter, smithsonian_adapter
from .core.config import get_batching_config
from .europeana_api import EuropeanaRepository
from .repository import SourceRepository
from .smithsonian_api import SmithsonianRepository


@dataclass(frozen=True)
class BatchingPolicy:
    """How a source is queried for one search.

    Attributes:
        mode: "fast" (one capped page) or "batched" (probe then sequential batches)
        page_size: Rows requested by a fast source
        max_batch_size: Upper bound on rows per batch
        max_items: Upper bound on rows fetched for one search
        max_batches: Upper bound on the number of batches
        independent_batches: Continue with later batches after one fails
        transient_retries: Extra attempts for a batch after a transient failure
    """

    mode: str = "fast"
    page_size: int = 50
    max_batch_size: int = 50
    max_items: int = 1000
    max_batches: int = 10
    independent_batches: bool = True
    transient_retries: int = 1

    @property
    def is_batched(self) -> bool:
        return self.mode == "batched"

    def plan(self, total: int) -> tuple[int, int]:
        """Work out (batches, batch_size) for a source reporting total rows.

        Returns:
            (0, 0) when there is nothing to fetch
        """
        target = min(max(0, int(total)), self.max_items)
        if target <= 0:
            return 0, 0
        batches = min(self.max_batches, math.ceil(target / max(1, self.max_batch_size)))
        batches = max(1, batches)
        return batches, math.ceil(target / batches)

    @classmethod
    def from_config(cls, provider_key: str) -> "BatchingPolicy":
        cfg = get_batching_config(provider_key)
        return cls(
            mode=str(cfg["mode"]),
            page_size=int(cfg["page_size"]),
            max_batch_size=int(cfg["max_batch_size"]),
            max_items=int(cfg["max_items"]),
            max_batches=int(cfg["max_batches"]),
            independent_batches=bool(cfg["independent_batches"]),
            transient_retries=max(0, int(cfg["transient_retries"])),
        )


@dataclass(frozen=True)
class SourceSpec:
    """Registry entry for one source.

    Attributes:
        key: Source key
        display_name: Name used in warnings and progress messages
        repository_factory: Builds the SourceRepository for this source
        adapter: Module (or object) exposing normalize, normalize_record,
            rows_of and total_of
        batching: Fixed policy; read from config when None
    """

    key: str
    display_name: str
    repository_factory: Callable[[], SourceRepository]
    adapter: Any
    batching: Optional[BatchingPolicy] = None

    def policy(self) -> BatchingPolicy:
        return self.batching if self.batching is not None else BatchingPolicy.from_config(self.key)


PROVIDERS: Dict[str, SourceSpec] = {
    "smithsonian": SourceSpec("smithsonian", "Smithsonian", SmithsonianRepository, smithsonian_adapter),
    "europeana": SourceSpec("europeana", "Europeana", EuropeanaRepository, europeana_adapter),
}


__all__ = ["PROVIDERS", "BatchingPolicy", "SourceSpec"]
