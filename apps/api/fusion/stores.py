"""Collaborator contracts for durable storage, and the log-and-continue write adapter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from fusion.errors import StorageError
from fusion.models import MetricRecord, TrainingExampleRecord

logger = logging.getLogger(__name__)


class PerformanceStore(Protocol):
    async def append(self, record: MetricRecord) -> None: ...

    async def query(self, source: str, kind: Optional[str] = None, limit: int = 100) -> List[MetricRecord]:
        """Return rows for ``source`` (optionally one ``kind``), newest first."""
        ...


class TrainingDataStore(Protocol):
    async def append(self, example: TrainingExampleRecord) -> None: ...

    async def append_many(self, examples: Sequence[TrainingExampleRecord]) -> None: ...


@dataclass(frozen=True)
class PersistResult:
    ok: bool
    error: Optional[str] = None


PERSIST_OK = PersistResult(ok=True)


class StoreWriter:
    """Wraps optional stores so that write failures are logged and reported, never raised.

    Either store may be ``None``; writes then succeed as no-ops so the fusion
    core runs without any storage at all.
    """

    def __init__(
        self,
        performance_store: Optional[PerformanceStore] = None,
        training_store: Optional[TrainingDataStore] = None,
    ) -> None:
        self.performance_store = performance_store
        self.training_store = training_store

    async def record_metric(
        self,
        source: str,
        kind: str,
        value: float,
        metadata: Optional[dict] = None,
    ) -> PersistResult:
        if self.performance_store is None:
            return PERSIST_OK
        record = MetricRecord(source=source, kind=kind, value=float(value), metadata=metadata or {})
        try:
            await self.performance_store.append(record)
        except Exception as exc:
            logger.warning("Metric write failed source=%s kind=%s: %s", source, kind, exc)
            return PersistResult(ok=False, error=str(exc))
        return PERSIST_OK

    async def add_training_examples(self, examples: Sequence[TrainingExampleRecord]) -> PersistResult:
        if self.training_store is None or not examples:
            return PERSIST_OK
        try:
            await self.training_store.append_many(list(examples))
        except Exception as exc:
            logger.warning("Training data write failed for %d examples: %s", len(examples), exc)
            return PersistResult(ok=False, error=str(exc))
        return PERSIST_OK

    async def query_metrics(self, source: str, kind: Optional[str] = None, limit: int = 100) -> List[MetricRecord]:
        """Read path; raises ``StorageError`` so callers choose their own fallback."""
        if self.performance_store is None:
            return []
        try:
            return await self.performance_store.query(source, kind, limit)
        except Exception as exc:
            raise StorageError(f"Metric query failed for {source}/{kind}: {exc}") from exc
