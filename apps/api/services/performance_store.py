"""SQLAlchemy-backed performance and training data stores."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from database import async_session_maker
from fusion.models import Category, MetricRecord, TabItem, TrainingExampleRecord
from models.performance_metric import PerformanceMetric
from models.training_example import TrainingExample


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _metric_from_row(row: PerformanceMetric) -> MetricRecord:
    return MetricRecord(
        timestamp=_as_utc(row.recorded_at),
        source=row.source,
        kind=row.kind,
        value=float(row.value or 0.0),
        metadata=row.metadata_json if isinstance(row.metadata_json, dict) else {},
    )


def _example_to_row(example: TrainingExampleRecord) -> TrainingExample:
    return TrainingExample(
        id=str(uuid.uuid4()),
        item_id=example.item.id,
        url=example.item.url,
        title=example.item.title,
        category=int(example.category),
        source=example.source,
        corrected=bool(example.corrected),
        metadata_json=example.metadata,
        recorded_at=example.timestamp,
    )


def _example_from_row(row: TrainingExample) -> TrainingExampleRecord:
    return TrainingExampleRecord(
        item=TabItem(id=row.item_id, url=row.url, title=row.title or ""),
        category=Category(row.category),
        source=row.source,
        corrected=bool(row.corrected),
        metadata=row.metadata_json if isinstance(row.metadata_json, dict) else {},
        timestamp=_as_utc(row.recorded_at),
    )


class SqlPerformanceStore:
    """Append-only metric log in the ``performance_metrics`` table."""

    def __init__(self, session_maker: async_sessionmaker = async_session_maker) -> None:
        self.session_maker = session_maker

    async def append(self, record: MetricRecord) -> None:
        async with self.session_maker() as db:
            db.add(
                PerformanceMetric(
                    id=str(uuid.uuid4()),
                    source=record.source,
                    kind=record.kind,
                    value=float(record.value),
                    metadata_json=record.metadata,
                    recorded_at=record.timestamp,
                )
            )
            await db.commit()

    async def query(self, source: str, kind: Optional[str] = None, limit: int = 100) -> List[MetricRecord]:
        async with self.session_maker() as db:
            rows = await self._query_rows(db, source, kind, limit)
        return [_metric_from_row(row) for row in rows]

    @staticmethod
    async def _query_rows(db: AsyncSession, source: str, kind: Optional[str], limit: int) -> Sequence[PerformanceMetric]:
        stmt = select(PerformanceMetric).where(PerformanceMetric.source == source)
        if kind:
            stmt = stmt.where(PerformanceMetric.kind == kind)
        result = await db.execute(
            stmt.order_by(PerformanceMetric.recorded_at.desc(), PerformanceMetric.created_at.desc()).limit(
                max(int(limit), 0)
            )
        )
        return result.scalars().all()


class SqlTrainingDataStore:
    """Labelled examples in the ``training_examples`` table."""

    def __init__(self, session_maker: async_sessionmaker = async_session_maker) -> None:
        self.session_maker = session_maker

    async def append(self, example: TrainingExampleRecord) -> None:
        await self.append_many([example])

    async def append_many(self, examples: Sequence[TrainingExampleRecord]) -> None:
        if not examples:
            return
        async with self.session_maker() as db:
            db.add_all([_example_to_row(example) for example in examples])
            await db.commit()

    async def count(self, source: Optional[str] = None) -> int:
        stmt = select(func.count(TrainingExample.id))
        if source:
            stmt = stmt.where(TrainingExample.source == source)
        async with self.session_maker() as db:
            result = await db.execute(stmt)
            return int(result.scalar_one() or 0)

    async def recent(self, limit: int = 50) -> List[TrainingExampleRecord]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(TrainingExample)
                .order_by(TrainingExample.recorded_at.desc(), TrainingExample.created_at.desc())
                .limit(max(int(limit), 0))
            )
            rows = result.scalars().all()
        return [_example_from_row(row) for row in rows]
