from datetime import datetime, timedelta, timezone

import pytest

from fusion.models import Category, MetricRecord, Source, TabItem, TrainingExampleRecord
from fusion.performance_tracker import PerformanceTracker
from fusion.stores import StoreWriter
from services.performance_store import SqlPerformanceStore, SqlTrainingDataStore


BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_query_returns_newest_first_with_limit(session_maker):
    store = SqlPerformanceStore(session_maker)
    for offset, value in enumerate([0.5, 0.6, 0.7, 0.8]):
        await store.append(
            MetricRecord(
                timestamp=BASE_TIME + timedelta(minutes=offset),
                source="rules",
                kind="accuracy",
                value=value,
                metadata={"window_size": offset},
            )
        )
    await store.append(MetricRecord(timestamp=BASE_TIME, source="rules", kind="prediction", value=1.0))
    await store.append(MetricRecord(timestamp=BASE_TIME, source="model", kind="accuracy", value=0.3))

    rows = await store.query("rules", "accuracy", limit=3)
    assert [row.value for row in rows] == [0.8, 0.7, 0.6]
    assert rows[0].metadata == {"window_size": 3}
    assert rows[0].timestamp == BASE_TIME + timedelta(minutes=3)

    all_rules = await store.query("rules")
    assert len(all_rules) == 5
    assert {row.kind for row in all_rules} == {"accuracy", "prediction"}


@pytest.mark.asyncio
async def test_training_store_appends_and_counts(session_maker):
    store = SqlTrainingDataStore(session_maker)
    item = TabItem(id="t1", url="https://docs.python.org/3/", title="Python docs")
    await store.append(
        TrainingExampleRecord(item=item, category=Category.IMPORTANT, source="user_feedback", timestamp=BASE_TIME)
    )
    await store.append_many(
        [
            TrainingExampleRecord(
                item=item,
                category=Category.USEFUL,
                source="user_correction",
                corrected=True,
                metadata={"original_category": 3},
                timestamp=BASE_TIME + timedelta(days=1),
            )
        ]
    )

    assert await store.count() == 2
    assert await store.count("user_correction") == 1

    recent = await store.recent(limit=1)
    assert recent[0].corrected is True
    assert recent[0].item.url == "https://docs.python.org/3/"
    assert recent[0].metadata == {"original_category": 3}


@pytest.mark.asyncio
async def test_tracker_round_trips_through_sql_store(session_maker, api_settings):
    writer = StoreWriter(performance_store=SqlPerformanceStore(session_maker))
    config = api_settings.model_copy(update={"TRUST_MIN_PREDICTIONS_FOR_ADJUSTMENT": 1})
    tracker = PerformanceTracker(writer=writer, config=config)

    await tracker.record_outcome({"rules": 2, "model": 1}, 2)
    await tracker.record_outcome({"rules": 2, "model": 2}, 2)
    assert tracker.records[Source.MODEL].computed_accuracy == pytest.approx(0.5)

    restored = PerformanceTracker(writer=writer, config=config)
    await restored.load()

    assert restored.records[Source.RULES].computed_accuracy == pytest.approx(1.0)
    assert restored.records[Source.MODEL].computed_accuracy == pytest.approx(0.25)
    assert list(restored.records[Source.MODEL].rolling_window) == [0.0, 0.5]
    assert restored.get_trust_weights().total() == pytest.approx(1.0)
