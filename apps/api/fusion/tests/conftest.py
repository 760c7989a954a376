from typing import List, Optional

import pytest
import pytest_asyncio

from config import Settings
from fusion.ensemble_voter import EnsembleVoter
from fusion.feedback_processor import FeedbackProcessor
from fusion.models import (
    SOURCES,
    MethodStats,
    MetricRecord,
    OverallStats,
    Source,
    SystemStats,
    TrainingResult,
    Trend,
)
from fusion.performance_tracker import PerformanceTracker
from fusion.stores import StoreWriter
from fusion.trust_manager import TrustManager


class InMemoryPerformanceStore:
    def __init__(self):
        self.rows: List[MetricRecord] = []
        self.fail_appends = False
        self.fail_queries = False

    async def append(self, record):
        if self.fail_appends:
            raise RuntimeError("disk full")
        self.rows.append(record)

    async def query(self, source, kind=None, limit=100):
        if self.fail_queries:
            raise RuntimeError("database locked")
        matching = [row for row in self.rows if row.source == source and (kind is None or row.kind == kind)]
        return list(reversed(matching))[:limit]

    def kinds(self, source: Optional[str] = None) -> List[str]:
        return [row.kind for row in self.rows if source is None or row.source == source]


class InMemoryTrainingStore:
    def __init__(self):
        self.examples = []

    async def append(self, example):
        self.examples.append(example)

    async def append_many(self, examples):
        self.examples.extend(examples)


class RecordingTrainer:
    def __init__(self, result: Optional[TrainingResult] = None, error: Optional[Exception] = None):
        self.calls = []
        self.result = result or TrainingResult(accuracy=0.91, loss=0.12)
        self.error = error

    async def incremental_train(self, examples, options):
        self.calls.append((list(examples), dict(options)))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def fusion_settings():
    return Settings(_env_file=None)


@pytest.fixture
def performance_store():
    return InMemoryPerformanceStore()


@pytest.fixture
def training_store():
    return InMemoryTrainingStore()


@pytest.fixture
def writer(performance_store, training_store):
    return StoreWriter(performance_store=performance_store, training_store=training_store)


@pytest.fixture
def tracker(writer, fusion_settings):
    return PerformanceTracker(writer=writer, config=fusion_settings)


@pytest.fixture
def trust_manager(tracker, fusion_settings):
    return TrustManager(tracker, config=fusion_settings)


@pytest.fixture
def voter(trust_manager, fusion_settings):
    return EnsembleVoter(trust_manager, config=fusion_settings)


@pytest.fixture
def trainer():
    return RecordingTrainer()


@pytest_asyncio.fixture
async def feedback_processor(tracker, trainer, writer, fusion_settings):
    processor = FeedbackProcessor(tracker, trainer=trainer, writer=writer, config=fusion_settings)
    yield processor
    await processor.wait_for_training()


@pytest.fixture
def make_system_stats():
    """Build tracker-shaped stats directly, to drive strategy selection."""

    def _make(
        weights=(0.3, 0.3, 0.4),
        accuracies=(0.7, 0.7, 0.7),
        model_total=600,
        model_confidence=0.9,
        model_trend=Trend.STABLE,
    ) -> SystemStats:
        methods = {}
        for source, weight, accuracy in zip(SOURCES, weights, accuracies):
            is_model = source == Source.MODEL
            total = model_total if is_model else 600
            methods[source] = MethodStats(
                accuracy=accuracy,
                trust_weight=weight,
                total_predictions=total,
                correct_predictions=int(total * accuracy),
                recent_accuracy=accuracy,
                trend=model_trend if is_model else Trend.STABLE,
                confidence=model_confidence if is_model else 0.9,
            )
        return SystemStats(methods=methods, overall=OverallStats())

    return _make
