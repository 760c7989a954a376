"""Rolling accuracy tracking and trust-weight derivation for rules, model, and LLM."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional

from config import Settings, settings
from fusion.errors import StorageError
from fusion.models import (
    SOURCES,
    Category,
    MethodStats,
    OverallStats,
    Source,
    SystemStats,
    Trend,
    TrustWeights,
    utcnow,
)
from fusion.stores import StoreWriter

logger = logging.getLogger(__name__)

RECENT_WEIGHT = 0.7
ALL_TIME_WEIGHT = 0.3
TREND_MIN_SAMPLES = 10
TREND_DELTA = 0.1
LOW_SAMPLE_CONFIDENCE = 0.3
EMPTY_WINDOW_CONFIDENCE = 0.5
PREDICTION_HISTORY_LIMIT = 100


def _mean(values) -> float:
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class PerformanceRecord:
    """Per-source outcome counters and recency window."""

    computed_accuracy: float
    window_size: int
    correct_count: int = 0
    total_count: int = 0
    rolling_window: Deque[float] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.rolling_window = deque(self.rolling_window, maxlen=self.window_size)

    def push(self, outcome: float) -> None:
        self.rolling_window.append(outcome)
        assert len(self.rolling_window) <= self.window_size, "rolling window exceeded its bound"


def _normalize_predictions(predictions: Mapping[Any, Any]) -> Dict[Source, Optional[Category]]:
    normalized: Dict[Source, Optional[Category]] = {}
    for key, value in (predictions or {}).items():
        try:
            source = Source(key)
        except ValueError:
            continue
        if value is None:
            normalized[source] = None
            continue
        category = getattr(value, "category", value)
        normalized[source] = Category(category)
    return normalized


def _normalize_confidences(confidences: Optional[Mapping[Any, Optional[float]]]) -> Dict[Source, Optional[float]]:
    normalized: Dict[Source, Optional[float]] = {}
    for key, value in (confidences or {}).items():
        try:
            normalized[Source(key)] = value
        except ValueError:
            continue
    return normalized


class PerformanceTracker:
    """Tracks per-source accuracy and derives normalized trust weights.

    All mutations run under one ``asyncio.Lock`` so a caller never observes a
    source whose window was updated but whose weights were not.
    """

    def __init__(self, writer: Optional[StoreWriter] = None, config: Settings = settings) -> None:
        self.config = config
        self.writer = writer or StoreWriter()
        self.window_size = int(config.TRUST_ACCURACY_WINDOW)
        self.min_predictions = int(config.TRUST_MIN_PREDICTIONS_FOR_ADJUSTMENT)
        self.min_weight = float(config.TRUST_MIN_WEIGHT)
        self.max_weight = float(config.TRUST_MAX_WEIGHT)
        self._lock = asyncio.Lock()
        self.prediction_history: Deque[Dict[str, Any]] = deque(maxlen=PREDICTION_HISTORY_LIMIT)
        self._init_state()

    def _init_state(self) -> None:
        initial = self.config.initial_weights
        self.records: Dict[Source, PerformanceRecord] = {
            source: PerformanceRecord(
                computed_accuracy=float(initial[source.value]),
                window_size=self.window_size,
            )
            for source in SOURCES
        }
        self.trust_weights = self.compute_trust_weights()

    async def load(self) -> None:
        """Hydrate accuracies from stored snapshots; fall back to defaults on storage failure."""
        async with self._lock:
            loaded: Dict[Source, List[float]] = {}
            try:
                for source in SOURCES:
                    rows = await self.writer.query_metrics(source.value, "accuracy", self.window_size)
                    if rows:
                        loaded[source] = [float(row.value) for row in rows]
            except StorageError as exc:
                logger.warning("Performance history unavailable, starting from defaults: %s", exc)
                self._init_state()
                return

            for source, values in loaded.items():
                record = self.records[source]
                record.computed_accuracy = _mean(values)
                record.rolling_window.clear()
                # Rows arrive newest first; the window is kept oldest first.
                record.rolling_window.extend(reversed(values))
            self.trust_weights = self.compute_trust_weights()
            logger.info(
                "Loaded performance history for %d sources, weights=%s",
                len(loaded),
                self.trust_weights.model_dump(),
            )

    async def record_outcome(
        self,
        predictions_by_source: Mapping[Any, Any],
        final_category: Category,
        confidences: Optional[Mapping[Any, Optional[float]]] = None,
        outcome_source: str = "user",
    ) -> None:
        """Score every source that offered a prediction against the confirmed category."""
        final_category = Category(final_category)
        predictions = _normalize_predictions(predictions_by_source)
        confidences = _normalize_confidences(confidences)

        async with self._lock:
            outcome_rows = []
            for source in SOURCES:
                predicted = predictions.get(source)
                if predicted is None:
                    continue
                is_correct = predicted == final_category
                record = self.records[source]
                record.total_count += 1
                if is_correct:
                    record.correct_count += 1
                record.push(1.0 if is_correct else 0.0)
                outcome_rows.append(
                    (
                        source.value,
                        1.0 if is_correct else 0.0,
                        {
                            "predicted": int(predicted),
                            "actual": int(final_category),
                            "confidence": confidences.get(source),
                        },
                    )
                )

            snapshots = self._update_accuracies()
            self.trust_weights = self.compute_trust_weights()
            self.prediction_history.append(
                {
                    "timestamp": utcnow().isoformat(),
                    "predictions": {s.value: int(c) for s, c in predictions.items() if c is not None},
                    "final_category": int(final_category),
                    "source": outcome_source,
                }
            )

            for source_name, value, metadata in outcome_rows:
                await self.writer.record_metric(source_name, "prediction", value, metadata)
            for source_name, value, metadata in snapshots:
                await self.writer.record_metric(source_name, "accuracy", value, metadata)
            await self._persist_trust_weights()

    def _update_accuracies(self) -> List[tuple]:
        snapshots = []
        for source in SOURCES:
            record = self.records[source]
            if record.total_count < self.min_predictions:
                continue
            recent_accuracy = _mean(record.rolling_window)
            all_time_accuracy = record.correct_count / record.total_count if record.total_count else 0.0
            record.computed_accuracy = RECENT_WEIGHT * recent_accuracy + ALL_TIME_WEIGHT * all_time_accuracy
            snapshots.append(
                (
                    source.value,
                    record.computed_accuracy,
                    {
                        "recent_accuracy": recent_accuracy,
                        "all_time_accuracy": all_time_accuracy,
                        "total_predictions": record.total_count,
                        "window_size": len(record.rolling_window),
                    },
                )
            )
        return snapshots

    async def apply_correction(
        self,
        original_predictions: Mapping[Any, Any],
        old_category: Category,
        new_category: Category,
    ) -> None:
        """Immediately penalize sources that predicted ``old_category`` and boost those that predicted ``new_category``."""
        old_category = Category(old_category)
        new_category = Category(new_category)
        predictions = _normalize_predictions(original_predictions)
        penalty = float(self.config.TRUST_INCORRECT_PREDICTION_PENALTY)
        boost = float(self.config.TRUST_CORRECT_PREDICTION_BOOST)

        async with self._lock:
            adjusted: Dict[str, float] = {}
            for source in SOURCES:
                predicted = predictions.get(source)
                if predicted is None:
                    continue
                record = self.records[source]
                if predicted == old_category:
                    record.push(0.0)
                    record.computed_accuracy = max(self.min_weight, record.computed_accuracy - penalty)
                    adjusted[source.value] = record.computed_accuracy
                elif predicted == new_category:
                    record.push(1.0)
                    # Capped at max_weight even when that lowers an accuracy already above it.
                    record.computed_accuracy = min(self.max_weight, record.computed_accuracy + boost)
                    adjusted[source.value] = record.computed_accuracy
            self.trust_weights = self.compute_trust_weights()

            await self.writer.record_metric(
                "user",
                "trust_correction",
                1,
                {
                    "old_category": int(old_category),
                    "new_category": int(new_category),
                    "original_predictions": {s.value: int(c) for s, c in predictions.items() if c is not None},
                    "adjusted_accuracy": adjusted,
                },
            )
            await self._persist_trust_weights()

    def compute_trust_weights(self) -> TrustWeights:
        """Clamp each accuracy into [min_weight, max_weight], then normalize to sum to 1."""
        clamped = {
            source: _clamp(self.records[source].computed_accuracy, self.min_weight, self.max_weight)
            for source in SOURCES
        }
        total = sum(clamped[source] for source in SOURCES)
        if total <= 0:
            return getattr(self, "trust_weights", TrustWeights(**self.config.initial_weights))

        weights = TrustWeights(**{source.value: clamped[source] / total for source in SOURCES})
        assert abs(weights.total() - 1.0) < 1e-9, "trust weights must sum to 1"
        return weights

    async def _persist_trust_weights(self) -> None:
        await self.writer.record_metric("system", "trust_weights", 1, self.trust_weights.model_dump())

    def get_trust_weights(self) -> TrustWeights:
        return self.trust_weights.model_copy()

    def get_method_stats(self, source: Source) -> MethodStats:
        source = Source(source)
        record = self.records[source]
        return MethodStats(
            accuracy=record.computed_accuracy,
            trust_weight=self.trust_weights.get(source),
            total_predictions=record.total_count,
            correct_predictions=record.correct_count,
            recent_accuracy=_mean(record.rolling_window),
            trend=self._calculate_trend(record),
            confidence=self._calculate_confidence(record),
        )

    def _calculate_trend(self, record: PerformanceRecord) -> Trend:
        window = list(record.rolling_window)
        if len(window) < TREND_MIN_SAMPLES:
            return Trend.NEUTRAL

        midpoint = len(window) // 2
        difference = _mean(window[midpoint:]) - _mean(window[:midpoint])
        if difference > TREND_DELTA:
            return Trend.IMPROVING
        if difference < -TREND_DELTA:
            return Trend.DECLINING
        return Trend.STABLE

    def _calculate_confidence(self, record: PerformanceRecord) -> float:
        if record.total_count < self.min_predictions:
            return LOW_SAMPLE_CONFIDENCE

        window = list(record.rolling_window)
        if not window:
            return EMPTY_WINDOW_CONFIDENCE
        mean = _mean(window)
        variance = sum((value - mean) ** 2 for value in window) / len(window)
        return 1 - min(1.0, variance * 2)

    def get_system_stats(self) -> SystemStats:
        methods = {source: self.get_method_stats(source) for source in SOURCES}

        best_method: Optional[Source] = None
        worst_method: Optional[Source] = None
        best_accuracy = 0.0
        worst_accuracy = 1.0
        for source in SOURCES:
            accuracy = methods[source].accuracy
            if accuracy > best_accuracy:
                best_accuracy = accuracy
                best_method = source
            if accuracy < worst_accuracy:
                worst_accuracy = accuracy
                worst_method = source

        overall = OverallStats(
            total_predictions=sum(stats.total_predictions for stats in methods.values()),
            average_accuracy=_mean(stats.accuracy for stats in methods.values()),
            best_method=best_method,
            worst_method=worst_method,
        )
        return SystemStats(methods=methods, overall=overall, insights=self._generate_insights(methods, overall))

    def _generate_insights(self, methods: Dict[Source, MethodStats], overall: OverallStats) -> List[str]:
        insights: List[str] = []
        if overall.best_method is not None:
            best = methods[overall.best_method]
            insights.append(
                f"{overall.best_method.value} is performing best with {best.accuracy * 100:.1f}% accuracy"
            )

        model_stats = methods[Source.MODEL]
        if model_stats.trend == Trend.IMPROVING and model_stats.total_predictions > 50:
            insights.append("ML model is improving as it learns from your behavior")

        dominant = max(SOURCES, key=self.trust_weights.get)
        dominant_weight = self.trust_weights.get(dominant)
        if dominant_weight > 0.6:
            insights.append(f"System is heavily relying on {dominant.value} ({dominant_weight * 100:.0f}% trust)")

        if overall.average_accuracy < 0.7:
            insights.append("Overall accuracy is below 70% - consider reviewing categorization rules")
        return insights

    async def reset(self) -> None:
        """Restore configured defaults. Stored history rows are left untouched."""
        async with self._lock:
            self._init_state()
            self.prediction_history.clear()
        logger.info("Performance tracker reset to initial state")

    async def export_metrics(self) -> Dict[str, Any]:
        recent_metrics: Dict[str, List[Dict[str, Any]]] = {}
        for source in SOURCES:
            try:
                rows = await self.writer.query_metrics(source.value, None, PREDICTION_HISTORY_LIMIT)
            except StorageError as exc:
                logger.warning("Could not export %s metrics: %s", source.value, exc)
                rows = []
            recent_metrics[source.value] = [row.model_dump(mode="json") for row in rows]

        return {
            "current_state": {
                "accuracy": {s.value: self.records[s].computed_accuracy for s in SOURCES},
                "trust_weights": self.trust_weights.model_dump(),
                "predictions": {
                    s.value: {
                        "correct": self.records[s].correct_count,
                        "total": self.records[s].total_count,
                        "recent_accuracy": list(self.records[s].rolling_window),
                    }
                    for s in SOURCES
                },
            },
            "history": list(self.prediction_history),
            "recent_metrics": recent_metrics,
            "system_stats": self.get_system_stats().model_dump(mode="json"),
        }
