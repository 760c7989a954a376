"""Turns user feedback into training examples, trust adjustments, and rule suggestions."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Protocol, Sequence, Set
from urllib.parse import urlparse

from config import Settings, settings
from fusion.errors import TrainerUnavailableError
from fusion.models import (
    Category,
    CorrectionPatternReport,
    DecisionMetadata,
    FeedbackEntry,
    FeedbackInsight,
    FeedbackType,
    LearningQueueEntry,
    RuleSuggestion,
    TabItem,
    TrainingExampleRecord,
    TrainingResult,
    VoteResult,
    utcnow,
)
from fusion.performance_tracker import PerformanceTracker
from fusion.stores import StoreWriter

logger = logging.getLogger(__name__)

PATTERN_EXAMPLE_LIMIT = 10
PATTERN_MIN_COUNT = 3
SYSTEMATIC_ERROR_MIN_COUNT = 5
HIGH_CORRECTION_RATE = 0.3
DOMAIN_RULE_CONFIDENCE = 0.9
URL_PATTERN_RULE_CONFIDENCE = 0.7
SAVE_SIGNAL_WEIGHT = 2
RECENT_FEEDBACK_LIMIT = 500

_DATE_PATH_RE = re.compile(r"/\d{4}/\d{2}/")
_UUID_RE = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}")


class Trainer(Protocol):
    async def incremental_train(
        self, examples: Sequence[LearningQueueEntry], options: Dict[str, Any]
    ) -> TrainingResult: ...


def extract_url_signals(url: str) -> List[str]:
    """URL-structure signals recorded on correction patterns, in fixed order."""
    signals: List[str] = []
    if "/search" in url:
        signals.append("search")
    if "/login" in url or "/signin" in url:
        signals.append("auth")
    if "/checkout" in url or "/cart" in url:
        signals.append("checkout")
    if "/docs" in url or "/documentation" in url:
        signals.append("docs")
    if _DATE_PATH_RE.search(url):
        signals.append("date_path")
    if _UUID_RE.search(url):
        signals.append("uuid")
    return signals


def extract_domain(url: str) -> Optional[str]:
    try:
        return urlparse(url).hostname or None
    except ValueError:
        return None


@dataclass
class CorrectionPattern:
    count: int = 0
    recent_examples: Deque[TabItem] = field(default_factory=lambda: deque(maxlen=PATTERN_EXAMPLE_LIMIT))
    # dicts keep first-seen order, used as ordered sets
    domains: Dict[str, None] = field(default_factory=dict)
    url_patterns: Dict[str, None] = field(default_factory=dict)


def pattern_key(old_category: Category, new_category: Category) -> str:
    return f"{int(old_category)}->{int(new_category)}"


class FeedbackProcessor:
    """Processes acceptances, corrections, and implicit tab signals."""

    def __init__(
        self,
        performance_tracker: PerformanceTracker,
        trainer: Optional[Trainer] = None,
        writer: Optional[StoreWriter] = None,
        config: Settings = settings,
    ) -> None:
        self.performance_tracker = performance_tracker
        self.trainer = trainer
        self.writer = writer or performance_tracker.writer
        self.config = config
        self.min_examples_per_class = int(config.TRAINING_MIN_EXAMPLES_PER_CLASS)
        self.correction_patterns: Dict[str, CorrectionPattern] = {}
        self.learning_queue: List[LearningQueueEntry] = []
        self.feedback_counts: Dict[str, int] = {feedback_type.value: 0 for feedback_type in FeedbackType}
        self.recent_feedback: Deque[FeedbackEntry] = deque(maxlen=RECENT_FEEDBACK_LIMIT)
        self._training_tasks: Set[asyncio.Task] = set()

    async def process_acceptance(self, items: Sequence[TabItem], categorization: VoteResult) -> int:
        """Record each accepted categorization as a positive example. Items are keyed by ``id`` (or URL)."""
        feedback: List[FeedbackEntry] = []
        for item in items:
            key = item.id or item.url
            category = categorization.categories.get(key)
            if category is None:
                continue
            metadata = categorization.metadata.get(key)
            feedback.append(
                FeedbackEntry(
                    type=FeedbackType.ACCEPTANCE,
                    item=item,
                    category=category,
                    confidence=metadata.confidence if metadata is not None else 1.0,
                )
            )

        await self._process_feedback_batch(feedback)
        await self.writer.record_metric(
            "user",
            "acceptance",
            len(items),
            {
                "distribution": self._category_distribution(feedback),
                "average_confidence": self._average_confidence(feedback),
            },
        )
        return len(feedback)

    async def process_correction(
        self,
        item: TabItem,
        old_category: Category,
        new_category: Category,
        metadata: Optional[DecisionMetadata] = None,
    ) -> Optional[LearningQueueEntry]:
        old_category = Category(old_category)
        new_category = Category(new_category)
        if old_category == new_category:
            logger.info("Ignoring no-op correction for %s (%s)", item.url, old_category.name)
            return None

        if metadata is not None and any(c is not None for c in metadata.predictions.values()):
            await self.performance_tracker.apply_correction(metadata.predictions, old_category, new_category)

        original_source = metadata.source if metadata is not None else None
        correction_time = utcnow()
        await self.writer.add_training_examples(
            [
                TrainingExampleRecord(
                    item=item,
                    category=new_category,
                    source="user_correction",
                    corrected=True,
                    metadata={
                        "original_category": int(old_category),
                        "original_source": original_source,
                        "correction_time": correction_time.isoformat(),
                    },
                    timestamp=correction_time,
                )
            ]
        )
        self._log_feedback(
            FeedbackEntry(
                type=FeedbackType.CORRECTION,
                item=item,
                category=new_category,
                old_category=old_category,
                timestamp=correction_time,
            )
        )
        self.track_correction_pattern(item, old_category, new_category)

        entry = LearningQueueEntry(
            item=item, old_category=old_category, new_category=new_category, timestamp=correction_time
        )
        self.learning_queue.append(entry)
        if len(self.learning_queue) >= self.min_examples_per_class:
            self._drain_learning_queue()

        await self.writer.record_metric(
            "user",
            "correction",
            1,
            {
                "from": int(old_category),
                "to": int(new_category),
                "source": original_source,
                "url": item.url,
            },
        )
        return entry

    async def process_tab_close(self, item: TabItem, category: Category) -> bool:
        """Closing a tab from Ignore confirms Ignore; other closes carry no signal."""
        category = Category(category)
        if category != Category.IGNORE:
            return False
        await self._process_feedback_batch(
            [
                FeedbackEntry(
                    type=FeedbackType.IMPLICIT_POSITIVE,
                    item=item,
                    category=category,
                    signal="closed_from_ignore",
                )
            ]
        )
        return True

    async def process_tab_save(self, item: TabItem, category: Category) -> None:
        await self._process_feedback_batch(
            [
                FeedbackEntry(
                    type=FeedbackType.IMPLICIT_POSITIVE,
                    item=item,
                    category=Category(category),
                    signal="saved",
                    weight=SAVE_SIGNAL_WEIGHT,
                )
            ]
        )

    async def _process_feedback_batch(self, feedback_batch: Sequence[FeedbackEntry]) -> None:
        examples: List[TrainingExampleRecord] = []
        for feedback in feedback_batch:
            is_correction = feedback.type == FeedbackType.CORRECTION
            example = TrainingExampleRecord(
                item=feedback.item,
                category=feedback.category,
                source="user_correction" if is_correction else "user_feedback",
                corrected=is_correction,
                metadata={
                    "feedback_type": feedback.type.value,
                    "signal": feedback.signal,
                    "original_category": int(feedback.old_category) if feedback.old_category is not None else None,
                    "timestamp": feedback.timestamp.isoformat(),
                },
                timestamp=feedback.timestamp,
            )
            # Weight is expressed as duplicated rows.
            examples.extend([example] * max(int(feedback.weight), 1))
            self._log_feedback(feedback)

        await self.writer.add_training_examples(examples)

    def _log_feedback(self, feedback: FeedbackEntry) -> None:
        self.feedback_counts[feedback.type.value] += 1
        self.recent_feedback.append(feedback)

    def track_correction_pattern(self, item: TabItem, old_category: Category, new_category: Category) -> None:
        key = pattern_key(old_category, new_category)
        pattern = self.correction_patterns.setdefault(key, CorrectionPattern())
        pattern.count += 1
        pattern.recent_examples.append(item)

        domain = extract_domain(item.url)
        if domain:
            pattern.domains.setdefault(domain, None)
        for signal in extract_url_signals(item.url):
            pattern.url_patterns.setdefault(signal, None)

    def _drain_learning_queue(self) -> None:
        # At-most-once: the queue is cleared before training, and never replayed.
        batch = list(self.learning_queue)
        self.learning_queue.clear()
        logger.info("Learning queue drained with %d corrections", len(batch))
        task = asyncio.create_task(self._run_incremental_training(batch))
        self._training_tasks.add(task)
        task.add_done_callback(self._training_tasks.discard)

    async def _run_incremental_training(self, batch: List[LearningQueueEntry]) -> Optional[TrainingResult]:
        options = {"epochs": int(self.config.TRAINING_INCREMENTAL_EPOCHS), "priority": "high"}
        try:
            if self.trainer is None:
                raise TrainerUnavailableError("No incremental trainer configured")
            result = await self.trainer.incremental_train(batch, options)
        except Exception as exc:
            logger.warning("Incremental training failed for %d examples: %s", len(batch), exc)
            await self.writer.record_metric(
                "model", "training_failure", 0, {"examples": len(batch), "error": str(exc)}
            )
            return None

        logger.info(
            "Incremental training finished on %d examples (accuracy=%s, loss=%s)",
            len(batch),
            result.accuracy,
            result.loss,
        )
        await self.writer.record_metric(
            "model",
            "incremental_training",
            result.accuracy if result.accuracy is not None else 0.0,
            {"examples": len(batch), "loss": result.loss, **options},
        )
        return result

    async def wait_for_training(self) -> None:
        """Await any in-flight incremental training batches."""
        if self._training_tasks:
            await asyncio.gather(*list(self._training_tasks), return_exceptions=True)

    def analyze_correction_patterns(self) -> List[CorrectionPatternReport]:
        reports = [
            CorrectionPatternReport(
                pattern=key,
                count=pattern.count,
                domains=list(pattern.domains)[:5],
                url_patterns=list(pattern.url_patterns),
                suggestion=self.generate_rule_suggestion(key, pattern),
            )
            for key, pattern in self.correction_patterns.items()
            if pattern.count >= PATTERN_MIN_COUNT
        ]
        reports.sort(key=lambda report: report.count, reverse=True)
        return reports

    @staticmethod
    def generate_rule_suggestion(key: str, pattern: CorrectionPattern) -> Optional[RuleSuggestion]:
        target = Category(int(key.split("->")[1]))
        if len(pattern.domains) == 1:
            return RuleSuggestion(
                type="domain",
                value=next(iter(pattern.domains)),
                category=target,
                confidence=DOMAIN_RULE_CONFIDENCE,
            )
        if pattern.url_patterns:
            return RuleSuggestion(
                type="url_pattern",
                value=next(iter(pattern.url_patterns)),
                category=target,
                confidence=URL_PATTERN_RULE_CONFIDENCE,
            )
        return None

    def get_feedback_distribution(self) -> Dict[str, int]:
        return dict(self.feedback_counts)

    def generate_insights(self) -> List[FeedbackInsight]:
        insights: List[FeedbackInsight] = []
        for report in self.analyze_correction_patterns():
            if report.count >= SYSTEMATIC_ERROR_MIN_COUNT:
                insights.append(
                    FeedbackInsight(
                        type="systematic_error",
                        message=f"System frequently miscategorizes {report.pattern}",
                        severity="high",
                        suggestion=report.suggestion,
                    )
                )

        distribution = self.get_feedback_distribution()
        total = sum(distribution.values())
        if total > 0:
            correction_rate = distribution[FeedbackType.CORRECTION.value] / total
            if correction_rate > HIGH_CORRECTION_RATE:
                insights.append(
                    FeedbackInsight(
                        type="high_correction_rate",
                        message=f"High correction rate: {correction_rate * 100:.1f}%",
                        severity="medium",
                    )
                )
        return insights

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "recent_feedback": len(self.recent_feedback),
            "learning_queue_size": len(self.learning_queue),
            "training_in_flight": len(self._training_tasks),
            "correction_patterns": [r.model_dump(mode="json") for r in self.analyze_correction_patterns()],
            "feedback_distribution": self.get_feedback_distribution(),
        }

    @staticmethod
    def _category_distribution(feedback: Sequence[FeedbackEntry]) -> Dict[int, int]:
        distribution = {int(category): 0 for category in Category}
        for entry in feedback:
            distribution[int(entry.category)] += 1
        return distribution

    @staticmethod
    def _average_confidence(feedback: Sequence[FeedbackEntry]) -> float:
        confidences = [entry.confidence for entry in feedback if entry.confidence is not None]
        if not confidences:
            return 0.0
        return sum(confidences) / len(confidences)
