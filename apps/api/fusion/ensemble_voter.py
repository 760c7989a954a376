"""Batch voting across rule, model, and LLM predictions."""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional

from config import Settings, settings
from fusion.models import (
    DEFAULT_CATEGORY,
    SOURCES,
    AgreementStats,
    Category,
    Decision,
    DecisionMetadata,
    Prediction,
    Source,
    TrustWeights,
    VoteResult,
    VoteSummary,
    VotingSession,
)
from fusion.trust_manager import TrustManager

logger = logging.getLogger(__name__)

# Applied when a source supplies a category without a confidence.
DEFAULT_CONFIDENCES = {
    Source.RULES: 1.0,  # Rules are deterministic
    Source.MODEL: 0.5,
    Source.LLM: 0.8,
}

CONSERVATIVE_PRIORITY = (Category.IMPORTANT, Category.USEFUL, Category.IGNORE, Category.UNCATEGORIZED)
AGGRESSIVE_PRIORITY = (Category.IGNORE, Category.IMPORTANT, Category.USEFUL, Category.UNCATEGORIZED)
PRIORITY_RESOLUTION_CONFIDENCE = 0.7
PRIORITY_DEFAULT_CONFIDENCE = 0.5
UNKNOWN_SOURCE_TRUST = 0.33

SourcePredictions = Mapping[str, Optional[Prediction]]


class ConflictStrategy(str, Enum):
    HIGHEST_CONFIDENCE = "highest_confidence"
    TRUST_WEIGHTED = "trust_weighted"
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


def _categories(predictions: Mapping[Source, Optional[Category]]) -> List[Category]:
    return [category for category in predictions.values() if category is not None]


class EnsembleVoter:
    """Runs the trust manager over a batch of items and summarizes the session."""

    def __init__(self, trust_manager: TrustManager, config: Settings = settings) -> None:
        self.trust_manager = trust_manager
        self.config = config
        self.voting_history: Deque[VotingSession] = deque(maxlen=int(config.VOTING_HISTORY_LIMIT))

    async def vote(self, all_predictions: Mapping[Any, Optional[SourcePredictions]]) -> VoteResult:
        """Decide every item present in any source map, exactly once."""
        source_maps: Dict[Source, SourcePredictions] = {}
        for key, mapping in all_predictions.items():
            if mapping is None:
                continue
            source_maps[Source(key)] = mapping

        # One stats snapshot per batch so every item sees the same trust weights.
        system_stats = self.trust_manager.performance_tracker.get_system_stats()
        trust_weights = TrustWeights(
            **{source.value: system_stats.methods[source].trust_weight for source in SOURCES}
        )

        categories: Dict[str, Category] = {}
        metadata: Dict[str, DecisionMetadata] = {}
        for item_id in self.get_all_item_ids(source_maps.values()):
            filled: Dict[Source, Optional[Prediction]] = {}
            for source in SOURCES:
                prediction = source_maps.get(source, {}).get(item_id)
                if prediction is None:
                    filled[source] = None
                    continue
                confidence = (
                    prediction.confidence if prediction.confidence is not None else DEFAULT_CONFIDENCES[source]
                )
                filled[source] = prediction.model_copy(update={"confidence": confidence})

            decision = await self.trust_manager.make_decision(filled, system_stats=system_stats)
            categories[item_id] = decision.category
            metadata[item_id] = DecisionMetadata(
                **decision.model_dump(),
                predictions={source: (p.category if p is not None else None) for source, p in filled.items()},
                confidences={source: p.confidence for source, p in filled.items() if p is not None},
                trust_weights=trust_weights,
            )

        summary = self.generate_summary(categories, metadata)
        self._record_voting_session(categories, metadata)
        logger.debug("Voted on %d items, dominant source=%s", summary.total_items, summary.dominant_source)
        return VoteResult(categories=categories, metadata=metadata, summary=summary)

    @staticmethod
    def get_all_item_ids(source_maps: Iterable[SourcePredictions]) -> List[str]:
        item_ids: Dict[str, None] = {}
        for mapping in source_maps:
            for item_id in mapping:
                item_ids.setdefault(item_id, None)
        return list(item_ids)

    @staticmethod
    def majority_vote(predictions: Mapping[Source, Optional[Category]]) -> Category:
        counts: Dict[Category, int] = {}
        for category in _categories(predictions):
            counts[category] = counts.get(category, 0) + 1

        winner = DEFAULT_CATEGORY
        max_votes = 0
        for category, count in counts.items():
            if count > max_votes:
                max_votes = count
                winner = category
        return Category(winner)

    @staticmethod
    def calculate_agreement(predictions: Mapping[Source, Optional[Category]]) -> float:
        values = _categories(predictions)
        if len(values) <= 1:
            return 1.0
        return 1 - (len(set(values)) - 1) / (len(values) - 1)

    def resolve_conflict(
        self,
        predictions: Mapping[Source, Optional[Prediction]],
        strategy: ConflictStrategy = ConflictStrategy.HIGHEST_CONFIDENCE,
    ) -> Decision:
        present = {source: predictions[source] for source in SOURCES if predictions.get(source) is not None}
        strategy = ConflictStrategy(strategy)
        if strategy == ConflictStrategy.TRUST_WEIGHTED:
            return self._trust_weighted_resolution(present)
        if strategy == ConflictStrategy.CONSERVATIVE:
            return self._priority_resolution(present, CONSERVATIVE_PRIORITY, strategy, DEFAULT_CATEGORY)
        if strategy == ConflictStrategy.AGGRESSIVE:
            return self._priority_resolution(present, AGGRESSIVE_PRIORITY, strategy, Category.IGNORE)
        return self._highest_confidence_resolution(present)

    def _highest_confidence_resolution(self, present: Dict[Source, Prediction]) -> Decision:
        best_source: Optional[Source] = None
        best_confidence = 0.0
        best_category = DEFAULT_CATEGORY
        for source, prediction in present.items():
            confidence = prediction.confidence or 0.0
            if confidence > best_confidence:
                best_confidence = confidence
                best_source = source
                best_category = prediction.category

        source_name = best_source.value if best_source else "default"
        return Decision(
            category=best_category,
            source=source_name,
            confidence=best_confidence,
            reasoning=f"Highest confidence from {source_name}",
            strategy=ConflictStrategy.HIGHEST_CONFIDENCE.value,
        )

    def _trust_weighted_resolution(self, present: Dict[Source, Prediction]) -> Decision:
        trust_weights = self.trust_manager.get_trust_weights()
        best_source: Optional[Source] = None
        best_score = 0.0
        best_category = DEFAULT_CATEGORY
        for source, prediction in present.items():
            confidence = prediction.confidence if prediction.confidence is not None else 1.0
            trust = trust_weights.get(source) or UNKNOWN_SOURCE_TRUST
            score = confidence * trust
            if score > best_score:
                best_score = score
                best_source = source
                best_category = prediction.category

        source_name = best_source.value if best_source else "default"
        return Decision(
            category=best_category,
            source=source_name,
            confidence=best_score,
            reasoning=f"Trust-weighted decision from {source_name}",
            strategy=ConflictStrategy.TRUST_WEIGHTED.value,
        )

    @staticmethod
    def _priority_resolution(
        present: Dict[Source, Prediction],
        priority: Iterable[Category],
        strategy: ConflictStrategy,
        default: Category,
    ) -> Decision:
        label = strategy.value.capitalize()
        for target in priority:
            methods = [source.value for source, prediction in present.items() if prediction.category == target]
            if methods:
                return Decision(
                    category=target,
                    source="+".join(methods),
                    confidence=PRIORITY_RESOLUTION_CONFIDENCE,
                    reasoning=f"{label} choice: {target.display_name}",
                    strategy=strategy.value,
                )
        return Decision(
            category=default,
            source="default",
            confidence=PRIORITY_DEFAULT_CONFIDENCE,
            reasoning=f"{label} default to {default.display_name}",
            strategy=strategy.value,
        )

    @staticmethod
    def calculate_distribution(categories: Mapping[str, Category]) -> Dict[int, int]:
        distribution = {int(category): 0 for category in Category}
        for category in categories.values():
            distribution[int(category)] += 1
        return distribution

    def calculate_agreement_stats(self, metadata: Mapping[str, DecisionMetadata]) -> AgreementStats:
        agreements = [self.calculate_agreement(meta.predictions) for meta in metadata.values()]
        if not agreements:
            return AgreementStats()
        return AgreementStats(
            average_agreement=sum(agreements) / len(agreements),
            perfect_agreement=sum(1 for agreement in agreements if agreement == 1.0),
            total_disagreement=sum(1 for agreement in agreements if agreement == 0.0),
        )

    def generate_summary(
        self,
        categories: Mapping[str, Category],
        metadata: Mapping[str, DecisionMetadata],
    ) -> VoteSummary:
        sources: Dict[str, int] = {}
        for meta in metadata.values():
            sources[meta.source] = sources.get(meta.source, 0) + 1

        dominant_source = "none"
        if sources:
            dominant_source = sorted(sources.items(), key=lambda entry: entry[1], reverse=True)[0][0]

        confidences = [meta.confidence for meta in metadata.values()]
        return VoteSummary(
            total_items=len(categories),
            distribution=self.calculate_distribution(categories),
            agreement_stats=self.calculate_agreement_stats(metadata),
            decision_sources=sources,
            dominant_source=dominant_source,
            average_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
        )

    def _record_voting_session(
        self,
        categories: Mapping[str, Category],
        metadata: Mapping[str, DecisionMetadata],
    ) -> None:
        first = next(iter(metadata.values()), None)
        self.voting_history.append(
            VotingSession(
                item_count=len(categories),
                distribution=self.calculate_distribution(categories),
                agreement_stats=self.calculate_agreement_stats(metadata),
                strategy_used=first.strategy if first else "unknown",
            )
        )

    def get_strategy_distribution(self) -> Dict[str, int]:
        strategies: Dict[str, int] = {}
        for session in self.voting_history:
            strategies[session.strategy_used] = strategies.get(session.strategy_used, 0) + 1
        return strategies

    def get_statistics(self) -> Dict[str, Any]:
        if not self.voting_history:
            return {"message": "No voting history available"}

        sessions = list(self.voting_history)
        recent = sessions[-10:]
        return {
            "total_sessions": len(sessions),
            "recent_sessions": [session.model_dump(mode="json") for session in recent],
            "average_items_per_session": sum(s.item_count for s in sessions) / len(sessions),
            "average_agreement": sum(s.agreement_stats.average_agreement for s in recent) / len(recent),
            "strategy_distribution": self.get_strategy_distribution(),
        }
