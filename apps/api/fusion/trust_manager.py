"""Strategy selection and per-item decision making over rule, model, and LLM predictions."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

from config import Settings, settings
from fusion.models import (
    DEFAULT_CATEGORY,
    SOURCES,
    Category,
    Decision,
    DecisionMetadata,
    Prediction,
    Source,
    Strategy,
    StrategyPlan,
    SystemStats,
    Trend,
    TrustWeights,
    VoteDetail,
    utcnow,
)
from fusion.performance_tracker import PerformanceTracker

logger = logging.getLogger(__name__)

# Strategy selection thresholds.
LEARNING_MAX_PREDICTIONS = 500
LEARNING_MIN_MODEL_CONFIDENCE = 0.7
DOMINANT_ACCURACY_MARGIN = 0.15
MODEL_BOOST_MIN_ACCURACY = 0.7
MODEL_BOOST_FACTOR = 1.5
MODEL_BOOST_CAP = 0.7

# Fixed confidences for early-stage and default decisions.
EARLY_STAGE_RULES_CONFIDENCE = 0.8
EARLY_STAGE_LLM_CONFIDENCE = 0.7
FALLBACK_UNSPECIFIED_CONFIDENCE = 0.5
DEFAULT_DECISION_CONFIDENCE = 0.3
NO_PREDICTION_CONFIDENCE = 0.2

HISTORY_LIMIT = 50

Predictions = Mapping[Source, Optional[Prediction]]


def _present(predictions: Predictions) -> Dict[Source, Prediction]:
    return {source: predictions[source] for source in SOURCES if predictions.get(source) is not None}


def _renormalize(weights: Dict[Source, float]) -> TrustWeights:
    total = sum(weights.values())
    return TrustWeights(**{source.value: weights[source] / total for source in SOURCES})


class TrustManager:
    """Picks a fusion strategy from tracker statistics and applies it to one item."""

    def __init__(self, performance_tracker: PerformanceTracker, config: Settings = settings) -> None:
        self.performance_tracker = performance_tracker
        self.config = config
        self.current_strategy: Optional[Strategy] = None
        self.strategy_history: Deque[Dict[str, Any]] = deque(maxlen=HISTORY_LIMIT)
        self.decision_history: Deque[Decision] = deque(maxlen=HISTORY_LIMIT)
        self._handlers: Dict[Strategy, Callable[[Dict[Source, Prediction], StrategyPlan], Decision]] = {
            Strategy.EARLY_STAGE: self._early_stage_decision,
            Strategy.LEARNING: self._learning_decision,
            Strategy.DOMINANT: self._dominant_decision,
            Strategy.MODEL_BOOST: self._model_boost_decision,
            Strategy.BALANCED: self._balanced_decision,
        }
        missing = set(Strategy) - set(self._handlers)
        assert not missing, f"no decision function for strategies: {missing}"

    def get_trust_weights(self) -> TrustWeights:
        return self.performance_tracker.get_trust_weights()

    def determine_strategy(self, system_stats: SystemStats) -> StrategyPlan:
        """Pure function of ``system_stats``; rules are evaluated in fixed priority order."""
        methods = system_stats.methods
        model_stats = methods[Source.MODEL]
        weights = TrustWeights(**{source.value: methods[source].trust_weight for source in SOURCES})

        if model_stats.total_predictions < self.config.TRAINING_MIN_TRAINING_EXAMPLES:
            return StrategyPlan(
                name=Strategy.EARLY_STAGE,
                description="Not enough data for ML model",
                weights=TrustWeights(rules=0.5, model=0.0, llm=0.5),
                use_model=False,
                fallback_order=[Source.RULES, Source.LLM],
            )

        if (
            model_stats.total_predictions < LEARNING_MAX_PREDICTIONS
            or model_stats.confidence < LEARNING_MIN_MODEL_CONFIDENCE
        ):
            return StrategyPlan(
                name=Strategy.LEARNING,
                description="Model is still learning",
                weights=weights,
                model_threshold=self.config.CONFIDENCE_MEDIUM,
                fallback_order=[Source.RULES, Source.MODEL, Source.LLM],
            )

        accuracies = {source: methods[source].accuracy for source in SOURCES}
        max_accuracy = max(accuracies.values())
        avg_accuracy = sum(accuracies.values()) / len(accuracies)
        if max_accuracy - avg_accuracy > DOMINANT_ACCURACY_MARGIN:
            dominant = next(source for source in SOURCES if accuracies[source] == max_accuracy)
            return StrategyPlan(
                name=Strategy.DOMINANT,
                description=f"{dominant.value} is significantly better",
                weights=weights,
                primary_method=dominant,
                fallback_order=self.order_by_accuracy(system_stats),
            )

        if model_stats.trend == Trend.IMPROVING and model_stats.accuracy > MODEL_BOOST_MIN_ACCURACY:
            boosted = {source: weights.get(source) for source in SOURCES}
            boosted[Source.MODEL] = min(MODEL_BOOST_CAP, boosted[Source.MODEL] * MODEL_BOOST_FACTOR)
            return StrategyPlan(
                name=Strategy.MODEL_BOOST,
                description="Model is improving rapidly",
                weights=_renormalize(boosted),
                model_threshold=self.config.CONFIDENCE_LOW,
                fallback_order=[Source.MODEL, Source.RULES, Source.LLM],
            )

        return StrategyPlan(
            name=Strategy.BALANCED,
            description="Using weighted voting from all methods",
            weights=weights,
        )

    @staticmethod
    def order_by_accuracy(system_stats: SystemStats) -> List[Source]:
        # sorted() is stable, so ties keep rules/model/llm order.
        return sorted(SOURCES, key=lambda source: -system_stats.methods[source].accuracy)

    async def make_decision(
        self,
        predictions: Predictions,
        system_stats: Optional[SystemStats] = None,
    ) -> Decision:
        """Fuse one item's predictions. Missing sources degrade through fallbacks, never raise.

        Pass ``system_stats`` to decide a whole batch against one consistent snapshot.
        """
        if system_stats is None:
            system_stats = self.performance_tracker.get_system_stats()
        plan = self.determine_strategy(system_stats)
        await self._note_strategy(plan)

        decision = self._handlers[plan.name](_present(predictions), plan)
        self.decision_history.append(decision)
        return decision

    async def _note_strategy(self, plan: StrategyPlan) -> None:
        if plan.name == self.current_strategy:
            return
        previous = self.current_strategy
        self.current_strategy = plan.name
        self.strategy_history.append(
            {"timestamp": utcnow().isoformat(), "strategy": plan.name.value, "reason": plan.description}
        )
        logger.info(
            "Fusion strategy changed %s -> %s (%s)",
            previous.value if previous else "none",
            plan.name.value,
            plan.description,
        )
        await self.performance_tracker.writer.record_metric(
            "system", "strategy_change", 1, plan.model_dump(mode="json")
        )

    def _early_stage_decision(self, present: Dict[Source, Prediction], plan: StrategyPlan) -> Decision:
        if Source.RULES in present:
            return Decision(
                category=present[Source.RULES].category,
                source=Source.RULES.value,
                confidence=EARLY_STAGE_RULES_CONFIDENCE,
                reasoning="Using rule-based categorization",
                strategy=plan.name.value,
            )
        if Source.LLM in present:
            return Decision(
                category=present[Source.LLM].category,
                source=Source.LLM.value,
                confidence=EARLY_STAGE_LLM_CONFIDENCE,
                reasoning="Using LLM categorization (no rules matched)",
                strategy=plan.name.value,
            )
        return self._default_decision(
            plan, DEFAULT_DECISION_CONFIDENCE, "No categorization available, defaulting to Useful"
        )

    def _learning_decision(self, present: Dict[Source, Prediction], plan: StrategyPlan) -> Decision:
        model = present.get(Source.MODEL)
        model_confidence = (model.confidence or 0.0) if model else 0.0
        if model is not None and model_confidence >= plan.model_threshold:
            return Decision(
                category=model.category,
                source=Source.MODEL.value,
                confidence=model_confidence,
                reasoning=f"Model prediction with {model_confidence * 100:.0f}% confidence",
                strategy=plan.name.value,
            )
        return self._fallback_decision(present, plan)

    def _dominant_decision(self, present: Dict[Source, Prediction], plan: StrategyPlan) -> Decision:
        primary = plan.primary_method
        if primary in present:
            prediction = present[primary]
            confidence = prediction.confidence if prediction.confidence is not None else plan.weights.get(primary)
            return Decision(
                category=prediction.category,
                source=primary.value,
                confidence=confidence,
                reasoning=f"Using {primary.value} (highest accuracy method)",
                strategy=plan.name.value,
            )
        return self._fallback_decision(present, plan)

    def _model_boost_decision(self, present: Dict[Source, Prediction], plan: StrategyPlan) -> Decision:
        model = present.get(Source.MODEL)
        model_confidence = (model.confidence or 0.0) if model else 0.0
        if model is not None and model_confidence >= plan.model_threshold:
            return Decision(
                category=model.category,
                source=Source.MODEL.value,
                confidence=model_confidence,
                reasoning="Prioritizing improving model",
                strategy=plan.name.value,
            )
        return self._balanced_decision(present, plan)

    def _balanced_decision(self, present: Dict[Source, Prediction], plan: StrategyPlan) -> Decision:
        votes: Dict[int, float] = {int(category): 0.0 for category in Category}
        vote_details: List[VoteDetail] = []

        for source, prediction in present.items():
            confidence = prediction.confidence if prediction.confidence is not None else 1.0
            weight = plan.weights.get(source)
            vote = weight * confidence
            votes[int(prediction.category)] += vote
            vote_details.append(
                VoteDetail(method=source, category=prediction.category, weight=weight, confidence=confidence, vote=vote)
            )

        best_category = DEFAULT_CATEGORY
        best_score = 0.0
        total_votes = 0.0
        for category, score in votes.items():
            total_votes += score
            if score > best_score:
                best_score = score
                best_category = Category(category)

        decision_confidence = best_score / total_votes if total_votes > 0 else 0.0
        if decision_confidence < self.config.CONFIDENCE_LOW:
            return self.handle_low_confidence(present, vote_details, plan.name.value)

        return Decision(
            category=best_category,
            source="weighted_vote",
            confidence=decision_confidence,
            reasoning=self.explain_voting(vote_details, best_category),
            strategy=plan.name.value,
            votes=votes,
            vote_details=vote_details,
        )

    def _fallback_decision(self, present: Dict[Source, Prediction], plan: StrategyPlan) -> Decision:
        for source in plan.fallback_order:
            prediction = present.get(source)
            if prediction is None:
                continue
            confidence = (
                prediction.confidence if prediction.confidence is not None else FALLBACK_UNSPECIFIED_CONFIDENCE
            )
            return Decision(
                category=prediction.category,
                source=source.value,
                confidence=confidence,
                reasoning=f"Using {source.value} as fallback",
                strategy=plan.name.value,
            )
        return self._default_decision(
            plan, DEFAULT_DECISION_CONFIDENCE, "No predictions available, defaulting to Useful"
        )

    def handle_low_confidence(
        self,
        present: Dict[Source, Prediction],
        vote_details: List[VoteDetail],
        strategy: str,
    ) -> Decision:
        """Resolve a weak vote: unanimity first, then the single most confident source."""
        if not present:
            return Decision(
                category=DEFAULT_CATEGORY,
                source="default",
                confidence=NO_PREDICTION_CONFIDENCE,
                reasoning="No predictions available",
                strategy=strategy,
            )

        categories = {prediction.category for prediction in present.values()}
        if len(categories) == 1:
            return Decision(
                category=categories.pop(),
                source="consensus",
                confidence=self.config.CONSENSUS_CONFIDENCE,
                reasoning=f"All methods agree on category ({', '.join(s.value for s in present)})",
                strategy=strategy,
                vote_details=vote_details,
            )

        best_source: Optional[Source] = None
        best_confidence = 0.0
        for source, prediction in present.items():
            confidence = prediction.confidence or 0.0
            if confidence > best_confidence:
                best_confidence = confidence
                best_source = source

        if best_source is not None:
            return Decision(
                category=present[best_source].category,
                source=best_source.value,
                confidence=best_confidence * self.config.DISAGREEMENT_CONFIDENCE_PENALTY,
                reasoning=f"Using {best_source.value} with highest confidence despite disagreement",
                strategy=strategy,
                vote_details=vote_details,
            )

        return Decision(
            category=DEFAULT_CATEGORY,
            source="default",
            confidence=DEFAULT_DECISION_CONFIDENCE,
            reasoning="Low confidence in all predictions",
            strategy=strategy,
            vote_details=vote_details,
        )

    @staticmethod
    def _default_decision(plan: StrategyPlan, confidence: float, reasoning: str) -> Decision:
        return Decision(
            category=DEFAULT_CATEGORY,
            source="default",
            confidence=confidence,
            reasoning=reasoning,
            strategy=plan.name.value,
        )

    @staticmethod
    def explain_voting(vote_details: List[VoteDetail], winning_category: Category) -> str:
        supporting = [detail for detail in vote_details if detail.category == winning_category]
        if len(supporting) == len(SOURCES):
            return "All methods agree on this category"

        methods = " and ".join(detail.method.value for detail in supporting)
        avg_confidence = sum(detail.confidence for detail in supporting) / len(supporting)
        return f"Voted by {methods} with {avg_confidence * 100:.0f}% average confidence"

    async def update_trust(self, decision: DecisionMetadata, actual_category: Category) -> None:
        """Feed a confirmed or corrected outcome for an earlier decision back into the tracker."""
        actual_category = Category(actual_category)
        was_correct = decision.category == actual_category

        if any(category is not None for category in decision.predictions.values()):
            predictions = dict(decision.predictions)
        elif decision.vote_details:
            predictions = {detail.method: detail.category for detail in decision.vote_details}
        else:
            try:
                predictions = {Source(decision.source): decision.category}
            except ValueError:
                predictions = {}

        await self.performance_tracker.record_outcome(
            predictions,
            actual_category,
            confidences=decision.confidences,
            outcome_source="confirmed" if was_correct else "corrected",
        )
        await self.performance_tracker.writer.record_metric(
            "system",
            "trust_update",
            1 if was_correct else 0,
            {
                "decision_category": int(decision.category),
                "decision_source": decision.source,
                "actual_category": int(actual_category),
                "strategy": self.current_strategy.value if self.current_strategy else None,
            },
        )

    async def reset_trust(self) -> None:
        await self.performance_tracker.reset()
        self.current_strategy = None
        self.strategy_history.clear()
        self.decision_history.clear()
        logger.info("Trust weights and performance data reset")

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "current_strategy": self.current_strategy.value if self.current_strategy else None,
            "trust_weights": self.get_trust_weights().model_dump(),
            "system_stats": self.performance_tracker.get_system_stats().model_dump(mode="json"),
            "recent_decisions": [d.model_dump(mode="json") for d in list(self.decision_history)[-10:]],
            "strategy_history": list(self.strategy_history)[-10:],
        }
