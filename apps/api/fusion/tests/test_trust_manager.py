import pytest

from config import Settings
from fusion.models import Category, DecisionMetadata, Prediction, Source, Strategy, Trend
from fusion.trust_manager import TrustManager


def _predictions(rules=None, model=None, llm=None):
    def _build(value):
        if value is None:
            return None
        category, confidence = value
        return Prediction(category=category, confidence=confidence)

    return {Source.RULES: _build(rules), Source.MODEL: _build(model), Source.LLM: _build(llm)}


def test_every_strategy_has_a_decision_function(trust_manager):
    assert set(trust_manager._handlers) == set(Strategy)


def test_strategy_selection_is_deterministic(trust_manager, make_system_stats):
    stats = make_system_stats(accuracies=(0.95, 0.5, 0.5))
    first = trust_manager.determine_strategy(stats)
    second = trust_manager.determine_strategy(stats)
    assert first == second
    assert first.name == Strategy.DOMINANT


def test_fresh_tracker_starts_in_early_stage(trust_manager, tracker):
    plan = trust_manager.determine_strategy(tracker.get_system_stats())
    assert plan.name == Strategy.EARLY_STAGE
    assert plan.use_model is False
    assert plan.weights.model == 0.0


@pytest.mark.asyncio
async def test_early_stage_prefers_rules(trust_manager):
    decision = await trust_manager.make_decision(_predictions(rules=(1, 1.0), model=(3, 0.99), llm=(2, 0.9)))
    assert decision.category == Category.IGNORE
    assert decision.source == "rules"
    assert decision.confidence == pytest.approx(0.8)
    assert decision.strategy == "early_stage"


@pytest.mark.asyncio
async def test_early_stage_falls_back_to_llm(trust_manager):
    decision = await trust_manager.make_decision(_predictions(llm=(Category.IMPORTANT, 0.6)))
    assert decision.source == "llm"
    assert decision.category == Category.IMPORTANT
    assert decision.confidence == pytest.approx(0.7)


@pytest.mark.asyncio
async def test_early_stage_defaults_to_useful_without_predictions(trust_manager):
    decision = await trust_manager.make_decision(_predictions(model=(3, 0.9)))
    assert decision.category == Category.USEFUL
    assert decision.source == "default"
    assert decision.confidence == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_learning_uses_confident_model(trust_manager, make_system_stats):
    stats = make_system_stats(model_total=200)
    decision = await trust_manager.make_decision(
        _predictions(rules=(1, 1.0), model=(3, 0.65)), system_stats=stats
    )
    assert decision.strategy == "learning"
    assert decision.source == "model"
    assert decision.category == Category.IMPORTANT


@pytest.mark.asyncio
async def test_learning_falls_back_in_fixed_order(trust_manager, make_system_stats):
    stats = make_system_stats(model_total=200)
    decision = await trust_manager.make_decision(
        _predictions(rules=(2, 0.9), model=(3, 0.5), llm=(1, 0.9)), system_stats=stats
    )
    assert decision.source == "rules"
    assert decision.category == Category.USEFUL

    llm_only = await trust_manager.make_decision(_predictions(llm=(Category.IGNORE, None)), system_stats=stats)
    assert llm_only.source == "llm"
    assert llm_only.category == Category.IGNORE
    assert llm_only.confidence == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_dominant_uses_primary_then_accuracy_order(trust_manager, make_system_stats):
    stats = make_system_stats(accuracies=(0.95, 0.5, 0.5))

    decision = await trust_manager.make_decision(
        _predictions(rules=(1, 0.9), model=(3, 0.8)), system_stats=stats
    )
    assert decision.source == "rules"
    assert decision.confidence == pytest.approx(0.9)

    fallback = await trust_manager.make_decision(
        _predictions(model=(3, 0.8), llm=(2, 0.9)), system_stats=stats
    )
    assert fallback.source == "model"
    assert fallback.category == Category.IMPORTANT


def test_dominant_tie_goes_to_first_source(trust_manager, make_system_stats):
    plan = trust_manager.determine_strategy(make_system_stats(accuracies=(0.2, 0.95, 0.95)))
    assert plan.name == Strategy.DOMINANT
    assert plan.primary_method == Source.MODEL
    assert plan.fallback_order == [Source.MODEL, Source.LLM, Source.RULES]

    plan = trust_manager.determine_strategy(make_system_stats(accuracies=(0.2, 0.2, 0.95)))
    assert plan.name == Strategy.DOMINANT
    assert plan.primary_method == Source.LLM
    assert plan.fallback_order == [Source.LLM, Source.RULES, Source.MODEL]


@pytest.mark.asyncio
async def test_model_boost_prioritizes_improving_model(trust_manager, make_system_stats):
    stats = make_system_stats(accuracies=(0.75, 0.75, 0.75), model_trend=Trend.IMPROVING)
    plan = trust_manager.determine_strategy(stats)
    assert plan.name == Strategy.MODEL_BOOST
    assert plan.weights.model == pytest.approx(0.45 / 1.15)
    assert plan.weights.total() == pytest.approx(1.0)

    decision = await trust_manager.make_decision(_predictions(rules=(1, 1.0), model=(3, 0.5)), system_stats=stats)
    assert decision.source == "model"
    assert decision.reasoning == "Prioritizing improving model"


@pytest.mark.asyncio
async def test_model_boost_falls_back_to_weighted_vote(trust_manager, make_system_stats):
    stats = make_system_stats(accuracies=(0.75, 0.75, 0.75), model_trend=Trend.IMPROVING)
    decision = await trust_manager.make_decision(
        _predictions(rules=(1, 1.0), model=(3, 0.2), llm=(1, 0.9)), system_stats=stats
    )
    assert decision.strategy == "model_boost"
    assert decision.source == "weighted_vote"
    assert decision.category == Category.IGNORE


@pytest.mark.asyncio
async def test_balanced_weighted_vote_with_disagreement(trust_manager, make_system_stats):
    stats = make_system_stats(weights=(0.3, 0.3, 0.4))
    decision = await trust_manager.make_decision(
        _predictions(rules=(1, 1.0), model=(3, 0.55), llm=(3, 0.8)), system_stats=stats
    )

    assert decision.strategy == "balanced"
    assert decision.source == "weighted_vote"
    assert decision.category == Category.IMPORTANT
    assert decision.votes[3] == pytest.approx(0.485)
    assert decision.votes[1] == pytest.approx(0.3)
    assert sum(decision.votes.values()) == pytest.approx(0.785)
    assert decision.confidence == pytest.approx(0.485 / 0.785)
    assert decision.confidence == pytest.approx(0.618, abs=1e-3)
    assert decision.reasoning.startswith("Voted by model and llm")


def test_unanimous_low_confidence_resolves_to_consensus(trust_manager):
    present = {
        Source.RULES: Prediction(category=2, confidence=1.0),
        Source.MODEL: Prediction(category=2, confidence=0.1),
        Source.LLM: Prediction(category=2, confidence=0.1),
    }
    decision = trust_manager.handle_low_confidence(present, [], "balanced")
    assert decision.category == Category.USEFUL
    assert decision.source == "consensus"
    assert decision.confidence == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_balanced_zero_confidence_agreement_takes_consensus(trust_manager, make_system_stats):
    stats = make_system_stats(weights=(0.8, 0.1, 0.1))
    decision = await trust_manager.make_decision(
        _predictions(rules=(2, 0.0), model=(2, 0.0), llm=(2, 0.0)), system_stats=stats
    )
    assert decision.source == "consensus"
    assert decision.category == Category.USEFUL
    assert decision.confidence == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_low_confidence_disagreement_uses_independent_penalty(tracker, make_system_stats):
    manager = TrustManager(tracker, config=Settings(_env_file=None, DISAGREEMENT_CONFIDENCE_PENALTY=0.5))
    stats = make_system_stats(weights=(0.3, 0.3, 0.4))
    decision = await manager.make_decision(
        _predictions(rules=(1, 0.5), model=(2, 0.5), llm=(3, 0.45)), system_stats=stats
    )
    assert decision.source == "rules"
    assert decision.category == Category.IGNORE
    assert decision.confidence == pytest.approx(0.25)
    assert len(decision.vote_details) == 3


@pytest.mark.asyncio
async def test_low_confidence_without_any_signal_defaults(trust_manager, make_system_stats):
    stats = make_system_stats()
    decision = await trust_manager.make_decision(
        _predictions(rules=(1, 0.0), model=(3, 0.0)), system_stats=stats
    )
    assert decision.source == "default"
    assert decision.category == Category.USEFUL
    assert decision.confidence == pytest.approx(0.3)

    empty = await trust_manager.make_decision(_predictions(), system_stats=stats)
    assert empty.source == "default"
    assert empty.confidence == pytest.approx(0.2)
    assert empty.reasoning == "No predictions available"


@pytest.mark.asyncio
async def test_strategy_changes_are_recorded_once(trust_manager, performance_store):
    await trust_manager.make_decision(_predictions(rules=(1, 1.0)))
    await trust_manager.make_decision(_predictions(rules=(2, 1.0)))

    assert performance_store.kinds("system").count("strategy_change") == 1
    stats = trust_manager.get_statistics()
    assert stats["current_strategy"] == "early_stage"
    assert len(stats["recent_decisions"]) == 2
    assert stats["strategy_history"][0]["strategy"] == "early_stage"


@pytest.mark.asyncio
async def test_update_trust_scores_each_source(trust_manager, tracker, performance_store):
    decision = DecisionMetadata(
        category=Category.IMPORTANT,
        source="weighted_vote",
        confidence=0.6,
        reasoning="Voted by model",
        strategy="balanced",
        predictions={Source.RULES: Category.IGNORE, Source.MODEL: Category.IMPORTANT, Source.LLM: None},
        confidences={Source.RULES: 1.0, Source.MODEL: 0.7},
    )

    await trust_manager.update_trust(decision, Category.IMPORTANT)

    assert tracker.records[Source.RULES].total_count == 1
    assert tracker.records[Source.RULES].correct_count == 0
    assert tracker.records[Source.MODEL].correct_count == 1
    assert tracker.records[Source.LLM].total_count == 0
    trust_rows = [row for row in performance_store.rows if row.kind == "trust_update"]
    assert trust_rows[0].value == 1.0


@pytest.mark.asyncio
async def test_reset_trust_clears_history(trust_manager, tracker):
    await trust_manager.make_decision(_predictions(rules=(1, 1.0)))
    await tracker.apply_correction({"rules": 1}, 1, 2)

    await trust_manager.reset_trust()

    assert trust_manager.current_strategy is None
    assert list(trust_manager.decision_history) == []
    assert tracker.get_trust_weights().rules == pytest.approx(0.4)
