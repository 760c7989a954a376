"""Wiring for the fusion components shared by the API routers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from config import Settings, settings
from fusion.ensemble_voter import EnsembleVoter
from fusion.feedback_processor import FeedbackProcessor
from fusion.performance_tracker import PerformanceTracker
from fusion.stores import PerformanceStore, StoreWriter, TrainingDataStore
from fusion.trust_manager import TrustManager
from services.performance_store import SqlPerformanceStore, SqlTrainingDataStore
from services.trainer import BaseTrainer, build_trainer


@dataclass
class FusionServices:
    config: Settings
    writer: StoreWriter
    tracker: PerformanceTracker
    trust_manager: TrustManager
    voter: EnsembleVoter
    feedback: FeedbackProcessor
    trainer: BaseTrainer


def build_fusion_services(
    config: Settings = settings,
    *,
    performance_store: Optional[PerformanceStore] = None,
    training_store: Optional[TrainingDataStore] = None,
    trainer: Optional[BaseTrainer] = None,
) -> FusionServices:
    """Assemble one tracker/manager/voter/processor graph. Stores default to the SQL tables."""
    writer = StoreWriter(
        performance_store=performance_store if performance_store is not None else SqlPerformanceStore(),
        training_store=training_store if training_store is not None else SqlTrainingDataStore(),
    )
    trainer = trainer or build_trainer(config)
    tracker = PerformanceTracker(writer=writer, config=config)
    trust_manager = TrustManager(tracker, config=config)
    return FusionServices(
        config=config,
        writer=writer,
        tracker=tracker,
        trust_manager=trust_manager,
        voter=EnsembleVoter(trust_manager, config=config),
        feedback=FeedbackProcessor(tracker, trainer=trainer, writer=writer, config=config),
        trainer=trainer,
    )


def get_fusion_services(request: Request) -> FusionServices:
    services = getattr(request.app.state, "fusion", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Fusion services are not initialized.")
    return services
