"""Trust router: weights, strategy, outcomes, and metric export."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fusion.models import Category, DecisionMetadata, Source, StrategyPlan, TrustWeights
from services.fusion import FusionServices, get_fusion_services

router = APIRouter()
logger = logging.getLogger(__name__)


class OutcomeRequest(BaseModel):
    final_category: Category
    decision: Optional[DecisionMetadata] = None
    predictions: Optional[Dict[Source, Optional[Category]]] = None
    confidences: Optional[Dict[Source, float]] = None


@router.get("/stats")
async def trust_stats(fusion: FusionServices = Depends(get_fusion_services)):
    return fusion.trust_manager.get_statistics()


@router.get("/weights", response_model=TrustWeights)
async def trust_weights(fusion: FusionServices = Depends(get_fusion_services)):
    return fusion.trust_manager.get_trust_weights()


@router.get("/strategy", response_model=StrategyPlan)
async def current_strategy(fusion: FusionServices = Depends(get_fusion_services)):
    return fusion.trust_manager.determine_strategy(fusion.tracker.get_system_stats())


@router.post("/outcome")
async def record_outcome(
    request: OutcomeRequest,
    fusion: FusionServices = Depends(get_fusion_services),
):
    if request.decision is not None:
        await fusion.trust_manager.update_trust(request.decision, request.final_category)
    elif request.predictions:
        await fusion.tracker.record_outcome(
            request.predictions,
            request.final_category,
            confidences=request.confidences,
        )
    else:
        raise HTTPException(status_code=422, detail="Provide either decision metadata or per-source predictions.")
    return {"trust_weights": fusion.tracker.get_trust_weights().model_dump()}


@router.post("/reset")
async def reset_trust(fusion: FusionServices = Depends(get_fusion_services)):
    await fusion.trust_manager.reset_trust()
    logger.info("Trust state reset via API")
    return {"trust_weights": fusion.tracker.get_trust_weights().model_dump()}


@router.get("/export")
async def export_metrics(fusion: FusionServices = Depends(get_fusion_services)):
    return await fusion.tracker.export_metrics()
