"""Feedback router: acceptances, corrections, and implicit tab signals."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fusion.models import Category, DecisionMetadata, TabItem, VoteResult
from services.fusion import FusionServices, get_fusion_services

router = APIRouter()
logger = logging.getLogger(__name__)


def require_feedback_learning(fusion: FusionServices = Depends(get_fusion_services)) -> FusionServices:
    if not fusion.config.FEEDBACK_LEARNING_ENABLED:
        logger.warning("Feedback request rejected: FEEDBACK_LEARNING_ENABLED is off")
        raise HTTPException(status_code=503, detail="Feedback learning disabled by feature flag.")
    return fusion


class AcceptRequest(BaseModel):
    items: List[TabItem]
    categorization: VoteResult


class CorrectionRequest(BaseModel):
    item: TabItem
    old_category: Category
    new_category: Category
    metadata: Optional[DecisionMetadata] = None


class TabSignalRequest(BaseModel):
    item: TabItem
    category: Category


@router.post("/accept")
async def accept_categorization(
    request: AcceptRequest,
    fusion: FusionServices = Depends(require_feedback_learning),
):
    if not request.items:
        raise HTTPException(status_code=422, detail="items must not be empty")
    accepted = await fusion.feedback.process_acceptance(request.items, request.categorization)
    return {"accepted": accepted}


@router.post("/correction")
async def record_correction(
    request: CorrectionRequest,
    fusion: FusionServices = Depends(require_feedback_learning),
):
    entry = await fusion.feedback.process_correction(
        request.item,
        request.old_category,
        request.new_category,
        request.metadata,
    )
    return {
        "queued": entry is not None,
        "learning_queue_size": len(fusion.feedback.learning_queue),
        "trust_weights": fusion.tracker.get_trust_weights().model_dump(),
    }


@router.post("/tab_close")
async def tab_closed(
    request: TabSignalRequest,
    fusion: FusionServices = Depends(require_feedback_learning),
):
    recorded = await fusion.feedback.process_tab_close(request.item, request.category)
    return {"recorded": recorded}


@router.post("/tab_save")
async def tab_saved(
    request: TabSignalRequest,
    fusion: FusionServices = Depends(require_feedback_learning),
):
    await fusion.feedback.process_tab_save(request.item, request.category)
    return {"recorded": True}


@router.get("/patterns")
async def correction_patterns(fusion: FusionServices = Depends(get_fusion_services)):
    return {"patterns": [report.model_dump(mode="json") for report in fusion.feedback.analyze_correction_patterns()]}


@router.get("/insights")
async def feedback_insights(fusion: FusionServices = Depends(get_fusion_services)):
    return {"insights": [insight.model_dump(mode="json") for insight in fusion.feedback.generate_insights()]}


@router.get("/stats")
async def feedback_stats(fusion: FusionServices = Depends(get_fusion_services)):
    return fusion.feedback.get_statistics()
