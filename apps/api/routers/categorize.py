"""Categorization router: batch voting and single-item conflict resolution."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fusion.ensemble_voter import ConflictStrategy
from fusion.models import Decision, Prediction, Source, VoteResult
from services.fusion import FusionServices, get_fusion_services

router = APIRouter()
logger = logging.getLogger(__name__)

SourceMap = Optional[Dict[str, Optional[Prediction]]]


class VoteRequest(BaseModel):
    rules: SourceMap = None
    model: SourceMap = None
    llm: SourceMap = None


class ResolveConflictRequest(BaseModel):
    predictions: Dict[Source, Optional[Prediction]]
    strategy: ConflictStrategy = ConflictStrategy.HIGHEST_CONFIDENCE


@router.post("/vote", response_model=VoteResult)
async def vote(
    request: VoteRequest,
    fusion: FusionServices = Depends(get_fusion_services),
):
    all_predictions = {
        Source.RULES: request.rules,
        Source.MODEL: request.model,
        Source.LLM: request.llm,
    }
    if all(mapping is None for mapping in all_predictions.values()):
        logger.warning("Rejected vote request with no source predictions")
        raise HTTPException(status_code=422, detail="At least one source must supply predictions.")
    return await fusion.voter.vote(all_predictions)


@router.post("/resolve_conflict", response_model=Decision)
async def resolve_conflict(
    request: ResolveConflictRequest,
    fusion: FusionServices = Depends(get_fusion_services),
):
    return fusion.voter.resolve_conflict(request.predictions, request.strategy)


@router.get("/stats")
async def voting_stats(fusion: FusionServices = Depends(get_fusion_services)):
    return fusion.voter.get_statistics()
