"""Recommendation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from educhain.container import Marketplace
from educhain.dependencies import get_current_profile, get_marketplace
from educhain.profiles.models import Profile
from educhain.recommendations.schemas import (
    ExplanationResponse,
    RecommendationListResponse,
    RecommendationResponse,
)
from educhain.tasks.schemas import TaskResponse

router = APIRouter(prefix="/api/v1/recommendations", tags=["Recommendations"])


@router.get("", response_model=RecommendationListResponse)
async def get_recommendations(
    limit: int | None = Query(default=None, ge=1, le=100),
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> RecommendationListResponse:
    """Score the active catalog for the caller, best matches first."""
    recommendations = await market.recommendations.recommend(profile.id, limit=limit)
    return RecommendationListResponse(
        recommendations=[
            RecommendationResponse(
                task=TaskResponse.model_validate(r.task),
                relevance_score=r.relevance_score,
                explanation=r.explanation,
                factors=r.factors,
            )
            for r in recommendations
        ],
    )


@router.get("/{task_id}", response_model=ExplanationResponse)
async def get_explanation(
    task_id: str,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> ExplanationResponse:
    row = await market.recommendations.explanation_for(profile.id, task_id)
    return ExplanationResponse.model_validate(row)
