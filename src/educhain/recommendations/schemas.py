"""Response schemas for recommendation endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from educhain.tasks.schemas import TaskResponse


class RecommendationResponse(BaseModel):
    task: TaskResponse
    relevance_score: int
    explanation: str
    factors: dict[str, Any]


class RecommendationListResponse(BaseModel):
    recommendations: list[RecommendationResponse]


class ExplanationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    task_id: str
    explanation: str
    relevance_score: int
    factors: dict[str, Any]
    computed_at: datetime
