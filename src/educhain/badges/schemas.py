"""Response schemas for badge endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class BadgeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    task_id: str
    teacher_id: str
    skill_verified: str
    token_id: str
    badge_title: str
    badge_description: str
    badge_image_url: str
    task_title: str
    minted_at: datetime


class BadgeListResponse(BaseModel):
    badges: list[BadgeResponse]
    total: int
