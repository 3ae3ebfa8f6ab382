"""Badge endpoints: mint and list proof-of-learning badges."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from educhain.badges.schemas import BadgeListResponse, BadgeResponse
from educhain.container import Marketplace
from educhain.dependencies import get_current_profile, get_marketplace
from educhain.profiles.models import Profile

router = APIRouter(prefix="/api/v1", tags=["Badges"])


@router.post("/enrollments/{enrollment_id}/badge", response_model=BadgeResponse, status_code=201)
async def mint_badge(
    enrollment_id: str,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> BadgeResponse:
    """Mint the badge for a top-scored enrollment. Returns once the badge is stored."""
    badge = await market.badges.mint_badge(enrollment_id, student_id=profile.id)
    return BadgeResponse.model_validate(badge)


@router.get("/profiles/{profile_id}/badges", response_model=BadgeListResponse)
async def list_badges(
    profile_id: str,
    market: Marketplace = Depends(get_marketplace),
) -> BadgeListResponse:
    await market.profiles.get_profile(profile_id)
    badges = await market.badges.badges_for(profile_id)
    return BadgeListResponse(badges=[BadgeResponse.model_validate(b) for b in badges], total=len(badges))
