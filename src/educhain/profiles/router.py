"""Profile endpoints: wallet connection, lookup, ledger history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from educhain.container import Marketplace
from educhain.dependencies import get_current_profile, get_marketplace
from educhain.profiles.models import Profile
from educhain.profiles.schemas import (
    ConnectWalletRequest,
    ConnectWalletResponse,
    LedgerEntryResponse,
    LedgerResponse,
    ProfileResponse,
)

router = APIRouter(prefix="/api/v1/profiles", tags=["Profiles"])


@router.post("/connect", response_model=ConnectWalletResponse)
async def connect_wallet(
    body: ConnectWalletRequest,
    market: Marketplace = Depends(get_marketplace),
) -> ConnectWalletResponse:
    """Get or create the profile for a wallet the identity provider has verified."""
    profile, created = await market.profiles.connect_wallet(
        body.wallet_address,
        body.role,
        username=body.username,
        opening_balance=body.opening_balance,
    )
    return ConnectWalletResponse(profile=ProfileResponse.model_validate(profile), created=created)


@router.get("/me", response_model=ProfileResponse)
async def get_me(profile: Profile = Depends(get_current_profile)) -> ProfileResponse:
    return ProfileResponse.model_validate(profile)


@router.get("/{profile_id}", response_model=ProfileResponse)
async def get_profile(
    profile_id: str,
    market: Marketplace = Depends(get_marketplace),
) -> ProfileResponse:
    return ProfileResponse.model_validate(await market.profiles.get_profile(profile_id))


@router.get("/{profile_id}/ledger", response_model=LedgerResponse)
async def get_ledger(
    profile_id: str,
    task_id: str | None = Query(default=None),
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> LedgerResponse:
    """Own staking history, optionally for one task."""
    if profile.id != profile_id:
        raise HTTPException(status_code=403, detail="Ledger history is private")
    entries = await market.ledger.entries(profile_id, task_id)
    return LedgerResponse(
        user_id=profile_id,
        balance=await market.ledger.balance(profile_id),
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
    )
