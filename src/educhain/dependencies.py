"""Shared FastAPI dependencies."""

from __future__ import annotations

import structlog
from fastapi import Depends, Header, HTTPException, Request

from educhain.container import Marketplace
from educhain.profiles.models import Profile

WALLET_HEADER = "X-Wallet-Address"


def get_marketplace(request: Request) -> Marketplace:
    """The marketplace built by the app lifespan (or injected by tests)."""
    market: Marketplace | None = getattr(request.app.state, "marketplace", None)
    if market is None:
        raise HTTPException(status_code=503, detail="Marketplace not initialized")
    return market


async def get_current_profile(
    x_wallet_address: str | None = Header(default=None, alias=WALLET_HEADER),
    market: Marketplace = Depends(get_marketplace),
) -> Profile:
    """Resolve the caller from the wallet address forwarded by the identity provider.

    Raises 401 if the header is missing or no profile is connected for it,
    403 if the profile is deactivated.
    """
    if not x_wallet_address:
        raise HTTPException(status_code=401, detail=f"Missing {WALLET_HEADER} header")
    profile = await market.profiles.get_by_wallet(x_wallet_address)
    if profile is None:
        raise HTTPException(status_code=401, detail="Wallet not connected")
    if not profile.is_active:
        raise HTTPException(status_code=403, detail="Profile is deactivated")
    structlog.contextvars.bind_contextvars(profile_id=profile.id, wallet=profile.wallet_address)
    return profile
