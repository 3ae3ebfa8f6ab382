"""Request/response schemas for profile endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from educhain.store.records import Role, TransactionStatus, TransactionType


class ConnectWalletRequest(BaseModel):
    wallet_address: str = Field(..., min_length=1, max_length=128)
    role: Role
    username: str | None = Field(default=None, max_length=64)
    opening_balance: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=8)


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    wallet_address: str
    role: Role
    username: str | None
    reputation_score: float
    token_balance: Decimal
    is_active: bool
    total_tasks_created: int | None = None
    total_tasks_completed: int | None = None
    total_tasks_attempted: int | None = None


class ConnectWalletResponse(BaseModel):
    profile: ProfileResponse
    created: bool


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    transaction_type: TransactionType
    amount: Decimal
    task_id: str | None
    enrollment_id: str | None
    batch_id: str | None
    status: TransactionStatus
    created_at: datetime


class LedgerResponse(BaseModel):
    user_id: str
    balance: Decimal
    entries: list[LedgerEntryResponse]
