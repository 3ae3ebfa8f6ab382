"""Profile management: wallet connection, lookup, deactivation."""

from __future__ import annotations

from decimal import Decimal

import structlog

from educhain.errors import InvalidInputError, NotAuthorizedError, NotFoundError
from educhain.profiles.models import Profile, profile_from_row
from educhain.store.base import Reader, Store, UniqueViolation
from educhain.store.records import ProfileRow, Role

logger = structlog.get_logger()


def normalize_wallet(wallet_address: str) -> str:
    return wallet_address.strip().lower()


async def load_profile(reader: Reader, profile_id: str, *, require_active: bool = True) -> Profile:
    """Fetch a profile as its role variant.

    Raises:
        NotFoundError: no such profile.
        NotAuthorizedError: the profile is deactivated and ``require_active`` is set.
    """
    row = await reader.get(ProfileRow, profile_id)
    if row is None:
        raise NotFoundError(f"Profile {profile_id} not found", profile_id=profile_id)
    if require_active and not row.is_active:
        raise NotAuthorizedError(f"Profile {profile_id} is deactivated", profile_id=profile_id)
    return profile_from_row(row)


class ProfileService:
    def __init__(self, store: Store) -> None:
        self._store = store

    async def connect_wallet(
        self,
        wallet_address: str,
        role: Role,
        *,
        username: str | None = None,
        opening_balance: Decimal = Decimal("0"),
    ) -> tuple[Profile, bool]:
        """Return the profile for a wallet, creating it on first connection.

        ``opening_balance`` is the holdings reported by the wallet provider and
        only applies when the profile is created. Returns ``(profile, created)``.
        """
        address = normalize_wallet(wallet_address)
        if not address:
            raise InvalidInputError("Wallet address is required")
        if opening_balance < 0:
            raise InvalidInputError("Opening balance cannot be negative")

        existing = await self._store.list(ProfileRow, wallet_address=address)
        if existing:
            return profile_from_row(existing[0]), False

        row = ProfileRow(
            wallet_address=address,
            role=Role(role),
            username=username,
            token_balance=opening_balance,
        )
        try:
            async with self._store.transaction() as tx:
                await tx.insert(row)
        except UniqueViolation:
            # another connection created it first
            existing = await self._store.list(ProfileRow, wallet_address=address)
            return profile_from_row(existing[0]), False

        logger.info("profile_created", profile_id=row.id, role=row.role.value)
        return profile_from_row(row), True

    async def get_profile(self, profile_id: str) -> Profile:
        return await load_profile(self._store, profile_id, require_active=False)

    async def get_by_wallet(self, wallet_address: str) -> Profile | None:
        rows = await self._store.list(ProfileRow, wallet_address=normalize_wallet(wallet_address))
        return profile_from_row(rows[0]) if rows else None

    async def deactivate(self, profile_id: str) -> Profile:
        async with self._store.transaction() as tx:
            row = await tx.update(ProfileRow, profile_id, {"is_active": False})
        if row is None:
            raise NotFoundError(f"Profile {profile_id} not found", profile_id=profile_id)
        logger.info("profile_deactivated", profile_id=profile_id)
        return profile_from_row(row)
