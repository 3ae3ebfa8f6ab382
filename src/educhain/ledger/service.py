"""Stake ledger: append-only staking transactions plus cached balances.

Every entry is inserted together with a compare-and-set on the owner's
``token_balance`` inside the caller's transaction, so the log and the balance
commit or roll back as one. ``stake`` entries debit, everything else credits.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

import structlog

from educhain.config import Settings
from educhain.errors import InsufficientStakeError, InvalidInputError, SettlementFailure
from educhain.profiles.service import load_profile
from educhain.store.base import Reader, Transaction, compare_and_set
from educhain.store.records import (
    Enrollment,
    ProfileRow,
    StakingTransaction,
    Task,
    TransactionType,
    new_id,
)

logger = structlog.get_logger()

AMOUNT_QUANTUM = Decimal("0.00000001")
ZERO = Decimal("0")

SIGN: dict[TransactionType, int] = {
    TransactionType.STAKE: -1,
    TransactionType.REWARD: 1,
    TransactionType.PENALTY: 1,
    TransactionType.REFUND: 1,
}


def quantize(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class Settlement:
    """Outcome of settling one reviewed enrollment.

    ``refund`` and ``reward`` go to the student, ``penalty`` to the teacher.
    """

    refund: Decimal
    reward: Decimal
    penalty: Decimal
    batch_id: str | None = None
    entries: tuple[StakingTransaction, ...] = ()


def compute_settlement(
    score: int,
    locked: Decimal,
    reward_amount: Decimal,
    passing_score: int = 4,
) -> Settlement:
    """Split a locked stake for a review score.

    A passing score returns the whole stake and pays the reward. A failing
    score forfeits ``(passing - score) / (passing - 1)`` of the stake to the
    teacher, so a score of 1 loses all of it, and pays no reward.
    """
    locked = quantize(locked)
    if score >= passing_score:
        return Settlement(refund=locked, reward=quantize(reward_amount), penalty=ZERO)
    penalty = quantize(locked * Decimal(passing_score - score) / Decimal(passing_score - 1))
    return Settlement(refund=locked - penalty, reward=ZERO, penalty=penalty)


class StakeLedger:
    def __init__(self, store: Reader, settings: Settings) -> None:
        self._store = store
        self._passing_score = settings.passing_score
        self._max_retries = settings.cas_max_retries

    async def post(self, tx: Transaction, entries: list[StakingTransaction]) -> list[StakingTransaction]:
        """Append entries and apply each one to its owner's balance.

        Zero-amount entries are dropped. Raises InsufficientStakeError when a
        debit would take a balance below zero; the caller's transaction then
        rolls back every entry posted so far.
        """
        posted = []
        for entry in entries:
            if entry.amount < 0:
                raise InvalidInputError("Ledger amounts cannot be negative", amount=str(entry.amount))
            entry = dataclasses.replace(entry, amount=quantize(entry.amount))
            if entry.amount == 0:
                continue
            delta = entry.amount * SIGN[entry.transaction_type]

            def apply(row: ProfileRow, delta: Decimal = delta) -> dict[str, Decimal]:
                balance = row.token_balance + delta
                if balance < 0:
                    raise InsufficientStakeError(
                        f"Balance {row.token_balance} cannot cover {-delta}",
                        user_id=row.id,
                        balance=str(row.token_balance),
                        required=str(-delta),
                    )
                return {"token_balance": balance}

            await compare_and_set(tx, ProfileRow, entry.user_id, apply, max_retries=self._max_retries)
            posted.append(await tx.insert(entry))
        return posted

    async def lock_stake(
        self,
        tx: Transaction,
        user_id: str,
        amount: Decimal,
        *,
        task_id: str,
        enrollment_id: str | None = None,
    ) -> StakingTransaction | None:
        entries = await self.post(tx, [
            StakingTransaction(
                user_id=user_id,
                transaction_type=TransactionType.STAKE,
                amount=amount,
                task_id=task_id,
                enrollment_id=enrollment_id,
            ),
        ])
        return entries[0] if entries else None

    async def refund_stake(self, tx: Transaction, enrollment: Enrollment) -> StakingTransaction | None:
        """Return a cancelled enrollment's full stake to the student."""
        entries = await self.post(tx, [
            StakingTransaction(
                user_id=enrollment.student_id,
                transaction_type=TransactionType.REFUND,
                amount=enrollment.stake_locked,
                task_id=enrollment.task_id,
                enrollment_id=enrollment.id,
            ),
        ])
        return entries[0] if entries else None

    async def release_escrow(self, tx: Transaction, task: Task) -> StakingTransaction | None:
        """Return whatever is left of a task's reward escrow to its teacher."""
        remaining = await self.escrow_remaining(task, reader=tx)
        entries = await self.post(tx, [
            StakingTransaction(
                user_id=task.teacher_id,
                transaction_type=TransactionType.REFUND,
                amount=remaining,
                task_id=task.id,
            ),
        ])
        return entries[0] if entries else None

    async def settle(self, tx: Transaction, enrollment: Enrollment, task: Task, score: int) -> Settlement:
        """Write the refund, reward and penalty for a review as one batch."""
        amounts = compute_settlement(score, enrollment.stake_locked, task.reward_amount, self._passing_score)
        if amounts.reward > 0:
            escrow = await self.escrow_remaining(task, reader=tx)
            if escrow < amounts.reward:
                raise SettlementFailure(
                    f"Task escrow {escrow} cannot pay reward {amounts.reward}",
                    task_id=task.id,
                    enrollment_id=enrollment.id,
                )

        batch_id = new_id()
        entries = await self.post(tx, [
            StakingTransaction(
                user_id=enrollment.student_id,
                transaction_type=TransactionType.REFUND,
                amount=amounts.refund,
                task_id=task.id,
                enrollment_id=enrollment.id,
                batch_id=batch_id,
            ),
            StakingTransaction(
                user_id=enrollment.student_id,
                transaction_type=TransactionType.REWARD,
                amount=amounts.reward,
                task_id=task.id,
                enrollment_id=enrollment.id,
                batch_id=batch_id,
            ),
            StakingTransaction(
                user_id=task.teacher_id,
                transaction_type=TransactionType.PENALTY,
                amount=amounts.penalty,
                task_id=task.id,
                enrollment_id=enrollment.id,
                batch_id=batch_id,
            ),
        ])
        logger.info(
            "settlement_posted",
            enrollment_id=enrollment.id,
            batch_id=batch_id,
            refund=str(amounts.refund),
            reward=str(amounts.reward),
            penalty=str(amounts.penalty),
        )
        return dataclasses.replace(amounts, batch_id=batch_id, entries=tuple(entries))

    # --- Queries ---

    async def escrow_remaining(self, task: Task, *, reader: Reader | None = None) -> Decimal:
        """The teacher's locked stake for ``task`` not yet paid out or returned."""
        reader = reader or self._store
        task_entries = await reader.list(StakingTransaction, task_id=task.id)
        spent = sum(
            (
                e.amount
                for e in task_entries
                if e.transaction_type == TransactionType.REWARD
                or (
                    e.transaction_type == TransactionType.REFUND
                    and e.user_id == task.teacher_id
                    and e.enrollment_id is None
                )
            ),
            ZERO,
        )
        return quantize(task.stake_amount) - spent

    async def balance(self, user_id: str) -> Decimal:
        profile = await load_profile(self._store, user_id, require_active=False)
        return profile.token_balance

    async def entries(self, user_id: str, task_id: str | None = None) -> list[StakingTransaction]:
        filters: dict[str, str] = {"user_id": user_id}
        if task_id is not None:
            filters["task_id"] = task_id
        return await self._store.list(StakingTransaction, order_by="created_at", **filters)

    async def pair_balance(self, user_id: str, task_id: str) -> Decimal:
        """Signed sum of a user's entries on one task (negative while stake is locked)."""
        entries = await self.entries(user_id, task_id)
        return sum((e.amount * SIGN[e.transaction_type] for e in entries), ZERO)
