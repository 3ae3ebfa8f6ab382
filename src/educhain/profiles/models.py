"""Role-specific profile views.

A stored profile row carries every counter; the core works with one of three
closed variants that only expose what the role actually uses, so code that
needs teaching statistics cannot be handed a student-only profile by mistake.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Union

from educhain.store.records import ProfileRow, Role


@dataclass(frozen=True)
class TeacherProfile:
    role: ClassVar[Role] = Role.TEACHER

    id: str
    wallet_address: str
    username: str | None
    reputation_score: float
    token_balance: Decimal
    is_active: bool
    total_tasks_created: int


@dataclass(frozen=True)
class StudentProfile:
    role: ClassVar[Role] = Role.STUDENT

    id: str
    wallet_address: str
    username: str | None
    reputation_score: float
    token_balance: Decimal
    is_active: bool
    total_tasks_completed: int
    total_tasks_attempted: int


@dataclass(frozen=True)
class DualRoleProfile:
    role: ClassVar[Role] = Role.BOTH

    id: str
    wallet_address: str
    username: str | None
    reputation_score: float
    token_balance: Decimal
    is_active: bool
    total_tasks_created: int
    total_tasks_completed: int
    total_tasks_attempted: int


Profile = Union[TeacherProfile, StudentProfile, DualRoleProfile]

LearnerProfile = Union[StudentProfile, DualRoleProfile]
TeachingProfile = Union[TeacherProfile, DualRoleProfile]


def profile_from_row(row: ProfileRow) -> Profile:
    common = {
        "id": row.id,
        "wallet_address": row.wallet_address,
        "username": row.username,
        "reputation_score": row.reputation_score,
        "token_balance": row.token_balance,
        "is_active": row.is_active,
    }
    if row.role == Role.TEACHER:
        return TeacherProfile(**common, total_tasks_created=row.total_tasks_created)
    if row.role == Role.STUDENT:
        return StudentProfile(
            **common,
            total_tasks_completed=row.total_tasks_completed,
            total_tasks_attempted=row.total_tasks_attempted,
        )
    return DualRoleProfile(
        **common,
        total_tasks_created=row.total_tasks_created,
        total_tasks_completed=row.total_tasks_completed,
        total_tasks_attempted=row.total_tasks_attempted,
    )


def can_teach(profile: Profile) -> bool:
    return isinstance(profile, (TeacherProfile, DualRoleProfile))


def can_learn(profile: Profile) -> bool:
    return isinstance(profile, (StudentProfile, DualRoleProfile))
