"""Typed rows exchanged with the store.

Field names match the column names in ``educhain.db.models`` one-to-one, so
a row converts to and from a table mapping without per-type glue. Rows are
immutable; changes go through ``Transaction.update`` and come back as new
instances.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"
    BOTH = "both"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class TaskStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    REVIEWED = "reviewed"
    CANCELLED = "cancelled"


OPEN_ENROLLMENT_STATES = frozenset({EnrollmentStatus.ACTIVE, EnrollmentStatus.COMPLETED})


class TransactionType(str, Enum):
    STAKE = "stake"
    REWARD = "reward"
    PENALTY = "penalty"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ResponderRole(str, Enum):
    TEACHER = "teacher"
    MENTOR = "mentor"


@dataclass(frozen=True)
class ProfileRow:
    __collection__: ClassVar[str] = "profiles"
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = (("wallet_address",),)

    wallet_address: str
    role: Role
    id: str = field(default_factory=new_id)
    username: str | None = None
    reputation_score: float = 0.0
    token_balance: Decimal = Decimal("0")
    total_tasks_completed: int = 0
    total_tasks_attempted: int = 0
    total_tasks_created: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Task:
    __collection__: ClassVar[str] = "tasks"
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = ()

    teacher_id: str
    title: str
    difficulty: Difficulty
    category: str
    stake_amount: Decimal
    reward_amount: Decimal
    student_stake_required: Decimal
    max_students: int
    id: str = field(default_factory=new_id)
    description: str = ""
    tags: tuple[str, ...] = ()
    max_attempts: int = 1
    current_students: int = 0
    status: TaskStatus = TaskStatus.ACTIVE
    total_attempts: int = 0
    successful_completions: int = 0
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Enrollment:
    __collection__: ClassVar[str] = "enrollments"
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = ()

    task_id: str
    student_id: str
    stake_locked: Decimal
    id: str = field(default_factory=new_id)
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    submission_text: str | None = None
    completed_at: datetime | None = None
    review_score: int | None = None
    review_comment: str | None = None
    reviewed_at: datetime | None = None
    badge_eligible: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StakingTransaction:
    __collection__: ClassVar[str] = "staking_transactions"
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = ()

    user_id: str
    transaction_type: TransactionType
    amount: Decimal
    id: str = field(default_factory=new_id)
    task_id: str | None = None
    enrollment_id: str | None = None
    batch_id: str | None = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class RecommendationExplanation:
    __collection__: ClassVar[str] = "recommendation_explanations"
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = (("user_id", "task_id"),)

    user_id: str
    task_id: str
    explanation: str
    relevance_score: int
    factors: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    computed_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Badge:
    __collection__: ClassVar[str] = "badges"
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = (("student_id", "task_id"), ("token_id",))

    student_id: str
    task_id: str
    teacher_id: str
    skill_verified: str
    token_id: str
    badge_title: str
    id: str = field(default_factory=new_id)
    badge_description: str = ""
    badge_image_url: str = ""
    task_title: str = ""
    minted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Question:
    __collection__: ClassVar[str] = "questions"
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = ()

    task_id: str
    student_id: str
    question_text: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Answer:
    __collection__: ClassVar[str] = "answers"
    __unique__: ClassVar[tuple[tuple[str, ...], ...]] = ()

    question_id: str
    task_id: str
    student_id: str
    responder_id: str
    responder_role: ResponderRole
    answer_text: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


ALL_RECORDS: tuple[type, ...] = (
    ProfileRow,
    Task,
    Enrollment,
    StakingTransaction,
    RecommendationExplanation,
    Badge,
    Question,
    Answer,
)

RECORDS_BY_COLLECTION: dict[str, type] = {r.__collection__: r for r in ALL_RECORDS}
