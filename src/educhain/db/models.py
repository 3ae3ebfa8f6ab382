"""ORM models for the marketplace tables.

Column names mirror the fields of the rows in ``educhain.store.records``;
``SqlStore`` relies on that to convert between the two. The tables are
created by the Alembic migration in ``alembic/versions``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from educhain.db.base import Base
from educhain.store.records import (
    Difficulty,
    EnrollmentStatus,
    ResponderRole,
    Role,
    TaskStatus,
    TransactionStatus,
    TransactionType,
)

AMOUNT = Numeric(20, 8)


def _enum(enum_cls: type) -> Enum:
    """Store enums as their lowercase values in a VARCHAR column."""
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """One row per connected wallet. Never deleted, only deactivated."""

    __tablename__ = "profiles"
    __table_args__ = (CheckConstraint("token_balance >= 0", name="ck_profiles_balance_non_negative"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role), nullable=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reputation_score: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    token_balance: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, server_default="0")
    total_tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    total_tasks_attempted: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    total_tasks_created: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Tasks & enrollments
# ---------------------------------------------------------------------------


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("current_students >= 0 AND current_students <= max_students", name="ck_tasks_capacity"),
        CheckConstraint("successful_completions <= total_attempts", name="ck_tasks_completions"),
        Index("idx_tasks_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    teacher_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    difficulty: Mapped[Difficulty] = mapped_column(_enum(Difficulty), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    stake_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    reward_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    student_stake_required: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    max_students: Mapped[int] = mapped_column(Integer, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    current_students: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    status: Mapped[TaskStatus] = mapped_column(_enum(TaskStatus), nullable=False)
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    successful_completions: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        # one open attempt per (task, student); reviewed/cancelled rows may repeat
        Index(
            "uq_enrollments_open_pair",
            "task_id",
            "student_id",
            unique=True,
            postgresql_where=text("status IN ('active', 'completed')"),
        ),
        CheckConstraint("review_score IS NULL OR review_score BETWEEN 1 AND 5", name="ck_enrollments_score"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    status: Mapped[EnrollmentStatus] = mapped_column(_enum(EnrollmentStatus), nullable=False)
    stake_locked: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    submission_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    review_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    badge_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class StakingTransaction(Base):
    """Append-only. Rows are inserted by StakeLedger and never updated."""

    __tablename__ = "staking_transactions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_staking_amount_non_negative"),
        Index("idx_staking_user_task", "user_id", "task_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    task_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=True)
    enrollment_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("enrollments.id"), nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    transaction_type: Mapped[TransactionType] = mapped_column(_enum(TransactionType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(_enum(TransactionStatus), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


class RecommendationExplanation(Base):
    __tablename__ = "recommendation_explanations"
    __table_args__ = (UniqueConstraint("user_id", "task_id", name="uq_recommendation_user_task"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False)
    explanation: Mapped[str] = mapped_column(Text, nullable=False)
    relevance_score: Mapped[int] = mapped_column(Integer, nullable=False)
    factors: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class Badge(Base):
    __tablename__ = "badges"
    __table_args__ = (UniqueConstraint("student_id", "task_id", name="uq_badges_student_task"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False)
    teacher_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    skill_verified: Mapped[str] = mapped_column(String(64), nullable=False)
    token_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    badge_title: Mapped[str] = mapped_column(String(128), nullable=False)
    badge_description: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    badge_image_url: Mapped[str] = mapped_column(String(256), nullable=False, server_default="")
    task_title: Mapped[str] = mapped_column(String(200), nullable=False, server_default="")
    minted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Questions & answers
# ---------------------------------------------------------------------------


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (Index("idx_questions_task_student", "task_id", "student_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (Index("idx_answers_task_student", "task_id", "student_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    responder_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    responder_role: Mapped[ResponderRole] = mapped_column(_enum(ResponderRole), nullable=False)
    answer_text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
