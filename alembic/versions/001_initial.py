"""Initial marketplace schema.

Creates profiles, tasks, enrollments, staking_transactions,
recommendation_explanations, badges, questions and answers.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id VARCHAR(36) PRIMARY KEY,
            wallet_address VARCHAR(128) UNIQUE NOT NULL,
            role VARCHAR(16) NOT NULL,
            username VARCHAR(64),
            reputation_score DOUBLE PRECISION NOT NULL DEFAULT 0,
            token_balance NUMERIC(20, 8) NOT NULL DEFAULT 0,
            total_tasks_completed INTEGER NOT NULL DEFAULT 0,
            total_tasks_attempted INTEGER NOT NULL DEFAULT 0,
            total_tasks_created INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_profiles_balance_non_negative CHECK (token_balance >= 0)
        )
    """)

    # --- Tasks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id VARCHAR(36) PRIMARY KEY,
            teacher_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
            title VARCHAR(200) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            difficulty VARCHAR(16) NOT NULL,
            category VARCHAR(64) NOT NULL,
            tags JSON NOT NULL DEFAULT '[]',
            stake_amount NUMERIC(20, 8) NOT NULL,
            reward_amount NUMERIC(20, 8) NOT NULL,
            student_stake_required NUMERIC(20, 8) NOT NULL,
            max_students INTEGER NOT NULL,
            max_attempts INTEGER NOT NULL DEFAULT 1,
            current_students INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL,
            total_attempts INTEGER NOT NULL DEFAULT 0,
            successful_completions INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_tasks_capacity CHECK (current_students >= 0 AND current_students <= max_students),
            CONSTRAINT ck_tasks_completions CHECK (successful_completions <= total_attempts)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_tasks_teacher_id ON tasks(teacher_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_tasks_category ON tasks(category)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status_created ON tasks(status, created_at)")

    # --- Enrollments ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS enrollments (
            id VARCHAR(36) PRIMARY KEY,
            task_id VARCHAR(36) NOT NULL REFERENCES tasks(id),
            student_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
            status VARCHAR(16) NOT NULL,
            stake_locked NUMERIC(20, 8) NOT NULL,
            submission_text TEXT,
            completed_at TIMESTAMPTZ,
            review_score INTEGER,
            review_comment TEXT,
            reviewed_at TIMESTAMPTZ,
            badge_eligible BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_enrollments_score CHECK (review_score IS NULL OR review_score BETWEEN 1 AND 5)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_enrollments_task_id ON enrollments(task_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_enrollments_student_id ON enrollments(student_id)")
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_enrollments_open_pair
        ON enrollments(task_id, student_id)
        WHERE status IN ('active', 'completed')
    """)

    # --- Staking transactions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS staking_transactions (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
            task_id VARCHAR(36) REFERENCES tasks(id),
            enrollment_id VARCHAR(36) REFERENCES enrollments(id),
            batch_id VARCHAR(36),
            transaction_type VARCHAR(16) NOT NULL,
            amount NUMERIC(20, 8) NOT NULL,
            status VARCHAR(16) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_staking_amount_non_negative CHECK (amount >= 0)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_staking_user_task ON staking_transactions(user_id, task_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_staking_transactions_batch_id ON staking_transactions(batch_id)")

    # --- Recommendation explanations ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS recommendation_explanations (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
            task_id VARCHAR(36) NOT NULL REFERENCES tasks(id),
            explanation TEXT NOT NULL,
            relevance_score INTEGER NOT NULL,
            factors JSON NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            computed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_recommendation_user_task UNIQUE (user_id, task_id)
        )
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id VARCHAR(36) PRIMARY KEY,
            student_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
            task_id VARCHAR(36) NOT NULL REFERENCES tasks(id),
            teacher_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
            skill_verified VARCHAR(64) NOT NULL,
            token_id VARCHAR(64) UNIQUE NOT NULL,
            badge_title VARCHAR(128) NOT NULL,
            badge_description TEXT NOT NULL DEFAULT '',
            badge_image_url VARCHAR(256) NOT NULL DEFAULT '',
            task_title VARCHAR(200) NOT NULL DEFAULT '',
            minted_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_badges_student_task UNIQUE (student_id, task_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_badges_student_id ON badges(student_id)")

    # --- Questions & answers ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS questions (
            id VARCHAR(36) PRIMARY KEY,
            task_id VARCHAR(36) NOT NULL REFERENCES tasks(id),
            student_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
            question_text TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_questions_task_student ON questions(task_id, student_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS answers (
            id VARCHAR(36) PRIMARY KEY,
            question_id VARCHAR(36) NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
            responder_id VARCHAR(36) NOT NULL REFERENCES profiles(id),
            responder_role VARCHAR(16) NOT NULL,
            answer_text TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_answers_question_id ON answers(question_id)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS answers CASCADE")
    op.execute("DROP TABLE IF EXISTS questions CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS recommendation_explanations CASCADE")
    op.execute("DROP TABLE IF EXISTS staking_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS enrollments CASCADE")
    op.execute("DROP TABLE IF EXISTS tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS profiles CASCADE")
