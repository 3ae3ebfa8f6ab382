"""Scope answers to their (task, student) thread.

Adds task_id and student_id to answers, backfilled from the parent question,
so thread listings and change subscriptions filter answers directly.

Revision ID: 002_answer_thread_scope
Revises: 001_initial
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_answer_thread_scope"
down_revision: str | None = "001_initial"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("ALTER TABLE answers ADD COLUMN IF NOT EXISTS task_id VARCHAR(36) REFERENCES tasks(id)")
    op.execute("ALTER TABLE answers ADD COLUMN IF NOT EXISTS student_id VARCHAR(36) REFERENCES profiles(id)")
    op.execute("""
        UPDATE answers a
        SET task_id = q.task_id, student_id = q.student_id
        FROM questions q
        WHERE a.question_id = q.id AND a.task_id IS NULL
    """)
    op.execute("ALTER TABLE answers ALTER COLUMN task_id SET NOT NULL")
    op.execute("ALTER TABLE answers ALTER COLUMN student_id SET NOT NULL")
    op.execute("CREATE INDEX IF NOT EXISTS idx_answers_task_student ON answers(task_id, student_id)")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_answers_task_student")
    op.execute("ALTER TABLE answers DROP COLUMN IF EXISTS student_id")
    op.execute("ALTER TABLE answers DROP COLUMN IF EXISTS task_id")
