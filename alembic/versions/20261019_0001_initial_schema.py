"""Initial task store schema: profiles, word references and the task queue."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "generation_profiles",
        sa.Column("profile_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("topic_preference", sa.String(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("profile_id"),
    )
    op.create_index("ix_generation_profiles_name", "generation_profiles", ["name"], unique=False)

    op.create_table(
        "daily_word_references",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("word_date", sa.String(), nullable=False),
        sa.Column("word", sa.String(), nullable=False),
        sa.Column("word_type", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("word_date", "word", name="uq_daily_word_references_date_word"),
    )
    op.create_index(
        "ix_daily_word_references_word_date",
        "daily_word_references",
        ["word_date"],
        unique=False,
    )
    op.create_index(
        "ix_daily_word_references_word_type",
        "daily_word_references",
        ["word_type"],
        unique=False,
    )

    op.create_table(
        "words",
        sa.Column("word", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("word"),
    )

    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("task_date", sa.String(), nullable=False),
        sa.Column("trigger_source", sa.String(), nullable=False),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("llm", sa.String(), nullable=True),
        sa.Column("profile_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checkpoint_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_context_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["profile_id"],
            ["generation_profiles.profile_id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_task_date", "tasks", ["task_date"], unique=False)
    op.create_index("ix_tasks_mode", "tasks", ["mode"], unique=False)
    op.create_index("ix_tasks_profile_id", "tasks", ["profile_id"], unique=False)
    op.create_index("ix_tasks_status", "tasks", ["status"], unique=False)
    op.create_index("idx_tasks_queue", "tasks", ["status", "created_at"], unique=False)
    op.create_index("idx_tasks_lease", "tasks", ["status", "locked_until"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_tasks_lease", table_name="tasks")
    op.drop_index("idx_tasks_queue", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_index("ix_tasks_profile_id", table_name="tasks")
    op.drop_index("ix_tasks_mode", table_name="tasks")
    op.drop_index("ix_tasks_task_date", table_name="tasks")
    op.drop_table("tasks")
    op.drop_table("words")
    op.drop_index("ix_daily_word_references_word_type", table_name="daily_word_references")
    op.drop_index("ix_daily_word_references_word_date", table_name="daily_word_references")
    op.drop_table("daily_word_references")
    op.drop_index("ix_generation_profiles_name", table_name="generation_profiles")
    op.drop_table("generation_profiles")
