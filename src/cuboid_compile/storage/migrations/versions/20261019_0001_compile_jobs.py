"""Create compile job and compile job event tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "compile_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("main_file", sa.String(), nullable=False),
        sa.Column("timeout_ms", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("worker_path", sa.String(), nullable=False),
        sa.Column("build_dir", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("failure_kind", sa.String(), nullable=True),
        sa.Column("worker_result_json", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_compile_jobs_project_id", "compile_jobs", ["project_id"])
    op.create_index("ix_compile_jobs_status", "compile_jobs", ["status"])
    op.create_index("ix_compile_jobs_failure_kind", "compile_jobs", ["failure_kind"])
    op.create_index(
        "idx_compile_jobs_project_created",
        "compile_jobs",
        ["project_id", "created_at"],
    )

    op.create_table(
        "compile_job_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("level", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["compile_jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_compile_job_events_job_id", "compile_job_events", ["job_id"])
    op.create_index(
        "idx_compile_job_events_job_seq",
        "compile_job_events",
        ["job_id", "id"],
    )


def downgrade() -> None:
    op.drop_index("idx_compile_job_events_job_seq", table_name="compile_job_events")
    op.drop_index("ix_compile_job_events_job_id", table_name="compile_job_events")
    op.drop_table("compile_job_events")
    op.drop_index("idx_compile_jobs_project_created", table_name="compile_jobs")
    op.drop_index("ix_compile_jobs_failure_kind", table_name="compile_jobs")
    op.drop_index("ix_compile_jobs_status", table_name="compile_jobs")
    op.drop_index("ix_compile_jobs_project_id", table_name="compile_jobs")
    op.drop_table("compile_jobs")
