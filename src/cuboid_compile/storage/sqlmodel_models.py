"""SQLModel ORM tables for compile job storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class CompileJobRow(SQLModel, table=True):
    __tablename__ = "compile_jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_compile_jobs_project_created", "project_id", "created_at"),)

    job_id: str = Field(primary_key=True)
    project_id: str = Field(index=True)
    main_file: str
    timeout_ms: int
    status: str = Field(index=True)
    worker_path: str
    build_dir: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    failure_kind: str | None = Field(default=None, index=True)
    worker_result_json: str | None = Field(default=None, sa_column=Column(Text))


class CompileJobEventRow(SQLModel, table=True):
    __tablename__ = "compile_job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_compile_job_events_job_seq", "job_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("compile_jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    level: str
    message: str = Field(sa_column=Column(Text, nullable=False))
    data_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
