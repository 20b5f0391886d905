"""Durable job record store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Protocol

from sqlmodel import Session, col, select

from cuboid_compile.compile.models import (
    CompileJob,
    CompileJobEvent,
    CompileJobStatus,
    EventLevel,
    FailureKind,
    WorkerResult,
)
from cuboid_compile.storage.alembic_runner import upgrade_head
from cuboid_compile.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
)
from cuboid_compile.storage.sqlmodel_models import CompileJobEventRow, CompileJobRow


class JobRecordStore(Protocol):
    """Persistence contract the queue controller delegates to."""

    def save_job(self, job: CompileJob) -> None:
        """Insert or replace the full job record."""

    def get_job(self, job_id: str) -> CompileJob | None:
        """Return the stored record, or ``None`` for an unknown id."""

    def append_event(self, job_id: str, event: CompileJobEvent) -> None:
        """Append one event to the job's log."""

    def get_events(self, job_id: str) -> list[CompileJobEvent]:
        """Return the job's events in append order."""


class CompileJobRepository:
    """Job record persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def save_job(self, job: CompileJob) -> None:
        with Session(self.engine) as session:
            session.merge(_to_row(job))
            session.commit()

    def get_job(self, job_id: str) -> CompileJob | None:
        with Session(self.engine) as session:
            row = session.get(CompileJobRow, job_id)
            if row is None:
                return None
            return _to_job(row)

    def append_event(self, job_id: str, event: CompileJobEvent) -> None:
        with Session(self.engine) as session:
            session.add(
                CompileJobEventRow(
                    job_id=job_id,
                    level=event.level.value,
                    message=event.message,
                    data_json=json.dumps(event.data, ensure_ascii=False, sort_keys=True)
                    if event.data
                    else None,
                    created_at=to_db_datetime(event.timestamp),
                ),
            )
            session.commit()

    def get_events(self, job_id: str) -> list[CompileJobEvent]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(CompileJobEventRow)
                .where(CompileJobEventRow.job_id == job_id)
                .order_by(col(CompileJobEventRow.id).asc()),
            ).all()

        events: list[CompileJobEvent] = []
        for row in rows:
            data = {}
            if row.data_json:
                parsed = json.loads(row.data_json)
                if isinstance(parsed, dict):
                    data = parsed
            events.append(
                CompileJobEvent(
                    timestamp=to_utc_aware_datetime(row.created_at),
                    level=EventLevel(row.level),
                    message=row.message,
                    data=data,
                ),
            )
        return events

    def list_jobs(
        self,
        *,
        project_id: str | None = None,
        status: CompileJobStatus | None = None,
        limit: int = 50,
    ) -> list[CompileJob]:
        """List recent jobs, newest first, optionally filtered."""

        with Session(self.engine) as session:
            statement = select(CompileJobRow).order_by(col(CompileJobRow.created_at).desc())
            if project_id is not None:
                statement = statement.where(CompileJobRow.project_id == project_id)
            if status is not None:
                statement = statement.where(CompileJobRow.status == status.value)
            rows = session.exec(statement.limit(limit)).all()
        return [_to_job(row) for row in rows]


def _optional_db_datetime(value: datetime | None) -> datetime | None:
    return to_db_datetime(value) if value is not None else None


def _optional_aware_datetime(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_row(job: CompileJob) -> CompileJobRow:
    return CompileJobRow(
        job_id=job.id,
        project_id=job.project_id,
        main_file=job.main_file,
        timeout_ms=job.timeout_ms,
        status=job.status.value,
        worker_path=job.worker_path,
        build_dir=job.build_dir,
        created_at=to_db_datetime(job.created_at),
        updated_at=to_db_datetime(job.updated_at),
        started_at=_optional_db_datetime(job.started_at),
        finished_at=_optional_db_datetime(job.finished_at),
        error_message=job.error_message,
        failure_kind=job.failure_kind.value if job.failure_kind is not None else None,
        worker_result_json=(
            json.dumps(job.worker_result.to_wire(), ensure_ascii=False)
            if job.worker_result is not None
            else None
        ),
    )


def _to_job(row: CompileJobRow) -> CompileJob:
    worker_result = None
    if row.worker_result_json:
        parsed = json.loads(row.worker_result_json)
        if isinstance(parsed, dict):
            worker_result = WorkerResult.from_wire(parsed)
    return CompileJob(
        id=row.job_id,
        project_id=row.project_id,
        main_file=row.main_file,
        timeout_ms=row.timeout_ms,
        status=CompileJobStatus(row.status),
        worker_path=row.worker_path,
        build_dir=row.build_dir,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        started_at=_optional_aware_datetime(row.started_at),
        finished_at=_optional_aware_datetime(row.finished_at),
        error_message=row.error_message,
        failure_kind=FailureKind(row.failure_kind) if row.failure_kind is not None else None,
        worker_result=worker_result,
    )
