from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
from sqlalchemy import text

from cuboid_compile.compile.models import (
    CompileJob,
    CompileJobEvent,
    CompileJobStatus,
    EventLevel,
    FailureKind,
    WorkerResult,
)
from cuboid_compile.compile.repository import CompileJobRepository

pytestmark = [
    allure.epic("Compile Queue"),
    allure.feature("Job Record Store"),
]

_BASE_TIME = datetime(2026, 10, 19, 9, 30, tzinfo=UTC)


def _job(job_id: str, *, project_id: str = "demo", minutes: int = 0) -> CompileJob:
    created = _BASE_TIME + timedelta(minutes=minutes)
    return CompileJob(
        id=job_id,
        project_id=project_id,
        main_file="main.tex",
        timeout_ms=120_000,
        status=CompileJobStatus.QUEUED,
        worker_path="/opt/compile_worker",
        build_dir=f"/tmp/build/{project_id}/{job_id}",
        created_at=created,
        updated_at=created,
    )


def _repository(tmp_path: Path) -> CompileJobRepository:
    repository = CompileJobRepository(tmp_path / "compile" / "jobs.db")
    repository.init_schema()
    return repository


def test_save_and_get_job_round_trip_with_worker_result(tmp_path: Path) -> None:
    repository = _repository(tmp_path)
    job = _job("job_a")
    repository.save_job(job)

    job.status = CompileJobStatus.FAILED
    job.started_at = _BASE_TIME + timedelta(seconds=1)
    job.finished_at = _BASE_TIME + timedelta(seconds=5)
    job.updated_at = job.finished_at
    job.error_message = "latexmk failed to produce a PDF."
    job.failure_kind = FailureKind.WORKER_REPORTED_FAILURE
    job.worker_result = WorkerResult(
        success=False,
        timed_out=False,
        exit_code=12,
        stdout="! Undefined control sequence.",
        log_path="/tmp/build/demo/job_a/main.log",
        error="latexmk failed to produce a PDF.",
        log_bytes=4096,
    )
    repository.save_job(job)

    loaded = repository.get_job("job_a")
    assert loaded == job
    assert loaded is not None
    assert loaded.created_at.tzinfo is not None
    repository.close()


def test_get_job_unknown_returns_none(tmp_path: Path) -> None:
    repository = _repository(tmp_path)

    assert repository.get_job("job_missing") is None
    assert repository.get_events("job_missing") == []
    repository.close()


def test_events_keep_append_order_and_data(tmp_path: Path) -> None:
    repository = _repository(tmp_path)
    repository.save_job(_job("job_a"))
    same_instant = _BASE_TIME

    repository.append_event(
        "job_a",
        CompileJobEvent(
            timestamp=same_instant,
            level=EventLevel.INFO,
            message="Compile job queued.",
            data={"mainFile": "main.tex"},
        ),
    )
    repository.append_event(
        "job_a",
        CompileJobEvent(timestamp=same_instant, level=EventLevel.INFO, message="Compile job started."),
    )
    repository.append_event(
        "job_a",
        CompileJobEvent(
            timestamp=same_instant,
            level=EventLevel.ERROR,
            message="Compile job failed.",
            data={"errorMessage": "boom", "exitCode": 1},
        ),
    )

    events = repository.get_events("job_a")
    assert [event.message for event in events] == [
        "Compile job queued.",
        "Compile job started.",
        "Compile job failed.",
    ]
    assert events[0].data == {"mainFile": "main.tex"}
    assert events[1].data == {}
    assert events[2].level is EventLevel.ERROR
    assert events[2].to_payload() == {
        "timestamp": "2026-10-19T09:30:00.000Z",
        "level": "error",
        "message": "Compile job failed.",
        "data": {"errorMessage": "boom", "exitCode": 1},
    }
    repository.close()


def test_list_jobs_filters_and_orders_newest_first(tmp_path: Path) -> None:
    repository = _repository(tmp_path)
    repository.save_job(_job("job_old", minutes=0))
    repository.save_job(_job("job_new", minutes=5))
    other = _job("job_other", project_id="other", minutes=10)
    other.status = CompileJobStatus.CANCELLED
    repository.save_job(other)

    assert [job.id for job in repository.list_jobs()] == ["job_other", "job_new", "job_old"]
    assert [job.id for job in repository.list_jobs(project_id="demo")] == ["job_new", "job_old"]
    assert [job.id for job in repository.list_jobs(status=CompileJobStatus.CANCELLED)] == [
        "job_other",
    ]
    assert [job.id for job in repository.list_jobs(limit=1)] == ["job_other"]
    repository.close()


def test_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = _repository(tmp_path)
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        tables = connection.execute(
            text(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name LIKE 'compile_%' ORDER BY name",
            ),
        ).scalars().all()
        journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()

    assert version == "20261019_0001"
    assert tables == ["compile_job_events", "compile_jobs"]
    assert str(journal_mode).lower() == "wal"
    repository.close()
