"""Controllers for compile queue CLI commands."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from cuboid_compile.compile.models import (
    CompileJobEvent,
    CompileJobRequest,
    CompileJobStatus,
    CompileJobView,
)
from cuboid_compile.compile.queue import CompileQueueController
from cuboid_compile.compile.repository import CompileJobRepository
from cuboid_compile.config import Settings
from cuboid_compile.storage.common import to_iso
from cuboid_compile.store.projects import ProjectStore
from cuboid_compile.store.user_settings import UserSettingsStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompileSubmitCommand:
    """CLI input for submitting one job and waiting for it."""

    home_dir: Path | None
    project_id: str
    main_file: str | None
    timeout_ms: int | None
    content_file: Path | None


@dataclass(slots=True)
class CompileShowCommand:
    """CLI input for job inspection."""

    home_dir: Path | None
    job_id: str
    as_json: bool = False
    show_log: bool = False
    pdf_out: Path | None = None


@dataclass(slots=True)
class CompileEventsCommand:
    """CLI input for event log listing."""

    home_dir: Path | None
    job_id: str


@dataclass(slots=True)
class CompileListCommand:
    """CLI input for job listing."""

    home_dir: Path | None
    project_id: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class CompileSettingsCommand:
    """CLI input for reading or updating user compile settings."""

    home_dir: Path | None
    worker_path: str | None = None
    timeout_ms: int | None = None


@dataclass(slots=True)
class CompileCommandResult:
    """Rendered lines plus whether the command reached its goal."""

    lines: list[str]
    success: bool


class CompileCliController:
    """Coordinates submission, inspection and settings CLI operations."""

    def submit(self, command: CompileSubmitCommand) -> CompileCommandResult:
        settings = _settings(command.home_dir)
        content = (
            command.content_file.read_text(encoding="utf-8")
            if command.content_file is not None
            else None
        )
        with _queue(settings) as queue:
            job = queue.submit(
                CompileJobRequest(
                    project_id=command.project_id,
                    main_file=command.main_file,
                    timeout_ms=command.timeout_ms,
                    content=content,
                ),
            )
            try:
                queue.wait_until_idle()
            except KeyboardInterrupt:
                logger.info("Interrupted, cancelling compile job %s", job.id)
                queue.cancel(job.id)
                queue.wait_until_idle()
            view = queue.get_job(job.id)
            events = queue.get_events(job.id)

        if view is None:
            return CompileCommandResult(lines=[f"Compile job not found: {job.id}"], success=False)
        lines = _render_view(view)
        lines.append(f"Events: {len(events)}")
        lines.extend(_render_events(events))
        return CompileCommandResult(lines=lines, success=view.status is CompileJobStatus.SUCCESS)

    def show(self, command: CompileShowCommand) -> CompileCommandResult:
        settings = _settings(command.home_dir)
        with _queue(settings, autostart=False) as queue:
            view = queue.get_job(command.job_id)
        if view is None:
            return CompileCommandResult(
                lines=[f"Compile job not found: {command.job_id}"],
                success=False,
            )

        if command.as_json:
            lines = [json.dumps(view.to_payload(), ensure_ascii=False, indent=2)]
        else:
            lines = _render_view(view)
            if command.show_log:
                lines.append("Log:")
                lines.extend(f"  {line}" for line in view.log.splitlines())

        if command.pdf_out is not None:
            if view.pdf_base64 is None:
                lines.append("No PDF artifact available.")
            else:
                command.pdf_out.parent.mkdir(parents=True, exist_ok=True)
                command.pdf_out.write_bytes(base64.b64decode(view.pdf_base64))
                lines.append(f"PDF written: {command.pdf_out}")
        return CompileCommandResult(lines=lines, success=True)

    def events(self, command: CompileEventsCommand) -> list[str]:
        settings = _settings(command.home_dir)
        with _repository(settings) as repository:
            job = repository.get_job(command.job_id)
            events = repository.get_events(command.job_id)
        if job is None:
            return [f"Compile job not found: {command.job_id}"]
        return [f"Events: {len(events)}", *_render_events(events)]

    def list_jobs(self, command: CompileListCommand) -> list[str]:
        settings = _settings(command.home_dir)
        status_filter = (
            CompileJobStatus(command.status.strip().lower()) if command.status else None
        )
        with _repository(settings) as repository:
            jobs = repository.list_jobs(
                project_id=command.project_id,
                status=status_filter,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.id} project={job.project_id} main={job.main_file} "
                f"status={job.status.value} "
                f"failure_kind={job.failure_kind.value if job.failure_kind else '-'} "
                f"created_at={to_iso(job.created_at)}",
            )
        return lines

    def show_settings(self, command: CompileSettingsCommand) -> list[str]:
        settings = _settings(command.home_dir)
        current = _user_settings(settings).get_settings()
        return _render_settings(current.to_payload())

    def update_settings(self, command: CompileSettingsCommand) -> list[str]:
        settings = _settings(command.home_dir)
        updated = _user_settings(settings).update_settings(
            compile_worker_path=command.worker_path,
            compile_timeout_ms=command.timeout_ms,
        )
        return ["Settings updated.", *_render_settings(updated.to_payload())]


def _render_view(view: CompileJobView) -> list[str]:
    lines = [
        f"Job: {view.id}",
        f"Project: {view.project_id}",
        f"Main file: {view.main_file}",
        f"Status: {view.status.value}",
        f"Failure kind: {view.failure_kind.value if view.failure_kind else '-'}",
        f"Error: {view.error or '-'}",
        f"Created: {to_iso(view.created_at)}",
        f"Started: {to_iso(view.started_at) if view.started_at else '-'}",
        f"Finished: {to_iso(view.finished_at) if view.finished_at else '-'}",
        (
            f"PDF: {len(base64.b64decode(view.pdf_base64))} bytes"
            if view.pdf_base64 is not None
            else "PDF: -"
        ),
        f"Diagnostics: {len(view.diagnostics)}",
    ]
    for diagnostic in view.diagnostics:
        lines.append(
            f"  {diagnostic.severity.value} {diagnostic.file_id}:"
            f"{diagnostic.line}:{diagnostic.column} {diagnostic.message}",
        )
    return lines


def _render_events(events: list[CompileJobEvent]) -> list[str]:
    lines: list[str] = []
    for event in events:
        line = f"  {to_iso(event.timestamp)} [{event.level.value}] {event.message}"
        if event.data:
            line += f" {json.dumps(event.data, ensure_ascii=False, sort_keys=True)}"
        lines.append(line)
    return lines


def _render_settings(payload: dict[str, object]) -> list[str]:
    return [f"{key}: {value}" for key, value in payload.items()]


def _settings(home_dir: Path | None) -> Settings:
    settings = Settings.from_env(home_dir=home_dir)
    settings.validate()
    return settings


def _user_settings(settings: Settings) -> UserSettingsStore:
    return UserSettingsStore(settings.settings_path, settings.defaults)


@contextmanager
def _repository(settings: Settings) -> Iterator[CompileJobRepository]:
    repository = CompileJobRepository(settings.resolved_db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _queue(settings: Settings, *, autostart: bool = True) -> Iterator[CompileQueueController]:
    with _repository(settings) as repository:
        queue = CompileQueueController.with_fallback_manifest(
            fallback_manifest_path=settings.queue.fallback_manifest_path,
            repository=repository,
            projects=ProjectStore(
                projects_dir=settings.projects_dir,
                build_root_dir=settings.build_root_dir,
            ),
            settings_provider=_user_settings(settings),
            max_queue_items=settings.queue.max_queue_items,
            default_main_file=settings.queue.default_main_file,
            terminate_grace_seconds=settings.queue.terminate_grace_seconds,
            autostart=autostart,
        )
        try:
            yield queue
        finally:
            queue.shutdown()
