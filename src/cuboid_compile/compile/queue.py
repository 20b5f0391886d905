"""Single-worker compile queue with a bounded FIFO of pending jobs."""

from __future__ import annotations

import base64
import functools
import logging
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from cuboid_compile.compile.backend import (
    CargoManifestStrategy,
    CompileWorkerInvoker,
    ConfiguredBinaryStrategy,
    SubprocessWorkerInvoker,
    WorkerInvocation,
    WorkerIOError,
    WorkerNotFoundError,
    WorkerRequest,
    WorkerResolutionStrategy,
    resolve_invocation_plan,
)
from cuboid_compile.compile.backend.subprocess_backend import terminate_process
from cuboid_compile.compile.diagnostics import extract_diagnostics
from cuboid_compile.compile.models import (
    CompileJob,
    CompileJobEvent,
    CompileJobRequest,
    CompileJobStatus,
    CompileJobView,
    EventLevel,
    FailureKind,
    ensure_transition,
)
from cuboid_compile.compile.outcome import CANCELLED_MESSAGE, RunOutcome, interpret_run
from cuboid_compile.compile.repository import JobRecordStore
from cuboid_compile.config import DEFAULT_MAIN_FILE
from cuboid_compile.storage.common import utc_now
from cuboid_compile.store.paths import UnsafePathError, is_safe_segment, to_safe_relative_path
from cuboid_compile.store.user_settings import CompileSettings

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_ITEMS = 8


class InvalidCompileRequestError(ValueError):
    """Submission rejected before any job was created."""


class CompileQueueFullError(RuntimeError):
    """Pending list is at capacity; the submission was not accepted."""

    def __init__(self, capacity: int) -> None:
        super().__init__(f"Compile queue is full ({capacity} pending jobs).")
        self.capacity = capacity


class CompileQueueClosedError(RuntimeError):
    """Submission after :meth:`CompileQueueController.shutdown`."""


class SettingsProvider(Protocol):
    def get_settings(self) -> CompileSettings: ...


class ProjectFileStore(Protocol):
    def ensure_project(self, project_id: str, name: str | None = None) -> object: ...

    def write_project_file(
        self,
        project_id: str,
        relative_path: str,
        content: str,
        encoding: Any = "utf8",
    ) -> object: ...

    def project_files_root(self, project_id: str) -> Path: ...

    def build_dir(self, project_id: str, job_id: str) -> Path: ...


def new_job_id() -> str:
    return f"job_{uuid4().hex}"


class CompileQueueController:
    """Owns the pending list and the active slot; the only writer of job state.

    ``submit`` returns as soon as the job is persisted and enqueued.  A pump
    thread dequeues jobs in FIFO order and runs exactly one worker process at a
    time.  Every transition (record save + event append) happens under the
    controller lock, so events for a job are appended in the order the
    controller observes them and a record never moves backwards.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: JobRecordStore,
        projects: ProjectFileStore,
        settings_provider: SettingsProvider,
        invoker: CompileWorkerInvoker | None = None,
        strategies: list[WorkerResolutionStrategy] | None = None,
        max_queue_items: int = DEFAULT_MAX_QUEUE_ITEMS,
        default_main_file: str = DEFAULT_MAIN_FILE,
        terminate_grace_seconds: float = 2.0,
        autostart: bool = True,
    ) -> None:
        self.repository = repository
        self.projects = projects
        self.settings_provider = settings_provider
        self.invoker = invoker or SubprocessWorkerInvoker(
            terminate_grace_seconds=terminate_grace_seconds,
        )
        self.strategies = strategies if strategies is not None else [ConfiguredBinaryStrategy()]
        self.max_queue_items = max_queue_items
        self.default_main_file = default_main_file
        self.terminate_grace_seconds = terminate_grace_seconds
        self.autostart = autostart

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending: deque[str] = deque()
        self._reserved_slots = 0
        self._active_job_id: str | None = None
        self._active_process: subprocess.Popen[bytes] | None = None
        self._cancel_requested: set[str] = set()
        self._pump_thread: threading.Thread | None = None
        self._closed = False

    @classmethod
    def with_fallback_manifest(
        cls,
        *,
        fallback_manifest_path: Path,
        **kwargs: Any,
    ) -> CompileQueueController:
        """Resolve the configured binary first, then a ``cargo run`` build."""

        return cls(
            strategies=[
                ConfiguredBinaryStrategy(),
                CargoManifestStrategy(fallback_manifest_path),
            ],
            **kwargs,
        )

    @property
    def pending_job_ids(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._pending)

    @property
    def active_job_id(self) -> str | None:
        with self._lock:
            return self._active_job_id

    # -- public operations ----------------------------------------------------

    def submit(self, request: CompileJobRequest) -> CompileJob:
        """Persist a queued job, enqueue it and trigger the pump without waiting."""

        project_id = (request.project_id or "").strip()
        if not project_id:
            raise InvalidCompileRequestError("projectId is required.")
        if not is_safe_segment(project_id):
            raise InvalidCompileRequestError("projectId must be a single path segment.")
        try:
            main_file = to_safe_relative_path(
                (request.main_file or "").strip() or self.default_main_file,
            )
        except UnsafePathError as error:
            raise InvalidCompileRequestError(f"mainFile is invalid: {error}") from error
        if request.timeout_ms is not None and request.timeout_ms <= 0:
            raise InvalidCompileRequestError("timeoutMs must be a positive integer.")

        settings = self.settings_provider.get_settings()
        timeout_ms = (
            request.timeout_ms if request.timeout_ms is not None else settings.compile_timeout_ms
        )
        job_id = new_job_id()

        self._reserve_slot()
        slot_released = False
        try:
            self.projects.ensure_project(project_id)
            if request.content is not None:
                self.projects.write_project_file(project_id, main_file, request.content, "utf8")
            now = utc_now()
            job = CompileJob(
                id=job_id,
                project_id=project_id,
                main_file=main_file,
                timeout_ms=timeout_ms,
                status=CompileJobStatus.QUEUED,
                worker_path=settings.compile_worker_path,
                build_dir=str(self.projects.build_dir(project_id, job_id)),
                created_at=now,
                updated_at=now,
            )
            with self._lock:
                if self._closed:
                    raise CompileQueueClosedError("Compile queue is shut down.")
                self._reserved_slots -= 1
                slot_released = True
                self.repository.save_job(job)
                self._append_event(
                    job.id,
                    EventLevel.INFO,
                    "Compile job queued.",
                    {"mainFile": main_file},
                )
                self._pending.append(job.id)
                logger.info(
                    "Compile job %s queued for project %s (pending=%d)",
                    job.id,
                    project_id,
                    len(self._pending),
                )
                self._trigger_pump_locked()
        finally:
            if not slot_released:
                with self._lock:
                    self._reserved_slots -= 1
        return job

    def cancel(self, job_id: str) -> CompileJobView | None:
        """Cancel a pending job now, or request termination of the active one.

        Returns ``None`` for an unknown job.  Terminal jobs are returned as-is.
        """

        with self._lock:
            job = self.repository.get_job(job_id)
            if job is None:
                return None

            if job_id in self._pending:
                self._pending.remove(job_id)
                ensure_transition(job.id, job.status, CompileJobStatus.CANCELLED)
                now = utc_now()
                job.status = CompileJobStatus.CANCELLED
                job.finished_at = now
                job.updated_at = now
                job.error_message = CANCELLED_MESSAGE
                job.failure_kind = FailureKind.CANCELLED
                self.repository.save_job(job)
                self._append_event(job_id, EventLevel.INFO, "Compile job cancelled (queued).")
                logger.info("Compile job %s cancelled before start", job_id)
            elif job_id == self._active_job_id and job_id not in self._cancel_requested:
                self._cancel_requested.add(job_id)
                if self._active_process is not None:
                    self._terminate_in_background(self._active_process)
                self._append_event(
                    job_id,
                    EventLevel.INFO,
                    "Cancel requested for running compile job.",
                )
                logger.info("Cancel requested for running compile job %s", job_id)

        return self.get_job(job_id)

    def get_job(self, job_id: str) -> CompileJobView | None:
        """Reconstruct the client view from the persisted record."""

        job = self.repository.get_job(job_id)
        if job is None:
            return None

        worker_result = job.worker_result
        log_parts: list[str] = []
        if worker_result is not None and worker_result.stdout:
            log_parts.append(worker_result.stdout)
        if worker_result is not None and worker_result.stderr:
            log_parts.append(worker_result.stderr)
        if job.error_message:
            log_parts.append(job.error_message)
        log = "\n".join(log_parts).strip()

        pdf_base64 = None
        if job.status is CompileJobStatus.SUCCESS and worker_result is not None:
            pdf_base64 = _read_base64(worker_result.pdf_path)

        return CompileJobView(
            id=job.id,
            project_id=job.project_id,
            main_file=job.main_file,
            status=job.status,
            created_at=job.created_at,
            updated_at=job.updated_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            log=log,
            diagnostics=extract_diagnostics(log, job.main_file),
            pdf_base64=pdf_base64,
            error=job.error_message,
            failure_kind=job.failure_kind,
        )

    def get_events(self, job_id: str) -> list[CompileJobEvent]:
        """Full event log in append order; empty for unknown jobs."""

        return self.repository.get_events(job_id)

    def run_pending(self) -> None:
        """Drain the queue in the calling thread.

        Used when the controller was built with ``autostart=False``; if a pump
        is already running this just waits for it to finish.
        """

        with self._lock:
            busy = self._pump_thread is not None
            if not busy:
                self._pump_thread = threading.current_thread()
        if busy:
            self.wait_until_idle()
            return
        self._pump()

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is pending or running; False on timeout."""

        with self._idle:
            return self._idle.wait_for(self._is_idle_locked, timeout=timeout)

    def shutdown(self, timeout: float | None = None) -> bool:
        """Refuse new submissions, cancel pending and active jobs, wait for the pump."""

        with self._lock:
            self._closed = True
            pending = list(self._pending)
            active = self._active_job_id
        for job_id in pending:
            self.cancel(job_id)
        if active is not None:
            self.cancel(active)
        return self.wait_until_idle(timeout=timeout)

    # -- pump -----------------------------------------------------------------

    def _reserve_slot(self) -> None:
        with self._lock:
            if self._closed:
                raise CompileQueueClosedError("Compile queue is shut down.")
            if len(self._pending) + self._reserved_slots >= self.max_queue_items:
                raise CompileQueueFullError(self.max_queue_items)
            self._reserved_slots += 1

    def _trigger_pump_locked(self) -> None:
        if not self.autostart or self._pump_thread is not None:
            return
        self._pump_thread = threading.Thread(
            target=self._pump,
            name="compile-queue-pump",
            daemon=True,
        )
        self._pump_thread.start()

    def _is_idle_locked(self) -> bool:
        return self._pump_thread is None and not self._pending and self._active_job_id is None

    def _pump(self) -> None:
        while True:
            with self._lock:
                try:
                    job = self._start_next_locked()
                except Exception:
                    logger.exception("Failed to start the next compile job")
                    self._active_job_id = None
                    continue
                if job is None:
                    self._pump_thread = None
                    self._idle.notify_all()
                    return
            self._run(job)

    def _start_next_locked(self) -> CompileJob | None:
        while self._pending:
            job_id = self._pending.popleft()
            job = self.repository.get_job(job_id)
            if job is None:
                logger.warning("Compile job %s vanished from the record store", job_id)
                continue
            try:
                ensure_transition(job.id, job.status, CompileJobStatus.RUNNING)
            except RuntimeError:
                logger.warning("Skipping compile job %s in status %s", job_id, job.status.value)
                continue

            now = utc_now()
            job.status = CompileJobStatus.RUNNING
            job.started_at = now
            job.updated_at = now
            self._active_job_id = job.id
            try:
                self.repository.save_job(job)
                self._append_event(
                    job.id,
                    EventLevel.INFO,
                    "Compile job started.",
                    {"workerPath": job.worker_path},
                )
            except Exception as error:  # noqa: BLE001
                logger.exception("Compile job %s could not be started", job.id)
                self._fail_start_locked(job, error)
                continue
            logger.info("Compile job %s started", job.id)
            return job
        return None

    def _fail_start_locked(self, job: CompileJob, error: Exception) -> None:
        outcome = RunOutcome(
            status=CompileJobStatus.FAILED,
            error_message=str(error) or error.__class__.__name__,
            failure_kind=FailureKind.INTERNAL_ERROR,
            worker_result=None,
        )
        try:
            self._finalize_locked(job, outcome)
        except Exception:
            logger.exception("Failed to persist terminal state for compile job %s", job.id)
        finally:
            self._active_job_id = None

    def _run(self, job: CompileJob) -> None:
        invocation: WorkerInvocation | None = None
        setup_error: str | None = None
        setup_failure_kind: FailureKind | None = None

        with self._lock:
            cancelled_before_spawn = job.id in self._cancel_requested
        if not cancelled_before_spawn:
            try:
                invocation = self._invoke(job)
            except WorkerNotFoundError as error:
                setup_error = str(error)
                setup_failure_kind = FailureKind.WORKER_NOT_FOUND
            except WorkerIOError as error:
                setup_error = str(error)
                setup_failure_kind = FailureKind.WORKER_IO_FAILURE
            except Exception as error:  # noqa: BLE001
                logger.exception("Compile job %s crashed while invoking the worker", job.id)
                setup_error = str(error) or error.__class__.__name__
                setup_failure_kind = FailureKind.INTERNAL_ERROR

        with self._lock:
            cancel_requested = job.id in self._cancel_requested
            self._cancel_requested.discard(job.id)
            self._active_process = None
            outcome = interpret_run(
                invocation=invocation,
                cancel_requested=cancel_requested,
                setup_error=setup_error,
                setup_failure_kind=setup_failure_kind,
            )
            try:
                self._finalize_locked(job, outcome)
            except Exception:
                logger.exception("Failed to persist terminal state for compile job %s", job.id)
            finally:
                self._active_job_id = None

    def _invoke(self, job: CompileJob) -> WorkerInvocation:
        plan = resolve_invocation_plan(job.worker_path, self.strategies)
        request = WorkerRequest(
            project_root=str(self.projects.project_files_root(job.project_id)),
            main_file=job.main_file,
            build_dir=job.build_dir,
            timeout_ms=job.timeout_ms,
        )
        return self.invoker.invoke(
            plan,
            request,
            on_spawn=functools.partial(self._register_process, job.id),
        )

    def _register_process(self, job_id: str, process: subprocess.Popen[bytes]) -> None:
        with self._lock:
            self._active_process = process
            if job_id in self._cancel_requested:
                self._terminate_in_background(process)

    def _terminate_in_background(self, process: subprocess.Popen[bytes]) -> None:
        threading.Thread(
            target=terminate_process,
            args=(process,),
            kwargs={"grace_seconds": self.terminate_grace_seconds},
            name="compile-worker-terminate",
            daemon=True,
        ).start()

    def _finalize_locked(self, job: CompileJob, outcome: RunOutcome) -> None:
        ensure_transition(job.id, job.status, outcome.status)
        now = utc_now()
        job.status = outcome.status
        job.finished_at = now
        job.updated_at = now
        job.error_message = outcome.error_message
        job.failure_kind = outcome.failure_kind
        if outcome.worker_result is not None:
            job.worker_result = outcome.worker_result
        self.repository.save_job(job)
        self._append_event(
            job.id,
            EventLevel.INFO if outcome.status is CompileJobStatus.SUCCESS else EventLevel.ERROR,
            f"Compile job {outcome.status.value}.",
            outcome.to_event_details(),
        )
        logger.info(
            "Compile job %s finished: status=%s failure_kind=%s",
            job.id,
            outcome.status.value,
            outcome.failure_kind.value if outcome.failure_kind is not None else "-",
        )

    def _append_event(
        self,
        job_id: str,
        level: EventLevel,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.repository.append_event(
            job_id,
            CompileJobEvent(timestamp=utc_now(), level=level, message=message, data=data or {}),
        )


def _read_base64(path_value: str | None) -> str | None:
    if not path_value:
        return None
    try:
        data = Path(path_value).read_bytes()
    except OSError:
        logger.warning("Compiled artifact missing at %s", path_value)
        return None
    return base64.b64encode(data).decode("ascii")
