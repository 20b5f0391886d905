"""Domain models for compile jobs, events and client views."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from cuboid_compile.storage.common import to_iso


class CompileJobStatus(str, Enum):
    """Durable job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {CompileJobStatus.SUCCESS, CompileJobStatus.FAILED, CompileJobStatus.CANCELLED},
)

ALLOWED_TRANSITIONS: dict[CompileJobStatus, frozenset[CompileJobStatus]] = {
    CompileJobStatus.QUEUED: frozenset({CompileJobStatus.RUNNING, CompileJobStatus.CANCELLED}),
    CompileJobStatus.RUNNING: TERMINAL_STATUSES,
    CompileJobStatus.SUCCESS: frozenset(),
    CompileJobStatus.FAILED: frozenset(),
    CompileJobStatus.CANCELLED: frozenset(),
}


class InvalidStatusTransitionError(RuntimeError):
    """Raised when a job would move backwards or out of a terminal state."""

    def __init__(self, job_id: str, current: CompileJobStatus, target: CompileJobStatus) -> None:
        super().__init__(
            f"Illegal status transition for job {job_id}: {current.value} -> {target.value}",
        )
        self.job_id = job_id
        self.current = current
        self.target = target


def ensure_transition(job_id: str, current: CompileJobStatus, target: CompileJobStatus) -> None:
    """Raise if ``current -> target`` is not an edge of the job state machine."""

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(job_id, current, target)


class FailureKind(str, Enum):
    """Normalized cause recorded with every non-successful terminal status."""

    WORKER_NOT_FOUND = "worker_not_found"
    WORKER_IO_FAILURE = "worker_io_failure"
    WORKER_PROTOCOL_VIOLATION = "worker_protocol_violation"
    WORKER_REPORTED_FAILURE = "worker_reported_failure"
    WORKER_TIMEOUT = "worker_timeout"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


class EventLevel(str, Enum):
    INFO = "info"
    ERROR = "error"


class DiagnosticSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(slots=True)
class CompileJobRequest:
    """Input payload for submitting a compile job."""

    project_id: str | None
    main_file: str | None = None
    timeout_ms: int | None = None
    content: str | None = None


@dataclass(slots=True)
class WorkerResult:
    """Structured response of one worker invocation, kept verbatim on the job."""

    success: bool
    timed_out: bool
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    pdf_path: str | None = None
    log_path: str | None = None
    error: str | None = None
    pdf_bytes: int | None = None
    log_bytes: int | None = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "timedOut": self.timed_out,
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "pdfPath": self.pdf_path,
            "logPath": self.log_path,
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.pdf_bytes is not None:
            payload["pdfBytes"] = self.pdf_bytes
        if self.log_bytes is not None:
            payload["logBytes"] = self.log_bytes
        return payload

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> WorkerResult:
        """Build from a decoded worker response; raise ``ValueError`` on a wrong shape."""

        success = payload.get("success")
        timed_out = payload.get("timedOut", False)
        if not isinstance(success, bool) or not isinstance(timed_out, bool):
            raise ValueError("success and timedOut must be booleans")
        return cls(
            success=success,
            timed_out=timed_out,
            exit_code=_optional_int(payload.get("exitCode")),
            stdout=_text(payload.get("stdout")),
            stderr=_text(payload.get("stderr")),
            pdf_path=_optional_text(payload.get("pdfPath")),
            log_path=_optional_text(payload.get("logPath")),
            error=_optional_text(payload.get("error")),
            pdf_bytes=_optional_int(payload.get("pdfBytes")),
            log_bytes=_optional_int(payload.get("logBytes")),
        )


@dataclass(slots=True)
class CompileJob:
    """Mutable job record, persisted for the job's whole lifetime."""

    id: str
    project_id: str
    main_file: str
    timeout_ms: int
    status: CompileJobStatus
    worker_path: str
    build_dir: str
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None
    failure_kind: FailureKind | None = None
    worker_result: WorkerResult | None = None


@dataclass(slots=True)
class CompileJobEvent:
    """Append-only audit entry for one observed job transition."""

    timestamp: datetime
    level: EventLevel
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "timestamp": to_iso(self.timestamp),
            "level": self.level.value,
            "message": self.message,
        }
        if self.data:
            payload["data"] = self.data
        return payload


@dataclass(slots=True)
class Diagnostic:
    """One structured finding extracted from compiler log text."""

    id: str
    severity: DiagnosticSeverity
    file_id: str
    line: int
    column: int
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "fileId": self.file_id,
            "line": self.line,
            "column": self.column,
            "message": self.message,
        }


@dataclass(slots=True)
class CompileJobView:
    """Client-facing reconstruction of a persisted job."""

    id: str
    project_id: str
    main_file: str
    status: CompileJobStatus
    created_at: datetime
    updated_at: datetime
    log: str
    diagnostics: list[Diagnostic]
    started_at: datetime | None = None
    finished_at: datetime | None = None
    pdf_base64: str | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None

    def to_payload(self) -> dict[str, Any]:
        """Render the camelCase shape clients poll for, omitting absent fields."""

        payload: dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "mainFile": self.main_file,
            "status": self.status.value,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
            "log": self.log,
            "diagnostics": [diagnostic.to_payload() for diagnostic in self.diagnostics],
        }
        if self.started_at is not None:
            payload["startedAt"] = to_iso(self.started_at)
        if self.finished_at is not None:
            payload["finishedAt"] = to_iso(self.finished_at)
        if self.pdf_base64 is not None:
            payload["pdfBase64"] = self.pdf_base64
        if self.error is not None:
            payload["error"] = self.error
        return payload


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""


def _optional_text(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None
