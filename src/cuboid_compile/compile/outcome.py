"""Deterministic mapping from one worker run to a terminal job status."""

from __future__ import annotations

from dataclasses import dataclass

from cuboid_compile.compile.backend.base import WorkerInvocation
from cuboid_compile.compile.models import CompileJobStatus, FailureKind, WorkerResult

CANCELLED_MESSAGE = "Cancelled."
GENERIC_FAILURE_MESSAGE = "Compilation failed."
GENERIC_TIMEOUT_MESSAGE = "Compilation timed out."


@dataclass(slots=True)
class RunOutcome:
    """Terminal status plus the cause recorded on the job."""

    status: CompileJobStatus
    error_message: str | None
    failure_kind: FailureKind | None
    worker_result: WorkerResult | None

    def to_event_details(self) -> dict[str, object]:
        details: dict[str, object] = {}
        if self.error_message:
            details["errorMessage"] = self.error_message
        if self.failure_kind is not None:
            details["failureKind"] = self.failure_kind.value
        if self.worker_result is not None and self.worker_result.exit_code is not None:
            details["exitCode"] = self.worker_result.exit_code
        return details


def interpret_run(
    *,
    invocation: WorkerInvocation | None,
    cancel_requested: bool,
    setup_error: str | None = None,
    setup_failure_kind: FailureKind | None = None,
) -> RunOutcome:
    """Classify a finished run.

    A cancellation request wins over anything the worker reported. A worker
    timeout is folded into ``cancelled``; ``failure_kind`` keeps it apart
    from a user cancellation.
    """

    worker_result = invocation.result if invocation is not None else None
    if cancel_requested:
        return RunOutcome(
            status=CompileJobStatus.CANCELLED,
            error_message=CANCELLED_MESSAGE,
            failure_kind=FailureKind.CANCELLED,
            worker_result=worker_result,
        )

    if invocation is None:
        return RunOutcome(
            status=CompileJobStatus.FAILED,
            error_message=setup_error or GENERIC_FAILURE_MESSAGE,
            failure_kind=setup_failure_kind or FailureKind.INTERNAL_ERROR,
            worker_result=None,
        )

    result = invocation.result
    if result.success:
        return RunOutcome(
            status=CompileJobStatus.SUCCESS,
            error_message=None,
            failure_kind=None,
            worker_result=result,
        )
    if result.timed_out:
        return RunOutcome(
            status=CompileJobStatus.CANCELLED,
            error_message=result.error or GENERIC_TIMEOUT_MESSAGE,
            failure_kind=FailureKind.WORKER_TIMEOUT,
            worker_result=result,
        )
    return RunOutcome(
        status=CompileJobStatus.FAILED,
        error_message=result.error or GENERIC_FAILURE_MESSAGE,
        failure_kind=(
            FailureKind.WORKER_PROTOCOL_VIOLATION
            if invocation.protocol_violation
            else FailureKind.WORKER_REPORTED_FAILURE
        ),
        worker_result=result,
    )
