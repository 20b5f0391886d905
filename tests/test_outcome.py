from __future__ import annotations

import allure
import pytest

from cuboid_compile.compile.backend import WorkerInvocation
from cuboid_compile.compile.models import (
    CompileJobStatus,
    FailureKind,
    InvalidStatusTransitionError,
    WorkerResult,
    ensure_transition,
)
from cuboid_compile.compile.outcome import interpret_run

pytestmark = [
    allure.epic("Compile Queue"),
    allure.feature("Outcome Classification"),
]


def _invocation(*, protocol_violation: bool = False, **fields) -> WorkerInvocation:
    result = WorkerResult(
        success=fields.pop("success", False),
        timed_out=fields.pop("timed_out", False),
        exit_code=fields.pop("exit_code", 0),
        **fields,
    )
    return WorkerInvocation(result=result, protocol_violation=protocol_violation)


def test_success_has_no_error() -> None:
    outcome = interpret_run(invocation=_invocation(success=True), cancel_requested=False)

    assert outcome.status is CompileJobStatus.SUCCESS
    assert outcome.error_message is None
    assert outcome.failure_kind is None
    assert outcome.to_event_details() == {"exitCode": 0}


def test_cancel_request_wins_over_successful_run() -> None:
    outcome = interpret_run(invocation=_invocation(success=True), cancel_requested=True)

    assert outcome.status is CompileJobStatus.CANCELLED
    assert outcome.error_message == "Cancelled."
    assert outcome.failure_kind is FailureKind.CANCELLED
    assert outcome.worker_result is not None


def test_cancel_request_wins_over_setup_error() -> None:
    outcome = interpret_run(
        invocation=None,
        cancel_requested=True,
        setup_error="Compile worker not found at /x",
        setup_failure_kind=FailureKind.WORKER_NOT_FOUND,
    )

    assert outcome.status is CompileJobStatus.CANCELLED
    assert outcome.worker_result is None


def test_timeout_maps_to_cancelled_with_timeout_kind() -> None:
    outcome = interpret_run(
        invocation=_invocation(timed_out=True, exit_code=None),
        cancel_requested=False,
    )

    assert outcome.status is CompileJobStatus.CANCELLED
    assert outcome.error_message == "Compilation timed out."
    assert outcome.failure_kind is FailureKind.WORKER_TIMEOUT
    assert outcome.to_event_details() == {
        "errorMessage": "Compilation timed out.",
        "failureKind": "worker_timeout",
    }


def test_reported_failure_keeps_worker_error() -> None:
    outcome = interpret_run(
        invocation=_invocation(exit_code=12, error="latexmk failed to produce a PDF."),
        cancel_requested=False,
    )

    assert outcome.status is CompileJobStatus.FAILED
    assert outcome.error_message == "latexmk failed to produce a PDF."
    assert outcome.failure_kind is FailureKind.WORKER_REPORTED_FAILURE


def test_failure_without_error_uses_generic_message() -> None:
    outcome = interpret_run(invocation=_invocation(exit_code=1), cancel_requested=False)

    assert outcome.error_message == "Compilation failed."


def test_protocol_violation_is_classified() -> None:
    outcome = interpret_run(
        invocation=_invocation(error="Compile worker produced empty output.", protocol_violation=True),
        cancel_requested=False,
    )

    assert outcome.status is CompileJobStatus.FAILED
    assert outcome.failure_kind is FailureKind.WORKER_PROTOCOL_VIOLATION


def test_setup_error_becomes_failed() -> None:
    outcome = interpret_run(
        invocation=None,
        cancel_requested=False,
        setup_error="Compile worker failed to start: denied",
        setup_failure_kind=FailureKind.WORKER_IO_FAILURE,
    )

    assert outcome.status is CompileJobStatus.FAILED
    assert outcome.error_message == "Compile worker failed to start: denied"
    assert outcome.failure_kind is FailureKind.WORKER_IO_FAILURE


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (CompileJobStatus.QUEUED, CompileJobStatus.SUCCESS),
        (CompileJobStatus.RUNNING, CompileJobStatus.QUEUED),
        (CompileJobStatus.SUCCESS, CompileJobStatus.CANCELLED),
        (CompileJobStatus.CANCELLED, CompileJobStatus.RUNNING),
    ],
)
def test_illegal_transitions_are_rejected(
    current: CompileJobStatus,
    target: CompileJobStatus,
) -> None:
    with pytest.raises(InvalidStatusTransitionError):
        ensure_transition("job_1", current, target)


def test_legal_transitions_pass() -> None:
    ensure_transition("job_1", CompileJobStatus.QUEUED, CompileJobStatus.RUNNING)
    ensure_transition("job_1", CompileJobStatus.QUEUED, CompileJobStatus.CANCELLED)
    ensure_transition("job_1", CompileJobStatus.RUNNING, CompileJobStatus.FAILED)
    assert CompileJobStatus.FAILED.is_terminal
    assert not CompileJobStatus.RUNNING.is_terminal
