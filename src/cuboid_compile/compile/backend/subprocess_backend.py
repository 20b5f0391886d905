"""Subprocess-based compile worker runner speaking the stdin/stdout JSON protocol."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path

from cuboid_compile.compile.backend.base import (
    InvocationPlan,
    SpawnCallback,
    WorkerInvocation,
    WorkerRequest,
    WorkerResolutionStrategy,
)
from cuboid_compile.compile.models import WorkerResult

logger = logging.getLogger(__name__)

EMPTY_OUTPUT_ERROR = "Compile worker produced empty output."
NON_JSON_OUTPUT_ERROR = "Compile worker returned non-JSON output."
UNEXPECTED_SHAPE_ERROR = "Compile worker returned an unexpected response shape."


class WorkerNotFoundError(RuntimeError):
    """No resolution strategy produced a runnable worker."""

    def __init__(self, worker_path: str) -> None:
        super().__init__(f"Compile worker not found at {worker_path}")
        self.worker_path = worker_path


class WorkerIOError(RuntimeError):
    """The worker process could not be spawned or communicated with."""


class ConfiguredBinaryStrategy:
    """Run the configured worker executable when it exists on disk."""

    name = "configured"

    def plan(self, worker_path: str) -> InvocationPlan | None:
        path = Path(worker_path)
        if not path.is_file():
            return None
        return InvocationPlan(argv=[str(path)], source=self.name)


class CargoManifestStrategy:
    """Build the worker from source and run it via ``cargo run``."""

    name = "cargo_manifest"

    def __init__(self, manifest_path: Path, *, cargo_command: str = "cargo") -> None:
        self.manifest_path = manifest_path
        self.cargo_command = cargo_command

    def plan(self, worker_path: str) -> InvocationPlan | None:
        if not self.manifest_path.is_file():
            return None
        return InvocationPlan(
            argv=[
                self.cargo_command,
                "run",
                "--manifest-path",
                str(self.manifest_path),
                "--release",
                "--quiet",
            ],
            source=self.name,
        )


def resolve_invocation_plan(
    worker_path: str,
    strategies: list[WorkerResolutionStrategy],
) -> InvocationPlan:
    """Try strategies in order; raise :class:`WorkerNotFoundError` if none applies."""

    for strategy in strategies:
        plan = strategy.plan(worker_path)
        if plan is not None:
            if strategy.name != ConfiguredBinaryStrategy.name:
                logger.warning(
                    "Compile worker missing at %s, falling back to %s",
                    worker_path,
                    strategy.name,
                )
            return plan
    raise WorkerNotFoundError(worker_path)


class SubprocessWorkerInvoker:
    """Spawn one worker process per run and parse its single JSON response.

    No timeout is enforced here: the worker reports its own timeouts and the
    queue controller terminates the process on cancellation.
    """

    def __init__(self, *, terminate_grace_seconds: float = 2.0) -> None:
        self.terminate_grace_seconds = terminate_grace_seconds

    def invoke(
        self,
        plan: InvocationPlan,
        request: WorkerRequest,
        *,
        on_spawn: SpawnCallback | None = None,
    ) -> WorkerInvocation:
        payload = f"{json.dumps(request.to_wire(), ensure_ascii=False)}\n".encode()
        try:
            process = subprocess.Popen(  # noqa: S603
                plan.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise WorkerIOError(f"Compile worker command not found: {plan.argv[0]}") from error
        except OSError as error:
            raise WorkerIOError(f"Compile worker failed to start: {error}") from error

        if on_spawn is not None:
            on_spawn(process)

        try:
            stdout_bytes, stderr_bytes = process.communicate(input=payload)
        except OSError as error:
            terminate_process(process, grace_seconds=self.terminate_grace_seconds)
            raise WorkerIOError(f"Compile worker communication failed: {error}") from error

        return parse_worker_output(
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            exit_code=process.returncode,
        )


def parse_worker_output(*, stdout: str, stderr: str, exit_code: int | None) -> WorkerInvocation:
    """Interpret captured worker output as exactly one JSON response object."""

    raw = stdout.strip()
    if not raw:
        return _protocol_violation(EMPTY_OUTPUT_ERROR, stdout, stderr, exit_code)

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return _protocol_violation(NON_JSON_OUTPUT_ERROR, stdout, stderr, exit_code)
    if not isinstance(parsed, dict):
        return _protocol_violation(NON_JSON_OUTPUT_ERROR, stdout, stderr, exit_code)

    try:
        return WorkerInvocation(result=WorkerResult.from_wire(parsed))
    except ValueError:
        return _protocol_violation(UNEXPECTED_SHAPE_ERROR, stdout, stderr, exit_code)


def _protocol_violation(
    message: str,
    stdout: str,
    stderr: str,
    exit_code: int | None,
) -> WorkerInvocation:
    return WorkerInvocation(
        result=WorkerResult(
            success=False,
            timed_out=False,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            error=message,
        ),
        protocol_violation=True,
    )


def terminate_process(
    process: subprocess.Popen[bytes],
    *,
    grace_seconds: float = 2.0,
) -> None:
    """SIGTERM the process, escalating to SIGKILL after ``grace_seconds``."""

    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
