"""Backend interface for compile worker invocation."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from cuboid_compile.compile.models import WorkerResult


@dataclass(slots=True)
class WorkerRequest:
    """The single JSON line written to the worker's stdin."""

    project_root: str
    main_file: str
    build_dir: str
    timeout_ms: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "projectRoot": self.project_root,
            "mainFile": self.main_file,
            "buildDir": self.build_dir,
            "timeoutMs": self.timeout_ms,
        }

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> WorkerRequest:
        """Decode a request; raise ``ValueError`` when a field is missing or mistyped."""

        project_root = payload.get("projectRoot")
        main_file = payload.get("mainFile")
        build_dir = payload.get("buildDir")
        timeout_ms = payload.get("timeoutMs")
        if not all(isinstance(value, str) for value in (project_root, main_file, build_dir)):
            raise ValueError("projectRoot, mainFile and buildDir must be strings")
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int | float):
            raise ValueError("timeoutMs must be a number")
        return cls(
            project_root=project_root,
            main_file=main_file,
            build_dir=build_dir,
            timeout_ms=int(timeout_ms),
        )


@dataclass(slots=True)
class InvocationPlan:
    """Resolved command line for one worker run."""

    argv: list[str]
    source: str


@dataclass(slots=True)
class WorkerInvocation:
    """Invocation outcome; ``protocol_violation`` marks synthesized results."""

    result: WorkerResult
    protocol_violation: bool = False


class WorkerResolutionStrategy(Protocol):
    """One way of turning a configured worker path into a runnable command."""

    name: str

    def plan(self, worker_path: str) -> InvocationPlan | None:
        """Return an invocation plan, or ``None`` when not applicable."""


SpawnCallback = Callable[[subprocess.Popen[bytes]], None]


class CompileWorkerInvoker(Protocol):
    """Protocol implemented by worker runners."""

    def invoke(
        self,
        plan: InvocationPlan,
        request: WorkerRequest,
        *,
        on_spawn: SpawnCallback | None = None,
    ) -> WorkerInvocation:
        """Run one compile attempt and return its structured outcome."""
