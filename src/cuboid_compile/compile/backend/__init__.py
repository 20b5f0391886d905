"""Compile worker backend implementations."""

from cuboid_compile.compile.backend.base import (
    CompileWorkerInvoker,
    InvocationPlan,
    WorkerInvocation,
    WorkerRequest,
    WorkerResolutionStrategy,
)
from cuboid_compile.compile.backend.subprocess_backend import (
    CargoManifestStrategy,
    ConfiguredBinaryStrategy,
    SubprocessWorkerInvoker,
    WorkerIOError,
    WorkerNotFoundError,
    resolve_invocation_plan,
)

__all__ = [
    "CargoManifestStrategy",
    "CompileWorkerInvoker",
    "ConfiguredBinaryStrategy",
    "InvocationPlan",
    "SubprocessWorkerInvoker",
    "WorkerIOError",
    "WorkerInvocation",
    "WorkerNotFoundError",
    "WorkerRequest",
    "WorkerResolutionStrategy",
    "resolve_invocation_plan",
]
