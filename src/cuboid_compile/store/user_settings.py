"""User-editable compile settings persisted as ``settings.json``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cuboid_compile.config import (
    MAX_COMPILE_TIMEOUT_MS,
    MIN_COMPILE_TIMEOUT_MS,
    CompileDefaults,
)
from cuboid_compile.store.jsonfile import load_json_object, write_json_atomic

logger = logging.getLogger(__name__)


class SettingsValidationError(ValueError):
    """Requested settings update is out of range."""


@dataclass(slots=True)
class CompileSettings:
    """Settings the queue resolves at submission time."""

    compile_worker_path: str
    compile_timeout_ms: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "compileWorkerPath": self.compile_worker_path,
            "compileTimeoutMs": self.compile_timeout_ms,
        }


class UserSettingsStore:
    """Reads and writes the settings file, falling back per field to defaults."""

    def __init__(self, path: Path, defaults: CompileDefaults) -> None:
        self.path = path
        self.defaults = defaults

    def get_settings(self) -> CompileSettings:
        stored = load_json_object(self.path)
        if stored is None:
            settings = self._default_settings()
            write_json_atomic(self.path, settings.to_payload())
            return settings

        fallback = self._default_settings()
        worker_path = stored.get("compileWorkerPath")
        timeout_ms = stored.get("compileTimeoutMs")
        return CompileSettings(
            compile_worker_path=(
                worker_path
                if isinstance(worker_path, str) and worker_path.strip()
                else fallback.compile_worker_path
            ),
            compile_timeout_ms=(
                int(timeout_ms)
                if isinstance(timeout_ms, int | float)
                and not isinstance(timeout_ms, bool)
                and float(timeout_ms).is_integer()
                else fallback.compile_timeout_ms
            ),
        )

    def update_settings(
        self,
        *,
        compile_worker_path: str | None = None,
        compile_timeout_ms: int | None = None,
    ) -> CompileSettings:
        current = self.get_settings()
        next_worker_path = (
            compile_worker_path.strip()
            if compile_worker_path is not None and compile_worker_path.strip()
            else current.compile_worker_path
        )
        next_timeout_ms = (
            compile_timeout_ms if compile_timeout_ms is not None else current.compile_timeout_ms
        )
        if not MIN_COMPILE_TIMEOUT_MS <= next_timeout_ms <= MAX_COMPILE_TIMEOUT_MS:
            raise SettingsValidationError(
                "compileTimeoutMs must be between "
                f"{MIN_COMPILE_TIMEOUT_MS} and {MAX_COMPILE_TIMEOUT_MS}.",
            )

        updated = CompileSettings(
            compile_worker_path=next_worker_path,
            compile_timeout_ms=next_timeout_ms,
        )
        write_json_atomic(self.path, updated.to_payload())
        logger.info(
            "Compile settings updated: worker_path=%s timeout_ms=%d",
            updated.compile_worker_path,
            updated.compile_timeout_ms,
        )
        return updated

    def _default_settings(self) -> CompileSettings:
        return CompileSettings(
            compile_worker_path=self.defaults.compile_worker_path,
            compile_timeout_ms=self.defaults.compile_timeout_ms,
        )
