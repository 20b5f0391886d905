"""Runtime configuration for the compile queue and its local stores."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

DEFAULT_MAIN_FILE = "main.tex"
DEFAULT_COMPILE_TIMEOUT_MS = 120_000
MIN_COMPILE_TIMEOUT_MS = 1_000
MAX_COMPILE_TIMEOUT_MS = 600_000


def default_home_dir() -> Path:
    """Root directory for projects, builds, settings and the job database."""

    return Path.home() / ".cuboid"


def default_compile_worker_path() -> str:
    """Prefer the installed reference worker, else the Rust release build."""

    installed = shutil.which("cuboid-compile-worker")
    if installed:
        return installed
    binary = "compile_worker.exe" if os.name == "nt" else "compile_worker"
    return str(Path.cwd() / "backend" / "rust" / "compile_worker" / "target" / "release" / binary)


def default_fallback_manifest() -> Path:
    return Path.cwd() / "backend" / "rust" / "compile_worker" / "Cargo.toml"


@dataclass(slots=True)
class CompileQueueSettings:
    """Queue controller tunables."""

    max_queue_items: int = 8
    default_main_file: str = DEFAULT_MAIN_FILE
    fallback_manifest_path: Path = field(default_factory=default_fallback_manifest)
    terminate_grace_seconds: float = 2.0


@dataclass(slots=True)
class CompileDefaults:
    """Values seeded into the user settings file when it is missing or invalid."""

    compile_worker_path: str = field(default_factory=default_compile_worker_path)
    compile_timeout_ms: int = DEFAULT_COMPILE_TIMEOUT_MS


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    home_dir: Path = field(default_factory=default_home_dir)
    db_path: Path | None = None
    queue: CompileQueueSettings = field(default_factory=CompileQueueSettings)
    defaults: CompileDefaults = field(default_factory=CompileDefaults)

    @property
    def resolved_db_path(self) -> Path:
        return self.db_path or self.home_dir / "compile" / "jobs.db"

    @property
    def projects_dir(self) -> Path:
        return self.home_dir / "projects"

    @property
    def build_root_dir(self) -> Path:
        return self.home_dir / "build"

    @property
    def settings_path(self) -> Path:
        return self.home_dir / "settings.json"

    @classmethod
    def from_env(cls, home_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        home = home_dir or Path(os.getenv("CUBOID_HOME", str(default_home_dir()))).expanduser()
        db_path_raw = os.getenv("CUBOID_DB_PATH", "").strip()
        manifest_raw = os.getenv("CUBOID_COMPILE_FALLBACK_MANIFEST", "").strip()
        worker_path_raw = os.getenv("CUBOID_COMPILE_WORKER_PATH", "").strip()
        return cls(
            home_dir=home,
            db_path=Path(db_path_raw).expanduser() if db_path_raw else None,
            queue=CompileQueueSettings(
                max_queue_items=int(os.getenv("CUBOID_COMPILE_MAX_QUEUE_ITEMS", "8")),
                default_main_file=os.getenv(
                    "CUBOID_COMPILE_DEFAULT_MAIN_FILE",
                    DEFAULT_MAIN_FILE,
                ).strip()
                or DEFAULT_MAIN_FILE,
                fallback_manifest_path=(
                    Path(manifest_raw).expanduser() if manifest_raw else default_fallback_manifest()
                ),
                terminate_grace_seconds=float(
                    os.getenv("CUBOID_COMPILE_TERMINATE_GRACE_SECONDS", "2.0"),
                ),
            ),
            defaults=CompileDefaults(
                compile_worker_path=worker_path_raw or default_compile_worker_path(),
                compile_timeout_ms=int(
                    os.getenv("CUBOID_COMPILE_TIMEOUT_MS", str(DEFAULT_COMPILE_TIMEOUT_MS)),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if queue or default values are out of range."""

        if self.queue.max_queue_items <= 0:
            raise ValueError("CUBOID_COMPILE_MAX_QUEUE_ITEMS must be > 0.")
        if self.queue.terminate_grace_seconds < 0:
            raise ValueError("CUBOID_COMPILE_TERMINATE_GRACE_SECONDS must be >= 0.")
        if not (
            MIN_COMPILE_TIMEOUT_MS <= self.defaults.compile_timeout_ms <= MAX_COMPILE_TIMEOUT_MS
        ):
            raise ValueError(
                "CUBOID_COMPILE_TIMEOUT_MS must be between "
                f"{MIN_COMPILE_TIMEOUT_MS} and {MAX_COMPILE_TIMEOUT_MS}.",
            )
        main_file = self.queue.default_main_file.replace("\\", "/")
        if main_file.startswith("/") or ".." in PurePosixPath(main_file).parts:
            raise ValueError("CUBOID_COMPILE_DEFAULT_MAIN_FILE must stay inside the project.")
