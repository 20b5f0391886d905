from __future__ import annotations

from pathlib import Path

import allure
import pytest

from cuboid_compile.config import (
    CompileDefaults,
    CompileQueueSettings,
    Settings,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]

_ENV_VARS = (
    "CUBOID_HOME",
    "CUBOID_DB_PATH",
    "CUBOID_COMPILE_MAX_QUEUE_ITEMS",
    "CUBOID_COMPILE_DEFAULT_MAIN_FILE",
    "CUBOID_COMPILE_FALLBACK_MANIFEST",
    "CUBOID_COMPILE_TERMINATE_GRACE_SECONDS",
    "CUBOID_COMPILE_WORKER_PATH",
    "CUBOID_COMPILE_TIMEOUT_MS",
)


@pytest.fixture()
def clean_env(monkeypatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_from_env_defaults(clean_env, tmp_path: Path) -> None:
    settings = Settings.from_env(home_dir=tmp_path)

    assert settings.queue.max_queue_items == 8
    assert settings.queue.default_main_file == "main.tex"
    assert settings.queue.terminate_grace_seconds == 2.0
    assert settings.defaults.compile_timeout_ms == 120_000
    assert settings.resolved_db_path == tmp_path / "compile" / "jobs.db"
    assert settings.projects_dir == tmp_path / "projects"
    assert settings.build_root_dir == tmp_path / "build"
    assert settings.settings_path == tmp_path / "settings.json"
    settings.validate()


def test_from_env_reads_overrides(clean_env, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CUBOID_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("CUBOID_DB_PATH", str(tmp_path / "jobs.db"))
    monkeypatch.setenv("CUBOID_COMPILE_MAX_QUEUE_ITEMS", "3")
    monkeypatch.setenv("CUBOID_COMPILE_DEFAULT_MAIN_FILE", "thesis.tex")
    monkeypatch.setenv("CUBOID_COMPILE_FALLBACK_MANIFEST", str(tmp_path / "Cargo.toml"))
    monkeypatch.setenv("CUBOID_COMPILE_TERMINATE_GRACE_SECONDS", "0.5")
    monkeypatch.setenv("CUBOID_COMPILE_WORKER_PATH", "/opt/compile_worker")
    monkeypatch.setenv("CUBOID_COMPILE_TIMEOUT_MS", "30000")

    settings = Settings.from_env()

    assert settings.home_dir == tmp_path / "home"
    assert settings.resolved_db_path == tmp_path / "jobs.db"
    assert settings.queue == CompileQueueSettings(
        max_queue_items=3,
        default_main_file="thesis.tex",
        fallback_manifest_path=tmp_path / "Cargo.toml",
        terminate_grace_seconds=0.5,
    )
    assert settings.defaults == CompileDefaults(
        compile_worker_path="/opt/compile_worker",
        compile_timeout_ms=30_000,
    )


@pytest.mark.parametrize(
    ("settings", "match"),
    [
        (
            Settings(queue=CompileQueueSettings(max_queue_items=0)),
            "CUBOID_COMPILE_MAX_QUEUE_ITEMS",
        ),
        (
            Settings(queue=CompileQueueSettings(terminate_grace_seconds=-1)),
            "CUBOID_COMPILE_TERMINATE_GRACE_SECONDS",
        ),
        (
            Settings(defaults=CompileDefaults(compile_worker_path="w", compile_timeout_ms=999)),
            "CUBOID_COMPILE_TIMEOUT_MS",
        ),
        (
            Settings(queue=CompileQueueSettings(default_main_file="../main.tex")),
            "CUBOID_COMPILE_DEFAULT_MAIN_FILE",
        ),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        settings.validate()
