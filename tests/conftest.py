"""Shared test fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from cuboid_compile.compile.backend import ConfiguredBinaryStrategy
from cuboid_compile.compile.queue import CompileQueueController
from cuboid_compile.compile.repository import CompileJobRepository
from cuboid_compile.config import CompileDefaults
from cuboid_compile.store.projects import ProjectStore
from cuboid_compile.store.user_settings import UserSettingsStore

_STUB_PRELUDE = r'''
import json
import os
import pathlib
import sys
import time

request = json.loads(sys.stdin.readline())
state_dir = pathlib.Path(os.environ["STUB_WORKER_STATE"])
state_dir.mkdir(parents=True, exist_ok=True)
with (state_dir / "requests.jsonl").open("a", encoding="utf-8") as handle:
    handle.write(json.dumps(request) + "\n")


def respond(**fields):
    payload = {
        "success": False,
        "timedOut": False,
        "exitCode": 0,
        "stdout": "",
        "stderr": "",
        "pdfPath": None,
        "logPath": None,
    }
    payload.update(fields)
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()
'''

STUB_WORKER_BODIES = {
    "success": r'''
build = pathlib.Path(request["buildDir"])
build.mkdir(parents=True, exist_ok=True)
main = pathlib.Path(request["projectRoot"]) / request["mainFile"]
source = main.read_text(encoding="utf-8") if main.exists() else ""
pdf = build / (pathlib.Path(request["mainFile"]).stem + ".pdf")
pdf.write_bytes(b"%PDF-1.4 stub")
respond(
    success=True,
    stdout="Output written on " + pdf.name + "\n" + source,
    pdfPath=str(pdf),
    pdfBytes=pdf.stat().st_size,
)
''',
    "success_without_pdf": r'''
respond(success=True, pdfPath=str(state_dir / "never-written.pdf"))
''',
    "latex_error": r'''
respond(
    exitCode=12,
    stdout="l.10 \\begin{document}\n! Undefined control sequence.\nl.12 \\foo",
    stderr="Latexmk: Errors, so I did not complete making targets",
    error="latexmk failed to produce a PDF.",
)
''',
    "timeout": r'''
respond(timedOut=True, exitCode=None, stdout="partial output", error="Compilation timed out.")
''',
    "non_json": r'''
sys.stdout.write("this is not json\n")
''',
    "blocking": r'''
release = state_dir / "release"
deadline = time.time() + 30
while not release.exists() and time.time() < deadline:
    time.sleep(0.02)
respond(success=True)
''',
}


@pytest.fixture()
def stub_state_dir(tmp_path: Path, monkeypatch) -> Path:
    """Directory where stub workers record requests and look for release flags."""

    state_dir = tmp_path / "stub-state"
    state_dir.mkdir()
    monkeypatch.setenv("STUB_WORKER_STATE", str(state_dir))
    return state_dir


@pytest.fixture()
def stub_worker(tmp_path: Path, stub_state_dir: Path) -> Callable[[str], Path]:
    """Write an executable stub worker speaking the JSON protocol."""

    def _write(kind: str) -> Path:
        path = tmp_path / "workers" / f"{kind}_worker.py"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f"#!{sys.executable}\n{_STUB_PRELUDE}{STUB_WORKER_BODIES[kind]}",
            encoding="utf-8",
        )
        path.chmod(0o755)
        return path

    return _write


@pytest.fixture()
def queue_factory(tmp_path: Path) -> Iterator[Callable[..., CompileQueueController]]:
    """Build controllers over tmp_path stores; shut them down after the test."""

    created: list[tuple[CompileQueueController, CompileJobRepository]] = []

    def _build(worker_path: Path | str, **kwargs) -> CompileQueueController:
        repository = CompileJobRepository(tmp_path / "compile" / "jobs.db")
        repository.init_schema()
        controller = CompileQueueController(
            repository=repository,
            projects=ProjectStore(
                projects_dir=tmp_path / "projects",
                build_root_dir=tmp_path / "build",
            ),
            settings_provider=UserSettingsStore(
                tmp_path / "settings.json",
                CompileDefaults(compile_worker_path=str(worker_path), compile_timeout_ms=5_000),
            ),
            strategies=[ConfiguredBinaryStrategy()],
            terminate_grace_seconds=0.5,
            **kwargs,
        )
        created.append((controller, repository))
        return controller

    yield _build

    for controller, repository in created:
        controller.shutdown(timeout=10)
        repository.close()
