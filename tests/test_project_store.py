from __future__ import annotations

import base64
import json
from pathlib import Path

import allure
import pytest

from cuboid_compile.store.paths import (
    UnsafePathError,
    is_safe_segment,
    safe_join,
    to_safe_relative_path,
)
from cuboid_compile.store.projects import ProjectNotFoundError, ProjectStore

pytestmark = [
    allure.epic("Local Stores"),
    allure.feature("Project Files"),
]


def _store(tmp_path: Path) -> ProjectStore:
    return ProjectStore(projects_dir=tmp_path / "projects", build_root_dir=tmp_path / "build")


def test_ensure_project_creates_manifest_once(tmp_path: Path) -> None:
    store = _store(tmp_path)

    created = store.ensure_project("demo")
    again = store.ensure_project("demo", name="Renamed")

    assert created.name == "Project demo"
    assert again == created
    manifest = json.loads((tmp_path / "projects" / "demo" / "manifest.json").read_text("utf-8"))
    assert manifest["id"] == "demo"
    assert manifest["createdAt"].endswith("Z")
    assert (tmp_path / "projects" / "demo" / "files").is_dir()


def test_manifest_timestamps_survive_reload(tmp_path: Path) -> None:
    store = _store(tmp_path)

    created = store.ensure_project("demo")
    assert created.created_at.microsecond % 1000 == 0
    assert store.get_project_manifest("demo") == created

    store.write_project_file("demo", "main.tex", "x")
    reloaded = store.get_project_manifest("demo")
    assert reloaded is not None
    assert reloaded.created_at == created.created_at
    assert reloaded.updated_at.microsecond % 1000 == 0


def test_write_and_read_files_in_both_encodings(tmp_path: Path) -> None:
    store = _store(tmp_path)
    created = store.ensure_project("demo", name="Thesis")

    text_path = store.write_project_file("demo", "chapters/intro.tex", "\\section{Intro}")
    store.write_project_file(
        "demo",
        "figures/logo.png",
        base64.b64encode(b"\x89PNG").decode("ascii"),
        "base64",
    )

    assert text_path == tmp_path / "projects" / "demo" / "files" / "chapters" / "intro.tex"
    assert store.read_project_file("demo", "chapters/intro.tex") == "\\section{Intro}"
    assert store.read_project_file("demo", "figures/logo.png", "base64") == base64.b64encode(
        b"\x89PNG",
    ).decode("ascii")
    manifest = store.get_project_manifest("demo")
    assert manifest is not None
    assert manifest.updated_at >= created.updated_at

    entries = store.list_project_files("demo")
    assert [(entry.path, entry.size) for entry in entries] == [
        ("chapters/intro.tex", len("\\section{Intro}")),
        ("figures/logo.png", 4),
    ]


def test_write_rejects_traversal_and_bad_base64(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.ensure_project("demo")

    with pytest.raises(UnsafePathError):
        store.write_project_file("demo", "../outside.tex", "x")
    with pytest.raises(ValueError, match="base64"):
        store.write_project_file("demo", "a.bin", "not base64!", "base64")


def test_unknown_project_raises(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.ensure_project("demo")

    with pytest.raises(ProjectNotFoundError):
        store.write_project_file("ghost", "main.tex", "x")
    with pytest.raises(FileNotFoundError):
        store.read_project_file("demo", "missing.tex")
    assert store.list_project_files("ghost") == []
    assert store.get_project_manifest("ghost") is None


def test_build_dir_is_per_project_and_job(tmp_path: Path) -> None:
    assert _store(tmp_path).build_dir("demo", "job_1") == tmp_path / "build" / "demo" / "job_1"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("main.tex", "main.tex"),
        ("./chapters//intro.tex", "chapters/intro.tex"),
        ("chapters\\intro.tex", "chapters/intro.tex"),
        ("/abs/main.tex", "abs/main.tex"),
        ("a/../b.tex", "b.tex"),
    ],
)
def test_relative_paths_are_normalized(raw: str, expected: str) -> None:
    assert to_safe_relative_path(raw) == expected


@pytest.mark.parametrize("raw", ["", ".", "../main.tex", "a/../../b", "bad\x00name"])
def test_unsafe_relative_paths_are_rejected(raw: str) -> None:
    with pytest.raises(UnsafePathError):
        to_safe_relative_path(raw)


def test_safe_join_stays_under_root(tmp_path: Path) -> None:
    assert safe_join(tmp_path, "a/b.tex") == (tmp_path / "a" / "b.tex").resolve()


@pytest.mark.parametrize(
    ("value", "expected"),
    [("demo", True), ("demo-1", True), ("", False), ("..", False), ("a/b", False), ("a\\b", False)],
)
def test_project_id_segments(value: str, expected: bool) -> None:
    assert is_safe_segment(value) is expected
