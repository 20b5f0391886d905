"""Project file store: per-project manifest, source files and build directories."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from cuboid_compile.storage.common import from_iso, to_iso, utc_now
from cuboid_compile.store.jsonfile import load_json_object, write_json_atomic
from cuboid_compile.store.paths import safe_join

FileEncoding = Literal["utf8", "base64"]


class ProjectNotFoundError(LookupError):
    """Project manifest does not exist."""


@dataclass(slots=True)
class ProjectManifest:
    id: str
    name: str
    created_at: datetime
    updated_at: datetime

    def to_payload(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }


@dataclass(slots=True)
class ProjectFileEntry:
    path: str
    size: int
    modified_at: datetime


class ProjectStore:
    """Projects live under ``<projects_dir>/<id>`` with ``manifest.json`` and ``files/``."""

    def __init__(self, *, projects_dir: Path, build_root_dir: Path) -> None:
        self.projects_dir = projects_dir
        self.build_root_dir = build_root_dir

    def ensure_project(self, project_id: str, name: str | None = None) -> ProjectManifest:
        """Return the project's manifest, creating the project if it is missing."""

        existing = self.get_project_manifest(project_id)
        if existing is not None:
            return existing

        now = _manifest_now()
        manifest = ProjectManifest(
            id=project_id,
            name=name.strip() if name and name.strip() else f"Project {project_id}",
            created_at=now,
            updated_at=now,
        )
        self.project_files_root(project_id).mkdir(parents=True, exist_ok=True)
        write_json_atomic(self._manifest_path(project_id), manifest.to_payload())
        return manifest

    def get_project_manifest(self, project_id: str) -> ProjectManifest | None:
        payload = load_json_object(self._manifest_path(project_id))
        if payload is None:
            return None
        try:
            return ProjectManifest(
                id=str(payload["id"]),
                name=str(payload["name"]),
                created_at=from_iso(str(payload["createdAt"])),
                updated_at=from_iso(str(payload["updatedAt"])),
            )
        except (KeyError, ValueError):
            return None

    def write_project_file(
        self,
        project_id: str,
        relative_path: str,
        content: str,
        encoding: FileEncoding = "utf8",
    ) -> Path:
        """Overwrite one project file and bump the manifest's ``updatedAt``."""

        manifest = self._require_manifest(project_id)
        target = safe_join(self.project_files_root(project_id), relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(_encode(content, encoding))
        manifest.updated_at = _manifest_now()
        write_json_atomic(self._manifest_path(project_id), manifest.to_payload())
        return target

    def read_project_file(
        self,
        project_id: str,
        relative_path: str,
        encoding: FileEncoding = "utf8",
    ) -> str:
        self._require_manifest(project_id)
        target = safe_join(self.project_files_root(project_id), relative_path)
        try:
            data = target.read_bytes()
        except OSError as error:
            raise FileNotFoundError(f"File not found: {relative_path}") from error
        if encoding == "base64":
            return base64.b64encode(data).decode("ascii")
        return data.decode("utf-8")

    def list_project_files(self, project_id: str) -> list[ProjectFileEntry]:
        root = self.project_files_root(project_id)
        if not root.is_dir():
            return []
        entries: list[ProjectFileEntry] = []
        for path in root.rglob("*"):
            if not path.is_file():
                continue
            try:
                stats = path.stat()
            except OSError:
                continue
            entries.append(
                ProjectFileEntry(
                    path=path.relative_to(root).as_posix(),
                    size=stats.st_size,
                    modified_at=datetime.fromtimestamp(stats.st_mtime, tz=UTC),
                ),
            )
        entries.sort(key=lambda entry: entry.path)
        return entries

    def project_files_root(self, project_id: str) -> Path:
        return self.projects_dir / project_id / "files"

    def build_dir(self, project_id: str, job_id: str) -> Path:
        """Deterministic per-(project, job) directory for worker output."""

        return self.build_root_dir / project_id / job_id

    def _manifest_path(self, project_id: str) -> Path:
        return self.projects_dir / project_id / "manifest.json"

    def _require_manifest(self, project_id: str) -> ProjectManifest:
        manifest = self.get_project_manifest(project_id)
        if manifest is None:
            raise ProjectNotFoundError(f"Project not found: {project_id}")
        return manifest


def _encode(content: str, encoding: FileEncoding) -> bytes:
    if encoding == "base64":
        try:
            return base64.b64decode(content, validate=True)
        except binascii.Error as error:
            raise ValueError("Content is not valid base64.") from error
    return content.encode("utf-8")


def _manifest_now() -> datetime:
    # manifest.json keeps millisecond precision
    now = utc_now()
    return now.replace(microsecond=now.microsecond // 1000 * 1000)
