"""Path normalization that keeps project-relative paths inside their root."""

from __future__ import annotations

from pathlib import Path, PurePosixPath


class UnsafePathError(ValueError):
    """Relative path is empty, absolute after normalization, or escapes its root."""


def to_safe_relative_path(value: str) -> str:
    """Normalize to a forward-slash relative path, rejecting traversal."""

    if "\x00" in value:
        raise UnsafePathError("File path is invalid.")
    parts: list[str] = []
    for part in PurePosixPath(value.replace("\\", "/")).parts:
        if part in {"/", "", "."}:
            continue
        if part == "..":
            if not parts:
                raise UnsafePathError("Path traversal is not allowed.")
            parts.pop()
            continue
        parts.append(part)
    if not parts:
        raise UnsafePathError("File path is invalid.")
    return "/".join(parts)


def safe_join(base_dir: Path, relative_path: str) -> Path:
    """Join ``relative_path`` under ``base_dir`` and verify it stays there."""

    target = (base_dir / to_safe_relative_path(relative_path)).resolve()
    root = base_dir.resolve()
    if target != root and root not in target.parents:
        raise UnsafePathError("Path traversal is not allowed.")
    return target


def is_safe_segment(value: str) -> bool:
    """True for a single path segment usable as a directory name."""

    return bool(value) and value not in {".", ".."} and not any(
        char in value for char in ("/", "\\", "\x00")
    )
