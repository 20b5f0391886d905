"""Reference compile worker: one JSON request on stdin, one JSON response on stdout."""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from typing import TextIO

from cuboid_compile.compile.backend.base import WorkerRequest
from cuboid_compile.compile.models import WorkerResult

LATEXMK_COMMAND = "latexmk"
LATEXMK_ARGS = ("-pdf", "-interaction=nonstopmode", "-halt-on-error", "-file-line-error")


def main(
    argv: list[str] | None = None,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    command: str = LATEXMK_COMMAND,
) -> int:
    """Read the request, compile, print exactly one response object."""

    del argv
    source = stdin or sys.stdin
    sink = stdout or sys.stdout
    try:
        raw = source.read()
    except (OSError, UnicodeDecodeError):
        _emit(sink, _failure("Failed to read stdin."))
        return 0

    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("request must be a JSON object")
        request = WorkerRequest.from_wire(payload)
    except ValueError as error:
        _emit(sink, _failure(f"Invalid request JSON: {error}"))
        return 0

    _emit(sink, run_compile(request, command=command))
    return 0


def run_compile(request: WorkerRequest, *, command: str = LATEXMK_COMMAND) -> WorkerResult:
    """Run latexmk for ``request`` within its own wall-clock budget."""

    build_dir = Path(request.build_dir)
    try:
        build_dir.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        return _failure(f"Failed to create build directory: {error}")

    argv = [
        command,
        *LATEXMK_ARGS,
        "-output-directory",
        str(build_dir),
        request.main_file,
    ]
    stem = _stem_for_main(request.main_file)
    pdf_path = build_dir / f"{stem}.pdf"
    log_path = build_dir / f"{stem}.log"

    try:
        completed = subprocess.run(  # noqa: S603
            argv,
            cwd=request.project_root,
            capture_output=True,
            timeout=max(0.001, request.timeout_ms / 1000.0),
            check=False,
        )
    except subprocess.TimeoutExpired as expired:
        return WorkerResult(
            success=False,
            timed_out=True,
            exit_code=None,
            stdout=_decode(expired.stdout),
            stderr=_decode(expired.stderr),
            pdf_path=None,
            log_path=str(log_path) if log_path.exists() else None,
            error="Compilation timed out.",
            log_bytes=_file_size(log_path),
        )
    except OSError as error:
        return _failure(f"Failed to launch latexmk: {error}")

    success = completed.returncode == 0 and pdf_path.exists()
    return WorkerResult(
        success=success,
        timed_out=False,
        exit_code=completed.returncode,
        stdout=_decode(completed.stdout),
        stderr=_decode(completed.stderr),
        pdf_path=str(pdf_path) if success else None,
        log_path=str(log_path) if log_path.exists() else None,
        error=None if success else "latexmk failed to produce a PDF.",
        pdf_bytes=_file_size(pdf_path) if success else None,
        log_bytes=_file_size(log_path),
    )


def _stem_for_main(main_file: str) -> str:
    stem = Path(main_file).stem
    return stem if stem.strip() else "main"


def _file_size(path: Path) -> int | None:
    try:
        return path.stat().st_size
    except OSError:
        return None


def _decode(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return value.decode("utf-8", errors="replace")


def _failure(message: str) -> WorkerResult:
    return WorkerResult(success=False, timed_out=False, exit_code=None, error=message)


def _emit(sink: TextIO, result: WorkerResult) -> None:
    sink.write(json.dumps(result.to_wire(), ensure_ascii=False))
    sink.write("\n")
    sink.flush()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
