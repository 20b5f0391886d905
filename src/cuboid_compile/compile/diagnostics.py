"""Structured diagnostics extracted from TeX compiler log text."""

from __future__ import annotations

import re

from cuboid_compile.compile.models import Diagnostic, DiagnosticSeverity

_LINE_SPLIT = re.compile(r"\r?\n")
_LINE_MARKER = re.compile(r"(?:^|\s)l\.(\d+)")
_ERROR_SIGIL = "! "
_ERROR_PREFIX = re.compile(r"^!\s*")
_WARNING = re.compile(r"warning", re.IGNORECASE)

_FALLBACK_ERROR_MESSAGE = "LaTeX compile error"
_FALLBACK_WARNING_MESSAGE = "LaTeX warning"


def extract_diagnostics(log_text: str, file_id: str) -> list[Diagnostic]:
    """Turn compiler log text into ordered error/warning diagnostics.

    TeX prints the ``l.<N>`` context after the ``! <message>`` line, so each
    finding is attributed to the most recent marker seen before it (line 1
    when there is none). Column information is not available in this log
    format and is always reported as 1.
    """

    diagnostics: list[Diagnostic] = []
    current_line = 1
    for index, line in enumerate(_LINE_SPLIT.split(log_text)):
        marker = _LINE_MARKER.search(line)
        if marker:
            current_line = int(marker.group(1))

        if line.startswith(_ERROR_SIGIL):
            diagnostics.append(
                Diagnostic(
                    id=f"diag-{index}",
                    severity=DiagnosticSeverity.ERROR,
                    file_id=file_id,
                    line=current_line,
                    column=1,
                    message=_ERROR_PREFIX.sub("", line) or _FALLBACK_ERROR_MESSAGE,
                ),
            )
        elif _WARNING.search(line):
            diagnostics.append(
                Diagnostic(
                    id=f"diag-{index}",
                    severity=DiagnosticSeverity.WARNING,
                    file_id=file_id,
                    line=current_line,
                    column=1,
                    message=line.strip() or _FALLBACK_WARNING_MESSAGE,
                ),
            )
    return diagnostics
