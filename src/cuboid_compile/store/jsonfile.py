"""JSON document helpers shared by the local file stores."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON via a temp file and rename so readers never see partial writes."""

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f"{path.name}.tmp")
    temp_path.write_text(f"{json.dumps(payload, ensure_ascii=False, indent=2)}\n", "utf-8")
    os.replace(temp_path, path)


def load_json_object(path: Path) -> dict[str, Any] | None:
    """Load a JSON object, or ``None`` when the file is missing or not an object."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload
