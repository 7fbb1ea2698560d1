"""
History file helper.

This module centralizes how the history document is read and written.
History is a single JSON array of event records, rewritten in full on
every mutation.

Why this exists:
- Single place to swap persistence strategy (incremental log, sqlite, etc.).
- Keeps repository code focused on ordering and indexing.

Usage:
    from db import read_history, write_history
    rows = read_history("./history.json")
    write_history("./history.json", rows)

Note: read errors other than a missing file are raised so the caller can
decide whether to start over with an empty history.
"""

import json
from pathlib import Path
from typing import Any, Dict, List


def read_history(path: str) -> List[Dict[str, Any]]:
    """Return the raw records stored at `path`, or `[]` if it doesn't exist.

    Raises `OSError` for unreadable files and `ValueError` when the
    document is not a JSON array.
    """

    file = Path(path)
    if not file.exists():
        return []
    data = json.loads(file.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    return data


def write_history(path: str, rows: List[Dict[str, Any]]) -> None:
    """Write `rows` to `path` synchronously, replacing the previous document."""

    Path(path).write_text(json.dumps(rows), encoding="utf-8")
