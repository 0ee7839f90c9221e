from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterator


class NDJSONError(ValueError):
    pass


def read_ndjson(path: str | Path) -> Iterator[Dict]:
    """Yield one object per non-blank line; a malformed line raises with its line number."""
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                raise NDJSONError(f"{p}:{lineno}: {e.msg}") from e
            if not isinstance(obj, dict):
                raise NDJSONError(f"{p}:{lineno}: expected a JSON object")
            yield obj
