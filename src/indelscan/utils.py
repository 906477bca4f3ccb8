from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .errors import OutputWriteError

logger = logging.getLogger(__name__)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputWriteError(f"Cannot create output directory {p}: {e}", path=p) from e
    return p


def write_json(path: str | Path, obj: Any) -> None:
    try:
        with open(path, "wt", encoding="utf-8") as f:
            json.dump(obj, f, indent=2, sort_keys=True)
    except OSError as e:
        raise OutputWriteError(f"Cannot write {path}: {e}", path=path) from e
