from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def load_material(path: str | Path = "data/material.json") -> dict[str, Any]:
    """Read a course material JSON file into the in-memory structure."""
    with Path(path).open("r", encoding="utf-8") as file_handle:
        return json.load(file_handle)
