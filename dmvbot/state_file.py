from __future__ import annotations

import json
import os
import tempfile
from typing import Iterable


def load_available_locations(path: str) -> set[str]:
    if not os.path.exists(path):
        return set()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError:
        # Corrupted state shouldn't brick the worker; start fresh.
        return set()

    if not isinstance(raw, dict):
        return set()
    names = raw.get("available_locations", [])
    if not isinstance(names, list):
        return set()
    return {str(n) for n in names if isinstance(n, str) and n}


def save_available_locations(path: str, names: Iterable[str]) -> None:
    data = {
        "available_locations": sorted(set(names)),
    }

    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    # Atomic write
    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        json.dump(data, tf, ensure_ascii=False, indent=2)
        tmp_name = tf.name

    os.replace(tmp_name, path)
