from __future__ import annotations

import json
from pathlib import Path

from questlife.models import ProgressBar

BASE_DIR = Path(__file__).resolve().parent / "packs"


def _load_json(path: Path, fallback):
    if not path.exists():
        return fallback
    return json.loads(path.read_text(encoding="utf-8-sig"))


def load_starter_pack(pack_key: str = "starter_bars") -> dict:
    pack_file = BASE_DIR / f"{pack_key or 'starter_bars'}.json"
    if not pack_file.exists():
        pack_file = BASE_DIR / "starter_bars.json"
    return _load_json(pack_file, {})


def starter_progress_bars(pack_key: str = "starter_bars") -> list[ProgressBar]:
    pack = load_starter_pack(pack_key)
    return [ProgressBar.from_record(raw) for raw in pack.get("progress_bars", [])]
