from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

DB_PATH = Path(__file__).resolve().parent.parent / "questlife.sqlite3"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class AppConfig:
    db_path: Path = DB_PATH
    log_level: str = "INFO"
    persist_attempts: int = 3
    starter_pack: str | None = "starter_bars"


def load_config(environ: dict | None = None) -> AppConfig:
    env = os.environ if environ is None else environ
    attempts = env.get("QUESTLIFE_PERSIST_ATTEMPTS", "3")
    try:
        persist_attempts = max(1, int(attempts))
    except ValueError:
        raise ValueError(f"QUESTLIFE_PERSIST_ATTEMPTS must be an integer, got {attempts!r}") from None
    starter_pack = env.get("QUESTLIFE_STARTER_PACK") or "starter_bars"
    return AppConfig(
        db_path=Path(env.get("QUESTLIFE_DB_PATH") or DB_PATH),
        log_level=(env.get("QUESTLIFE_LOG_LEVEL") or "INFO").upper(),
        persist_attempts=persist_attempts,
        starter_pack=None if starter_pack.lower() == "none" else starter_pack,
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
