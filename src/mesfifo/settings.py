from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    db_path: Path
    log_level: str = "INFO"
    lot_tracking_default: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        raw_path = os.environ.get("MESFIFO_DB_PATH")
        return cls(
            db_path=Path(raw_path) if raw_path else default_db_path(),
            log_level=os.environ.get("MESFIFO_LOG_LEVEL", "INFO"),
        )


def default_db_path() -> Path:
    # Fixed, repo-local database location (keeps paths stable across machines).
    return Path("db") / "mesfifo.db"
