from __future__ import annotations

import logging

from mesfifo.data.db import Db

logger = logging.getLogger(__name__)

LOT_TRACKING_KEY = "lot_tracking_enabled"

_TRUTHY = {"1", "true", "yes", "on", "evet"}


class SettingsRepositoryImpl:
    """Global runtime switches stored in app_config."""

    def __init__(self, db: Db, *, lot_tracking_default: bool = True) -> None:
        self.db = db
        self.lot_tracking_default = lot_tracking_default

    def get_config(self, *, key: str, default: str | None = None) -> str | None:
        key = str(key).strip()
        if not key:
            raise ValueError("config key empty")
        with self.db.connect() as con:
            row = con.execute("SELECT config_value FROM app_config WHERE config_key = ?", (key,)).fetchone()
        if row is None:
            return default
        return str(row[0])

    def set_config(self, *, key: str, value: str) -> None:
        key = str(key).strip()
        if not key:
            raise ValueError("config key empty")
        with self.db.connect() as con:
            con.execute(
                "INSERT INTO app_config(config_key, config_value, updated_at) VALUES(?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(config_key) DO UPDATE SET config_value=excluded.config_value, updated_at=CURRENT_TIMESTAMP",
                (key, str(value)),
            )
        logger.info("Updated config '%s' = %r", key, value)

    def is_lot_tracking_enabled(self) -> bool:
        raw = self.get_config(key=LOT_TRACKING_KEY)
        if raw is None:
            return self.lot_tracking_default
        return raw.strip().lower() in _TRUTHY

    def set_lot_tracking_enabled(self, enabled: bool) -> None:
        self.set_config(key=LOT_TRACKING_KEY, value="1" if enabled else "0")
