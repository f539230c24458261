"""Append-only audit trail of assignment status transitions."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Callable

from mesfifo.core.models import PAUSED, PauseStatistics, StatusChange
from mesfifo.data.db import Db
from mesfifo.data.repo_utils import load_json_map, parse_iso, to_iso

logger = logging.getLogger(__name__)


class StatusHistoryRepositoryImpl:
    def __init__(self, db: Db, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self.db = db
        self.clock = clock

    def record_status_change(
        self,
        assignment_id: int,
        from_status: str | None,
        to_status: str,
        changed_by: str | None,
        *,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
        con: sqlite3.Connection | None = None,
        changed_at: datetime | None = None,
    ) -> int:
        """Append one history record and return its id. Never touches earlier rows."""
        if con is None:
            with self.db.connect() as own:
                return self.record_status_change(
                    assignment_id,
                    from_status,
                    to_status,
                    changed_by,
                    reason=reason,
                    metadata=metadata,
                    con=own,
                    changed_at=changed_at,
                )

        cur = con.execute(
            """
            INSERT INTO assignment_status_history(
                assignment_id, from_status, to_status, changed_by, reason, metadata_json, changed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                assignment_id,
                from_status,
                to_status,
                changed_by,
                reason,
                json.dumps(metadata, ensure_ascii=False, default=str) if metadata else None,
                to_iso(changed_at or self.clock()),
            ),
        )
        logger.debug("Assignment %s: %s -> %s by %s", assignment_id, from_status, to_status, changed_by)
        return int(cur.lastrowid)

    def get_status_history(self, assignment_id: int) -> list[StatusChange]:
        with self.db.connect() as con:
            rows = con.execute(
                "SELECT * FROM assignment_status_history WHERE assignment_id = ? ORDER BY changed_at, id",
                (assignment_id,),
            ).fetchall()
        return [
            StatusChange(
                id=r["id"],
                assignment_id=r["assignment_id"],
                from_status=r["from_status"],
                to_status=r["to_status"],
                changed_by=r["changed_by"],
                changed_at=parse_iso(r["changed_at"]),
                reason=r["reason"],
                metadata=load_json_map(r["metadata_json"]),
            )
            for r in rows
        ]

    def calculate_total_pause_time(self, assignment_id: int, *, now: datetime | None = None) -> timedelta:
        """Sum of every paused interval; an open pause counts up to `now`."""
        total = timedelta(0)
        pause_started: datetime | None = None
        for change in self.get_status_history(assignment_id):
            if change.to_status == PAUSED:
                if pause_started is None:
                    pause_started = change.changed_at
            elif change.from_status == PAUSED and pause_started is not None:
                total += change.changed_at - pause_started
                pause_started = None

        if pause_started is not None:
            total += (now or self.clock()) - pause_started
        return total

    def get_pause_statistics(self, assignment_id: int, *, now: datetime | None = None) -> PauseStatistics:
        history = self.get_status_history(assignment_id)
        pause_count = sum(1 for c in history if c.to_status == PAUSED)
        resume_count = sum(1 for c in history if c.from_status == PAUSED)
        total = self.calculate_total_pause_time(assignment_id, now=now)
        return PauseStatistics(
            pause_count=pause_count,
            resume_count=resume_count,
            total_paused_minutes=round(total.total_seconds() / 60.0, 2),
            is_currently_paused=pause_count > resume_count,
        )
