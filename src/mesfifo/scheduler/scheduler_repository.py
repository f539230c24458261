"""Scheduler repository implementation.

Row-level reads and writes on assignments, substations and plan nodes.
Functions taking a connection are meant to run inside the caller's
transaction; SchedulerRepositoryImpl holds the advisory read-only queue
queries, which run on their own short-lived connections.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from mesfifo.core.models import (
    FIFO_MODE,
    PENDING,
    QUEUED,
    READY,
    SUBSTATION_AVAILABLE,
    SUBSTATION_IN_USE,
    SUBSTATION_RESERVED,
    Assignment,
    QueuedTask,
    Substation,
    WorkerTaskStats,
)
from mesfifo.data.db import Db
from mesfifo.data.repo_utils import coerce_float, coerce_qty_map, to_iso

logger = logging.getLogger(__name__)

# Expected start drives FIFO order; older rows only carry estimated_start_time.
_EXPECTED_START_SQL = "COALESCE(a.expected_start, a.estimated_start_time)"


def row_to_assignment(row: sqlite3.Row) -> Assignment:
    return Assignment(
        id=int(row["id"]),
        worker_id=str(row["worker_id"]),
        plan_id=str(row["plan_id"]),
        node_id=int(row["node_id"]),
        status=str(row["status"]),
        substation_id=row["substation_id"],
        operation_id=row["operation_id"],
        scheduling_mode=row["scheduling_mode"] or FIFO_MODE,
        is_urgent=bool(int(row["is_urgent"] or 0)),
        estimated_start_time=row["estimated_start_time"],
        estimated_end_time=row["estimated_end_time"],
        sequence_number=row["sequence_number"],
        pre_production_reserved_amount=coerce_qty_map(row["pre_production_reserved_amount"]),
        actual_reserved_amounts=coerce_qty_map(row["actual_reserved_amounts"]),
        material_reservation_status=row["material_reservation_status"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        actual_quantity=coerce_float(row["actual_quantity"]),
        defect_quantity=coerce_float(row["defect_quantity"]),
        input_scrap_count=coerce_qty_map(row["input_scrap_count"]),
        production_scrap_count=coerce_qty_map(row["production_scrap_count"]),
        notes=row["notes"],
        created_at=row["created_at"],
    )


def row_to_substation(row: sqlite3.Row) -> Substation:
    current = row["current_assignment_id"]
    return Substation(
        id=str(row["id"]),
        name=row["name"],
        status=str(row["status"]),
        current_assignment_id=int(current) if current is not None else None,
        assigned_worker_id=row["assigned_worker_id"],
        current_operation=row["current_operation"],
        reserved_at=row["reserved_at"],
        in_use_since=row["in_use_since"],
        current_expected_end=row["current_expected_end"],
    )


# ---------- Assignments ----------


def get_assignment(con: sqlite3.Connection, assignment_id: int) -> Assignment | None:
    row = con.execute("SELECT * FROM worker_assignments WHERE id = ?", (assignment_id,)).fetchone()
    return row_to_assignment(row) if row is not None else None


def update_assignment(con: sqlite3.Connection, assignment_id: int, **columns) -> None:
    if not columns:
        return
    assignments = ", ".join(f"{k} = ?" for k in columns)
    con.execute(
        f"UPDATE worker_assignments SET {assignments} WHERE id = ?",
        (*columns.values(), assignment_id),
    )


def find_assignment_for_substation(
    con: sqlite3.Connection,
    substation_id: str,
    status: str,
) -> Assignment | None:
    """Oldest assignment (by estimated start) in `status` targeting the substation, any plan or worker."""
    row = con.execute(
        """
        SELECT * FROM worker_assignments
        WHERE substation_id = ? AND status = ?
        ORDER BY estimated_start_time IS NULL, estimated_start_time, id
        LIMIT 1
        """,
        (substation_id, status),
    ).fetchone()
    return row_to_assignment(row) if row is not None else None


def find_next_queued_for_worker(con: sqlite3.Connection, worker_id: str, plan_id: str) -> Assignment | None:
    """Worker's next queued assignment: same plan by sequence, else any plan by estimated start."""
    row = con.execute(
        """
        SELECT * FROM worker_assignments
        WHERE worker_id = ? AND plan_id = ? AND status = ?
        ORDER BY sequence_number IS NULL, sequence_number, id
        LIMIT 1
        """,
        (worker_id, plan_id, QUEUED),
    ).fetchone()
    if row is not None:
        return row_to_assignment(row)

    row = con.execute(
        """
        SELECT * FROM worker_assignments
        WHERE worker_id = ? AND status = ?
        ORDER BY estimated_start_time IS NULL, estimated_start_time, id
        LIMIT 1
        """,
        (worker_id, QUEUED),
    ).fetchone()
    if row is None:
        return None
    nxt = row_to_assignment(row)
    logger.info("No queued tasks in plan %s, promoting from plan %s", plan_id, nxt.plan_id)
    return nxt


# ---------- Substations ----------


def get_substation(con: sqlite3.Connection, substation_id: str) -> Substation | None:
    row = con.execute("SELECT * FROM substations WHERE id = ?", (substation_id,)).fetchone()
    return row_to_substation(row) if row is not None else None


def reserve_substation(con: sqlite3.Connection, substation_id: str, assignment: Assignment, now: datetime) -> None:
    con.execute(
        """
        UPDATE substations
        SET status = ?, current_assignment_id = ?, assigned_worker_id = ?, current_operation = ?,
            reserved_at = ?, current_expected_end = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            SUBSTATION_RESERVED,
            assignment.id,
            assignment.worker_id,
            assignment.operation_id,
            to_iso(now),
            assignment.estimated_end_time,
            to_iso(now),
            substation_id,
        ),
    )


def occupy_substation(con: sqlite3.Connection, substation_id: str, assignment: Assignment, now: datetime) -> None:
    con.execute(
        """
        UPDATE substations
        SET status = ?, current_assignment_id = ?, assigned_worker_id = ?, current_operation = ?,
            in_use_since = ?, current_expected_end = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            SUBSTATION_IN_USE,
            assignment.id,
            assignment.worker_id,
            assignment.operation_id,
            to_iso(now),
            assignment.estimated_end_time,
            to_iso(now),
            substation_id,
        ),
    )


def release_substation(con: sqlite3.Connection, substation_id: str, now: datetime) -> None:
    con.execute(
        """
        UPDATE substations
        SET status = ?, current_assignment_id = NULL, assigned_worker_id = NULL, current_operation = NULL,
            reserved_at = NULL, in_use_since = NULL, current_expected_end = NULL, updated_at = ?
        WHERE id = ?
        """,
        (SUBSTATION_AVAILABLE, to_iso(now), substation_id),
    )


# ---------- Plan graph ----------


def get_node(con: sqlite3.Connection, node_pk: int) -> sqlite3.Row | None:
    return con.execute("SELECT * FROM plan_nodes WHERE id = ?", (node_pk,)).fetchone()


def get_plan(con: sqlite3.Connection, plan_id: str) -> sqlite3.Row | None:
    return con.execute("SELECT * FROM production_plans WHERE id = ?", (plan_id,)).fetchone()


def get_predecessor_nodes(con: sqlite3.Connection, node_id: str, plan_id: str) -> list[sqlite3.Row]:
    return con.execute(
        """
        SELECT n.* FROM node_predecessors np
        JOIN plan_nodes n ON n.node_id = np.predecessor_node_id
        WHERE np.node_id = ? AND n.plan_id = ?
        ORDER BY n.id
        """,
        (node_id, plan_id),
    ).fetchall()


def get_predecessor_count(con: sqlite3.Connection, node_id: str) -> int:
    row = con.execute("SELECT COUNT(*) FROM node_predecessors WHERE node_id = ?", (node_id,)).fetchone()
    return int(row[0])


def get_material_inputs(con: sqlite3.Connection, node_id: str) -> list[sqlite3.Row]:
    return con.execute(
        "SELECT material_code, required_quantity, unit_ratio FROM node_material_inputs WHERE node_id = ? ORDER BY material_code",
        (node_id,),
    ).fetchall()


class SchedulerRepositoryImpl:
    """Advisory worker queue reads (no locking; may be slightly stale)."""

    def __init__(self, db: Db) -> None:
        self.db = db

    def get_worker_task_queue(self, worker_id: str, limit: int = 10) -> list[QueuedTask]:
        with self.db.connect() as con:
            rows = con.execute(
                f"""
                SELECT a.id AS assignment_id, a.worker_id, a.plan_id, a.node_id, a.status,
                       a.estimated_start_time, a.nominal_time, a.effective_time, a.is_urgent,
                       a.scheduling_mode, p.work_order_code, n.name AS node_name,
                       COALESCE(n.operation_id, a.operation_id) AS operation_id, o.name AS operation_name
                FROM worker_assignments a
                LEFT JOIN production_plans p ON p.id = a.plan_id
                LEFT JOIN plan_nodes n ON n.id = a.node_id
                LEFT JOIN operations o ON o.id = COALESCE(n.operation_id, a.operation_id)
                WHERE a.worker_id = ? AND a.status IN (?, ?) AND a.scheduling_mode = ?
                ORDER BY a.is_urgent DESC,
                         {_EXPECTED_START_SQL} IS NULL, {_EXPECTED_START_SQL} ASC,
                         a.created_at ASC, a.id ASC
                LIMIT ?
                """,
                (worker_id, PENDING, READY, FIFO_MODE, int(limit)),
            ).fetchall()

        return [
            QueuedTask(
                assignment_id=int(r["assignment_id"]),
                worker_id=str(r["worker_id"]),
                plan_id=str(r["plan_id"]),
                node_id=int(r["node_id"]),
                status=str(r["status"]),
                is_urgent=bool(int(r["is_urgent"] or 0)),
                fifo_position=i + 1,
                estimated_start_time=r["estimated_start_time"],
                node_name=r["node_name"],
                operation_id=r["operation_id"],
                operation_name=r["operation_name"],
                work_order_code=r["work_order_code"],
                nominal_time=r["nominal_time"],
                effective_time=r["effective_time"],
                scheduling_mode=r["scheduling_mode"],
            )
            for i, r in enumerate(rows)
        ]

    def get_worker_task_stats(self, worker_id: str) -> WorkerTaskStats:
        with self.db.connect() as con:
            r = con.execute(
                f"""
                SELECT COUNT(*) AS total_tasks,
                       SUM(CASE WHEN a.status = ? THEN 1 ELSE 0 END) AS total_pending,
                       SUM(CASE WHEN a.status = ? THEN 1 ELSE 0 END) AS total_ready,
                       SUM(CASE WHEN a.is_urgent = 1 THEN 1 ELSE 0 END) AS urgent_count,
                       MIN({_EXPECTED_START_SQL}) AS next_task_due,
                       SUM(COALESCE(a.effective_time, 0)) AS estimated_workload
                FROM worker_assignments a
                WHERE a.worker_id = ? AND a.status IN (?, ?) AND a.scheduling_mode = ?
                """,
                (PENDING, READY, worker_id, PENDING, READY, FIFO_MODE),
            ).fetchone()
        return WorkerTaskStats(
            total_tasks=int(r["total_tasks"] or 0),
            total_pending=int(r["total_pending"] or 0),
            total_ready=int(r["total_ready"] or 0),
            urgent_count=int(r["urgent_count"] or 0),
            next_task_due=r["next_task_due"],
            estimated_workload=int(r["estimated_workload"] or 0),
        )

    def has_tasks_in_queue(self, worker_id: str) -> bool:
        with self.db.connect() as con:
            row = con.execute(
                "SELECT COUNT(*) FROM worker_assignments WHERE worker_id = ? AND status IN (?, ?) AND scheduling_mode = ?",
                (worker_id, PENDING, READY, FIFO_MODE),
            ).fetchone()
        return int(row[0]) > 0

    def get_assignment(self, assignment_id: int) -> Assignment | None:
        with self.db.connect() as con:
            return get_assignment(con, assignment_id)

    def get_substation(self, substation_id: str) -> Substation | None:
        with self.db.connect() as con:
            return get_substation(con, substation_id)
