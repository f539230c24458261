"""FIFO task scheduler for the worker portal.

Workers pull tasks oldest-expected-start first (urgent tasks jump the
queue). Starting a task checks predecessors, reserves material FIFO by lot
and claims the task's substation; completing it reconciles reserved against
consumed material, books output and scrap, frees the substation and hands
it to the next waiting assignment. Both run in a single transaction and
report business failures as TaskResult instead of raising.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Mapping

from mesfifo.core.consumption import ZERO, distribute_consumption, to_decimal, to_float, total_consumption
from mesfifo.core.errors import (
    InvalidState,
    OwnershipMismatch,
    PredecessorBlocked,
    SchedulerError,
    SubstationUnavailable,
    TransactionFailure,
)
from mesfifo.core.models import (
    ACTIVE_STATUSES,
    COMPLETED,
    IN_PROGRESS,
    LOT_CONSUMED,
    LOT_RESERVED,
    PAUSED,
    PENDING,
    QUEUED,
    RESERVATION_CONSUMED,
    RESERVATION_NOT_REQUIRED,
    RESERVATION_PARTIAL,
    RESERVATION_RESERVED,
    STARTABLE_STATUSES,
    SUBSTATION_AVAILABLE,
    Assignment,
    CompletionData,
    LotAdjustment,
    MaterialRequirement,
    PendingPredecessor,
    PredecessorCheck,
    QueuedTask,
    ReservationResult,
    StockAdjustment,
    TaskResult,
    WorkerTaskStats,
)
from mesfifo.data.db import Db
from mesfifo.data.repo_utils import dump_json_map, parse_int_strict, qty, to_iso
from mesfifo.data.settings_repository import SettingsRepositoryImpl
from mesfifo.history.status_history import StatusHistoryRepositoryImpl
from mesfifo.materials.lot_consumption import LotConsumptionRepositoryImpl, record_stock_movement
from mesfifo.materials.lot_generator import generate_lot_number
from mesfifo.scheduler import scheduler_repository as repo
from mesfifo.scheduler.scheduler_repository import SchedulerRepositoryImpl

logger = logging.getLogger(__name__)

SCRAP_SUFFIX = "-H"
SYSTEM_ACTOR = "system"


class FifoScheduler:
    def __init__(
        self,
        db: Db,
        *,
        lot_tracking_enabled: Callable[[], bool] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.db = db
        self.clock = clock
        self.queue = SchedulerRepositoryImpl(db)
        self.lots = LotConsumptionRepositoryImpl(db)
        self.history = StatusHistoryRepositoryImpl(db, clock=clock)
        if lot_tracking_enabled is None:
            lot_tracking_enabled = SettingsRepositoryImpl(db).is_lot_tracking_enabled
        self.lot_tracking_enabled = lot_tracking_enabled

    # ---------- Queue (read-only, advisory) ----------

    def get_worker_next_task(self, worker_id: str) -> QueuedTask | None:
        tasks = self.queue.get_worker_task_queue(worker_id, limit=1)
        return tasks[0] if tasks else None

    def get_worker_task_queue(self, worker_id: str, limit: int = 10) -> list[QueuedTask]:
        return self.queue.get_worker_task_queue(worker_id, limit)

    def get_worker_task_stats(self, worker_id: str) -> WorkerTaskStats:
        return self.queue.get_worker_task_stats(worker_id)

    def has_tasks_in_queue(self, worker_id: str) -> bool:
        return self.queue.has_tasks_in_queue(worker_id)

    # ---------- Predecessor gate ----------

    def check_predecessors_completed(self, assignment_id: int, con: sqlite3.Connection | None = None) -> PredecessorCheck:
        """Read-only. Lookup errors come back in `error` with all_completed=False."""
        if con is None:
            with self.db.connect() as own:
                return self.check_predecessors_completed(assignment_id, own)

        try:
            assignment = repo.get_assignment(con, parse_int_strict(assignment_id, field="assignment_id"))
            if assignment is None:
                return PredecessorCheck(all_completed=False, error="Assignment not found")

            node = repo.get_node(con, assignment.node_id)
            if node is None:
                return PredecessorCheck(all_completed=True)

            if repo.get_predecessor_count(con, node["node_id"]) == 0:
                logger.debug("Node %s has no predecessors", node["node_id"])
                return PredecessorCheck(all_completed=True)

            pending: list[PendingPredecessor] = []
            for pred in repo.get_predecessor_nodes(con, node["node_id"], assignment.plan_id):
                row = con.execute(
                    "SELECT id, status FROM worker_assignments WHERE node_id = ? AND plan_id = ? ORDER BY id LIMIT 1",
                    (pred["id"], assignment.plan_id),
                ).fetchone()
                if row is None or row["status"] != COMPLETED:
                    pending.append(
                        PendingPredecessor(
                            node_id=pred["node_id"],
                            node_name=pred["name"],
                            status=row["status"] if row is not None else "not_assigned",
                            assignment_id=int(row["id"]) if row is not None else None,
                        )
                    )
        except (sqlite3.Error, ValueError) as exc:
            logger.exception("Error checking predecessors for assignment %s", assignment_id)
            return PredecessorCheck(all_completed=False, error=str(exc))

        if pending:
            logger.info(
                "Node %s waiting for predecessors: %s",
                node["node_id"],
                ", ".join(f"{p.node_name}({p.status})" for p in pending),
            )
        return PredecessorCheck(all_completed=not pending, pending_predecessors=pending)

    # ---------- Substation hand-over ----------

    def promote_next_for_substation(
        self,
        con: sqlite3.Connection,
        substation_id: str,
        *,
        include_queued: bool,
    ) -> Assignment | None:
        """Reserve a free substation for the next assignment waiting on it.

        Never takes the substation from an in_progress or paused holder. With
        include_queued, the oldest queued assignment is promoted to pending
        first; otherwise (or if none) the oldest pending one gets it.
        """
        substation = repo.get_substation(con, substation_id)
        if substation is None:
            return None

        if substation.current_assignment_id is not None:
            owner = repo.get_assignment(con, substation.current_assignment_id)
            if owner is not None and owner.status in ACTIVE_STATUSES:
                logger.info(
                    "Substation %s still owned by %s task %s, skipping reservation",
                    substation_id,
                    owner.status,
                    owner.id,
                )
                return None

        if substation.status != SUBSTATION_AVAILABLE:
            return None

        now = self.clock()
        candidate = None
        if include_queued:
            candidate = repo.find_assignment_for_substation(con, substation_id, QUEUED)
            if candidate is not None:
                self._promote_to_pending(con, candidate, reason=f"substation {substation_id} freed")
        if candidate is None:
            candidate = repo.find_assignment_for_substation(con, substation_id, PENDING)
        if candidate is None:
            return None

        repo.reserve_substation(con, substation_id, candidate, now)
        logger.info(
            "Substation %s reserved for assignment %s (worker %s, expected end %s)",
            substation_id,
            candidate.id,
            candidate.worker_id,
            candidate.estimated_end_time or "N/A",
        )
        return candidate

    def apply_deferred_reservation(self, substation_id: str) -> bool:
        """Reserve the substation for its oldest pending assignment if it is free."""
        try:
            with self.db.transaction() as con:
                return self.promote_next_for_substation(con, substation_id, include_queued=False) is not None
        except Exception:
            logger.exception("Error applying deferred reservation for substation %s", substation_id)
            return False

    def _promote_to_pending(self, con: sqlite3.Connection, assignment: Assignment, *, reason: str) -> None:
        repo.update_assignment(con, assignment.id, status=PENDING)
        self.history.record_status_change(assignment.id, QUEUED, PENDING, SYSTEM_ACTOR, reason=reason, con=con)

    def _promote_worker_next_queued(self, con: sqlite3.Connection, completed: Assignment) -> Assignment | None:
        nxt = repo.find_next_queued_for_worker(con, completed.worker_id, completed.plan_id)
        if nxt is None:
            return None

        # Without a target substation nothing can be reserved for it, so it waits.
        substation = repo.get_substation(con, nxt.substation_id) if nxt.substation_id is not None else None
        if substation is None or not substation.can_be_claimed_by(nxt.id):
            logger.info(
                "Next queued task %s stays queued - substation %s not available (%s)",
                nxt.id,
                nxt.substation_id,
                substation.status if substation is not None else "missing",
            )
            return None

        self._promote_to_pending(con, nxt, reason=f"worker {completed.worker_id} finished {completed.id}")
        repo.reserve_substation(con, nxt.substation_id, nxt, self.clock())
        logger.info(
            "Activated next queued task %s (worker %s, substation %s, seq %s)",
            nxt.id,
            nxt.worker_id,
            nxt.substation_id,
            nxt.sequence_number,
        )
        return nxt

    # ---------- Materials ----------

    def get_material_requirements(self, node_pk: int, con: sqlite3.Connection | None = None) -> list[MaterialRequirement]:
        """Base (un-buffered) inputs declared on the node; [] if they cannot be read."""
        try:
            if con is None:
                with self.db.connect() as own:
                    return self.get_material_requirements(node_pk, own)
            node = repo.get_node(con, node_pk)
            if node is None:
                logger.warning("Node %s not found", node_pk)
                return []
            return [
                MaterialRequirement(material_code=r["material_code"], required_qty=qty(r["required_quantity"]))
                for r in repo.get_material_inputs(con, node["node_id"])
            ]
        except sqlite3.Error:
            logger.exception("Error getting material requirements for node %s", node_pk)
            return []

    def _build_requirements(self, con: sqlite3.Connection, assignment: Assignment) -> list[MaterialRequirement]:
        base = {r.material_code: r.required_qty for r in self.get_material_requirements(assignment.node_id, con)}
        out: list[MaterialRequirement] = []
        for code, reserve in assignment.pre_production_reserved_amount.items():
            if reserve <= 0:
                continue
            out.append(MaterialRequirement(material_code=code, required_qty=reserve, fallback_qty=base.get(code) or reserve))
        return out

    # ---------- Lifecycle ----------

    def _load_owned(self, con: sqlite3.Connection, assignment_id, worker_id: str) -> Assignment:
        assignment = repo.get_assignment(con, assignment_id)
        if assignment is None or assignment.worker_id != str(worker_id):
            raise OwnershipMismatch(
                f"Assignment {assignment_id} not found for worker {worker_id}",
                assignment_id=assignment_id,
                worker_id=worker_id,
            )
        return assignment

    def _run(self, operation: str, assignment_id, body: Callable[[sqlite3.Connection, int], TaskResult]) -> TaskResult:
        try:
            aid = parse_int_strict(assignment_id, field="assignment_id")
            with self.db.transaction() as con:
                return body(con, aid)
        except SchedulerError as exc:
            logger.warning("%s rejected for assignment %s: %s", operation, assignment_id, exc.message)
            return TaskResult.failure(exc)
        except Exception as exc:
            logger.exception("Error in %s for assignment %s", operation, assignment_id)
            return TaskResult.failure(TransactionFailure(str(exc), assignment_id=assignment_id, operation=operation))

    def start_task(self, assignment_id, worker_id: str) -> TaskResult:
        """pending/ready -> in_progress, reserving material and claiming the substation."""
        return self._run("start_task", assignment_id, lambda con, aid: self._start(con, aid, worker_id))

    def _start(self, con: sqlite3.Connection, assignment_id: int, worker_id: str) -> TaskResult:
        assignment = self._load_owned(con, assignment_id, worker_id)
        if assignment.status not in STARTABLE_STATUSES:
            raise InvalidState(
                f"Assignment {assignment_id} is not in pending/ready state (current: {assignment.status})",
                assignment_id=assignment_id,
                status=assignment.status,
            )

        check = self.check_predecessors_completed(assignment_id, con)
        if check.error:
            raise TransactionFailure(f"Predecessor check failed: {check.error}", assignment_id=assignment_id)
        if not check.all_completed:
            names = ", ".join(f"{p.node_name} ({p.status})" for p in check.pending_predecessors)
            raise PredecessorBlocked(
                f"Önceki görevler tamamlanmadan bu görev başlatılamaz. Bekleyen görevler: {names}",
                assignment_id=assignment_id,
                pending_predecessors=[asdict(p) for p in check.pending_predecessors],
            )

        if assignment.substation_id is not None:
            substation = repo.get_substation(con, assignment.substation_id)
            if substation is None:
                raise SubstationUnavailable(
                    f"Substation {assignment.substation_id} not found", substation_id=assignment.substation_id
                )
            if not substation.can_be_claimed_by(assignment_id):
                held = f" (assigned to {substation.current_assignment_id})" if substation.current_assignment_id else ""
                raise SubstationUnavailable(
                    f"Substation {substation.name or substation.id} is {substation.status}{held}. "
                    f"Cannot start assignment {assignment_id}.",
                    substation_id=substation.id,
                    substation_status=substation.status,
                    current_assignment_id=substation.current_assignment_id,
                )

        requirements = self._build_requirements(con, assignment)
        reservation = ReservationResult(success=True)
        if requirements:
            logger.info("Reserving %d material(s) for assignment %s", len(requirements), assignment_id)
            reservation = self.lots.reserve_materials_with_fallback(assignment_id, requirements, con)
            if reservation.warnings:
                logger.warning(
                    "Reservation warnings for assignment %s: %s",
                    assignment_id,
                    "; ".join(w.message for w in reservation.warnings),
                )

        now = self.clock()
        if assignment.substation_id is not None:
            repo.occupy_substation(con, assignment.substation_id, assignment, now)
            logger.info("Substation %s now in_use by assignment %s", assignment.substation_id, assignment_id)

        if not requirements:
            reservation_status = RESERVATION_NOT_REQUIRED
        elif reservation.warnings:
            reservation_status = RESERVATION_PARTIAL
        else:
            reservation_status = RESERVATION_RESERVED

        repo.update_assignment(
            con,
            assignment_id,
            status=IN_PROGRESS,
            started_at=to_iso(now),
            actual_reserved_amounts=dump_json_map(reservation.reserved_amounts()),
            material_reservation_status=reservation_status,
        )
        self.history.record_status_change(assignment_id, assignment.status, IN_PROGRESS, worker_id, con=con)
        logger.info("Task %s started by worker %s", assignment_id, worker_id)

        return TaskResult(
            success=True,
            assignment=repo.get_assignment(con, assignment_id),
            material_reservation=reservation,
        )

    def complete_task(
        self,
        assignment_id,
        worker_id: str,
        completion_data: CompletionData | Mapping[str, Any] | None = None,
    ) -> TaskResult:
        """in_progress -> completed, reconciling material and handing the substation on."""
        if not isinstance(completion_data, CompletionData):
            completion_data = CompletionData.from_mapping(completion_data)
        try:
            lot_tracking = bool(self.lot_tracking_enabled())
        except Exception as exc:
            logger.exception("Could not read lot tracking setting")
            return TaskResult.failure(TransactionFailure(str(exc), assignment_id=assignment_id))
        return self._run(
            "complete_task",
            assignment_id,
            lambda con, aid: self._complete(con, aid, worker_id, completion_data, lot_tracking),
        )

    def _complete(
        self,
        con: sqlite3.Connection,
        assignment_id: int,
        worker_id: str,
        data: CompletionData,
        lot_tracking: bool,
    ) -> TaskResult:
        assignment = self._load_owned(con, assignment_id, worker_id)
        if assignment.status != IN_PROGRESS:
            raise InvalidState(
                f"Assignment {assignment_id} is not in progress (current: {assignment.status})",
                assignment_id=assignment_id,
                status=assignment.status,
            )

        node = repo.get_node(con, assignment.node_id)
        if node is None:
            raise TransactionFailure(f"Node {assignment.node_id} not found", assignment_id=assignment_id)
        plan = repo.get_plan(con, node["plan_id"])
        work_order_code = (plan["work_order_code"] if plan is not None else None) or f"WO-{node['plan_id']}"

        ratios = {r["material_code"]: qty(r["unit_ratio"]) or 1.0 for r in repo.get_material_inputs(con, node["node_id"])}
        audit = {
            "assignment_id": assignment_id,
            "reference": work_order_code,
            "reference_type": "production_plan",
            "related_plan_id": node["plan_id"],
            "related_node_id": node["node_id"],
            "node_sequence": assignment.sequence_number,
        }

        adjustments, stock_adjustments, materials_consumed = self._reconcile_materials(con, data, ratios, audit)

        completed_at = self.clock()
        if data.quantity_produced > 0 and node["output_code"]:
            self._book_output(con, node["output_code"], data.quantity_produced, completed_at, lot_tracking, audit)

        scrap = list(data.input_scrap_counters.items()) + list(data.production_scrap_counters.items())
        if data.defect_quantity > 0 and node["output_code"]:
            scrap.append((node["output_code"], data.defect_quantity))
        for material_code, scrap_qty in scrap:
            if scrap_qty > 0:
                self._book_scrap(con, material_code, scrap_qty, completed_at, lot_tracking, audit)

        repo.update_assignment(
            con,
            assignment_id,
            status=COMPLETED,
            completed_at=to_iso(completed_at),
            material_reservation_status=(
                RESERVATION_CONSUMED if materials_consumed > 0 else assignment.material_reservation_status
            ),
            actual_quantity=data.quantity_produced or None,
            defect_quantity=data.defect_quantity,
            input_scrap_count=dump_json_map(data.input_scrap_counters),
            production_scrap_count=dump_json_map(data.production_scrap_counters),
            notes=data.notes,
        )

        if assignment.substation_id is not None:
            repo.release_substation(con, assignment.substation_id, completed_at)
            logger.info("Freed substation %s after completion of %s", assignment.substation_id, assignment_id)
            self.promote_next_for_substation(con, assignment.substation_id, include_queued=True)

        self._promote_worker_next_queued(con, assignment)

        self.history.record_status_change(
            assignment_id,
            IN_PROGRESS,
            COMPLETED,
            worker_id,
            metadata={
                "actual_quantity": data.quantity_produced,
                "defect_quantity": data.defect_quantity,
                "adjustments": [asdict(a) for a in adjustments],
            },
            con=con,
        )
        logger.info("Task %s completed by worker %s (%d lot consumption(s))", assignment_id, worker_id, materials_consumed)

        return TaskResult(
            success=True,
            assignment=repo.get_assignment(con, assignment_id),
            materials_consumed=materials_consumed,
            adjustments=adjustments,
            stock_adjustments=stock_adjustments,
        )

    def _reconcile_materials(
        self,
        con: sqlite3.Connection,
        data: CompletionData,
        ratios: dict[str, float],
        audit: dict[str, Any],
    ) -> tuple[list[LotAdjustment], list[StockAdjustment], int]:
        rows = con.execute(
            "SELECT * FROM assignment_material_reservations WHERE assignment_id = ? AND reservation_status = ? ORDER BY id",
            (audit["assignment_id"], LOT_RESERVED),
        ).fetchall()
        by_material: dict[str, list[sqlite3.Row]] = {}
        for r in rows:
            by_material.setdefault(r["material_code"], []).append(r)

        adjustments: list[LotAdjustment] = []
        stock_adjustments: list[StockAdjustment] = []
        materials_consumed = 0

        for material_code, lots in by_material.items():
            ratio = ratios.get(material_code) or 1.0
            input_scrap = data.input_scrap_counters.get(material_code, 0.0)
            production_scrap = data.production_scrap_counters.get(material_code, 0.0)
            consumed_total = total_consumption(
                input_scrap=input_scrap,
                production_scrap=production_scrap,
                actual_qty=data.quantity_produced,
                defect_qty=data.defect_quantity,
                unit_ratio=ratio,
            )
            production_used = to_float((to_decimal(data.quantity_produced) + to_decimal(data.defect_quantity)) * to_decimal(ratio))
            reserved = [qty(r["actual_reserved_qty"]) for r in lots]
            reserved_total = sum((to_decimal(x) for x in reserved), ZERO)
            shares = distribute_consumption(reserved, consumed_total)

            for r, lot_reserved, share in zip(lots, reserved, shares):
                con.execute(
                    "UPDATE assignment_material_reservations SET consumed_qty = ?, reservation_status = ? WHERE id = ?",
                    (to_float(share), LOT_CONSUMED, r["id"]),
                )
                if share > ZERO:
                    materials_consumed += 1
                adjustments.append(
                    LotAdjustment(
                        material_code=material_code,
                        lot_number=r["lot_number"],
                        reserved=lot_reserved,
                        consumed=to_float(share),
                        delta=to_float(to_decimal(lot_reserved) - share),
                        input_scrap=input_scrap,
                        production_scrap=production_scrap,
                        production_used=production_used,
                        ratio=ratio,
                    )
                )

            # Reserved quantity leaves work-in-progress whether consumed or returned.
            con.execute(
                "UPDATE materials SET wip_reserved = wip_reserved - ? WHERE code = ?",
                (to_float(reserved_total), material_code),
            )

            delta = reserved_total - consumed_total
            logger.info(
                "%s: reserved=%s consumed=%s delta=%s", material_code, reserved_total, consumed_total, delta
            )
            if delta == ZERO:
                continue

            movement_type = "in" if delta > ZERO else "out"
            note = (
                f"Fazla rezervasyon iadesi - Reserved: {to_float(reserved_total):g}, Consumed: {to_float(consumed_total):g}"
                if delta > ZERO
                else f"Eksik rezervasyon tamamlama - Reserved: {to_float(reserved_total):g}, Consumed: {to_float(consumed_total):g}"
            )
            before, after = record_stock_movement(
                con,
                material_code=material_code,
                movement_type=movement_type,
                quantity=to_float(abs(delta)),
                sub_type="adjustment",
                notes=note,
                **audit,
            )
            if after < 0:
                # Completion is never blocked on stock; a negative balance is left for follow-up.
                logger.warning("%s stock went negative (%g -> %g)", material_code, before, after)
            stock_adjustments.append(
                StockAdjustment(
                    material_code=material_code,
                    movement_type=movement_type,
                    quantity=to_float(abs(delta)),
                    total_reserved=to_float(reserved_total),
                    total_consumed=to_float(consumed_total),
                    stock_before=before,
                    stock_after=after,
                )
            )

        return adjustments, stock_adjustments, materials_consumed

    def _book_output(
        self,
        con: sqlite3.Connection,
        output_code: str,
        quantity: float,
        when: datetime,
        lot_tracking: bool,
        audit: dict[str, Any],
    ) -> None:
        lot_number = generate_lot_number(con, output_code, when) if lot_tracking else None
        before, after = record_stock_movement(
            con,
            material_code=output_code,
            movement_type="in",
            quantity=quantity,
            sub_type="production",
            lot_number=lot_number,
            lot_date=when.date().isoformat() if lot_tracking else None,
            notes=f"Üretim çıktısı - {audit['reference']} - Node {audit['related_node_id']}",
            **audit,
        )
        logger.info(
            "Added %g %s to stock %s (%g -> %g)",
            quantity,
            output_code,
            f"with LOT {lot_number}" if lot_number else "(No Lot)",
            before,
            after,
        )

    def _book_scrap(
        self,
        con: sqlite3.Connection,
        material_code: str,
        quantity: float,
        when: datetime,
        lot_tracking: bool,
        audit: dict[str, Any],
    ) -> None:
        scrap_code = f"{material_code}{SCRAP_SUFFIX}"
        if con.execute("SELECT 1 FROM materials WHERE code = ?", (scrap_code,)).fetchone() is None:
            base = con.execute("SELECT name, category, unit FROM materials WHERE code = ?", (material_code,)).fetchone()
            con.execute(
                """
                INSERT INTO materials(code, name, type, category, unit, stock, status, created_at)
                VALUES (?, ?, 'scrap', ?, ?, 0, 'Aktif', ?)
                """,
                (
                    scrap_code,
                    f"{(base['name'] if base is not None else None) or material_code} - Hurda",
                    base["category"] if base is not None else None,
                    (base["unit"] if base is not None else None) or "kg",
                    to_iso(when),
                ),
            )
            logger.info("Created new scrap material %s", scrap_code)

        lot_number = generate_lot_number(con, scrap_code, when) if lot_tracking else None
        record_stock_movement(
            con,
            material_code=scrap_code,
            movement_type="in",
            quantity=quantity,
            sub_type="scrap",
            lot_number=lot_number,
            lot_date=when.date().isoformat() if lot_tracking else None,
            notes=f"Üretim hurdası - {material_code} - {audit['reference']} - Node {audit['related_node_id']}",
            **audit,
        )
        logger.info("Added %g %s scrap to stock%s", quantity, scrap_code, f" with LOT {lot_number}" if lot_number else "")

    # ---------- Pause / resume ----------

    def pause_task(self, assignment_id, worker_id: str, *, reason: str | None = None) -> TaskResult:
        """in_progress -> paused. The substation stays claimed by the task."""
        return self._run(
            "pause_task",
            assignment_id,
            lambda con, aid: self._transition(con, aid, worker_id, IN_PROGRESS, PAUSED, reason),
        )

    def resume_task(self, assignment_id, worker_id: str, *, reason: str | None = None) -> TaskResult:
        """paused -> in_progress."""
        return self._run(
            "resume_task",
            assignment_id,
            lambda con, aid: self._transition(con, aid, worker_id, PAUSED, IN_PROGRESS, reason),
        )

    def _transition(
        self,
        con: sqlite3.Connection,
        assignment_id: int,
        worker_id: str,
        from_status: str,
        to_status: str,
        reason: str | None,
    ) -> TaskResult:
        assignment = self._load_owned(con, assignment_id, worker_id)
        if assignment.status != from_status:
            raise InvalidState(
                f"Assignment {assignment_id} is not {from_status} (current: {assignment.status})",
                assignment_id=assignment_id,
                status=assignment.status,
            )
        repo.update_assignment(con, assignment_id, status=to_status)
        self.history.record_status_change(assignment_id, from_status, to_status, worker_id, reason=reason, con=con)
        logger.info("Task %s %s -> %s by worker %s", assignment_id, from_status, to_status, worker_id)
        return TaskResult(success=True, assignment=repo.get_assignment(con, assignment_id))
