"""FIFO lot consumption.

Reserves material for an assignment by taking quantity from the oldest lot
first and spilling into newer lots as needed. Every stock change is paired
with a stock_movements row and every lot touched gets an
assignment_material_reservations row.

Stock that no lot balance accounts for (materials received with lot
tracking off, adjustments) is treated as one undated pseudo-lot with
lot_number NULL and is consumed after every real lot.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Iterable

from mesfifo.core.consumption import (
    ZERO,
    choose_reservation_qty,
    plan_lot_consumption,
    to_decimal,
    to_float,
)
from mesfifo.core.errors import MaterialNotFoundError
from mesfifo.core.models import (
    LOT_RELEASED,
    LOT_RESERVED,
    LotStock,
    MaterialRequirement,
    MaterialReservation,
    ReservationResult,
    ReservationWarning,
)
from mesfifo.data.db import Db
from mesfifo.data.repo_utils import qty
from mesfifo.materials.lot_generator import get_lots_for_material

logger = logging.getLogger(__name__)


def get_material_stock(con: sqlite3.Connection, material_code: str) -> float | None:
    row = con.execute("SELECT stock FROM materials WHERE code = ?", (material_code,)).fetchone()
    if row is None:
        return None
    return qty(row["stock"])


def record_stock_movement(
    con: sqlite3.Connection,
    *,
    material_code: str,
    movement_type: str,
    quantity: float,
    wip_delta: float = 0.0,
    **columns,
) -> tuple[float, float]:
    """Insert one stock movement and apply it to the material stock aggregate.

    Returns (stock_before, stock_after).
    """
    if movement_type not in ("in", "out"):
        raise ValueError(f"movement type must be 'in' or 'out', got {movement_type!r}")
    before = get_material_stock(con, material_code)
    if before is None:
        logger.warning("Stock movement for unknown material %s; aggregate not updated", material_code)
        before = 0.0
    amount = to_decimal(quantity)
    signed = amount if movement_type == "in" else -amount
    after = to_float(to_decimal(before) + signed)

    cols = {
        "material_code": material_code,
        "type": movement_type,
        "quantity": to_float(amount),
        "stock_before": before,
        "stock_after": after,
        **columns,
    }
    names = ", ".join(cols)
    marks = ", ".join("?" for _ in cols)
    con.execute(f"INSERT INTO stock_movements ({names}) VALUES ({marks})", tuple(cols.values()))
    con.execute(
        "UPDATE materials SET stock = ?, wip_reserved = wip_reserved + ? WHERE code = ?",
        (after, to_float(to_decimal(wip_delta)), material_code),
    )
    return before, after


def get_available_lots(con: sqlite3.Connection, material_code: str) -> list[LotStock]:
    """Consumable lots for a material in FIFO order, capped at the stock aggregate."""
    stock = get_material_stock(con, material_code)
    if stock is None:
        raise MaterialNotFoundError(material_code)

    cap = max(to_decimal(stock), ZERO)
    out: list[LotStock] = []
    for lot in get_lots_for_material(con, material_code):
        if cap <= ZERO:
            break
        available = min(to_decimal(lot["balance"]), cap)
        out.append(LotStock(lot_number=lot["lot_number"], lot_date=lot["lot_date"], available_qty=to_float(available)))
        cap -= available

    if cap > ZERO:
        out.append(LotStock(lot_number=None, available_qty=to_float(cap)))
    return out


class LotConsumptionRepositoryImpl:
    """Lot reservation primitive plus the defect-buffer fallback on top of it."""

    def __init__(self, db: Db) -> None:
        self.db = db

    # ---------- Reservation ----------

    def reserve_materials_with_lot_tracking(
        self,
        assignment_id: int,
        requirements: Iterable[MaterialRequirement],
        con: sqlite3.Connection | None = None,
    ) -> ReservationResult:
        """Reserve each requirement FIFO across lots.

        With `con`, runs inside the caller's transaction and lets database
        errors propagate. Without it, opens its own transaction and reports
        failures in the result.
        """
        requirements = list(requirements)
        if not requirements:
            return ReservationResult(success=False, error="Material requirements must be a non-empty list")
        for req in requirements:
            if not req.material_code or req.required_qty <= 0:
                return ReservationResult(success=False, error=f"Invalid material requirement: {req!r}")

        if con is not None:
            return self._reserve_all(con, assignment_id, requirements)

        try:
            with self.db.transaction() as own:
                return self._reserve_all(own, assignment_id, requirements)
        except (MaterialNotFoundError, sqlite3.Error) as exc:
            logger.exception("Error reserving materials for assignment %s", assignment_id)
            return ReservationResult(success=False, error=str(exc))

    def _reserve_all(
        self, con: sqlite3.Connection, assignment_id: int, requirements: list[MaterialRequirement]
    ) -> ReservationResult:
        # Resolve every material before writing anything.
        for req in requirements:
            if get_material_stock(con, req.material_code) is None:
                raise MaterialNotFoundError(req.material_code)

        reservations: list[MaterialReservation] = []
        warnings: list[ReservationWarning] = []
        for req in requirements:
            reservation = self._reserve_one(con, assignment_id, req.material_code, req.required_qty)
            reservations.append(reservation)
            if reservation.partial_reservation:
                warnings.append(
                    ReservationWarning(
                        material_code=req.material_code,
                        message=(
                            f"Partial reservation for {req.material_code}: requested {req.required_qty:g}, "
                            f"reserved {reservation.total_reserved:g}"
                        ),
                        original_qty=req.required_qty,
                    )
                )
        logger.info("Reserved %d material(s) for assignment %s", len(reservations), assignment_id)
        return ReservationResult(success=True, reservations=reservations, warnings=warnings)

    def _reserve_one(
        self, con: sqlite3.Connection, assignment_id: int, material_code: str, required_qty: float
    ) -> MaterialReservation:
        plan = plan_lot_consumption(get_available_lots(con, material_code), required_qty)
        warning = None
        if plan.partial_reservation:
            warning = (
                f"Partial reservation: requested {required_qty:g}, reserved {plan.total_reserved:g} "
                f"(shortfall: {plan.shortfall:g})"
            )

        for lot in plan.lots_to_consume:
            record_stock_movement(
                con,
                material_code=material_code,
                movement_type="out",
                quantity=lot.qty,
                wip_delta=lot.qty,
                sub_type="reservation",
                lot_number=lot.lot_number,
                assignment_id=assignment_id,
                requested_quantity=required_qty,
                partial_reservation=int(plan.partial_reservation),
                warning=warning,
                notes=f"FIFO consumption for assignment {assignment_id}",
            )
            existing = con.execute(
                """
                SELECT id FROM assignment_material_reservations
                WHERE assignment_id = ? AND material_code = ? AND lot_number IS ? AND reservation_status = ?
                """,
                (assignment_id, material_code, lot.lot_number, LOT_RESERVED),
            ).fetchone()
            if existing is not None:
                con.execute(
                    "UPDATE assignment_material_reservations SET actual_reserved_qty = actual_reserved_qty + ? WHERE id = ?",
                    (lot.qty, existing["id"]),
                )
            else:
                con.execute(
                    """
                    INSERT INTO assignment_material_reservations(
                        assignment_id, material_code, lot_number, pre_production_qty,
                        actual_reserved_qty, consumed_qty, reservation_status
                    ) VALUES (?, ?, ?, ?, ?, 0, ?)
                    """,
                    (assignment_id, material_code, lot.lot_number, required_qty, lot.qty, LOT_RESERVED),
                )

        if warning:
            logger.warning("%s for %s (assignment %s)", warning, material_code, assignment_id)
        return MaterialReservation(
            material_code=material_code,
            lots_consumed=plan.lots_to_consume,
            total_reserved=plan.total_reserved,
            partial_reservation=plan.partial_reservation,
        )

    def reserve_materials_with_fallback(
        self,
        assignment_id: int,
        requirements: Iterable[MaterialRequirement],
        con: sqlite3.Connection,
    ) -> ReservationResult:
        """Reserve the defect-buffered amount, degrading to the base amount, then to what exists.

        Shortfalls never abort: they become warnings (critical when even the
        base amount is not in stock).
        """
        reservations: list[MaterialReservation] = []
        warnings: list[ReservationWarning] = []

        for req in requirements:
            stock = get_material_stock(con, req.material_code)
            if stock is None:
                logger.error("Material %s not found; skipping its reservation", req.material_code)
                warnings.append(
                    ReservationWarning(
                        material_code=req.material_code,
                        message=f"Malzeme bulunamadı: {req.material_code}",
                        original_qty=req.required_qty,
                        fallback_qty=req.effective_fallback_qty,
                        available_stock=0.0,
                        critical=True,
                    )
                )
                continue

            qty_to_reserve, used_fallback, warning = choose_reservation_qty(
                material_code=req.material_code,
                current_stock=stock,
                required_qty=req.required_qty,
                fallback_qty=req.effective_fallback_qty,
            )
            logger.info(
                "Material %s: stock=%g required=%g fallback=%g -> reserving %g",
                req.material_code,
                stock,
                req.required_qty,
                req.effective_fallback_qty,
                qty_to_reserve,
            )
            if warning is not None:
                if warning.critical:
                    logger.error("Insufficient stock for %s: %s", req.material_code, warning.message)
                else:
                    logger.warning("Using fallback quantity for %s: %s", req.material_code, warning.message)
                warnings.append(warning)

            if qty_to_reserve <= 0:
                continue

            reservation = self._reserve_one(con, assignment_id, req.material_code, qty_to_reserve)
            reservations.append(
                MaterialReservation(
                    material_code=reservation.material_code,
                    lots_consumed=reservation.lots_consumed,
                    total_reserved=reservation.total_reserved,
                    partial_reservation=reservation.partial_reservation,
                    used_fallback=used_fallback,
                    original_required_qty=req.required_qty,
                )
            )
            if reservation.partial_reservation:
                warnings.append(
                    ReservationWarning(
                        material_code=req.material_code,
                        message=(
                            f"Partial reservation for {req.material_code}: requested {qty_to_reserve:g}, "
                            f"reserved {reservation.total_reserved:g}"
                        ),
                        original_qty=qty_to_reserve,
                        available_stock=stock,
                    )
                )

        return ReservationResult(success=True, reservations=reservations, warnings=warnings)

    # ---------- Read-only ----------

    def get_lot_consumption_preview(self, requirements: Iterable[MaterialRequirement]) -> list[dict]:
        """Which lots a reservation would take, without writing anything."""
        out: list[dict] = []
        with self.db.connect() as con:
            for req in requirements:
                row = con.execute("SELECT code, name FROM materials WHERE code = ?", (req.material_code,)).fetchone()
                if row is None:
                    out.append(
                        {
                            "material_code": req.material_code,
                            "material_name": None,
                            "required_qty": req.required_qty,
                            "lots_to_consume": [],
                            "total_available": 0.0,
                            "sufficient": False,
                            "error": "Material not found",
                        }
                    )
                    continue
                plan = plan_lot_consumption(get_available_lots(con, req.material_code), req.required_qty)
                out.append(
                    {
                        "material_code": req.material_code,
                        "material_name": row["name"],
                        "required_qty": req.required_qty,
                        "lots_to_consume": plan.lots_to_consume,
                        "total_available": plan.total_available,
                        "sufficient": not plan.partial_reservation,
                    }
                )
        return out

    def get_reservations(self, assignment_id: int) -> list[dict]:
        with self.db.connect() as con:
            rows = con.execute(
                "SELECT * FROM assignment_material_reservations WHERE assignment_id = ? ORDER BY id",
                (assignment_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    # ---------- Release ----------

    def release_material_reservations(self, assignment_id: int, con: sqlite3.Connection | None = None) -> int:
        """Return every still-reserved lot quantity to stock (cancelled assignment).

        Returns the number of reservation rows released.
        """
        if con is None:
            with self.db.transaction() as own:
                return self.release_material_reservations(assignment_id, own)

        rows = con.execute(
            "SELECT * FROM assignment_material_reservations WHERE assignment_id = ? AND reservation_status = ? ORDER BY id",
            (assignment_id, LOT_RESERVED),
        ).fetchall()
        for r in rows:
            reserved = qty(r["actual_reserved_qty"])
            record_stock_movement(
                con,
                material_code=r["material_code"],
                movement_type="in",
                quantity=reserved,
                wip_delta=-reserved,
                sub_type="release",
                lot_number=r["lot_number"],
                assignment_id=assignment_id,
                notes=f"Released reservation for cancelled assignment {assignment_id}",
            )
            con.execute(
                "UPDATE assignment_material_reservations SET reservation_status = ? WHERE id = ?",
                (LOT_RELEASED, r["id"]),
            )
        if rows:
            logger.info("Released %d material reservation(s) for assignment %s", len(rows), assignment_id)
        return len(rows)
