"""Pure material arithmetic used by the lot engine and the scheduler.

No database access here: callers pass stock figures in and persist what
comes out. Quantities are computed in Decimal and quantized to QTY_STEP so
that per-lot figures always add up to the material total.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from mesfifo.core.models import (
    LotAllocation,
    LotConsumptionPlan,
    LotStock,
    ReservationWarning,
)

QTY_STEP = Decimal("0.000001")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value.quantize(QTY_STEP, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def to_float(value: Decimal) -> float:
    return float(value.quantize(QTY_STEP, rounding=ROUND_HALF_UP))


def choose_reservation_qty(
    *,
    material_code: str,
    current_stock: float,
    required_qty: float,
    fallback_qty: float,
) -> tuple[float, bool, ReservationWarning | None]:
    """Decide how much to reserve given the defect-buffered and base requirement.

    Returns (qty_to_reserve, used_fallback, warning).
    - stock >= required: reserve required, no warning
    - fallback <= stock < required: reserve fallback, warning
    - stock < fallback: reserve min(stock, fallback), critical warning
    """
    stock = to_decimal(current_stock)
    required = to_decimal(required_qty)
    fallback = to_decimal(fallback_qty)

    if stock >= required:
        return to_float(required), False, None

    if stock >= fallback:
        return (
            to_float(fallback),
            True,
            ReservationWarning(
                material_code=material_code,
                message=(
                    f"Stok yetersiz ({to_float(stock):g}), fire payı olmadan devam ediliyor. "
                    f"İstenen: {to_float(required):g}, Rezerve: {to_float(fallback):g}"
                ),
                original_qty=to_float(required),
                fallback_qty=to_float(fallback),
                available_stock=to_float(stock),
            ),
        )

    # Production still goes ahead; the lot primitive reserves what exists.
    qty = min(stock, fallback) if stock > ZERO else fallback
    return (
        to_float(qty),
        False,
        ReservationWarning(
            material_code=material_code,
            message=f"Kritik stok yetersizliği! Stok: {to_float(stock):g}, Minimum gereken: {to_float(fallback):g}",
            original_qty=to_float(required),
            fallback_qty=to_float(fallback),
            available_stock=to_float(stock),
            critical=True,
        ),
    )


def plan_lot_consumption(lots: list[LotStock], required_qty: float) -> LotConsumptionPlan:
    """FIFO allocation: take from the first lot until empty, then the next.

    `lots` must already be ordered oldest first. Never allocates more than
    the lots hold; the remainder is reported as shortfall.
    """
    remaining = to_decimal(required_qty)
    requested = remaining
    total_available = ZERO
    allocations: list[LotAllocation] = []

    for lot in lots:
        available = to_decimal(lot.available_qty)
        if available <= ZERO:
            continue
        total_available += available
        if remaining <= ZERO:
            continue
        take = min(available, remaining)
        allocations.append(LotAllocation(lot_number=lot.lot_number, qty=to_float(take), lot_date=lot.lot_date))
        remaining -= take

    remaining = max(remaining, ZERO)
    return LotConsumptionPlan(
        lots_to_consume=allocations,
        total_reserved=to_float(requested - remaining),
        total_available=to_float(total_available),
        partial_reservation=remaining > ZERO,
        shortfall=to_float(remaining),
    )


def total_consumption(
    *,
    input_scrap: float,
    production_scrap: float,
    actual_qty: float,
    defect_qty: float,
    unit_ratio: float,
) -> Decimal:
    """inputScrap + productionScrap + (actual + defect) * ratio."""
    produced = (to_decimal(actual_qty) + to_decimal(defect_qty)) * to_decimal(unit_ratio)
    return (to_decimal(input_scrap) + to_decimal(production_scrap) + produced).quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def distribute_consumption(reserved: list[float], total_consumed: Decimal | float) -> list[Decimal]:
    """Split total_consumed across lots in proportion to what each reserved.

    Every lot but the last gets its rounded share; the last lot takes the
    running remainder, so sum(result) == total_consumed exactly.
    """
    if not reserved:
        return []
    total = to_decimal(total_consumed)
    reserved_dec = [to_decimal(r) for r in reserved]
    total_reserved = sum(reserved_dec, ZERO)

    shares: list[Decimal] = []
    remaining = total
    for i, r in enumerate(reserved_dec):
        if i == len(reserved_dec) - 1:
            share = remaining
        elif total_reserved == ZERO:
            share = ZERO
        else:
            share = (r / total_reserved * total).quantize(QTY_STEP, rounding=ROUND_HALF_UP)
        shares.append(share)
        remaining -= share
    return shares
