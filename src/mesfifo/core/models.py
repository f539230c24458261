from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from mesfifo.core.errors import SchedulerError
from mesfifo.data.repo_utils import coerce_qty_map, qty

# Assignment statuses
QUEUED = "queued"
PENDING = "pending"
READY = "ready"
IN_PROGRESS = "in_progress"
PAUSED = "paused"
COMPLETED = "completed"
CANCELLED = "cancelled"

STARTABLE_STATUSES = (PENDING, READY)
ACTIVE_STATUSES = (IN_PROGRESS, PAUSED)

FIFO_MODE = "fifo"

# Substation statuses
SUBSTATION_AVAILABLE = "available"
SUBSTATION_RESERVED = "reserved"
SUBSTATION_IN_USE = "in_use"

# Assignment.material_reservation_status
RESERVATION_NOT_REQUIRED = "not_required"
RESERVATION_RESERVED = "reserved"
RESERVATION_PARTIAL = "partial"
RESERVATION_CONSUMED = "consumed"

# assignment_material_reservations.reservation_status
LOT_RESERVED = "reserved"
LOT_CONSUMED = "consumed"
LOT_RELEASED = "released"


@dataclass(frozen=True)
class Assignment:
    id: int
    worker_id: str
    plan_id: str
    node_id: int
    status: str
    substation_id: str | None = None
    operation_id: str | None = None
    scheduling_mode: str = FIFO_MODE
    is_urgent: bool = False
    estimated_start_time: str | None = None
    estimated_end_time: str | None = None
    sequence_number: int | None = None
    pre_production_reserved_amount: dict[str, float] = field(default_factory=dict)
    actual_reserved_amounts: dict[str, float] = field(default_factory=dict)
    material_reservation_status: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    actual_quantity: float | None = None
    defect_quantity: float | None = None
    input_scrap_count: dict[str, float] = field(default_factory=dict)
    production_scrap_count: dict[str, float] = field(default_factory=dict)
    notes: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Substation:
    id: str
    status: str
    name: str | None = None
    current_assignment_id: int | None = None
    assigned_worker_id: str | None = None
    current_operation: str | None = None
    reserved_at: str | None = None
    in_use_since: str | None = None
    current_expected_end: str | None = None

    def can_be_claimed_by(self, assignment_id: int) -> bool:
        """Free, or already reserved for exactly this assignment."""
        if self.status == SUBSTATION_AVAILABLE:
            return True
        return self.status == SUBSTATION_RESERVED and self.current_assignment_id == assignment_id


@dataclass(frozen=True)
class QueuedTask:
    assignment_id: int
    worker_id: str
    plan_id: str
    node_id: int
    status: str
    is_urgent: bool
    fifo_position: int
    estimated_start_time: str | None = None
    node_name: str | None = None
    operation_id: str | None = None
    operation_name: str | None = None
    work_order_code: str | None = None
    nominal_time: int | None = None
    effective_time: int | None = None
    scheduling_mode: str = FIFO_MODE


@dataclass(frozen=True)
class WorkerTaskStats:
    total_tasks: int = 0
    total_pending: int = 0
    total_ready: int = 0
    urgent_count: int = 0
    next_task_due: str | None = None
    estimated_workload: int = 0  # minutes


@dataclass(frozen=True)
class PendingPredecessor:
    node_id: str
    node_name: str | None
    status: str
    assignment_id: int | None = None


@dataclass(frozen=True)
class PredecessorCheck:
    all_completed: bool
    pending_predecessors: list[PendingPredecessor] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class MaterialRequirement:
    material_code: str
    required_qty: float
    # Base requirement without defect buffer; defaults to required_qty.
    fallback_qty: float | None = None

    @property
    def effective_fallback_qty(self) -> float:
        return self.required_qty if self.fallback_qty is None else self.fallback_qty


@dataclass(frozen=True)
class LotStock:
    lot_number: str | None
    available_qty: float
    lot_date: str | None = None
    first_movement: str | None = None


@dataclass(frozen=True)
class LotAllocation:
    lot_number: str | None
    qty: float
    lot_date: str | None = None


@dataclass(frozen=True)
class LotConsumptionPlan:
    lots_to_consume: list[LotAllocation]
    total_reserved: float
    total_available: float
    partial_reservation: bool
    shortfall: float


@dataclass(frozen=True)
class MaterialReservation:
    material_code: str
    lots_consumed: list[LotAllocation]
    total_reserved: float
    partial_reservation: bool = False
    used_fallback: bool = False
    original_required_qty: float | None = None


@dataclass(frozen=True)
class ReservationWarning:
    material_code: str
    message: str
    original_qty: float | None = None
    fallback_qty: float | None = None
    available_stock: float | None = None
    critical: bool = False


@dataclass(frozen=True)
class ReservationResult:
    success: bool
    reservations: list[MaterialReservation] = field(default_factory=list)
    warnings: list[ReservationWarning] = field(default_factory=list)
    error: str | None = None

    @property
    def has_critical_warning(self) -> bool:
        return any(w.critical for w in self.warnings)

    def reserved_amounts(self) -> dict[str, float]:
        out: dict[str, float] = {}
        for r in self.reservations:
            out[r.material_code] = out.get(r.material_code, 0.0) + r.total_reserved
        return out


@dataclass(frozen=True)
class LotAdjustment:
    """Per-lot reconciliation line produced at completion."""

    material_code: str
    lot_number: str | None
    reserved: float
    consumed: float
    delta: float
    input_scrap: float = 0.0
    production_scrap: float = 0.0
    production_used: float = 0.0
    ratio: float = 1.0


@dataclass(frozen=True)
class StockAdjustment:
    """Per-material correction movement between reserved and consumed."""

    material_code: str
    movement_type: str  # 'in' returns excess, 'out' takes the shortfall
    quantity: float
    total_reserved: float
    total_consumed: float
    stock_before: float
    stock_after: float

    @property
    def signed_quantity(self) -> float:
        return self.quantity if self.movement_type == "in" else -self.quantity


@dataclass(frozen=True)
class CompletionData:
    quantity_produced: float = 0.0
    defect_quantity: float = 0.0
    input_scrap_counters: dict[str, float] = field(default_factory=dict)
    production_scrap_counters: dict[str, float] = field(default_factory=dict)
    notes: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "CompletionData":
        data = dict(data or {})

        def pick(*keys: str):
            for k in keys:
                if k in data:
                    return data[k]
            return None

        return cls(
            quantity_produced=qty(pick("quantity_produced", "quantityProduced")),
            defect_quantity=qty(pick("defect_quantity", "defectQuantity")),
            input_scrap_counters=coerce_qty_map(pick("input_scrap_counters", "inputScrapCounters")),
            production_scrap_counters=coerce_qty_map(pick("production_scrap_counters", "productionScrapCounters")),
            notes=pick("notes"),
        )


@dataclass(frozen=True)
class TaskResult:
    """Outcome of a mutating scheduler operation; failures carry the error."""

    success: bool
    assignment: Assignment | None = None
    material_reservation: ReservationResult | None = None
    materials_consumed: int = 0
    adjustments: list[LotAdjustment] = field(default_factory=list)
    stock_adjustments: list[StockAdjustment] = field(default_factory=list)
    error: SchedulerError | None = None

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error is not None else None

    @classmethod
    def failure(cls, error: SchedulerError) -> "TaskResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class StatusChange:
    id: int
    assignment_id: int
    from_status: str | None
    to_status: str
    changed_by: str | None
    changed_at: datetime
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PauseStatistics:
    pause_count: int
    resume_count: int
    total_paused_minutes: float
    is_currently_paused: bool
