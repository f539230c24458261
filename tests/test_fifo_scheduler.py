"""Tests for the FIFO scheduler lifecycle (queue, start, complete, hand-over)."""

from __future__ import annotations

import json
import random
import tempfile
from pathlib import Path

import pytest

from mesfifo.core.errors import SchedulerErrorKind
from mesfifo.core.models import CompletionData
from mesfifo.data.db import Db
from mesfifo.history.status_history import StatusHistoryRepositoryImpl
from mesfifo.scheduler import FifoScheduler

from fixtures_mes import (
    FixedClock,
    seed_assignment,
    seed_lot,
    seed_material,
    seed_node,
    seed_operation,
    seed_plan,
    seed_substation,
)


@pytest.fixture
def env():
    """Database with one plan, one operation, material M-001 in two lots and one substation."""
    tmpdir = tempfile.mkdtemp()
    db = Db(Path(tmpdir) / "test.db")
    db.ensure_schema()
    with db.connect() as con:
        seed_plan(con)
        seed_operation(con)
        seed_material(con, "M-001", name="Çelik Sac")
        seed_material(con, "P-001", name="Braket", category="Yarı Mamul", unit="adet")
        seed_lot(con, "M-001", "LOT-M-001-20250301-001", 50, "2025-03-01")
        seed_lot(con, "M-001", "LOT-M-001-20250305-001", 100, "2025-03-05")
        seed_substation(con, "ST-1")

    clock = FixedClock()
    tracking = {"enabled": True}
    scheduler = FifoScheduler(db, lot_tracking_enabled=lambda: tracking["enabled"], clock=clock)
    return db, scheduler, clock, tracking


def _row(db, table, key, value):
    with db.connect() as con:
        row = con.execute(f"SELECT * FROM {table} WHERE {key} = ?", (value,)).fetchone()
    return dict(row) if row is not None else None


def _assignment(db, assignment_id):
    return _row(db, "worker_assignments", "id", assignment_id)


def _substation(db, sub_id="ST-1"):
    return _row(db, "substations", "id", sub_id)


def _stock(db, code):
    return _row(db, "materials", "code", code)["stock"]


# ---------- Queue ----------


def test_queue_orders_urgent_then_expected_start(env):
    db, scheduler, _, _ = env
    specs = [
        ("late", "2025-03-12T08:00:00", False),
        ("early", "2025-03-10T08:00:00", False),
        ("middle", "2025-03-11T08:00:00", False),
        ("urgent-late", "2025-03-20T08:00:00", True),
        ("undated", None, False),
    ]
    random.Random(7).shuffle(specs)
    ids = {}
    with db.connect() as con:
        for label, start, urgent in specs:
            node = seed_node(con, f"PLAN-001-{label}", name=label)
            ids[label] = seed_assignment(con, node_id=node, expected_start=start, is_urgent=urgent, effective_time=30)
        other = seed_node(con, "PLAN-001-other")
        seed_assignment(con, node_id=other, status="in_progress", expected_start="2025-03-01T08:00:00")
        seed_assignment(con, node_id=other, worker_id="W-2", expected_start="2025-03-01T08:00:00")

    queue = scheduler.get_worker_task_queue("W-1")

    assert [t.node_name for t in queue] == ["urgent-late", "early", "middle", "late", "undated"]
    assert [t.fifo_position for t in queue] == [1, 2, 3, 4, 5]
    assert queue[0].assignment_id == ids["urgent-late"]
    assert queue[0].operation_name == "Kesim"
    assert queue[0].work_order_code == "WO-001"

    assert [t.node_name for t in scheduler.get_worker_task_queue("W-1", limit=2)] == ["urgent-late", "early"]
    assert scheduler.get_worker_next_task("W-1").assignment_id == ids["urgent-late"]
    assert scheduler.get_worker_next_task("W-9") is None


def test_worker_stats(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-n1")
        seed_assignment(con, node_id=node, expected_start="2025-03-11T08:00:00", effective_time=30)
        seed_assignment(con, node_id=node, status="ready", expected_start="2025-03-10T09:00:00", effective_time=45, is_urgent=True)
        seed_assignment(con, node_id=node, status="queued", expected_start="2025-03-01T08:00:00", effective_time=99)

    stats = scheduler.get_worker_task_stats("W-1")

    assert stats.total_tasks == 2
    assert stats.total_pending == 1
    assert stats.total_ready == 1
    assert stats.urgent_count == 1
    assert stats.next_task_due == "2025-03-10T09:00:00"
    assert stats.estimated_workload == 75
    assert scheduler.has_tasks_in_queue("W-1")
    assert not scheduler.has_tasks_in_queue("W-2")
    assert scheduler.get_worker_task_stats("W-2").total_tasks == 0


# ---------- Predecessors ----------


def test_start_blocked_until_predecessor_completes(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        cut = seed_node(con, "PLAN-001-node-1", name="Kesim")
        bend = seed_node(con, "PLAN-001-node-2", name="Büküm", predecessors=["PLAN-001-node-1"])
        cut_task = seed_assignment(con, node_id=cut, worker_id="W-2")
        bend_task = seed_assignment(con, node_id=bend)

    result = scheduler.start_task(bend_task, "W-1")

    assert not result.success
    assert result.error.kind is SchedulerErrorKind.PREDECESSOR_BLOCKED
    assert result.error_message == (
        "Önceki görevler tamamlanmadan bu görev başlatılamaz. Bekleyen görevler: Kesim (pending)"
    )
    assert result.error.context["pending_predecessors"][0]["assignment_id"] == cut_task
    assert _assignment(db, bend_task)["status"] == "pending"

    with db.connect() as con:
        con.execute("UPDATE worker_assignments SET status = 'completed' WHERE id = ?", (cut_task,))

    assert scheduler.check_predecessors_completed(bend_task).all_completed
    result = scheduler.start_task(bend_task, "W-1")
    assert result.success, result.error_message
    assert _assignment(db, bend_task)["status"] == "in_progress"


def test_predecessor_without_assignment_is_pending(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        seed_node(con, "PLAN-001-node-1", name="Kesim")
        node = seed_node(con, "PLAN-001-node-2", predecessors=["PLAN-001-node-1"])
        task = seed_assignment(con, node_id=node)

    check = scheduler.check_predecessors_completed(task)

    assert not check.all_completed
    assert check.pending_predecessors[0].status == "not_assigned"
    assert check.pending_predecessors[0].assignment_id is None


def test_predecessor_check_unknown_assignment(env):
    _, scheduler, _, _ = env
    check = scheduler.check_predecessors_completed(404)
    assert not check.all_completed
    assert check.error == "Assignment not found"


# ---------- Start ----------


def _seed_task(db, *, reserve=None, substation_id="ST-1", status="pending", worker_id="W-1", node_key="PLAN-001-node-1"):
    with db.connect() as con:
        node = seed_node(
            con,
            node_key,
            name="Kesim",
            output_code="P-001",
            inputs={"M-001": (100, 2.0)},
        )
        return seed_assignment(
            con,
            node_id=node,
            worker_id=worker_id,
            status=status,
            substation_id=substation_id,
            reserve=reserve,
            expected_start="2025-03-10T08:00:00",
            sequence_number=1,
        )


def test_start_reserves_material_and_claims_substation(env):
    db, scheduler, clock, _ = env
    task = _seed_task(db, reserve={"M-001": 102})

    result = scheduler.start_task(task, "W-1")

    assert result.success, result.error_message
    assert result.assignment.status == "in_progress"
    assert result.material_reservation.warnings == []
    row = _assignment(db, task)
    assert row["started_at"] == clock.now.isoformat()
    assert json.loads(row["actual_reserved_amounts"]) == {"M-001": 102.0}
    assert row["material_reservation_status"] == "reserved"

    sub = _substation(db)
    assert sub["status"] == "in_use"
    assert sub["current_assignment_id"] == task
    assert sub["assigned_worker_id"] == "W-1"

    assert _stock(db, "M-001") == 48.0
    history = StatusHistoryRepositoryImpl(db).get_status_history(task)
    assert [(h.from_status, h.to_status, h.changed_by) for h in history] == [("pending", "in_progress", "W-1")]


def test_start_with_buffer_shortfall_uses_base_requirement(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        con.execute("UPDATE materials SET stock = 101 WHERE code = 'M-001'")
    task = _seed_task(db, reserve={"M-001": 102})

    result = scheduler.start_task(task, "W-1")

    assert result.success
    assert result.material_reservation.reservations[0].total_reserved == 100.0
    assert result.material_reservation.reservations[0].used_fallback
    assert not result.material_reservation.has_critical_warning
    assert _assignment(db, task)["material_reservation_status"] == "partial"
    assert _stock(db, "M-001") == 1.0


def test_start_with_critical_shortage_still_starts(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        con.execute("UPDATE materials SET stock = 50 WHERE code = 'M-001'")
    task = _seed_task(db, reserve={"M-001": 102})

    result = scheduler.start_task(task, "W-1")

    assert result.success
    assert result.material_reservation.has_critical_warning
    assert result.material_reservation.reservations[0].total_reserved == 50.0
    assert _assignment(db, task)["status"] == "in_progress"


def test_start_without_material_plan(env):
    db, scheduler, _, _ = env
    task = _seed_task(db, reserve=None, substation_id=None)

    result = scheduler.start_task(task, "W-1")

    assert result.success
    assert _assignment(db, task)["material_reservation_status"] == "not_required"
    assert _stock(db, "M-001") == 150.0


def test_start_rejects_other_workers_and_bad_states(env):
    db, scheduler, _, _ = env
    task = _seed_task(db, reserve={"M-001": 10})

    wrong_worker = scheduler.start_task(task, "W-2")
    assert wrong_worker.error.kind is SchedulerErrorKind.OWNERSHIP_MISMATCH

    missing = scheduler.start_task(9999, "W-1")
    assert missing.error.kind is SchedulerErrorKind.OWNERSHIP_MISMATCH

    assert scheduler.start_task(task, "W-1").success
    again = scheduler.start_task(task, "W-1")
    assert again.error.kind is SchedulerErrorKind.INVALID_STATE

    bad_id = scheduler.start_task("abc", "W-1")
    assert bad_id.error.kind is SchedulerErrorKind.TRANSACTION_FAILURE

    assert _stock(db, "M-001") == 140.0


def test_substation_held_by_another_task_blocks_start(env):
    db, scheduler, _, _ = env
    holder = _seed_task(db, worker_id="W-2", status="in_progress", node_key="PLAN-001-node-0")
    with db.connect() as con:
        con.execute("UPDATE substations SET status = 'in_use', current_assignment_id = ? WHERE id = 'ST-1'", (holder,))
    task = _seed_task(db, reserve={"M-001": 20})

    result = scheduler.start_task(task, "W-1")

    assert result.error.kind is SchedulerErrorKind.SUBSTATION_UNAVAILABLE
    assert result.error.context["current_assignment_id"] == holder
    assert _assignment(db, task)["status"] == "pending"
    assert _stock(db, "M-001") == 150.0
    assert _substation(db)["current_assignment_id"] == holder


def test_substation_reserved_for_this_task_can_be_started(env):
    db, scheduler, _, _ = env
    other = _seed_task(db, worker_id="W-2", node_key="PLAN-001-node-0")
    task = _seed_task(db)
    with db.connect() as con:
        con.execute("UPDATE substations SET status = 'reserved', current_assignment_id = ? WHERE id = 'ST-1'", (task,))

    assert scheduler.start_task(other, "W-2").error.kind is SchedulerErrorKind.SUBSTATION_UNAVAILABLE
    assert scheduler.start_task(task, "W-1").success


# ---------- Complete ----------


def test_complete_reconciles_material_and_books_output(env):
    db, scheduler, clock, _ = env
    task = _seed_task(db, reserve={"M-001": 102})
    assert scheduler.start_task(task, "W-1").success
    clock.advance(hours=2)

    result = scheduler.complete_task(
        task,
        "W-1",
        {
            "quantityProduced": 45,
            "defectQuantity": 3,
            "inputScrapCounters": {"M-001": 2},
            "productionScrapCounters": {"M-001": 1},
            "notes": "Vardiya sonu",
        },
    )

    assert result.success, result.error_message
    # consumed = 2 + 1 + (45 + 3) * 2.0
    consumed = sum(a.consumed for a in result.adjustments)
    reserved = sum(a.reserved for a in result.adjustments)
    assert consumed == pytest.approx(99.0)
    assert reserved == pytest.approx(102.0)
    (stock_adj,) = result.stock_adjustments
    assert stock_adj.movement_type == "in"
    assert stock_adj.signed_quantity == pytest.approx(reserved - consumed)
    assert result.materials_consumed == 2

    material = _row(db, "materials", "code", "M-001")
    assert material["stock"] == pytest.approx(51.0)
    assert material["wip_reserved"] == pytest.approx(0.0)

    with db.connect() as con:
        lots = con.execute(
            "SELECT lot_number, consumed_qty, reservation_status FROM assignment_material_reservations WHERE assignment_id = ? ORDER BY id",
            (task,),
        ).fetchall()
        output = con.execute(
            "SELECT * FROM stock_movements WHERE material_code = 'P-001' AND sub_type = 'production'"
        ).fetchone()
    assert {r["reservation_status"] for r in lots} == {"consumed"}
    assert lots[0]["consumed_qty"] == pytest.approx(48.529412)
    assert lots[1]["consumed_qty"] == pytest.approx(50.470588)

    assert output["quantity"] == 45.0
    assert output["lot_number"] == "LOT-P-001-20250310-001"
    assert output["reference"] == "WO-001"
    assert output["related_node_id"] == "PLAN-001-node-1"
    assert _stock(db, "P-001") == 45.0

    row = _assignment(db, task)
    assert row["status"] == "completed"
    assert row["completed_at"] == clock.now.isoformat()
    assert row["material_reservation_status"] == "consumed"
    assert row["actual_quantity"] == 45.0
    assert row["defect_quantity"] == 3.0
    assert json.loads(row["input_scrap_count"]) == {"M-001": 2.0}
    assert row["notes"] == "Vardiya sonu"

    sub = _substation(db)
    assert sub["status"] == "available"
    assert sub["current_assignment_id"] is None

    history = StatusHistoryRepositoryImpl(db).get_status_history(task)
    assert history[-1].to_status == "completed"
    assert history[-1].metadata["actual_quantity"] == 45.0


def test_exact_consumption_needs_no_adjustment(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        seed_material(con, "M-100", stock=500)
        node = seed_node(con, "PLAN-001-node-1", output_code="P-001", inputs={"M-100": (100, 1.0)})
        task = seed_assignment(con, node_id=node, substation_id="ST-1", reserve={"M-100": 100})

    assert scheduler.start_task(task, "W-1").success
    assert _stock(db, "M-100") == 400.0
    assert _substation(db)["status"] == "in_use"

    result = scheduler.complete_task(task, "W-1", {"quantityProduced": 100, "defectQuantity": 0})

    assert result.success
    assert result.stock_adjustments == []
    assert [(a.reserved, a.consumed, a.delta) for a in result.adjustments] == [(100.0, 100.0, 0.0)]
    assert _stock(db, "M-100") == 400.0
    assert _substation(db)["status"] == "available"
    with db.connect() as con:
        n = con.execute("SELECT COUNT(*) FROM stock_movements WHERE sub_type = 'adjustment'").fetchone()[0]
    assert n == 0


def test_complete_creates_scrap_materials(env):
    db, scheduler, _, _ = env
    task = _seed_task(db, reserve={"M-001": 102})
    scheduler.start_task(task, "W-1")

    data = CompletionData(
        quantity_produced=45,
        defect_quantity=3,
        input_scrap_counters={"M-001": 2},
        production_scrap_counters={"M-001": 1},
    )
    assert scheduler.complete_task(task, "W-1", data).success

    scrap = _row(db, "materials", "code", "M-001-H")
    assert scrap["name"] == "Çelik Sac - Hurda"
    assert scrap["type"] == "scrap"
    assert scrap["unit"] == "kg"
    assert scrap["stock"] == pytest.approx(3.0)

    defects = _row(db, "materials", "code", "P-001-H")
    assert defects["unit"] == "adet"
    assert defects["stock"] == pytest.approx(3.0)

    with db.connect() as con:
        lots = [
            r[0]
            for r in con.execute(
                "SELECT lot_number FROM stock_movements WHERE material_code = 'M-001-H' ORDER BY id"
            ).fetchall()
        ]
    assert lots == ["LOT-M-001-H-20250310-001", "LOT-M-001-H-20250310-002"]


def test_complete_without_lot_tracking_books_untracked_output(env):
    db, scheduler, _, tracking = env
    tracking["enabled"] = False
    task = _seed_task(db, reserve={"M-001": 10})
    scheduler.start_task(task, "W-1")

    assert scheduler.complete_task(task, "W-1", {"quantity_produced": 5}).success

    with db.connect() as con:
        output = con.execute("SELECT lot_number FROM stock_movements WHERE material_code = 'P-001'").fetchone()
    assert output["lot_number"] is None


def test_complete_takes_shortfall_from_stock(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        con.execute("UPDATE materials SET stock = 10 WHERE code = 'M-001'")
    task = _seed_task(db, reserve={"M-001": 10})
    scheduler.start_task(task, "W-1")

    result = scheduler.complete_task(task, "W-1", {"quantity_produced": 7, "defect_quantity": 0})

    # 7 * 2.0 = 14 consumed against 10 reserved; completion still succeeds.
    assert result.success
    (adj,) = result.stock_adjustments
    assert adj.movement_type == "out"
    assert adj.quantity == pytest.approx(4.0)
    assert _stock(db, "M-001") == pytest.approx(-4.0)


def test_complete_requires_in_progress(env):
    db, scheduler, _, _ = env
    task = _seed_task(db)

    result = scheduler.complete_task(task, "W-1", {})

    assert result.error.kind is SchedulerErrorKind.INVALID_STATE
    assert _assignment(db, task)["status"] == "pending"


def test_failed_completion_rolls_back_everything(env, monkeypatch):
    db, scheduler, _, _ = env
    task = _seed_task(db, reserve={"M-001": 102})
    scheduler.start_task(task, "W-1")

    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(scheduler, "_book_output", boom)

    result = scheduler.complete_task(task, "W-1", {"quantity_produced": 45})

    assert result.error.kind is SchedulerErrorKind.TRANSACTION_FAILURE
    assert "disk full" in result.error_message
    assert _assignment(db, task)["status"] == "in_progress"
    assert _stock(db, "M-001") == 48.0
    assert _substation(db)["status"] == "in_use"
    with db.connect() as con:
        statuses = {r[0] for r in con.execute(
            "SELECT reservation_status FROM assignment_material_reservations WHERE assignment_id = ?", (task,)
        ).fetchall()}
    assert statuses == {"reserved"}


# ---------- Hand-over ----------


def test_completion_promotes_oldest_queued_task_on_substation(env):
    db, scheduler, _, _ = env
    task = _seed_task(db)
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-node-9")
        older = seed_assignment(
            con, node_id=node, worker_id="W-2", status="queued", substation_id="ST-1",
            estimated_start_time="2025-03-10T10:00:00",
        )
        newer = seed_assignment(
            con, node_id=node, worker_id="W-3", status="queued", substation_id="ST-1",
            estimated_start_time="2025-03-10T12:00:00",
        )
    scheduler.start_task(task, "W-1")

    assert scheduler.complete_task(task, "W-1", {}).success

    assert _assignment(db, older)["status"] == "pending"
    assert _assignment(db, newer)["status"] == "queued"
    sub = _substation(db)
    assert sub["status"] == "reserved"
    assert sub["current_assignment_id"] == older
    assert sub["assigned_worker_id"] == "W-2"
    history = StatusHistoryRepositoryImpl(db).get_status_history(older)
    assert [(h.from_status, h.to_status, h.changed_by) for h in history] == [("queued", "pending", "system")]


def test_completion_promotes_oldest_queued_task_from_any_plan(env):
    db, scheduler, _, _ = env
    task = _seed_task(db)
    with db.connect() as con:
        seed_plan(con, "PLAN-002", "WO-002")
        other_node = seed_node(con, "PLAN-002-node-1", plan_id="PLAN-002")
        same_node = seed_node(con, "PLAN-001-node-9")
        other_plan = seed_assignment(
            con, node_id=other_node, plan_id="PLAN-002", worker_id="W-2", status="queued",
            substation_id="ST-1", estimated_start_time="2025-03-10T09:00:00",
        )
        same_plan = seed_assignment(
            con, node_id=same_node, worker_id="W-3", status="queued",
            substation_id="ST-1", estimated_start_time="2025-03-10T11:00:00",
        )
    scheduler.start_task(task, "W-1")
    scheduler.complete_task(task, "W-1", {})

    assert _substation(db)["current_assignment_id"] == other_plan
    assert _assignment(db, other_plan)["status"] == "pending"
    assert _assignment(db, same_plan)["status"] == "queued"


def test_completion_hands_substation_to_pending_task(env):
    db, scheduler, _, _ = env
    task = _seed_task(db)
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-node-9")
        waiting = seed_assignment(
            con, node_id=node, worker_id="W-2", substation_id="ST-1", estimated_start_time="2025-03-10T10:00:00"
        )
    scheduler.start_task(task, "W-1")
    scheduler.complete_task(task, "W-1", {})

    assert _substation(db)["current_assignment_id"] == waiting
    assert scheduler.start_task(waiting, "W-2").success


def test_worker_next_queued_task_same_plan_first(env):
    db, scheduler, _, _ = env
    task = _seed_task(db, substation_id=None)
    with db.connect() as con:
        seed_plan(con, "PLAN-002", "WO-002")
        other_plan_node = seed_node(con, "PLAN-002-node-1", plan_id="PLAN-002")
        same_plan_node = seed_node(con, "PLAN-001-node-2")
        seed_substation(con, "ST-2")
        other_plan = seed_assignment(
            con, node_id=other_plan_node, plan_id="PLAN-002", status="queued",
            substation_id="ST-2", estimated_start_time="2025-03-01T08:00:00",
        )
        same_plan = seed_assignment(
            con, node_id=same_plan_node, status="queued", substation_id="ST-1", sequence_number=2
        )
    scheduler.start_task(task, "W-1")
    scheduler.complete_task(task, "W-1", {})

    assert _assignment(db, same_plan)["status"] == "pending"
    assert _assignment(db, other_plan)["status"] == "queued"
    assert _substation(db)["current_assignment_id"] == same_plan


def test_worker_next_queued_task_without_substation_stays_queued(env):
    db, scheduler, _, _ = env
    task = _seed_task(db, substation_id=None)
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-node-2")
        nxt = seed_assignment(con, node_id=node, status="queued", sequence_number=2)
    scheduler.start_task(task, "W-1")
    result = scheduler.complete_task(task, "W-1", {})

    assert result.success, result.error_message
    assert _assignment(db, nxt)["status"] == "queued"
    assert _substation(db)["status"] == "available"

def test_worker_next_queued_task_from_another_plan(env):
    db, scheduler, _, _ = env
    task = _seed_task(db, substation_id=None)
    with db.connect() as con:
        seed_plan(con, "PLAN-002", "WO-002")
        node = seed_node(con, "PLAN-002-node-1", plan_id="PLAN-002")
        nxt = seed_assignment(con, node_id=node, plan_id="PLAN-002", status="queued", substation_id="ST-1")
    scheduler.start_task(task, "W-1")
    scheduler.complete_task(task, "W-1", {})

    assert _assignment(db, nxt)["status"] == "pending"
    sub = _substation(db)
    assert sub["status"] == "reserved"
    assert sub["current_assignment_id"] == nxt


def test_worker_next_queued_task_waits_for_busy_substation(env):
    db, scheduler, _, _ = env
    task = _seed_task(db, substation_id=None)
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-node-2")
        blocker = seed_assignment(con, node_id=node, worker_id="W-2", status="in_progress", substation_id="ST-1")
        con.execute("UPDATE substations SET status = 'in_use', current_assignment_id = ? WHERE id = 'ST-1'", (blocker,))
        nxt = seed_assignment(con, node_id=node, status="queued", substation_id="ST-1", sequence_number=2)
    scheduler.start_task(task, "W-1")
    scheduler.complete_task(task, "W-1", {})

    assert _assignment(db, nxt)["status"] == "queued"
    assert _substation(db)["current_assignment_id"] == blocker


def test_deferred_reservation(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-node-1")
        later = seed_assignment(con, node_id=node, substation_id="ST-1", estimated_start_time="2025-03-10T12:00:00")
        first = seed_assignment(con, node_id=node, substation_id="ST-1", estimated_start_time="2025-03-10T09:00:00")
        seed_assignment(con, node_id=node, status="queued", substation_id="ST-1", estimated_start_time="2025-03-10T07:00:00")

    assert scheduler.apply_deferred_reservation("ST-1") is True
    sub = _substation(db)
    assert sub["status"] == "reserved"
    assert sub["current_assignment_id"] == first
    assert _assignment(db, later)["status"] == "pending"

    # Already reserved: nothing more to do.
    assert scheduler.apply_deferred_reservation("ST-1") is False
    assert scheduler.apply_deferred_reservation("ST-404") is False


def test_deferred_reservation_never_preempts_running_task(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-node-1")
        running = seed_assignment(con, node_id=node, status="paused", substation_id="ST-1")
        seed_assignment(con, node_id=node, substation_id="ST-1")
        # Inconsistent row: substation says available but its holder is paused.
        con.execute("UPDATE substations SET current_assignment_id = ? WHERE id = 'ST-1'", (running,))

    assert scheduler.apply_deferred_reservation("ST-1") is False
    sub = _substation(db)
    assert sub["status"] == "available"
    assert sub["current_assignment_id"] == running


def test_deferred_reservation_returns_false_on_unexpected_error(env, monkeypatch):
    db, scheduler, _, _ = env
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-node-1")
        waiting = seed_assignment(con, node_id=node, substation_id="ST-1")

    def boom(*args, **kwargs):
        raise RuntimeError("lost connection")

    monkeypatch.setattr(scheduler, "promote_next_for_substation", boom)

    assert scheduler.apply_deferred_reservation("ST-1") is False
    assert _substation(db)["status"] == "available"
    assert _assignment(db, waiting)["status"] == "pending"


# ---------- Pause / resume ----------


def test_pause_and_resume(env):
    db, scheduler, clock, _ = env
    task = _seed_task(db)
    scheduler.start_task(task, "W-1")

    clock.advance(minutes=10)
    paused = scheduler.pause_task(task, "W-1", reason="Malzeme bekleniyor")
    assert paused.success
    assert paused.assignment.status == "paused"
    assert _substation(db)["status"] == "in_use"

    assert scheduler.complete_task(task, "W-1", {}).error.kind is SchedulerErrorKind.INVALID_STATE
    assert scheduler.pause_task(task, "W-1").error.kind is SchedulerErrorKind.INVALID_STATE

    clock.advance(minutes=25)
    assert scheduler.resume_task(task, "W-1").success
    clock.advance(minutes=5)
    assert scheduler.complete_task(task, "W-1", {}).success

    stats = StatusHistoryRepositoryImpl(db).get_pause_statistics(task)
    assert stats.pause_count == 1
    assert stats.resume_count == 1
    assert stats.total_paused_minutes == 25.0
    assert not stats.is_currently_paused


# ---------- Material requirements ----------


def test_material_requirements_are_base_quantities(env):
    db, scheduler, _, _ = env
    with db.connect() as con:
        node = seed_node(con, "PLAN-001-node-1", inputs={"M-001": (100, 2.0), "M-002": (5, None)})

    reqs = scheduler.get_material_requirements(node)

    assert [(r.material_code, r.required_qty) for r in reqs] == [("M-001", 100.0), ("M-002", 5.0)]
    assert scheduler.get_material_requirements(404) == []
