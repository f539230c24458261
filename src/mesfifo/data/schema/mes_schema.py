from __future__ import annotations

import sqlite3


def ensure_schema(con: sqlite3.Connection) -> None:
    con.executescript(
        """
        CREATE TABLE IF NOT EXISTS production_plans (
            id TEXT PRIMARY KEY,
            work_order_code TEXT,
            quote_id TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS operations (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL
        );

        -- id is the integer key assignments point to; node_id is the plan-scoped
        -- text key used by predecessors and material inputs (e.g. PLAN-001-node-2).
        CREATE TABLE IF NOT EXISTS plan_nodes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            node_id TEXT NOT NULL UNIQUE,
            plan_id TEXT NOT NULL,
            name TEXT,
            operation_id TEXT,
            output_code TEXT,
            output_qty REAL,
            FOREIGN KEY(plan_id) REFERENCES production_plans(id)
        );

        CREATE TABLE IF NOT EXISTS node_predecessors (
            node_id TEXT NOT NULL,
            predecessor_node_id TEXT NOT NULL,
            PRIMARY KEY(node_id, predecessor_node_id)
        );

        CREATE TABLE IF NOT EXISTS node_material_inputs (
            node_id TEXT NOT NULL,
            material_code TEXT NOT NULL,
            required_quantity REAL NOT NULL DEFAULT 0,
            unit_ratio REAL,
            PRIMARY KEY(node_id, material_code)
        );

        CREATE TABLE IF NOT EXISTS substations (
            id TEXT PRIMARY KEY,
            name TEXT,
            status TEXT NOT NULL DEFAULT 'available'
                CHECK (status IN ('available', 'reserved', 'in_use')),
            current_assignment_id INTEGER,
            assigned_worker_id TEXT,
            current_operation TEXT,
            reserved_at TEXT,
            in_use_since TEXT,
            current_expected_end TEXT,
            updated_at TEXT
        );

        CREATE TABLE IF NOT EXISTS worker_assignments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            worker_id TEXT NOT NULL,
            plan_id TEXT NOT NULL,
            node_id INTEGER NOT NULL,
            substation_id TEXT,
            operation_id TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            scheduling_mode TEXT NOT NULL DEFAULT 'fifo',
            is_urgent INTEGER NOT NULL DEFAULT 0,
            estimated_start_time TEXT,
            estimated_end_time TEXT,
            expected_start TEXT,
            sequence_number INTEGER,
            nominal_time INTEGER,
            effective_time INTEGER,
            pre_production_reserved_amount TEXT,
            actual_reserved_amounts TEXT,
            material_reservation_status TEXT,
            started_at TEXT,
            completed_at TEXT,
            actual_quantity REAL,
            defect_quantity REAL,
            input_scrap_count TEXT,
            production_scrap_count TEXT,
            notes TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(plan_id) REFERENCES production_plans(id),
            FOREIGN KEY(node_id) REFERENCES plan_nodes(id),
            FOREIGN KEY(substation_id) REFERENCES substations(id)
        );

        CREATE INDEX IF NOT EXISTS idx_fifo_queue
            ON worker_assignments(worker_id, status, expected_start)
            WHERE status IN ('pending', 'ready');

        CREATE INDEX IF NOT EXISTS idx_substation_waiting
            ON worker_assignments(substation_id, status, estimated_start_time);

        CREATE TABLE IF NOT EXISTS assignment_material_reservations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            assignment_id INTEGER NOT NULL,
            material_code TEXT NOT NULL,
            lot_number TEXT,
            pre_production_qty REAL,
            actual_reserved_qty REAL NOT NULL DEFAULT 0,
            consumed_qty REAL NOT NULL DEFAULT 0,
            reservation_status TEXT NOT NULL DEFAULT 'reserved',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(assignment_id) REFERENCES worker_assignments(id)
        );

        CREATE INDEX IF NOT EXISTS idx_reservation_assignment
            ON assignment_material_reservations(assignment_id, reservation_status);

        CREATE TABLE IF NOT EXISTS assignment_status_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            assignment_id INTEGER NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            changed_by TEXT,
            reason TEXT,
            metadata_json TEXT,
            changed_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_status_history_assignment
            ON assignment_status_history(assignment_id, changed_at);
        """
    )
