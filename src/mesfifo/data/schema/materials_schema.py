from __future__ import annotations

import sqlite3


def ensure_schema(con: sqlite3.Connection) -> None:
    con.executescript(
        """
        CREATE TABLE IF NOT EXISTS materials (
            code TEXT PRIMARY KEY,
            name TEXT,
            type TEXT,
            category TEXT,
            unit TEXT NOT NULL DEFAULT 'kg',
            stock REAL NOT NULL DEFAULT 0,
            wip_reserved REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'Aktif',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS stock_movements (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            material_code TEXT NOT NULL,
            type TEXT NOT NULL CHECK (type IN ('in', 'out')),
            sub_type TEXT,
            quantity REAL NOT NULL,
            stock_before REAL,
            stock_after REAL,
            lot_number TEXT,
            lot_date TEXT,
            movement_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            assignment_id INTEGER,
            requested_quantity REAL,
            partial_reservation INTEGER NOT NULL DEFAULT 0,
            warning TEXT,
            reference TEXT,
            reference_type TEXT,
            related_plan_id TEXT,
            related_node_id TEXT,
            node_sequence INTEGER,
            notes TEXT,
            FOREIGN KEY(material_code) REFERENCES materials(code)
        );

        CREATE INDEX IF NOT EXISTS idx_material_lot
            ON stock_movements(material_code, lot_number)
            WHERE lot_number IS NOT NULL;

        CREATE INDEX IF NOT EXISTS idx_fifo_lots
            ON stock_movements(material_code, lot_date, type)
            WHERE lot_number IS NOT NULL;
        """
    )
