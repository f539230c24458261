"""Lot numbers: LOT-{materialCode}-{YYYYMMDD}-{seq}.

Sequences are per material per day and derived from the lot numbers already
present in stock_movements, so generation must run inside the transaction
that inserts the movement.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime

logger = logging.getLogger(__name__)

_LOT_RE = re.compile(r"^LOT-(?P<material>.+)-(?P<date>\d{8})-(?P<seq>\d{3})$")


@dataclass(frozen=True)
class ParsedLot:
    lot_number: str
    material_code: str
    date_str: str
    date: date
    sequence: int


def generate_lot_number(con: sqlite3.Connection, material_code: str, when: date | datetime | None = None) -> str:
    if not material_code or not isinstance(material_code, str):
        raise ValueError("Invalid material code: must be a non-empty string")
    when = when or datetime.now()
    if isinstance(when, datetime):
        when = when.date()

    prefix = f"LOT-{material_code}-{when:%Y%m%d}"
    rows = con.execute(
        "SELECT DISTINCT lot_number FROM stock_movements WHERE material_code = ? AND lot_number LIKE ?",
        (material_code, f"{prefix}-%"),
    ).fetchall()

    last_seq = 0
    for r in rows:
        parsed = parse_lot_number(str(r[0]))
        if parsed is not None and parsed.material_code == material_code:
            last_seq = max(last_seq, parsed.sequence)

    lot_number = f"{prefix}-{last_seq + 1:03d}"
    logger.debug("Generated lot number %s", lot_number)
    return lot_number


def validate_lot_number(lot_number: str | None) -> bool:
    if not lot_number or not isinstance(lot_number, str):
        return False
    return _LOT_RE.match(lot_number) is not None


def parse_lot_number(lot_number: str | None) -> ParsedLot | None:
    if not validate_lot_number(lot_number):
        return None
    m = _LOT_RE.match(lot_number)
    date_str = m.group("date")
    try:
        parsed_date = datetime.strptime(date_str, "%Y%m%d").date()
    except ValueError:
        return None
    return ParsedLot(
        lot_number=lot_number,
        material_code=m.group("material"),
        date_str=date_str,
        date=parsed_date,
        sequence=int(m.group("seq")),
    )


def get_lots_for_material(con: sqlite3.Connection, material_code: str) -> list[dict]:
    """Lots with a positive balance, oldest lot date first."""
    rows = con.execute(
        """
        SELECT lot_number, MIN(lot_date) AS lot_date,
               SUM(CASE WHEN type = 'in' THEN quantity ELSE -quantity END) AS balance
        FROM stock_movements
        WHERE material_code = ? AND lot_number IS NOT NULL
        GROUP BY lot_number
        HAVING balance > 0.0000005
        ORDER BY MIN(lot_date) IS NULL, MIN(lot_date), MIN(movement_date), lot_number
        """,
        (material_code,),
    ).fetchall()
    return [{"lot_number": r["lot_number"], "lot_date": r["lot_date"], "balance": float(r["balance"])} for r in rows]


def lot_number_exists(con: sqlite3.Connection, lot_number: str) -> bool:
    row = con.execute("SELECT 1 FROM stock_movements WHERE lot_number = ? LIMIT 1", (lot_number,)).fetchone()
    return row is not None
