from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from mesfifo.core.models import CompletionData, TaskResult
from mesfifo.data.db import Db
from mesfifo.data.settings_repository import SettingsRepositoryImpl
from mesfifo.history.status_history import StatusHistoryRepositoryImpl
from mesfifo.logging_conf import configure_logging
from mesfifo.scheduler import FifoScheduler
from mesfifo.settings import Settings

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FIFO worker task scheduler")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path (default: MESFIFO_DB_PATH or db/mesfifo.db)")
    parser.add_argument("--log-level", type=str, default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create or migrate the database schema")

    p = sub.add_parser("queue", help="Show a worker's FIFO queue")
    p.add_argument("worker_id")
    p.add_argument("--limit", type=int, default=10)

    p = sub.add_parser("next", help="Show a worker's next task")
    p.add_argument("worker_id")

    p = sub.add_parser("stats", help="Show a worker's queue statistics")
    p.add_argument("worker_id")

    p = sub.add_parser("start", help="Start a task")
    p.add_argument("assignment_id")
    p.add_argument("worker_id")

    p = sub.add_parser("complete", help="Complete a task")
    p.add_argument("assignment_id")
    p.add_argument("worker_id")
    p.add_argument("--quantity", type=float, default=0.0)
    p.add_argument("--defects", type=float, default=0.0)
    p.add_argument("--input-scrap", type=str, default=None, help='JSON map, e.g. {"M-001": 2}')
    p.add_argument("--production-scrap", type=str, default=None, help="JSON map")
    p.add_argument("--notes", type=str, default=None)

    p = sub.add_parser("pauses", help="Show pause statistics of an assignment")
    p.add_argument("assignment_id", type=int)

    p = sub.add_parser("set-config", help="Set a runtime switch in app_config")
    p.add_argument("key")
    p.add_argument("value")
    return parser


def _print(value) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2, default=str))


def _print_result(result: TaskResult) -> int:
    if result.success:
        _print(asdict(result))
        return 0
    _print({"success": False, "error": result.error.to_dict() if result.error else None})
    return 1


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(args.log_level or settings.log_level)

    db = Db(args.db or settings.db_path)
    db.ensure_schema()

    if args.command == "init-db":
        logger.info("Schema ready at %s", db.path)
        return 0

    if args.command == "set-config":
        SettingsRepositoryImpl(db).set_config(key=args.key, value=args.value)
        return 0

    if args.command == "pauses":
        _print(asdict(StatusHistoryRepositoryImpl(db).get_pause_statistics(args.assignment_id)))
        return 0

    scheduler = FifoScheduler(
        db,
        lot_tracking_enabled=SettingsRepositoryImpl(db, lot_tracking_default=settings.lot_tracking_default).is_lot_tracking_enabled,
    )

    if args.command == "queue":
        _print([asdict(t) for t in scheduler.get_worker_task_queue(args.worker_id, args.limit)])
        return 0
    if args.command == "next":
        task = scheduler.get_worker_next_task(args.worker_id)
        _print(asdict(task) if task is not None else None)
        return 0
    if args.command == "stats":
        _print(asdict(scheduler.get_worker_task_stats(args.worker_id)))
        return 0
    if args.command == "start":
        return _print_result(scheduler.start_task(args.assignment_id, args.worker_id))
    if args.command == "complete":
        data = CompletionData.from_mapping(
            {
                "quantity_produced": args.quantity,
                "defect_quantity": args.defects,
                "input_scrap_counters": args.input_scrap,
                "production_scrap_counters": args.production_scrap,
                "notes": args.notes,
            }
        )
        return _print_result(scheduler.complete_task(args.assignment_id, args.worker_id, data))

    return 2


if __name__ == "__main__":
    sys.exit(main())
