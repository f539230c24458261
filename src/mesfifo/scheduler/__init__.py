"""Scheduler package.

FifoScheduler runs the worker task lifecycle (queue, start, complete,
pause/resume); the repository module holds the row-level queries it uses.
"""

from mesfifo.scheduler.fifo_scheduler import FifoScheduler
from mesfifo.scheduler.scheduler_repository import SchedulerRepositoryImpl

__all__ = [
    "FifoScheduler",
    "SchedulerRepositoryImpl",
]
