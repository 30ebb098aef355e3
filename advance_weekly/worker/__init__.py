"""
Advance Weekly worker - runs async operations through their handlers.

Usage:
    python -m advance_weekly.worker

Components:
    - dispatcher: claims one operation and runs its handler to a terminal state
    - handlers: weekly reflection and career plan generation
    - scheduler: periodic tick enqueueing scheduled reflections
    - loop: polls queued operations for out-of-process execution
    - registry: builds the handler registry and dispatcher at process start
"""

from .dispatcher import Dispatcher, HandlerRegistry, JobContext
from .loop import WorkerLoop, run_worker
from .registry import build_dispatcher, build_registry
from .scheduler import PreferredTimePolicy, Scheduler, TickReport, TriggerPolicy

__all__ = [
    "Dispatcher",
    "HandlerRegistry",
    "JobContext",
    "WorkerLoop",
    "run_worker",
    "build_dispatcher",
    "build_registry",
    "PreferredTimePolicy",
    "Scheduler",
    "TickReport",
    "TriggerPolicy",
]
