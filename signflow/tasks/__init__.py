"""Scheduled jobs that run outside the HTTP request cycle."""

from signflow.tasks.reminder_tasks import run_reminder_sweep

__all__ = [
    "run_reminder_sweep",
]
