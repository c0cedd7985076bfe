from .status_refresher import refresh_certification_statuses
from .reminder_dispatcher import dispatch_due_reminders
from .scheduler_tick import run_scheduler_tick

__all__ = [
    "refresh_certification_statuses",
    "dispatch_due_reminders",
    "run_scheduler_tick",
]
