from .email_transport import (
    EmailTransport,
    LoggingEmailTransport,
    HttpEmailTransport,
    get_email_transport,
)
from .renderer import render_reminder_notification

__all__ = [
    "EmailTransport",
    "LoggingEmailTransport",
    "HttpEmailTransport",
    "get_email_transport",
    "render_reminder_notification",
]
