from contextvars import ContextVar, Token
from typing import Optional

# Scheduler ticks play the role of requests: each tick gets its own id so every
# log line written while it runs can be correlated.
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current tick/request ID from context."""
    return request_id_context.get()


def set_request_id(request_id: str) -> Token:
    """Set the tick/request ID in context; keep the token to restore the previous one."""
    return request_id_context.set(request_id)


def reset_request_id(token: Token) -> None:
    """Restore the ID that was active before the matching set_request_id call."""
    request_id_context.reset(token)
