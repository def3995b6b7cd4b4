"""Request-scoped values stamped onto every log record."""
from __future__ import annotations

from contextvars import ContextVar
from uuid import UUID

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_ctx_var: ContextVar[str | None] = ContextVar("user_id", default=None)


def get_request_id() -> str | None:
    return request_id_ctx_var.get()


def get_user_id() -> str | None:
    return user_id_ctx_var.get()


def parse_user_id(raw: str | None) -> str | None:
    """Canonical form of a user id taken from a path or query string, else None."""
    if not raw:
        return None
    try:
        return str(UUID(raw))
    except ValueError:
        return None
