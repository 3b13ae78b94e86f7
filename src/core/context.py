"""Request-scoped logging context.

The middleware assigns a request ID; the auth dependency records who is
acting once the bearer token is verified. Admin overrides and denials are
then attributable in every log line without threading the caller through
the engine.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
actor_role_var: ContextVar[str | None] = ContextVar("actor_role", default=None)


def get_request_id() -> str:
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Use the inbound request ID or mint a new one."""
    rid = request_id or str(uuid4())
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    return user_id_var.get()


def set_user_id(user_id: str | UUID | None) -> None:
    user_id_var.set(str(user_id) if user_id is not None else None)


def get_actor_role() -> str | None:
    return actor_role_var.get()


def set_actor(user_id: str | UUID, role: str) -> None:
    """Record the verified caller for the rest of the request."""
    set_user_id(user_id)
    actor_role_var.set(role)


def get_context() -> dict[str, Any]:
    """Non-empty context values, ready to merge into a log event."""
    context: dict[str, Any] = {}

    if request_id := get_request_id():
        context["request_id"] = request_id
    if user_id := get_user_id():
        context["user_id"] = user_id
    if role := get_actor_role():
        context["actor_role"] = role

    return context


def clear_context() -> None:
    request_id_var.set("")
    user_id_var.set(None)
    actor_role_var.set(None)
