"""
permissions_sdk.tier1_runtime.context
──────────────────────────────────────
Per-session context (correlation id, session id, active role) carried across
async boundaries with contextvars and mirrored into structlog so every log
line from a resolution carries it.
"""
from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field

import structlog


@dataclass
class RequestContext:
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str | None = None
    role: str | None = None


_ctx: ContextVar[RequestContext | None] = ContextVar(
    "permissions_request_context",
    default=None,
)


def get_context() -> RequestContext | None:
    """Return the current context, if one was set."""
    return _ctx.get()


def set_context(ctx: RequestContext) -> None:
    """Set the context for the current async scope."""
    _ctx.set(ctx)
    structlog.contextvars.bind_contextvars(
        request_id=ctx.request_id,
        session_id=ctx.session_id,
        role=ctx.role,
    )


__all__ = ["RequestContext", "get_context", "set_context"]
