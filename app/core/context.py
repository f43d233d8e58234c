"""Identifiers stamped onto every log record of the current request."""

from contextvars import ContextVar
from typing import NamedTuple

_UNSET = "-"

_request_id: ContextVar[str] = ContextVar("request_id", default=_UNSET)
_principal_id: ContextVar[str] = ContextVar("principal_id", default=_UNSET)


class LogContext(NamedTuple):
    request_id: str
    principal_id: str


def begin_request(request_id: str) -> None:
    """Start a fresh context; the principal stays unknown until authenticated."""
    _request_id.set(request_id)
    _principal_id.set(_UNSET)


def bind_principal(principal_id: str) -> None:
    _principal_id.set(principal_id)


def current() -> LogContext:
    return LogContext(_request_id.get(), _principal_id.get())
