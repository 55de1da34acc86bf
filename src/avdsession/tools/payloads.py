"""Structured success/error payloads returned by tool handlers."""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec

from pydantic import ValidationError

from avdsession.shared.enums import ErrorKind
from avdsession.shared.exceptions import AvdSessionError

logger = logging.getLogger(__name__)

Payload = dict[str, Any]
P = ParamSpec("P")


def ok(**fields: Any) -> Payload:
    return {"ok": True, **fields}


def error_payload(exc: BaseException, *, fallback: ErrorKind = ErrorKind.INTERNAL_ERROR) -> Payload:
    """Render ``exc`` as ``{"ok": False, "error": {...}}``.

    Typed errors keep their kind; validation errors become INVALID_ARGUMENT;
    anything else gets ``fallback``.
    """
    if isinstance(exc, AvdSessionError):
        error = exc.to_dict()
    elif isinstance(exc, ValidationError):
        error = {
            "code": ErrorKind.INVALID_ARGUMENT.value,
            "message": "invalid arguments",
            "details": {"errors": exc.errors(include_url=False)},
        }
    else:
        error = {"code": fallback.value, "message": str(exc), "details": {"exception": type(exc).__name__}}
    return {"ok": False, "error": error}


def tool_handler(
    fallback: ErrorKind = ErrorKind.INTERNAL_ERROR,
) -> Callable[[Callable[P, Awaitable[Payload]]], Callable[P, Awaitable[Payload]]]:
    """Turn every exception raised by an async handler into an error payload."""

    def decorate(func: Callable[P, Awaitable[Payload]]) -> Callable[P, Awaitable[Payload]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Payload:
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                logger.warning("%s failed: %s", func.__name__, exc)
                return error_payload(exc, fallback=fallback)

        return wrapper

    return decorate
