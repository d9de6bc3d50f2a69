from __future__ import annotations

import logging
import sys
import time
import uuid
from decimal import Decimal
from typing import Any, Dict

import structlog
from fastapi import Request

# Chatty per-statement loggers, only shown when DEBUG is on
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def _add_level(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict["level"] = method_name
    return event_dict


def _render_decimals(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Log amounts as plain strings instead of Decimal('...') reprs."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def configure_logging(env: str = "development", debug: bool = False) -> None:
    """Route structlog and stdlib logging to stdout through one console renderer.

    Colours are turned off in production.
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            _add_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _render_decimals,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=env != "production"),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Bind request_id, path and the acting user to every log line of a request."""
    started = time.perf_counter()
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())

    context: Dict[str, Any] = {"request_id": request_id, "path": request.url.path}
    user_id = request.headers.get("x-user-id")
    if user_id:
        context["user_id"] = user_id
    structlog.contextvars.bind_contextvars(**context)

    response = None
    try:
        response = await call_next(request)
    finally:
        structlog.get_logger("request").info(
            "request.completed",
            method=request.method,
            status=response.status_code if response is not None else 500,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        structlog.contextvars.clear_contextvars()

    response.headers["x-request-id"] = request_id
    return response
