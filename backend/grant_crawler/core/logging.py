"""
Logging configuration.

Two layers share one structlog pipeline:
- Worker/pipeline code logs key-value events through structlog.get_logger()
  and binds job context with logger.bind(job_id=..., job_type=...).
- The HTTP API emits one wide event (canonical log line) per request,
  built up during the request and tail-sampled on emission.
"""

import logging
import os
import random
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import Processor

_request_event: ContextVar[dict[str, Any]] = ContextVar("request_event")
_request_start: ContextVar[float] = ContextVar("request_start", default=0.0)

# Paths whose requests are always kept by the sampler
ALWAYS_KEEP_PATHS = ("/jobs", "/extract", "/records")


def enrich_event(**kwargs: Any) -> None:
    """
    Add fields to the current request's wide event.

    Dotted keys build nested objects:

        enrich_event(**{"job.id": job.id, "job.type": job.job_type})
    """
    event = _request_event.get({})
    for key, value in kwargs.items():
        if "." in key:
            parts = key.split(".")
            target = event
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = value
        else:
            event[key] = value


def init_request_event(
    request_id: str | None = None,
    method: str = "",
    path: str = "",
    client_ip: str = "",
    user_agent: str = "",
) -> dict[str, Any]:
    """Initialize a new wide event for the request."""
    event = {
        "request_id": request_id or str(uuid.uuid4())[:8],
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S.000Z", time.gmtime()),
        "http": {
            "method": method,
            "path": path,
            "client_ip": client_ip,
            "user_agent": user_agent[:200] if user_agent else None,
        },
        "service": {
            "name": "grant-crawler-api",
            "version": os.environ.get("APP_VERSION", "dev"),
            "environment": os.environ.get("ENVIRONMENT", "development"),
        },
    }

    _request_event.set(event)
    _request_start.set(time.time())
    return event


def finalize_request_event(
    status_code: int,
    error: Exception | None = None,
) -> dict[str, Any]:
    """Finalize and return the wide event for emission."""
    event = _request_event.get({})
    start_time = _request_start.get()

    event.setdefault("http", {})["status_code"] = status_code
    event["duration_ms"] = int((time.time() - start_time) * 1000)
    event["outcome"] = "success" if status_code < 400 else "error"

    if error:
        event["error"] = {
            "type": type(error).__name__,
            "message": str(error)[:500],
        }
        if hasattr(error, "details"):
            event["error"]["details"] = error.details

    return event


def should_sample(event: dict[str, Any]) -> bool:
    """
    Tail sampling decision for wide events.

    Keeps every error, every request slower than 2s and every job-related
    request; samples 10% of the rest.
    """
    status_code = event.get("http", {}).get("status_code", 200)
    if status_code >= 400:
        return True

    if event.get("duration_ms", 0) > 2000:
        return True

    path = event.get("http", {}).get("path", "")
    if any(p in path for p in ALWAYS_KEEP_PATHS):
        return True

    return random.random() < 0.10


def add_request_id(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Processor to add request_id to all log entries."""
    current_event = _request_event.get({})
    if current_event and "request_id" in current_event:
        event_dict["request_id"] = current_event["request_id"]
    return event_dict


def configure_logging(json_logs: bool = True, log_level: str = "INFO") -> None:
    """
    Configure structlog.

    Args:
        json_logs: JSON output for production, colored console otherwise.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        add_request_id,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def emit_wide_event(event: dict[str, Any]) -> None:
    """Emit the canonical log line for a request."""
    logger = structlog.get_logger("wide_event")

    if not should_sample(event):
        return

    status_code = event.get("http", {}).get("status_code", 200)

    if status_code >= 500:
        logger.error("request_completed", **event)
    elif status_code >= 400:
        logger.warning("request_completed", **event)
    else:
        logger.info("request_completed", **event)
