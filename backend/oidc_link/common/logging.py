"""
Logging setup + request logging middleware

Link tokens appear in the `/login/{token}` path and are bearer credentials,
so request paths are redacted here and query strings are never logged.
uvicorn's own access log is turned off in `python -m oidc_link` for the same
reason.
"""
# mypy: ignore-errors

import os
import re
import sys
import time
import uuid
from collections.abc import Callable
from typing import Optional

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from oidc_link.core.settings import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "trace_id={extra[trace_id]} | "
    "{extra[method]} {extra[path]} | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | trace_id={extra[trace_id]} | "
    "{extra[method]} {extra[path]} | {name}:{function}:{line} | {message}"
)

# (file name, rotation, minimum level or None for the configured level)
FILE_SINKS = (
    ("app.log", "100 MB", None),
    ("error.log", "50 MB", "ERROR"),
)

_LOGIN_PATH = re.compile(r"^(/login/)([^/]{8})[^/]*")


def redact_path(path: str) -> str:
    """Keep only the first 8 characters of a link token in a request path"""
    return _LOGIN_PATH.sub(r"\1\2…", path)


class LoggingMiddleware(BaseHTTPMiddleware):
    """HTTP request logging middleware"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"

        trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.trace_id = trace_id
        log = logger.bind(
            trace_id=trace_id,
            method=request.method,
            path=redact_path(request.url.path),
            client=client_host,
        )

        try:
            with logger.contextualize(trace_id=trace_id):
                response = await call_next(request)
        except Exception as e:
            log.opt(exception=True).error(
                f"request.failed duration={time.time() - start_time:.3f}s error={type(e).__name__}"
            )
            raise

        process_time = time.time() - start_time
        message = f"request.completed status={response.status_code} duration={process_time:.3f}s"
        if response.status_code >= 500:
            log.error(message)
        elif response.status_code >= 400:
            log.warning(message)
        else:
            log.info(message)

        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        response.headers["X-Trace-Id"] = trace_id
        return response


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> None:
    """
    Configure loguru

    Colored console output plus rotated files under `log_dir`; console only when
    the directory cannot be created (e.g. read-only container filesystem).
    """
    log_dir = log_dir or settings.log_dir
    level = (level or settings.log_level).upper()

    logger.remove()
    logger.configure(extra={"trace_id": "-", "method": "-", "path": "-", "client": "-"})
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    try:
        os.makedirs(log_dir, exist_ok=True)
        for filename, rotation, sink_level in FILE_SINKS:
            logger.add(
                os.path.join(log_dir, filename),
                rotation=rotation,
                retention="30 days",
                compression="zip",
                format=FILE_FORMAT,
                level=sink_level or level,
            )
    except OSError as e:
        logger.warning(f"File logging disabled ({log_dir}): {e}")

    logger.info(f"Logging initialised (level={level})")
