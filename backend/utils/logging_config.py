import logging
import logging.handlers
import contextvars
import re
from pathlib import Path
from typing import Optional

from core.config import settings
from api.dependencies import extract_access_token
from core.security import InvalidTokenError, decode_access_token
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


def map_log_level(level_name: str) -> int:
    level = logging.getLevelName((level_name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


user_id_var = contextvars.ContextVar("user_id", default="-")
api_var = contextvars.ContextVar("api", default="-")

# Compact JWS: three base64url segments, the first one a JSON header ("eyJ")
_JWT_PATTERN = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]+")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Inject per-request context variables
        record.user_id = user_id_var.get()
        record.api = api_var.get()
        return True


class TokenRedactionFilter(logging.Filter):
    """Masks anything shaped like a signed token before it reaches a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if _JWT_PATTERN.search(message):
            record.msg = _JWT_PATTERN.sub("[redacted-token]", message)
            record.args = None
        return True


def _prepare(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    handler.addFilter(TokenRedactionFilter())
    return handler


def _daily_file(log_dir: Path, filename: str) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir / filename),
        when="midnight",
        interval=1,
        backupCount=max(int(settings.LOG_TTL_DAYS), 0),
        encoding="utf-8",
        utc=True,
    )
    handler.suffix = "%Y-%m-%d"
    return handler


def _build_handlers(level: int, log_dir: Path) -> dict[str, logging.Handler]:
    formatter = logging.Formatter(
        fmt="%(levelname)s - %(asctime)s - %(user_id)s - %(api)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return {
        "app": _prepare(_daily_file(log_dir, "app.log"), level, formatter),
        "access": _prepare(_daily_file(log_dir, "access.log"), level, formatter),
        "error": _prepare(_daily_file(log_dir, "error.log"), logging.WARNING, formatter),
        "console": _prepare(logging.StreamHandler(), level, formatter),
    }


def _attach(target_logger: logging.Logger, handlers: list[logging.Handler], level: int, propagate: bool = False) -> None:
    for h in list(target_logger.handlers):
        target_logger.removeHandler(h)
    for h in handlers:
        target_logger.addHandler(h)
    target_logger.setLevel(level)
    target_logger.propagate = propagate


def configure_logging(app_logger_name: Optional[str] = None) -> logging.Logger:
    """Configure logging with daily rotation and TTL-based retention.

    - Rotates at midnight; keeps last LOG_TTL_DAYS files
    - Root, app and Uvicorn loggers write to app/error/console; uvicorn.access to access/console
    """
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = map_log_level(settings.LOG_LEVEL)
    handlers = _build_handlers(level, log_dir)
    general = [handlers["app"], handlers["error"], handlers["console"]]

    _attach(logging.getLogger(), general, level, propagate=True)

    app_logger = logging.getLogger(app_logger_name or "accounts")
    _attach(app_logger, general, level)

    for name in ("uvicorn", "uvicorn.error", "fastapi"):
        _attach(logging.getLogger(name), general, level)
    _attach(logging.getLogger("uvicorn.access"), [handlers["access"], handlers["console"]], level)

    return app_logger


def _peek_user_id(request: Request) -> str:
    """Identity id for log lines only; a bad or missing token is not rejected here."""
    token = extract_access_token(request)
    if not token:
        return "-"
    try:
        return decode_access_token(token).get("id") or "-"
    except InvalidTokenError:
        return "-"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        context_token_user = user_id_var.set(_peek_user_id(request))
        context_token_api = api_var.set(f"{request.method} {request.url.path}")
        try:
            return await call_next(request)
        finally:
            user_id_var.reset(context_token_user)
            api_var.reset(context_token_api)
