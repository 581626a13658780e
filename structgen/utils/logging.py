"""
Structured Logging

All logs are JSON with consistent, queryable fields.
Query logs by: module, action, model, function, etc.

LOKI / JQ QUERIES
=================
# All errors
{project="structgen"} | json | level="ERROR"

# Choices dropped by the response validator
{project="structgen"} | json | module="llm.response" action="choice_dropped"

# Feedback loops that ran out of budget
{project="structgen"} | json | module="llm.invoker" action="invoke_failed"

# LaTeX fixer short-circuits
{project="structgen"} | json | module="latex" action="triage_skipped"

# Provider latency
{project="structgen"} | json | action="provider_response"

USAGE
=====
from structgen.utils.logging import log, get_logger, configure_logging

MODULE = "llm.invoker"
logger = get_logger()

log.info(logger, MODULE, "invoke_done", "Object generated",
         model=model_id, attempts=2)

log.error(logger, MODULE, "transport_failed", "Provider call failed",
          error=str(e), model=model_id)

The library only emits records on the "structgen" logger. Nothing is
printed until the application (or a script) calls configure_logging().

ACTION NAMING
=============
Consistent suffixes for queryable actions:
  *_start     → beginning of an operation
  *_done      → successful completion
  *_failed    → error/failure
  *_skipped   → intentionally skipped
  *_fallback  → falling back to alternative path
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

LIBRARY_LOGGER = "structgen"

_BASE_FIELDS = ("ts", "level", "module", "action", "msg")

# Third-party loggers that are noisy below WARNING.
_QUIET_LOGGERS = (
    "langchain",
    "langchain_core",
    "langchain_openai",
    "openai",
    "httpx",
    "httpcore",
    "asyncio",
)


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class StructuredFormatter(logging.Formatter):
    """JSON formatter. Third-party records are wrapped so they stay parseable."""

    def __init__(self, pretty: bool = False):
        super().__init__()
        self.pretty = pretty

    def format(self, record: logging.LogRecord) -> str:
        data = self._fields(record)
        if self.pretty:
            return self._pretty(data)
        return json.dumps(data, default=str, separators=(",", ":"))

    def _fields(self, record: logging.LogRecord) -> dict[str, Any]:
        structured = getattr(record, "_structured", False)
        data: dict[str, Any] = {
            "ts": _timestamp(),
            "level": record.levelname,
            "module": record._module if structured else "external",
            "action": record._action if structured else record.name,
            "msg": record.getMessage(),
        }
        if structured:
            data.update(record._extra)
        if record.exc_info:
            data["traceback"] = self.formatException(record.exc_info)
        return data

    def _pretty(self, data: dict) -> str:
        """Human-readable format for development."""
        ts = data["ts"][11:23]  # HH:MM:SS.mmm
        lvl = data["level"][0]
        mod = data["module"].upper()[:12].ljust(12)
        ctx = " ".join(f"{k}={v}" for k, v in data.items() if k not in _BASE_FIELDS)
        line = f"{ts} {lvl} [{mod}] {data['action']}: {data['msg']}"
        return line + (f" | {ctx}" if ctx else "")


class StructuredLogger:
    """Structured calls on top of stdlib loggers.

    Every method takes the logger, a module name, an action name, a message
    and context fields. Fields set to None are dropped.
    """

    def emit(self, logger: logging.Logger, level: int, module: str, action: str,
             msg: str, **fields) -> None:
        if not logger.isEnabledFor(level):
            return
        logger.log(level, msg, extra={
            "_structured": True,
            "_module": module,
            "_action": action,
            "_extra": {k: v for k, v in fields.items() if v is not None},
        })

    def debug(self, logger: logging.Logger, module: str, action: str, msg: str, **fields) -> None:
        self.emit(logger, logging.DEBUG, module, action, msg, **fields)

    def info(self, logger: logging.Logger, module: str, action: str, msg: str, **fields) -> None:
        self.emit(logger, logging.INFO, module, action, msg, **fields)

    def warning(self, logger: logging.Logger, module: str, action: str, msg: str, **fields) -> None:
        self.emit(logger, logging.WARNING, module, action, msg, **fields)

    def error(
        self,
        logger: logging.Logger,
        module: str,
        action: str,
        msg: str,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
        **fields,
    ) -> None:
        """Log ERROR level. `error` is the short reason, `error_type` the exception class."""
        self.emit(logger, logging.ERROR, module, action, msg,
                  error=error, error_type=error_type, **fields)


# Shared instance, import this everywhere
log = StructuredLogger()


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """The library logger, or a child of it ('structgen.<name>')."""
    if name:
        return logging.getLogger(f"{LIBRARY_LOGGER}.{name}")
    return logging.getLogger(LIBRARY_LOGGER)


def configure_logging() -> None:
    """Configure root logger with structured formatter. Call once at startup.

    Library code never calls this; applications and scripts do.

    Reads from environment:
      LOG_FORMAT: "json" (default) or "pretty" (for development)
      LOG_LEVEL: "INFO" (default), "DEBUG", "WARNING", "ERROR"
    """
    pretty = os.environ.get("LOG_FORMAT", "json") == "pretty"
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(pretty=pretty))
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
