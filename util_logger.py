"""
Unified Logger System.

Structured JSON logging shared by tracked scripts, the reporter daemon and
the retention sweeper. Each record is written as one JSON line on stderr;
stdout is left to command output (status, sweep results).

Design Principles:
    - Component-specific loggers, one per class or module
    - Enum safety for components and levels
    - Run/host correlation fields attached by a logging.Filter

Exports:
    ComponentType: Enum for component types
    LogLevel: Enum for log levels
    LogContext: Correlation fields (run, subtask, host, pid)
    ComponentConfig: Per-component logger settings
    JSONFormatter: Structured JSON formatter
    LoggerFactory: Factory for creating loggers
    log_exceptions: Exception logging decorator

Environment:
    LOG_LEVEL: Default level for every component (default INFO)
"""

import json
import logging
import os
import socket
import sys
import traceback
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Dict, Optional


# ============================================================================
# COMPONENT TYPES
# ============================================================================

class ComponentType(Enum):
    """Layer a logger belongs to; becomes the first part of the logger name."""
    CONTEXT = "context"        # Execution context / facade layer
    STATE = "state"            # Run/subtask state machine
    SERVICE = "service"        # Reporter, retention, registration
    REPOSITORY = "repository"  # Data access layer
    FACTORY = "factory"        # Object creation layer
    SCHEMA = "schema"          # Schema bootstrap
    DAEMON = "daemon"          # Process entry points


class LogLevel(Enum):
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def parse(cls, value: Optional[str], default: 'LogLevel' = None) -> 'LogLevel':
        """Level from a name such as "debug"; unknown names give default (INFO)."""
        try:
            return cls[(value or "").strip().upper()]
        except KeyError:
            return default or cls.INFO


# ============================================================================
# CORRELATION CONTEXT
# ============================================================================

@dataclass(frozen=True)
class LogContext:
    """
    Correlation fields attached to every record of a logger.

    run_id plus subtask_number pin a record to one progress row;
    hostname plus process_id pin it to one OS process.
    """
    run_id: Optional[str] = None
    subtask_number: Optional[int] = None
    hostname: Optional[str] = None
    process_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ComponentConfig:
    component_type: ComponentType
    log_level: LogLevel = LogLevel.INFO


class _ContextFilter(logging.Filter):
    """Stamps component and correlation fields onto each record."""

    def __init__(self, component_type: ComponentType, name: str,
                 context: Optional[LogContext] = None):
        super().__init__()
        self.fields = {"component_type": component_type.value, "component_name": name}
        if context is not None:
            self.fields.update(context.to_dict())

    def filter(self, record: logging.LogRecord) -> bool:
        merged = dict(self.fields)
        merged.update(getattr(record, "context", None) or {})
        record.context = merged
        return True


# ============================================================================
# JSON FORMATTER
# ============================================================================

class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    _hostname = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "host": self._hostname,
            "pid": record.process,
            "thread": record.threadName,
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

class LoggerFactory:
    """
    Creates component loggers named "<component>.<name>".

    Example:
        logger = LoggerFactory.create_logger(ComponentType.SERVICE, "ReporterService")
        logger.info("📡 Cycle complete")

    Loggers are cached by logging.getLogger, so a name gets its handler
    and filter once; the context of the first call for a name sticks.
    """

    @staticmethod
    def default_level() -> LogLevel:
        return LogLevel.parse(os.environ.get("LOG_LEVEL"))

    @classmethod
    def create_logger(
        cls,
        component_type: ComponentType,
        name: str,
        context: Optional[LogContext] = None,
        config: Optional[ComponentConfig] = None
    ) -> logging.Logger:
        """
        Create (or fetch) the logger for one component.

        Args:
            component_type: Layer of the component
            name: Component name (e.g., "RunStateMachine")
            context: Correlation fields for every record
            config: Override of the component's level
        """
        level = config.log_level if config else cls.default_level()
        logger = logging.getLogger(f"{component_type.value}.{name}")
        logger.setLevel(level.value)

        if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(JSONFormatter())
            logger.addHandler(handler)
        if not any(isinstance(f, _ContextFilter) for f in logger.filters):
            logger.addFilter(_ContextFilter(component_type, name, context))

        return logger

    @classmethod
    def create_with_context(
        cls,
        component_type: ComponentType,
        name: str,
        run_id: Optional[str] = None,
        subtask_number: Optional[int] = None,
        hostname: Optional[str] = None,
        process_id: Optional[int] = None
    ) -> logging.Logger:
        """Logger whose records carry run and/or host correlation fields."""
        context = LogContext(run_id=run_id, subtask_number=subtask_number,
                             hostname=hostname, process_id=process_id)
        return cls.create_logger(component_type, name, context=context)


# ============================================================================
# EXCEPTION DECORATOR
# ============================================================================

def log_exceptions(component_type: Optional[ComponentType] = None,
                   component_name: Optional[str] = None,
                   logger: Optional[logging.Logger] = None):
    """
    Log any exception escaping the wrapped function, then re-raise it.

    SystemExit and KeyboardInterrupt pass through untouched.

    Example:
        @log_exceptions(ComponentType.DAEMON, "reporter_main")
        def main():
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                log = logger or LoggerFactory.create_logger(
                    component_type or ComponentType.SERVICE,
                    component_name or func.__module__ or "unknown"
                )
                log.error(
                    f"💥 Unhandled {type(e).__name__} in {func.__name__}: {e}",
                    exc_info=True,
                    extra={"context": {
                        "function": f"{func.__module__}.{func.__qualname__}",
                        "traceback": traceback.format_exc(limit=20),
                    }}
                )
                raise
        return wrapper
    return decorator
