"""
Structured logging configuration for dll-depends.

Emits machine-readable JSON events for build lifecycle and extractor
activity. Records go to stderr so they never mix with rendered output.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
    ]
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class EventLogger:
    """Structured logger for build events."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"dll_depends.{name}")
        self.logger.propagate = False
        self._setup_logger()
        self.build_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        """Setup logger with structured formatting."""
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)

    def use_plain_format(self, log_format: str) -> None:
        for handler in self.logger.handlers:
            handler.setFormatter(logging.Formatter(log_format))

    def set_build_context(
        self,
        build_id: Optional[str] = None,
        root_path: Optional[str] = None,
    ) -> None:
        """Set build context for logging."""
        self.build_context = {}
        if build_id:
            self.build_context["build_id"] = build_id
        if root_path:
            self.build_context["root_path"] = root_path

    def clear_build_context(self) -> None:
        self.build_context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.build_context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


# Global logger instances
_builder_logger = EventLogger("builder")
_extractor_logger = EventLogger("extractor")

_ALL_LOGGERS = (_builder_logger, _extractor_logger)


def get_builder_logger() -> EventLogger:
    """Get graph builder logger."""
    return _builder_logger


def log_build_start(build_id: str, root_path: str, max_concurrent: int) -> None:
    """Log build start event."""
    for logger in _ALL_LOGGERS:
        logger.set_build_context(build_id, root_path)
    _builder_logger.info("build_started", max_concurrent=max_concurrent)


def log_build_complete(
    duration_ms: int,
    total_modules: int,
    total_edges: int,
    unresolved_count: int,
    complete: bool = True,
) -> None:
    """Log build completion event."""
    log_data = {
        "build_duration_ms": duration_ms,
        "total_modules": total_modules,
        "total_edges": total_edges,
        "unresolved_modules": unresolved_count,
        "complete": complete,
    }
    if complete:
        _builder_logger.info("build_completed", **log_data)
    else:
        _builder_logger.warning("build_incomplete", **log_data)
    for logger in _ALL_LOGGERS:
        logger.clear_build_context()


def log_module_unresolved(module_name: str, status: str) -> None:
    """Log a module that ended in a problem status."""
    _builder_logger.info(
        "module_unresolved", module_name=module_name, status=status
    )


def log_extractor_invoked(
    file_path: str,
    import_count: Optional[int] = None,
    duration_ms: Optional[int] = None,
) -> None:
    """Log one extractor run."""
    log_data: Dict[str, Any] = {"file_path": file_path}
    if import_count is not None:
        log_data["import_count"] = import_count
    if duration_ms is not None:
        log_data["duration_ms"] = duration_ms
    _extractor_logger.debug("extractor_invoked", **log_data)


def configure_logging(
    log_level: str = "WARNING",
    enable_json: bool = True,
    log_format: Optional[str] = None,
) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
        if not enable_json and log_format:
            logger.use_plain_format(log_format)
