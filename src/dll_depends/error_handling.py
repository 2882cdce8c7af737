"""
Error handling for dll-depends.

Defines the exception taxonomy and a centralized handler that logs
per-module problems with structured context, so a missing or unreadable
dependency is reported without aborting the build.
"""

import logging
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class DependsError(Exception):
    """Base class for fatal dll-depends errors."""


class RootBinaryError(DependsError):
    """The binary being analyzed is missing or its imports cannot be read."""


class ToolNotFoundError(DependsError):
    """The external inspection tool could not be located."""


class ConfigurationError(DependsError):
    """Configuration values are invalid."""


class ExtractionError(Exception):
    """An import extractor failed for a single binary."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        super().__init__(message)
        self.file_path = file_path


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    RESOLUTION = "RESOLUTION"
    EXTRACTION = "EXTRACTION"
    TOOL = "TOOL"
    FILESYSTEM = "FILESYSTEM"
    CONFIGURATION = "CONFIGURATION"


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[BaseException] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)


_LEVEL_MAP = {
    ErrorLevel.DEBUG: logging.DEBUG,
    ErrorLevel.INFO: logging.INFO,
    ErrorLevel.WARNING: logging.WARNING,
    ErrorLevel.ERROR: logging.ERROR,
    ErrorLevel.CRITICAL: logging.CRITICAL,
}

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# Error callback type
ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler for consistent error management.

    Provides logging, callbacks, and per-category statistics for
    the builder and the collaborators it drives.
    """

    def __init__(
        self,
        logger_name: str = "dll_depends",
        log_level: int = logging.WARNING,
        log_format: str = DEFAULT_LOG_FORMAT,
        enable_callbacks: bool = True,
    ):
        """
        Initialize error handler.

        Args:
            logger_name: Name for the logger
            log_level: Logging level
            log_format: Format string for the stderr handler
            enable_callbacks: Whether to enable error callbacks
        """
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(log_level)
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(log_format))
            self.logger.addHandler(handler)

        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Args:
            level: Error severity level
            category: Error category
            message: Error message
            module: Module where error occurred
            function: Function where error occurred
            exception: Optional exception object
            details: Additional error details
            suggestions: Suggested fixes

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=(
                "".join(traceback.format_exception_only(type(exception), exception))
                if exception
                else None
            ),
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self._log(context)

        if self.enable_callbacks:
            for callback in self.error_callbacks.get(category, []):
                try:
                    callback(context)
                except Exception as cb_error:
                    # Don't let callback errors break the main flow
                    self.logger.error(f"Error in callback: {cb_error}")

            for callback in self.global_callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    self.logger.error(f"Error in global callback: {cb_error}")

        return context

    def _log(self, context: ErrorContext) -> None:
        log_data: Dict[str, Any] = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": context.details,
        }
        if context.exception:
            log_data["exception"] = type(context.exception).__name__
        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        self.logger.log(_LEVEL_MAP[context.level], f"{context.message} | {log_data}")

    def warning(
        self,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        **kwargs,
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        **kwargs,
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        ErrorHandler: Global error handler
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    log_format: str = DEFAULT_LOG_FORMAT,
    enable_callbacks: bool = True,
    logger_name: str = "dll_depends",
) -> ErrorHandler:
    """
    Setup global error handling configuration.

    Args:
        log_level: Logging level
        log_format: Format string for the stderr handler
        enable_callbacks: Whether to enable callbacks
        logger_name: Logger name

    Returns:
        ErrorHandler: Configured error handler
    """
    global _global_error_handler
    _global_error_handler = ErrorHandler(
        logger_name, log_level, log_format, enable_callbacks
    )
    return _global_error_handler


def log_module_not_found(module_name: str):
    """
    Convenience function for reporting a dependency the resolver could not find.

    Args:
        module_name: Canonical module name
    """
    get_error_handler().warning(
        ErrorCategory.RESOLUTION,
        f"Dependency not found: {module_name}",
        "dependency_resolver",
        "_process_module",
        details={"module_name": module_name},
        suggestions=[
            "Place the DLL next to the binary or add its directory with --search-path",
            "Install the redistributable package that ships it",
        ],
    )


def log_extraction_error(
    module_name: str,
    file_path: str,
    exception: Optional[BaseException] = None,
):
    """
    Convenience function for reporting a module whose imports could not be read.

    Args:
        module_name: Canonical module name
        file_path: Resolved file the extractor was run on
        exception: Optional exception
    """
    get_error_handler().warning(
        ErrorCategory.EXTRACTION,
        f"Could not read imports of {module_name}",
        "dependency_resolver",
        "_process_module",
        details={"module_name": module_name, "file_path": file_path},
        exception=exception,
        suggestions=[
            "Check that the file is a valid PE image",
            "Increase the extractor timeout with --timeout",
        ],
    )
