"""
Logging system with colored output for network inventory operations.

This module provides a Logger class that supports colored console output
using colorama, different log levels with distinct colors, and progress
indicators for the long-running probe steps of the discovery pipeline.
"""

import sys
import threading
from datetime import datetime
from enum import Enum
from typing import List, Optional
from colorama import Fore, Style, init

# Initialize colorama for cross-platform colored output
init(autoreset=True)


class LogLevel(Enum):
    """Enumeration for different log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


_LEVEL_ORDER = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARNING: 2,
    LogLevel.ERROR: 3,
}

# Process-wide minimum level, changed through set_log_level()
_global_min_level = LogLevel.INFO

# Probe workers log concurrently; one lock keeps lines from interleaving
_output_lock = threading.Lock()


class Logger:
    """
    Logger class with colored console output and progress indicators.

    Provides structured logging with different levels, colors, and formatting
    utilities. Unless a logger is created with an explicit minimum level it
    follows the process-wide level set by ``set_log_level``.
    """

    # Color mapping for different log levels
    LEVEL_COLORS = {
        LogLevel.DEBUG: Fore.CYAN,
        LogLevel.INFO: Fore.GREEN,
        LogLevel.WARNING: Fore.YELLOW,
        LogLevel.ERROR: Fore.RED,
    }

    # Symbol mapping for different log levels
    LEVEL_SYMBOLS = {
        LogLevel.DEBUG: "🔍",
        LogLevel.INFO: "ℹ️",
        LogLevel.WARNING: "⚠️",
        LogLevel.ERROR: "❌",
    }

    def __init__(
        self, name: str = "NetworkInventory", min_level: Optional[LogLevel] = None
    ):
        """
        Initialize the Logger.

        Args:
            name: Name of the logger (default: "NetworkInventory")
            min_level: Minimum log level to display. When omitted the
                process-wide level is used.
        """
        self.name = name
        self._min_level = min_level
        self._progress_active = False

    @property
    def min_level(self) -> LogLevel:
        return self._min_level or _global_min_level

    @min_level.setter
    def min_level(self, level: LogLevel) -> None:
        self._min_level = level

    def _should_log(self, level: LogLevel) -> bool:
        """
        Check if a message should be logged based on minimum level.

        Args:
            level: Log level to check

        Returns:
            True if message should be logged, False otherwise
        """
        return _LEVEL_ORDER[level] >= _LEVEL_ORDER[self.min_level]

    def _format_timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def _emit(self, text: str, error: bool = False) -> None:
        with _output_lock:
            print(text, file=sys.stderr if error else sys.stdout, flush=True)

    def _log(self, level: LogLevel, message: str, **kwargs) -> None:
        """
        Internal logging method that handles formatting and output.

        Args:
            level: Log level
            message: Message to log
            **kwargs: Additional context rendered as key=value pairs
        """
        if not self._should_log(level):
            return

        timestamp = self._format_timestamp()
        color = self.LEVEL_COLORS[level]
        symbol = self.LEVEL_SYMBOLS[level]

        formatted_message = (
            f"{Style.DIM}[{timestamp}]{Style.RESET_ALL} "
            f"{color}{symbol} {level.value:<7}{Style.RESET_ALL} "
            f"{message}"
        )

        if kwargs:
            details = " | ".join([f"{k}={v}" for k, v in kwargs.items()])
            formatted_message += f" {Style.DIM}({details}){Style.RESET_ALL}"

        self._emit(formatted_message, error=level == LogLevel.ERROR)

    def debug(self, message: str, **kwargs) -> None:
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(
        self, message: str, exception: Optional[Exception] = None, **kwargs
    ) -> None:
        """
        Log an error message.

        Args:
            message: Error message
            exception: Optional exception object for additional context
            **kwargs: Additional context information
        """
        if exception:
            kwargs["exception"] = f"{type(exception).__name__}: {str(exception)}"
        self._log(LogLevel.ERROR, message, **kwargs)

    def success(self, message: str, **kwargs) -> None:
        """
        Log a success message (formatted as INFO with special styling).

        Args:
            message: Success message
            **kwargs: Additional context information
        """
        if not self._should_log(LogLevel.INFO):
            return

        timestamp = self._format_timestamp()
        formatted_message = (
            f"{Style.DIM}[{timestamp}]{Style.RESET_ALL} "
            f"{Fore.GREEN}✅ SUCCESS {Style.RESET_ALL} "
            f"{Style.BRIGHT}{message}{Style.RESET_ALL}"
        )

        if kwargs:
            details = " | ".join([f"{k}={v}" for k, v in kwargs.items()])
            formatted_message += f" {Style.DIM}({details}){Style.RESET_ALL}"

        self._emit(formatted_message)

    def section(self, title: str) -> None:
        """
        Log a section header for organizing output.

        Args:
            title: Section title
        """
        if not self._should_log(LogLevel.INFO):
            return

        separator = "=" * 60
        self._emit(
            f"\n{Fore.BLUE}{Style.BRIGHT}{separator}\n"
            f"  {title.upper()}\n"
            f"{separator}{Style.RESET_ALL}\n"
        )

    def progress_start(self, message: str) -> None:
        if not self._should_log(LogLevel.INFO):
            return

        self._emit(self._progress_line(message))
        self._progress_active = True

    def progress_update(self, message: str) -> None:
        if not self._progress_active or not self._should_log(LogLevel.INFO):
            return

        self._emit(self._progress_line(message))

    def progress_end(self, final_message: Optional[str] = None) -> None:
        """
        End the current progress indicator.

        Args:
            final_message: Optional final message to display
        """
        if not self._progress_active:
            return

        self._progress_active = False

        if final_message and self._should_log(LogLevel.INFO):
            self.success(final_message)

    def _progress_line(self, message: str) -> str:
        return (
            f"{Style.DIM}[{self._format_timestamp()}]{Style.RESET_ALL} "
            f"{Fore.BLUE}⏳ PROGRESS{Style.RESET_ALL} "
            f"{message}..."
        )

    def table_header(self, headers: List[str], widths: List[int]) -> None:
        """
        Print a formatted table header.

        Args:
            headers: List of header names
            widths: List of column widths
        """
        if not self._should_log(LogLevel.INFO):
            return

        header_row = " | ".join(
            [f"{header:<{width}}" for header, width in zip(headers, widths)]
        )
        separator = "-+-".join(["-" * width for width in widths])
        self._emit(
            f"{Style.BRIGHT}{header_row}{Style.RESET_ALL}\n"
            f"{Style.DIM}{separator}{Style.RESET_ALL}"
        )

    def table_row(
        self, values: List[str], widths: List[int], highlight: bool = False
    ) -> None:
        """
        Print a formatted table row.

        Args:
            values: List of values to display
            widths: List of column widths
            highlight: Whether to highlight this row
        """
        if not self._should_log(LogLevel.INFO):
            return

        row = " | ".join(
            [f"{str(value):<{width}}" for value, width in zip(values, widths)]
        )

        if highlight:
            self._emit(f"{Style.BRIGHT}{row}{Style.RESET_ALL}")
        else:
            self._emit(row)

    def network_info(self, network: str, host_ip: str, target_count: int) -> None:
        """
        Display the detected local network in a formatted way.

        Args:
            network: Network range in CIDR notation
            host_ip: Address of the scanning machine
            target_count: Number of addresses that will be probed
        """
        if not self._should_log(LogLevel.INFO):
            return

        self._emit(
            f"\n{Fore.CYAN}{Style.BRIGHT}🌐 NETWORK CONFIGURATION{Style.RESET_ALL}\n"
            f"  Network Range: {Style.BRIGHT}{network}{Style.RESET_ALL}\n"
            f"  Host IP:       {Style.BRIGHT}{host_ip}{Style.RESET_ALL}\n"
            f"  Targets:       {Style.BRIGHT}{target_count}{Style.RESET_ALL}\n"
        )


def set_log_level(level: LogLevel) -> None:
    """
    Set the global log level.

    Args:
        level: Minimum log level to display
    """
    global _global_min_level
    _global_min_level = level


def get_logger(name: str = "NetworkInventory") -> Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name

    Returns:
        Logger instance following the global log level
    """
    return Logger(name)
