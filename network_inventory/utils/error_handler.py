"""
Error handling and validation system for the Network Inventory Module.

This module provides the exception hierarchy used across the package, the
classification of per-target probe failures into short diagnostics, thread-safe
error statistics for the end-of-run summary, and validation of the external
tools the probe steps rely on.
"""

import shutil
import socket
import ssl
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .logger import Logger, get_logger


class ErrorType(Enum):
    """Enumeration for different types of errors."""
    TIMEOUT_ERROR = "timeout_error"
    CONNECTION_REFUSED = "connection_refused"
    NETWORK_ERROR = "network_error"
    PROTOCOL_ERROR = "protocol_error"
    DNS_ERROR = "dns_error"
    SUBPROCESS_ERROR = "subprocess_error"
    TOOL_MISSING_ERROR = "tool_missing_error"
    CONFIGURATION_ERROR = "configuration_error"
    VALIDATION_ERROR = "validation_error"
    FILE_ERROR = "file_error"
    UNEXPECTED_ERROR = "unexpected_error"


class ErrorSeverity(Enum):
    """Enumeration for error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """
    Context information for error handling.

    Attributes:
        error_type: Type of error that occurred
        severity: Severity level of the error
        operation: Operation that was being performed when error occurred
        component: Component/module where error occurred
        target: Address being probed when the error occurred, if any
        additional_info: Additional context information
    """
    error_type: ErrorType
    severity: ErrorSeverity
    operation: str
    component: str
    target: Optional[str] = None
    additional_info: Dict[str, Any] = None

    def __post_init__(self):
        if self.additional_info is None:
            self.additional_info = {}


class NetworkInventoryError(Exception):
    """Base exception class for Network Inventory Module."""

    def __init__(self, message: str, error_context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.error_context = error_context


class ToolMissingError(NetworkInventoryError):
    """Exception for missing external tools."""
    pass


class ConfigurationError(NetworkInventoryError):
    """Exception for configuration-related errors."""
    pass


class ValidationError(NetworkInventoryError):
    """Exception for validation errors."""
    pass


class ProtocolError(NetworkInventoryError):
    """Exception for malformed or unexpected protocol responses."""
    pass


# Severity attached to each error type when a probe failure is classified
_SEVERITY_BY_TYPE = {
    ErrorType.TIMEOUT_ERROR: ErrorSeverity.LOW,
    ErrorType.CONNECTION_REFUSED: ErrorSeverity.LOW,
    ErrorType.DNS_ERROR: ErrorSeverity.LOW,
    ErrorType.NETWORK_ERROR: ErrorSeverity.LOW,
    ErrorType.PROTOCOL_ERROR: ErrorSeverity.MEDIUM,
    ErrorType.SUBPROCESS_ERROR: ErrorSeverity.MEDIUM,
    ErrorType.TOOL_MISSING_ERROR: ErrorSeverity.HIGH,
    ErrorType.CONFIGURATION_ERROR: ErrorSeverity.HIGH,
    ErrorType.VALIDATION_ERROR: ErrorSeverity.MEDIUM,
    ErrorType.FILE_ERROR: ErrorSeverity.HIGH,
    ErrorType.UNEXPECTED_ERROR: ErrorSeverity.HIGH,
}


class ErrorHandler:
    """
    Centralized error handling for probe steps.

    Probe failures are never propagated out of a step. Instead each step hands
    the exception to ``handle_error`` which classifies it, records it in the
    per-type statistics, logs it at a level matching its severity and returns
    a one-line diagnostic the step writes into its progress log.
    """

    def __init__(self, logger: Optional[Logger] = None):
        """
        Initialize the ErrorHandler.

        Args:
            logger: Logger instance for error reporting
        """
        self.logger = logger or get_logger(__name__)
        self._lock = threading.Lock()
        self.error_statistics: Dict[ErrorType, int] = {
            error_type: 0 for error_type in ErrorType
        }

    def classify(self, error: BaseException) -> ErrorType:
        """
        Map an exception raised while probing a target to an ErrorType.

        Args:
            error: The exception that occurred

        Returns:
            The matching ErrorType
        """
        if isinstance(error, (socket.timeout, subprocess.TimeoutExpired, TimeoutError)):
            return ErrorType.TIMEOUT_ERROR
        if isinstance(error, ConnectionRefusedError):
            return ErrorType.CONNECTION_REFUSED
        if isinstance(error, (socket.gaierror, socket.herror)):
            return ErrorType.DNS_ERROR
        if isinstance(error, (ProtocolError, ssl.SSLError, UnicodeDecodeError)):
            return ErrorType.PROTOCOL_ERROR
        if isinstance(error, ToolMissingError):
            return ErrorType.TOOL_MISSING_ERROR
        if isinstance(error, ConfigurationError):
            return ErrorType.CONFIGURATION_ERROR
        if isinstance(error, ValidationError):
            return ErrorType.VALIDATION_ERROR
        if isinstance(error, (subprocess.SubprocessError, FileNotFoundError)):
            return ErrorType.SUBPROCESS_ERROR
        if isinstance(error, OSError):
            return ErrorType.NETWORK_ERROR
        return ErrorType.UNEXPECTED_ERROR

    def describe(self, error: BaseException) -> str:
        """
        Render an exception as a short diagnostic for a progress log.

        Args:
            error: The exception that occurred

        Returns:
            Human-readable one-line description
        """
        error_type = self.classify(error)
        if error_type == ErrorType.TIMEOUT_ERROR:
            return "Timed out"
        if error_type == ErrorType.CONNECTION_REFUSED:
            return "Connection refused"
        if error_type == ErrorType.DNS_ERROR:
            return "Name lookup failed"
        detail = str(error) or type(error).__name__
        if error_type == ErrorType.PROTOCOL_ERROR:
            return f"Protocol error: {detail}"
        return f"{type(error).__name__}: {detail}"

    def handle_error(
        self, error: BaseException, context: Optional[ErrorContext] = None
    ) -> str:
        """
        Record and log an error, returning its diagnostic text.

        Args:
            error: The exception that occurred
            context: Optional error context. When omitted one is derived
                from the exception type.

        Returns:
            Diagnostic text suitable for a progress log line
        """
        if context is None:
            error_type = self.classify(error)
            context = ErrorContext(
                error_type=error_type,
                severity=_SEVERITY_BY_TYPE[error_type],
                operation="probe",
                component="unknown",
            )

        with self._lock:
            self.error_statistics[context.error_type] += 1

        self._log_error(error, context)

        if context.error_type == ErrorType.TOOL_MISSING_ERROR:
            self._suggest_tool_installation(context.additional_info.get("tool_name", "unknown"))
        elif context.error_type == ErrorType.CONFIGURATION_ERROR:
            self._suggest_configuration_fixes()

        return self.describe(error)

    def context_for(
        self, error: BaseException, operation: str, component: str, target: Optional[str] = None
    ) -> ErrorContext:
        """Build an ErrorContext for a probe failure."""
        error_type = self.classify(error)
        return ErrorContext(
            error_type=error_type,
            severity=_SEVERITY_BY_TYPE[error_type],
            operation=operation,
            component=component,
            target=target,
        )

    def get_statistics(self) -> Dict[str, int]:
        """Return the non-zero error counts keyed by error type value."""
        with self._lock:
            return {
                error_type.value: count
                for error_type, count in self.error_statistics.items()
                if count
            }

    def _log_error(self, error: BaseException, context: ErrorContext) -> None:
        """
        Log error information with appropriate detail level.

        Args:
            error: The exception that occurred
            context: Error context information
        """
        where = f"{context.component}.{context.operation}"
        if context.target:
            where += f" [{context.target}]"
        error_msg = f"Error in {where}: {str(error) or type(error).__name__}"

        if context.severity == ErrorSeverity.CRITICAL:
            self.logger.error(error_msg, exception=error)
        elif context.severity == ErrorSeverity.HIGH:
            self.logger.error(error_msg)
        elif context.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(error_msg)
        else:
            self.logger.debug(error_msg)

    def _suggest_tool_installation(self, tool_name: str) -> None:
        """Provide tool installation suggestions."""
        suggestions = {
            "arp": [
                "Ubuntu/Debian: sudo apt-get install net-tools",
                "CentOS/RHEL: sudo yum install net-tools",
                "Windows/macOS: arp ships with the operating system",
            ],
            "ping": [
                "Ubuntu/Debian: sudo apt-get install iputils-ping",
                "CentOS/RHEL: sudo yum install iputils",
                "Windows/macOS: ping ships with the operating system",
            ],
        }

        if tool_name in suggestions:
            self.logger.info(f"Installation suggestions for {tool_name}:")
            for suggestion in suggestions[tool_name]:
                self.logger.info(f"  • {suggestion}")
        else:
            self.logger.info(f"Please install {tool_name} using your system's package manager")

    def _suggest_configuration_fixes(self) -> None:
        """Provide configuration error solutions."""
        self.logger.info("Configuration error solutions:")
        self.logger.info("  • Check YAML syntax and indentation")
        self.logger.info("  • Verify the port list in portscan_config.yml is not empty")
        self.logger.info("  • Regenerate defaults with --init-config")


class ToolValidator:
    """
    Validator for external tool availability.

    The ARP and ping steps shell out to platform tools; this class checks they
    can be found before a run starts.
    """

    REQUIRED_TOOLS = ["arp", "ping"]
    # Executables accepted for a required tool, first found wins
    TOOL_ALTERNATIVES = {"arp": ["arp", "ip"]}

    def __init__(self, error_handler: ErrorHandler):
        """
        Initialize the ToolValidator.

        Args:
            error_handler: ErrorHandler used to report missing tools
        """
        self.error_handler = error_handler
        self.logger = error_handler.logger

    def validate_all_tools(self) -> Tuple[bool, List[str]]:
        """
        Validate every required tool.

        Returns:
            Tuple of (all_available, missing_tool_names)
        """
        missing = [tool for tool in self.REQUIRED_TOOLS if not self.validate_tool(tool)]
        return not missing, missing

    def validate_tool(self, tool_name: str) -> bool:
        """
        Check that a single tool is on the PATH.

        Args:
            tool_name: Name of the executable

        Returns:
            True if the tool was found
        """
        for executable in self.TOOL_ALTERNATIVES.get(tool_name, [tool_name]):
            tool_path = shutil.which(executable)
            if tool_path:
                self.logger.debug(f"Found {tool_name} at: {tool_path}")
                return True

        error = ToolMissingError(f"Required tool '{tool_name}' not found in PATH")
        context = ErrorContext(
            error_type=ErrorType.TOOL_MISSING_ERROR,
            severity=ErrorSeverity.HIGH,
            operation="validate_tool",
            component="ToolValidator",
            additional_info={"tool_name": tool_name},
        )
        self.error_handler.handle_error(error, context)
        return False
