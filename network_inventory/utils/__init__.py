"""
Utility functions and helper classes.
"""

from .logger import Logger, LogLevel, set_log_level, get_logger
from .error_handler import (
    ErrorHandler, ToolValidator, ErrorContext, ErrorType, ErrorSeverity,
    NetworkInventoryError, ToolMissingError, ConfigurationError,
    ValidationError, ProtocolError
)
from . import network_utils

__all__ = [
    'Logger',
    'LogLevel',
    'set_log_level',
    'get_logger',
    'ErrorHandler',
    'ToolValidator',
    'ErrorContext',
    'ErrorType',
    'ErrorSeverity',
    'NetworkInventoryError',
    'ToolMissingError',
    'ConfigurationError',
    'ValidationError',
    'ProtocolError',
    'network_utils',
]
