"""Mediaflow utility modules."""

from .errors import (
    ErrorInfo,
    ErrorKind,
    classify_exception,
    format_error,
    handle_exception,
    is_debug_mode,
    set_debug_mode,
)

__all__ = [
    "ErrorKind",
    "ErrorInfo",
    "format_error",
    "handle_exception",
    "classify_exception",
    "set_debug_mode",
    "is_debug_mode",
]
