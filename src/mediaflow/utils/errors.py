"""Error display for the mediaflow CLI.

Provides consistent error formatting with:
- Human-friendly messages
- Suggested fixes
- Hidden stack traces (unless debug mode)
"""

from __future__ import annotations

import json
import os
import sys
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import FallbackAlreadyAppliedError, ModelBlockedError, ToolRegistrationError
from ..recovery.classifier import ErrorCategory as RecoveryCategory
from ..recovery.classifier import explain_error

if TYPE_CHECKING:
    from rich.console import Console

# Debug mode enabled by MEDIAFLOW_DEBUG=1 or --debug flag
_debug_mode = os.environ.get("MEDIAFLOW_DEBUG", "0") == "1"


class ErrorKind(str, Enum):
    """Kinds of errors for consistent formatting."""

    CONFIG = "config"  # Configuration errors
    FILE = "file"  # File not found, unreadable scripts
    TOOL = "tool"  # Tool registration and execution
    MODEL = "model"  # Model boundary failures
    NETWORK = "network"  # Transient upstream failures
    INTERNAL = "internal"  # Internal/unexpected errors


@dataclass
class ErrorInfo:
    """Structured error information for consistent display."""

    message: str
    kind: ErrorKind
    suggestion: str | None = None
    details: str | None = None
    original_error: BaseException | None = None


def set_debug_mode(enabled: bool) -> None:
    """Enable or disable debug mode for verbose error output."""
    global _debug_mode
    _debug_mode = enabled


def is_debug_mode() -> bool:
    return _debug_mode


def format_error(error: ErrorInfo, console: Console) -> None:
    """Display an error with consistent styling.

    Args:
        error: Structured error information
        console: Rich console for output
    """
    console.print(f"[bold red]Error:[/bold red] {error.message}")

    if error.details:
        if _debug_mode or len(error.details) < 200:
            console.print(f"[dim]{error.details}[/dim]")

    if error.suggestion:
        console.print()
        console.print(f"[yellow]Suggestion:[/yellow] {error.suggestion}")

    if _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Stack trace (debug mode):[/dim]")
        tb_lines = traceback.format_exception(
            type(error.original_error),
            error.original_error,
            error.original_error.__traceback__,
        )
        for line in tb_lines:
            console.print(f"[dim]{line.rstrip()}[/dim]", highlight=False)

    if not _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Set MEDIAFLOW_DEBUG=1 or use --debug for more details[/dim]")


def classify_exception(exception: BaseException, context: str = "operation") -> ErrorInfo:
    """Turn an exception into an ErrorInfo.

    Args:
        exception: The exception to classify
        context: Description of what was being done
    """
    if isinstance(exception, FileNotFoundError):
        return ErrorInfo(
            message=f"File not found: {exception.filename or exception}",
            kind=ErrorKind.FILE,
            suggestion="Check the path and ensure the file exists",
            original_error=exception,
        )

    if isinstance(exception, json.JSONDecodeError):
        return ErrorInfo(
            message=f"Invalid JSON while {context}: {exception.msg}",
            kind=ErrorKind.FILE,
            suggestion=f"Fix the JSON at line {exception.lineno}, column {exception.colno}",
            original_error=exception,
        )

    if isinstance(exception, ToolRegistrationError):
        return ErrorInfo(
            message=str(exception),
            kind=ErrorKind.TOOL,
            suggestion="Each tool name may be registered once; unregister it first",
            original_error=exception,
        )

    if isinstance(exception, FallbackAlreadyAppliedError):
        return ErrorInfo(message=str(exception), kind=ErrorKind.TOOL, original_error=exception)

    if isinstance(exception, ModelBlockedError):
        return ErrorInfo(
            message=f"Model stopped responding: {exception}",
            kind=ErrorKind.MODEL,
            suggestion="Rephrase the request; the model blocked the conversation twice in a row",
            original_error=exception,
        )

    category, reason, _ = explain_error(exception)
    if category == RecoveryCategory.TRANSIENT:
        return ErrorInfo(
            message=f"{context.capitalize()} failed: {exception}",
            kind=ErrorKind.NETWORK,
            suggestion=f"{reason}. This is usually temporary; try again shortly",
            original_error=exception,
        )
    if category == RecoveryCategory.FATAL:
        return ErrorInfo(
            message=f"{context.capitalize()} failed: {exception}",
            kind=ErrorKind.CONFIG,
            suggestion=f"{reason}. Check credentials and configuration with 'mediaflow config show'",
            original_error=exception,
        )

    return ErrorInfo(
        message=f"Internal error: {context}: {exception}",
        kind=ErrorKind.INTERNAL,
        suggestion="This may be a bug. Re-run with --debug to see the stack trace",
        original_error=exception,
    )


def handle_exception(
    console: Console,
    exception: BaseException,
    context: str = "operation",
    exit_code: int = 1,
    exit_on_error: bool = True,
) -> ErrorInfo:
    """Display a formatted error for ``exception`` and optionally exit."""
    error = classify_exception(exception, context)
    format_error(error, console)

    if exit_on_error:
        sys.exit(exit_code)

    return error
