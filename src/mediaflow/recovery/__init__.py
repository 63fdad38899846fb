"""Error recovery for tool calls.

This module provides:
- Error classification (transient, recoverable, fatal)
- Per-tool recovery policies
- Retry execution with exponential backoff
- Named fallback handlers
- Error tracking and partial-success reports
"""

from .classifier import ClassificationResult, ErrorCategory, classify_error, explain_error, is_retryable_error
from .fallbacks import BUILTIN_FALLBACKS, FallbackRegistry
from .models import ExecutionResult, PartialSuccessReport, ToolError
from .policies import BUILTIN_POLICIES, PolicyTable, RecoveryPolicy
from .retry import RetryExecutor, execute_with_retry
from .tracker import ErrorTracker, format_errors_for_response

__all__ = [
    # Classifier
    "ErrorCategory",
    "ClassificationResult",
    "classify_error",
    "explain_error",
    "is_retryable_error",
    # Policies
    "RecoveryPolicy",
    "PolicyTable",
    "BUILTIN_POLICIES",
    # Execution
    "RetryExecutor",
    "execute_with_retry",
    "ExecutionResult",
    "ToolError",
    # Fallbacks
    "FallbackRegistry",
    "BUILTIN_FALLBACKS",
    # Tracking
    "ErrorTracker",
    "PartialSuccessReport",
    "format_errors_for_response",
]
