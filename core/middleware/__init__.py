"""
Core middleware package.

- Error handling: typed business errors and database failures mapped to
  a JSON error envelope, with sensitive data sanitized
- Structured request logging with tenant and request ids
"""

from core.middleware.error_handling import (
    ErrorHandlingMiddleware,
    setup_error_handlers,
    sanitize_error_message,
)

from core.middleware.logging import (
    StructuredLoggingMiddleware,
    StructuredFormatter,
    setup_logging,
    get_logger,
)

__all__ = [
    # Error handling
    "ErrorHandlingMiddleware",
    "setup_error_handlers",
    "sanitize_error_message",
    # Logging
    "StructuredLoggingMiddleware",
    "StructuredFormatter",
    "setup_logging",
    "get_logger",
]
