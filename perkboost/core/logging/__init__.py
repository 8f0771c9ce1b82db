"""
Logging infrastructure: queue-backed handlers, JSON output and scoped context.
"""

from perkboost.core.logging.logger import (
    LogContext,
    get_log_context,
    get_logger,
    get_logging_health,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "get_logger",
    "get_logging_health",
    "LogContext",
    "get_log_context",
]
