"""
Logging Module
==============

Structured logging using structlog with JSON output for production
and console output for development.

Usage:
    from shared.logging import get_logger, setup_logging

    # Setup at application start
    setup_logging()

    # Get logger for a module
    logger = get_logger(__name__)

    # Log with context
    logger.info("rule_published", rule_id="123", version="1.2.0")
    logger.warning("conflict_escalated", conflict_id=conflict_id, reason=reason)
"""

from shared.logging.logger import get_logger, setup_logging, stage_context


__all__ = [
    "get_logger",
    "setup_logging",
    "stage_context",
]
