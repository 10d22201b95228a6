"""
Factline Shared Library
=======================

Common utilities, configuration, and abstractions used by the fact pipeline.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: Async relational store client
    - llm: LLM provider abstraction used by the extraction stage

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "Factline Team"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
