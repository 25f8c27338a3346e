"""Logging configuration and HTTP request observability middleware."""

from product_import.observability.logger import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
