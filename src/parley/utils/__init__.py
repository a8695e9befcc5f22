"""Utility helpers for Parley."""

from .logging import get_log_path, resolve_level, setup_logging, shutdown_logging

__all__ = ["setup_logging", "shutdown_logging", "resolve_level", "get_log_path"]
