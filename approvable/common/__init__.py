"""Common utilities for approvable."""

from .logger import setup_logger, get_logger
from .config import load_config, load_typed_config, FieldPolicy

__all__ = ["FieldPolicy", "get_logger", "load_config", "load_typed_config", "setup_logger"]
