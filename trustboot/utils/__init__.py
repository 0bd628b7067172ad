"""Utility modules."""

from .file_utils import FileUtils
from .logger import setup_logger

__all__ = ["FileUtils", "setup_logger"]
