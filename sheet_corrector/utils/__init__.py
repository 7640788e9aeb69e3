"""
Package Utils: shared tools for the whole project.
Includes: Logging, File I/O (JSON/CSV/Excel) and image encoding helpers.

Page decoding (page_source) and debug overlays (visualize) depend on the core
types and are imported from their modules directly.
"""

from .logger import app_logger
from .file_io import FileHandler
from .helpers import ImageUtils

__all__ = ['app_logger', 'FileHandler', 'ImageUtils']
