"""Utility functions and classes"""

from .config import ConfigLoader
from .logging_config import setup_logging, setup_logging_from_config, get_logger

__all__ = ['ConfigLoader', 'setup_logging', 'setup_logging_from_config', 'get_logger']
