"""
Utility Functions

Configuration loading, logging setup and liveview frame helpers.
"""

from .config import load_config
from .logging_setup import configure_logging

__all__ = ['load_config', 'configure_logging']
