"""
Core Camera Control

Scoped camera session and event waiting.
"""

from .camera import CameraRemote
from .events import EventWaiter

__all__ = ['CameraRemote', 'EventWaiter']
