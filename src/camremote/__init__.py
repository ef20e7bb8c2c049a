"""
camremote

Remote control client for network-attached cameras speaking the JSON
camera remote API: method discovery and invocation, reconnect-and-retry,
event waiting and liveview stream decoding.
"""

__version__ = "1.0.0"
__author__ = "AI Camera Control Team"

from .core import CameraRemote, EventWaiter
from .liveview import LiveviewDecoder, LiveviewSession
from .protocols import (APIInvoker, CameraRemoteError, EventTimeout, MethodRegistry,
                        ProtocolError, RetryEngine, RetryMode, TransportFailure)

__all__ = [
    'CameraRemote', 'EventWaiter', 'LiveviewDecoder', 'LiveviewSession',
    'APIInvoker', 'MethodRegistry', 'RetryEngine', 'RetryMode',
    'CameraRemoteError', 'ProtocolError', 'TransportFailure', 'EventTimeout',
]
