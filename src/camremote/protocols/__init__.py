"""
Camera Remote Protocol Layer

Method resolution, request invocation and reconnect-and-retry.
"""

from .errors import (APIForbidden, APINotAvailable, APINotSupported, AmbiguousOperation,
                     BadResponse, CameraRemoteError, DecodeResync, EventTimeout,
                     IllegalArgument, MalformedResponse, ProtocolError, TransportFailure,
                     UnknownOperation)
from .invoker import APIInvoker, Response
from .registry import MethodRegistry, OperationDescriptor
from .retrying import RetryEngine, RetryMode

__all__ = [
    'APIInvoker', 'Response', 'MethodRegistry', 'OperationDescriptor', 'RetryEngine', 'RetryMode',
    'CameraRemoteError', 'TransportFailure', 'MalformedResponse', 'BadResponse', 'ProtocolError',
    'APINotSupported', 'APINotAvailable', 'IllegalArgument', 'APIForbidden',
    'UnknownOperation', 'AmbiguousOperation', 'EventTimeout', 'DecodeResync',
]
