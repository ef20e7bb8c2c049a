"""
Camera Remote Errors

Exception hierarchy shared by the protocol engine. Transport-level failures
are kept apart from protocol-level error payloads so that the retry layer
only ever reacts to the former.
"""

from typing import Dict, Optional, Tuple, Type


class CameraRemoteError(Exception):
    """Base class for every error raised by camremote."""


class TransportFailure(CameraRemoteError):
    """Connection refused, reset or timed out at the network layer."""


class MalformedResponse(TransportFailure):
    """Reply could not be parsed as a control response."""


class BadResponse(CameraRemoteError):
    """HTTP request completed with a non-success status code."""

    def __init__(self, status: int, url: str):
        super().__init__(f"HTTP {status} from {url}")
        self.status = status
        self.url = url


class ProtocolError(CameraRemoteError):
    """The device rejected the request and returned an error payload."""

    def __init__(self, code: int, message: str = ""):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message

    @property
    def error(self) -> Tuple[int, str]:
        return self.code, self.message

    @classmethod
    def from_error(cls, code: int, message: str = "") -> "ProtocolError":
        """
        Build the most specific error for a device error code.

        Args:
            code: Error code from the response payload
            message: Error message from the response payload

        Returns:
            ProtocolError subclass instance
        """
        error_class = _ERROR_CLASSES.get(code, ProtocolError)
        return error_class(code, message)


class APINotSupported(ProtocolError):
    """Operation is not supported by the channel or version."""


class APINotAvailable(ProtocolError):
    """Operation is not available in the current device state."""


class IllegalArgument(ProtocolError):
    """Malformed or out-of-range parameter."""


class APIForbidden(ProtocolError):
    """Device refused the operation."""


class UnknownOperation(CameraRemoteError):
    """No channel advertises the requested operation."""


class AmbiguousOperation(CameraRemoteError):
    """Several channels advertise the operation and no service was given."""

    def __init__(self, name: str, services):
        super().__init__(f"'{name}' is provided by {', '.join(sorted(services))}; specify a service")
        self.name = name
        self.services = tuple(sorted(services))


class EventTimeout(CameraRemoteError):
    """Awaited device state was not reached before the deadline."""


class DecodeResync(CameraRemoteError):
    """Liveview framing is corrupt and the buffer has to be discarded."""


_ERROR_CLASSES: Dict[int, Type[ProtocolError]] = {
    1: APINotAvailable,       # Any / "Not Available Now"
    3: IllegalArgument,
    12: APINotSupported,      # No such method
    14: APINotSupported,      # Unsupported version
    15: APINotSupported,      # Unsupported operation
    403: APIForbidden,
    501: APINotSupported,
    503: APINotAvailable,
    40401: APINotAvailable,   # Camera not ready
}

# Errors swallowed by the tolerant call variant
TOLERATED_ERRORS = (APIForbidden, APINotSupported, APINotAvailable, IllegalArgument,
                    BadResponse, UnknownOperation)


def describe(error: Optional[BaseException]) -> str:
    """One-line description of an exception for log messages."""
    if error is None:
        return "none"
    return f"{type(error).__name__}: {error}"
