"""
API Invoker

Builds and sends single JSON-RPC style control requests to the device and
parses the replies. Supports immediate requests (short fixed timeout) and
long-poll requests (open-ended read, optionally bounded by the caller).
Synchronous calls go through requests, async calls through aiohttp.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Tuple

import aiohttp
import requests
from aiohttp import ClientSession, ClientTimeout, TCPConnector

from .errors import BadResponse, MalformedResponse, ProtocolError, TransportFailure
from .registry import OperationDescriptor

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5
DEFAULT_REQUEST_TIMEOUT = 10

# Network-layer failures of the synchronous client
_REQUESTS_TRANSPORT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
)

# Network-layer failures of the async client
_AIOHTTP_TRANSPORT_ERRORS = (
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
    asyncio.TimeoutError,
)


@dataclass
class Response:
    """Parsed control response. Exactly one of result/error is set."""
    id: Optional[int]
    result: Optional[List[Any]] = None
    error: Optional[Tuple[int, str]] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "Response":
        """Raise the matching ProtocolError if the device returned an error payload."""
        if self.error is not None:
            raise ProtocolError.from_error(*self.error)
        return self

    def __getitem__(self, key):
        # response['result'] reads like the wire format
        return getattr(self, key)

    @classmethod
    def from_json(cls, payload: Any) -> "Response":
        """
        Parse a decoded JSON reply.

        Raises:
            MalformedResponse: The payload is not a control response
        """
        if not isinstance(payload, dict):
            raise MalformedResponse(f"Expected a JSON object, got {type(payload).__name__}")

        error = payload.get("error")
        if error is not None:
            if isinstance(error, (list, tuple)) and len(error) >= 1:
                code = error[0]
                message = error[1] if len(error) > 1 else ""
            elif isinstance(error, dict) and "code" in error:
                code, message = error["code"], error.get("message", "")
            else:
                raise MalformedResponse(f"Unrecognised error payload: {error!r}")
            try:
                code = int(code)
            except (TypeError, ValueError):
                raise MalformedResponse(f"Unrecognised error code: {code!r}")
            return cls(id=payload.get("id"), error=(code, str(message)))

        # getMethodTypes and a few others answer with "results"
        for key in ("result", "results"):
            if key in payload:
                result = payload[key]
                if result is None:
                    result = []
                if not isinstance(result, list):
                    raise MalformedResponse(f"'{key}' is not a list: {result!r}")
                return cls(id=payload.get("id"), result=result)

        raise MalformedResponse(f"Reply carries neither result nor error: {payload!r}")


class APIInvoker:
    """
    Sends control requests to the service endpoints of one device.

    Args:
        endpoints: Mapping of service name to endpoint URL
        session: requests.Session to reuse (one is created otherwise)
        connect_timeout: Connect timeout in seconds
        request_timeout: Read timeout of immediate requests in seconds
    """

    def __init__(self, endpoints: Dict[str, str], session: Optional[requests.Session] = None,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
                 request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.endpoints = dict(endpoints)
        self.session = session if session is not None else requests.Session()
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout

    def endpoint(self, service: str) -> str:
        try:
            return self.endpoints[service]
        except KeyError:
            raise ValueError(f"No endpoint configured for service '{service}'")

    @staticmethod
    def build_request(descriptor: OperationDescriptor, params: Optional[List[Any]] = None) -> Dict[str, Any]:
        """Request body for one call."""
        return {
            "method": descriptor.name,
            "params": list(params) if params is not None else [],
            "id": descriptor.id,
            "version": descriptor.version,
        }

    def _read_timeout(self, long_poll: bool, timeout: Optional[float]) -> Optional[float]:
        if long_poll:
            return timeout
        return timeout if timeout is not None else self.request_timeout

    def _check_reply(self, descriptor: OperationDescriptor, response: Response) -> Response:
        if response.id is not None and response.id != descriptor.id:
            logger.warning("Reply id %s does not match request id %s (%s)",
                           response.id, descriptor.id, descriptor.name)
        if response.error:
            logger.debug("%s returned error %s", descriptor.name, response.error)
        return response

    def invoke(self, descriptor: OperationDescriptor, params: Optional[List[Any]] = None,
               long_poll: bool = False, timeout: Optional[float] = None) -> Response:
        """
        Send one request and wait for its reply.

        Args:
            descriptor: Resolved operation
            params: Ordered parameter list
            long_poll: Hold the read open until the device answers
            timeout: Read timeout; open-ended for long-poll when None

        Returns:
            Response (protocol errors are returned, not raised)

        Raises:
            TransportFailure: Connection refused/reset/timed out or malformed reply
            BadResponse: Non-success HTTP status
        """
        url = self.endpoint(descriptor.service)
        body = self.build_request(descriptor, params)
        read_timeout = self._read_timeout(long_poll, timeout)
        logger.debug("-> %s %s (long_poll=%s, timeout=%s)", url, body, long_poll, read_timeout)

        try:
            http_response = self.session.post(url, json=body, timeout=(self.connect_timeout, read_timeout))
        except _REQUESTS_TRANSPORT_ERRORS as e:
            raise TransportFailure(f"{descriptor.name}: {e}") from e

        if http_response.status_code != 200:
            raise BadResponse(http_response.status_code, url)

        try:
            payload = http_response.json()
        except ValueError as e:
            raise MalformedResponse(f"{descriptor.name}: reply is not JSON") from e

        response = Response.from_json(payload)
        logger.debug("<- %s %s", descriptor.name, response)
        return self._check_reply(descriptor, response)

    def stream(self, url: str, chunk_size: int = 8192, read_timeout: Optional[float] = None) -> Iterator[bytes]:
        """
        Stream the body of a GET request chunk by chunk.

        Raises:
            TransportFailure: The connection failed or dropped mid-stream
            BadResponse: Non-success HTTP status
        """
        timeout = (self.connect_timeout, read_timeout if read_timeout is not None else self.request_timeout)
        try:
            with self.session.get(url, stream=True, timeout=timeout) as http_response:
                if http_response.status_code != 200:
                    raise BadResponse(http_response.status_code, url)
                for chunk in http_response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        yield chunk
        except _REQUESTS_TRANSPORT_ERRORS as e:
            raise TransportFailure(f"GET {url}: {e}") from e

    def download(self, url: str, path: str, chunk_size: int = 65536) -> str:
        """
        Write the content behind ``url`` to ``path`` and return the path.

        The content goes to ``path + ".part"`` first and replaces ``path``
        only once complete; a failed download removes the partial file
        and leaves ``path`` untouched.
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        partial = path + '.part'
        try:
            with open(partial, 'wb') as f:
                for chunk in self.stream(url, chunk_size=chunk_size):
                    f.write(chunk)
            os.replace(partial, path)
        except BaseException:
            if os.path.exists(partial):
                os.remove(partial)
            raise
        return path

    def close(self):
        self.session.close()

    async def invoke_async(self, descriptor: OperationDescriptor, params: Optional[List[Any]] = None,
                           long_poll: bool = False, timeout: Optional[float] = None) -> Response:
        """Async version of invoke."""
        url = self.endpoint(descriptor.service)
        body = self.build_request(descriptor, params)
        client_timeout = ClientTimeout(total=None, connect=self.connect_timeout,
                                       sock_read=self._read_timeout(long_poll, timeout))
        connector = TCPConnector(limit=10, limit_per_host=5)

        try:
            async with ClientSession(timeout=client_timeout, connector=connector) as session:
                async with session.post(url, json=body) as http_response:
                    if http_response.status != 200:
                        raise BadResponse(http_response.status, url)
                    try:
                        payload = await http_response.json(content_type=None)
                    except ValueError as e:
                        raise MalformedResponse(f"{descriptor.name}: reply is not JSON") from e
        except _AIOHTTP_TRANSPORT_ERRORS as e:
            raise TransportFailure(f"{descriptor.name}: {e!r}") from e

        response = Response.from_json(payload)
        logger.debug("<- %s %s", descriptor.name, response)
        return self._check_reply(descriptor, response)

    async def stream_async(self, url: str, chunk_size: int = 8192,
                           read_timeout: Optional[float] = None) -> AsyncIterator[bytes]:
        """Async version of stream."""
        client_timeout = ClientTimeout(
            total=None, connect=self.connect_timeout,
            sock_read=read_timeout if read_timeout is not None else self.request_timeout)
        try:
            async with ClientSession(timeout=client_timeout) as session:
                async with session.get(url) as http_response:
                    if http_response.status != 200:
                        raise BadResponse(http_response.status, url)
                    async for chunk in http_response.content.iter_chunked(chunk_size):
                        yield chunk
        except _AIOHTTP_TRANSPORT_ERRORS as e:
            raise TransportFailure(f"GET {url}: {e!r}") from e
