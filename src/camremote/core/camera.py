"""
Camera Remote Session

Scoped session to one camera. Every named operation goes through a single
explicit entry point: the registry resolves it, the retry engine guards it
and the invoker sends it. Entering the session puts the camera into remote
shooting mode; leaving it optionally takes it out again.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from ..liveview.session import LiveviewSession
from ..protocols.errors import (TOLERATED_ERRORS, APINotAvailable, BadResponse,
                                CameraRemoteError, EventTimeout, ProtocolError,
                                TransportFailure, describe)
from ..protocols.invoker import APIInvoker, Response
from ..protocols.registry import MethodRegistry, OperationDescriptor
from ..protocols.retrying import RetryEngine, RetryMode
from ..utils.config import load_config
from .events import EventWaiter

logger = logging.getLogger(__name__)

# Default timeout for waiting until an API becomes available
DEFAULT_API_CALL_TIMEOUT = 8
# Default timeout for waiting for a camera parameter change
DEFAULT_PARAM_CHANGE_TIMEOUT = 15

# Stands for "use the configured event timeout"; None means wait forever
_DEFAULT = object()


def _as_params(params: Any) -> List[Any]:
    if params is None:
        return []
    if isinstance(params, (list, tuple)):
        return list(params)
    return [params]


class CameraRemote:
    """
    Remote control session for one camera.

    Args:
        endpoints: Mapping of service name to endpoint URL
        reconnect: Zero-argument action that restores the Wi-Fi link
        config: Configuration dictionary (see ``load_config``)
        session: requests.Session to use for HTTP
        finalize: Call stopRecMode when the session closes

    Example:
        with CameraRemote(endpoints, reconnect=reconnect_wifi) as cam:
            cam.call('setShootMode', 'still')
            cam.wait_event(lambda r: r[1]['cameraStatus'] == 'IDLE')
            postview_url = cam.call('actTakePicture')[0][0]
    """

    def __init__(self, endpoints: Dict[str, str], reconnect: Optional[Callable[[], Any]] = None,
                 config: Optional[Dict] = None, session: Optional[requests.Session] = None,
                 finalize: Optional[bool] = None):
        self.config = config or {}
        network = self.config.get('network', {})
        event_config = self.config.get('event', {})
        self.liveview_config = self.config.get('liveview', {})

        self.endpoints = dict(endpoints)
        self.invoker = APIInvoker(
            self.endpoints, session=session,
            connect_timeout=network.get('connect_timeout', 5),
            request_timeout=network.get('request_timeout', 10),
        )
        self.retrying = RetryEngine(reconnect, retry_interval=self.config.get('retry', {}).get('interval', 1.0))
        self.registry = MethodRegistry(self.endpoints, self._fetch_catalogue)
        self.events = EventWaiter(self._event_query, poll_interval=event_config.get('poll_interval', 0.1))
        self.event_timeout = event_config.get('timeout', DEFAULT_PARAM_CHANGE_TIMEOUT)
        self.api_call_timeout = event_config.get('api_call_timeout', DEFAULT_API_CALL_TIMEOUT)
        if finalize is None:
            finalize = self.config.get('session', {}).get('finalize', False)
        self.finalize = finalize
        self.closed = False

        # Some cameras leave remote shooting mode when the link drops
        self.retrying.add_hook(self.enter_remote_mode)

    @classmethod
    def from_config(cls, config_file: str = None, reconnect: Optional[Callable[[], Any]] = None,
                    **kwargs) -> "CameraRemote":
        """
        Create a session from a configuration file.

        Args:
            config_file: Path to configuration file
            reconnect: Zero-argument action that restores the Wi-Fi link

        Returns:
            CameraRemote instance
        """
        config = load_config(config_file)
        return cls(config['endpoints'], reconnect=reconnect, config=config, **kwargs)

    def __enter__(self):
        self.enter_remote_mode()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        """Leave remote mode if configured to, and release the HTTP session."""
        if self.closed:
            return
        self.closed = True
        try:
            if self.finalize:
                self.call_best_effort('stopRecMode')
                logger.info('Finished remote shooting function.')
        finally:
            self.invoker.close()

    def enter_remote_mode(self):
        """Some cameras must be switched to remote shooting before anything else."""
        self.call_tolerant('startRecMode')

    def _fetch_catalogue(self, descriptor: OperationDescriptor) -> List[List[Any]]:
        def work():
            return self.invoker.invoke(descriptor, [""]).raise_for_error().result

        try:
            return self.retrying.run(work)
        except (ProtocolError, BadResponse) as e:
            logger.warning("Service '%s' did not return its method list: %s", descriptor.service, describe(e))
            return []

    def resolve(self, name: str, service: Optional[str] = None, version: Optional[str] = None,
                id: Optional[int] = None) -> OperationDescriptor:
        return self.registry.resolve(name, service=service, version=version, id=id)

    def call(self, name: str, params: Any = None, service: Optional[str] = None,
             version: Optional[str] = None, id: Optional[int] = None,
             timeout: Optional[float] = None, long_poll: bool = False) -> List[Any]:
        """
        Call an API by name.

        Args:
            name: API name, e.g. "setShootMode"
            params: Parameter list; a single value is wrapped in a list
            service: Service type, for APIs provided by several services
            version: API version; the latest is used when omitted
            id: Request id overriding the assigned one
            timeout: Read timeout in seconds
            long_poll: Send as a long-poll request

        Returns:
            The ``result`` list of the response

        Raises:
            ProtocolError: The camera returned an error
            UnknownOperation, AmbiguousOperation: The name could not be resolved
        """
        params = _as_params(params)

        def work():
            descriptor = self.resolve(name, service=service, version=version, id=id)
            logger.debug("calling: %s", descriptor.name)
            response = self.invoker.invoke(descriptor, params, long_poll=long_poll, timeout=timeout)
            return response.raise_for_error().result

        return self.retrying.run(work)

    def call_tolerant(self, name: str, params: Any = None, **kwargs) -> Optional[List[Any]]:
        """Same as call, but returns None if the API is unsupported, unavailable or rejected."""
        try:
            return self.call(name, params, **kwargs)
        except TOLERATED_ERRORS as e:
            logger.debug("%s ignored: %s", name, describe(e))
            return None

    def call_best_effort(self, name: str, params: Any = None) -> Optional[List[Any]]:
        """Single attempt without reconnecting; any camremote error is logged and ignored."""
        try:
            descriptor = self.resolve(name)
            return self.invoker.invoke(descriptor, _as_params(params)).raise_for_error().result
        except CameraRemoteError as e:
            logger.warning("%s failed: %s", name, describe(e))
            return None

    def call_when_available(self, name: str, params: Any = None, timeout: Optional[float] = None,
                            **kwargs) -> List[Any]:
        """
        Call an API, first waiting until getAvailableApiList lists it.

        Raises:
            APINotAvailable: The API did not become available within ``timeout``
        """
        if timeout is None:
            timeout = self.api_call_timeout
        if name not in self.get_available_api_list()[0]:
            logger.error("Method '%s' is not available now! waiting...", name)
            try:
                self.wait_event(lambda r: name in r[0]['names'], timeout=timeout)
            except EventTimeout:
                raise APINotAvailable(1, f"Method '{name}' is not available now!")
            logger.info("Method '%s' has become available.", name)
        return self.call(name, params, **kwargs)

    def get_available_api_list(self) -> List[Any]:
        return self.call('getAvailableApiList')

    def get_event(self, long_poll: bool = True, timeout: Optional[float] = None) -> List[Any]:
        """getEvent API; long polling is on by default."""
        return self.call('getEvent', [long_poll], long_poll=long_poll, timeout=timeout)

    def _event_query(self, long_poll: bool, timeout: Optional[float]) -> Response:
        descriptor = self.resolve('getEvent')
        if long_poll:
            # Not retried: a stalled long-poll falls back to an immediate query
            return self.invoker.invoke(descriptor, [True], long_poll=True, timeout=timeout)
        return self.retrying.run(lambda: self.invoker.invoke(descriptor, [False]))

    def wait_event(self, predicate: Callable[[List[Any]], Any], timeout: Optional[float] = _DEFAULT,
                   polling: Optional[bool] = None) -> List[Any]:
        """
        Wait until the getEvent result satisfies ``predicate``.

        Args:
            predicate: Called with the ``result`` list of getEvent
            timeout: Seconds; defaults to the configured event timeout, None waits forever
            polling: None = long-poll after the first call, True = always, False = never

        Raises:
            EventTimeout
        """
        if timeout is _DEFAULT:
            timeout = self.event_timeout
        return self.events.wait(predicate, timeout=timeout, polling=polling)

    def supports(self, name: str) -> bool:
        return self.registry.supports(name)

    @property
    def apis(self) -> List[str]:
        return self.registry.names()

    def transfer(self, url: str, path: str) -> Optional[str]:
        """
        Download a postview image or content file.

        Reconnects at most once; a transfer that keeps failing is given up,
        and so is one the camera answers with an HTTP error status. No file
        is left at ``path`` when the transfer fails.

        Returns:
            ``path``, or None when the transfer failed
        """
        logger.info("Transferring %s...", path)
        start = time.monotonic()
        try:
            self.retrying.run(lambda: self.invoker.download(url, path), mode=RetryMode.GIVE_UP_AFTER_ONE)
        except (TransportFailure, BadResponse) as e:
            logger.error("Failed to transfer %s: %s (%.2f sec)", path, describe(e), time.monotonic() - start)
            return None
        logger.info("Transferred %s. (%.2f sec)", path, time.monotonic() - start)
        return path

    def liveview(self, size: Optional[str] = None, duration: Optional[float] = None,
                 frame_info: Optional[bool] = None, require_frame_info: Optional[bool] = None):
        """
        Liveview streaming session.

        Args:
            size: Liveview size, e.g. "L" or "M"
            duration: Seconds until streaming stops by itself
            frame_info: Ask the camera for frame information
            require_frame_info: Skip images that arrive before the first frame info

        Returns:
            LiveviewSession
        """
        if size is None:
            size = self.liveview_config.get('size')
        if duration is None:
            duration = self.liveview_config.get('duration')
        if frame_info is None:
            frame_info = self.liveview_config.get('frame_info', True)
        if require_frame_info is None:
            require_frame_info = self.liveview_config.get('require_frame_info', False)
        return LiveviewSession(self, size=size, duration=duration, frame_info=frame_info,
                               chunk_size=self.liveview_config.get('chunk_size', 8192),
                               require_frame_info=require_frame_info)

    async def resolve_async(self, name: str, service: Optional[str] = None, version: Optional[str] = None,
                            id: Optional[int] = None) -> OperationDescriptor:
        # The first resolution fetches catalogues over the blocking client
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.resolve, name, service=service, version=version, id=id))

    async def call_async(self, name: str, params: Any = None, service: Optional[str] = None,
                         version: Optional[str] = None, id: Optional[int] = None,
                         timeout: Optional[float] = None, long_poll: bool = False) -> List[Any]:
        """Async version of call."""
        params = _as_params(params)

        async def work():
            descriptor = await self.resolve_async(name, service=service, version=version, id=id)
            response = await self.invoker.invoke_async(descriptor, params, long_poll=long_poll, timeout=timeout)
            return response.raise_for_error().result

        return await self.retrying.run_async(work)

    async def get_event_async(self, long_poll: bool = True, timeout: Optional[float] = None) -> List[Any]:
        return await self.call_async('getEvent', [long_poll], long_poll=long_poll, timeout=timeout)

    async def _event_query_async(self, long_poll: bool, timeout: Optional[float]) -> Response:
        descriptor = await self.resolve_async('getEvent')
        if long_poll:
            return await self.invoker.invoke_async(descriptor, [True], long_poll=True, timeout=timeout)
        return await self.retrying.run_async(lambda: self.invoker.invoke_async(descriptor, [False]))

    async def wait_event_async(self, predicate: Callable[[List[Any]], Any],
                               timeout: Optional[float] = _DEFAULT, polling: Optional[bool] = None) -> List[Any]:
        """Async version of wait_event."""
        if timeout is _DEFAULT:
            timeout = self.event_timeout
        return await self.events.wait_async(self._event_query_async, predicate, timeout=timeout, polling=polling)
