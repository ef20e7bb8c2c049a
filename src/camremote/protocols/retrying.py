"""
Reconnect and Retry

Makes units of work resilient to the Wi-Fi link dropping: on a transport
failure the injected reconnect action runs, followed by the registered
recovery hooks (e.g. re-entering remote shooting mode), and the work is
executed again.
"""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import (Any, AsyncIterator, Callable, Iterable, Iterator, List,
                    Optional, TypeVar)

from .errors import TransportFailure, describe

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryMode(Enum):
    UNBOUNDED = "unbounded"
    GIVE_UP_AFTER_ONE = "give_up_after_one"


class RetryEngine:
    """
    Reconnect-and-retry state machine.

    Args:
        reconnect: Zero-argument action restoring the network link; when None
            only the hooks run between attempts
        mode: Default retry mode
        retry_interval: Pause in seconds before each recovery
    """

    def __init__(self, reconnect: Optional[Callable[[], Any]] = None,
                 mode: RetryMode = RetryMode.UNBOUNDED, retry_interval: float = 1.0):
        self.reconnect = reconnect
        self.mode = mode
        self.retry_interval = retry_interval
        self.hooks: List[Callable[[], Any]] = []
        self.reconnect_count = 0
        # Hook nesting is tracked per thread; streaming and callers share the engine
        self._local = threading.local()

    @property
    def _in_hooks(self) -> bool:
        return getattr(self._local, "in_hooks", False)

    @_in_hooks.setter
    def _in_hooks(self, value: bool):
        self._local.in_hooks = value

    def add_hook(self, hook: Callable[[], Any]) -> "RetryEngine":
        """Append a recovery action run after every reconnect."""
        self.hooks.append(hook)
        return self

    def recover(self, hook: Optional[Callable[[], Any]] = None, mode: Optional[RetryMode] = None):
        """
        Run the reconnect action followed by every hook, in order.

        Each hook is executed through this engine, so a hook may itself
        trigger recovery. While hooks are running on the current thread,
        nested recovery on that thread is limited to the reconnect action.
        """
        if self.retry_interval:
            time.sleep(self.retry_interval)
        self.reconnect_count += 1
        if self.reconnect is not None:
            logger.info("Reconnecting (attempt %d)...", self.reconnect_count)
            self.reconnect()
        if self._in_hooks:
            return

        hooks = self.hooks + ([hook] if hook is not None else [])
        self._in_hooks = True
        try:
            for each in hooks:
                self.run(each, mode=mode)
        finally:
            self._in_hooks = False

    def run(self, work: Callable[[], T], mode: Optional[RetryMode] = None,
            hook: Optional[Callable[[], Any]] = None,
            cancel_event: Optional[threading.Event] = None) -> T:
        """
        Execute ``work``, recovering from transport failures.

        Args:
            work: Zero-argument unit of work
            mode: Overrides the engine's default mode
            hook: Extra recovery action for this call, run after the common hooks
            cancel_event: Stops an unbounded loop once set

        Returns:
            Result of ``work``

        Raises:
            TransportFailure: GIVE_UP_AFTER_ONE failed twice, or cancel_event was set.
                When recovery itself gives up, the failure of ``work`` is raised
                with the recovery failure as its cause.
        """
        mode = mode or self.mode
        attempts = 0
        while True:
            try:
                return work()
            except TransportFailure as e:
                attempts += 1
                if mode is RetryMode.GIVE_UP_AFTER_ONE and attempts > 1:
                    logger.error("Giving up after reconnecting once: %s", describe(e))
                    raise
                if cancel_event is not None and cancel_event.is_set():
                    raise
                logger.warning("Transport failure: %s", describe(e))
                try:
                    self.recover(hook, mode)
                except TransportFailure as recovery_error:
                    logger.error("Recovery failed: %s", describe(recovery_error))
                    raise e from recovery_error

    def iterate(self, make_iterable: Callable[[], Iterable[T]],
                cancel_event: Optional[threading.Event] = None) -> Iterator[T]:
        """
        Yield from ``make_iterable()``, re-creating it after recovery.

        Items already yielded are not replayed; the stream starts over from
        whatever the new iterable produces. Always unbounded.
        """
        while True:
            try:
                for item in make_iterable():
                    yield item
                return
            except TransportFailure as e:
                if cancel_event is not None and cancel_event.is_set():
                    raise
                logger.warning("Stream interrupted: %s", describe(e))
                self.recover()

    async def _recover_async(self, hook=None, mode=None):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.recover, hook, mode)

    async def run_async(self, work: Callable[[], Any], mode: Optional[RetryMode] = None,
                        hook: Optional[Callable[[], Any]] = None) -> Any:
        """Async version of run. ``work`` returns an awaitable."""
        mode = mode or self.mode
        attempts = 0
        while True:
            try:
                return await work()
            except TransportFailure as e:
                attempts += 1
                if mode is RetryMode.GIVE_UP_AFTER_ONE and attempts > 1:
                    logger.error("Giving up after reconnecting once: %s", describe(e))
                    raise
                logger.warning("Transport failure: %s", describe(e))
                try:
                    await self._recover_async(hook, mode)
                except TransportFailure as recovery_error:
                    logger.error("Recovery failed: %s", describe(recovery_error))
                    raise e from recovery_error

    async def iterate_async(self, make_iterable: Callable[[], AsyncIterator[T]]) -> AsyncIterator[T]:
        """Async version of iterate."""
        while True:
            try:
                async for item in make_iterable():
                    yield item
                return
            except TransportFailure as e:
                logger.warning("Stream interrupted: %s", describe(e))
                await self._recover_async()
