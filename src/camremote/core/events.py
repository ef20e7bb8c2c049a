"""
Event Waiting

Blocks caller logic until the device reaches an awaited state, by
repeatedly querying the device state (``getEvent``) and evaluating a
predicate over the ``result`` list of each reply.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional

from ..protocols.errors import EventTimeout, TransportFailure, describe
from ..protocols.invoker import Response

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_EVENT_TIMEOUT = 15
# HTTP clients reject a zero read timeout
MIN_READ_TIMEOUT = 0.01

Predicate = Callable[[List[Any]], Any]
Query = Callable[[bool, Optional[float]], Response]
AsyncQuery = Callable[[bool, Optional[float]], Awaitable[Response]]


def _satisfied(predicate: Predicate, result: Optional[List[Any]]) -> bool:
    try:
        return bool(predicate(result))
    except Exception as e:
        # State groups the predicate looks at may be absent until they matter
        logger.debug("Predicate raised %s; treating as not satisfied", describe(e))
        return False


class EventWaiter:
    """
    Polls device state until a predicate holds.

    Args:
        query: ``query(long_poll, timeout) -> Response`` issuing one state query
        poll_interval: Pause between iterations in seconds
    """

    def __init__(self, query: Query, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.query = query
        self.poll_interval = poll_interval
        self.fallback_count = 0
        self.long_poll_count = 0

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(deadline - time.monotonic(), self.poll_interval, MIN_READ_TIMEOUT)

    def _expired(self, deadline: Optional[float]) -> bool:
        return deadline is not None and time.monotonic() > deadline

    def _query(self, long_poll: bool, deadline: Optional[float]) -> Response:
        if not long_poll:
            return self.query(False, None)
        self.long_poll_count += 1
        try:
            return self.query(True, self._remaining(deadline))
        except TransportFailure as e:
            self.fallback_count += 1
            logger.warning("Long-poll query failed (%s); falling back to immediate query (fallback #%d)",
                           describe(e), self.fallback_count)
            return self.query(False, None)

    def wait(self, predicate: Predicate, timeout: Optional[float] = DEFAULT_EVENT_TIMEOUT,
             polling: Optional[bool] = None) -> List[Any]:
        """
        Wait until ``predicate(result)`` is truthy.

        Args:
            predicate: Called with the ``result`` list of each reply
            timeout: Seconds before giving up; None waits forever
            polling: None = immediate first query then long-poll,
                True = always long-poll, False = never long-poll

        Returns:
            The ``result`` list that satisfied the predicate

        Raises:
            EventTimeout: The predicate was not satisfied in time
        """
        start = time.monotonic()
        deadline = start + timeout if timeout is not None else None
        long_poll = False if polling is None else polling
        while True:
            response = self._query(long_poll, deadline).raise_for_error()
            if _satisfied(predicate, response.result):
                break
            if self._expired(deadline):
                raise EventTimeout(f"Timeout expired: {timeout} sec.")
            time.sleep(self.poll_interval)
            if self._expired(deadline):
                raise EventTimeout(f"Timeout expired: {timeout} sec.")
            long_poll = True if polling is None else polling
            logger.debug("Waiting for %s to return true...", getattr(predicate, '__name__', predicate))
        logger.debug("OK. (%.2f sec.)", time.monotonic() - start)
        return response.result

    async def _query_async(self, query: AsyncQuery, long_poll: bool, deadline: Optional[float]) -> Response:
        if not long_poll:
            return await query(False, None)
        self.long_poll_count += 1
        try:
            return await query(True, self._remaining(deadline))
        except TransportFailure as e:
            self.fallback_count += 1
            logger.warning("Long-poll query failed (%s); falling back to immediate query (fallback #%d)",
                           describe(e), self.fallback_count)
            return await query(False, None)

    async def wait_async(self, query: AsyncQuery, predicate: Predicate,
                         timeout: Optional[float] = DEFAULT_EVENT_TIMEOUT,
                         polling: Optional[bool] = None) -> List[Any]:
        """Async version of wait, driven by an async query."""
        start = time.monotonic()
        deadline = start + timeout if timeout is not None else None
        long_poll = False if polling is None else polling
        while True:
            response = (await self._query_async(query, long_poll, deadline)).raise_for_error()
            if _satisfied(predicate, response.result):
                return response.result
            if self._expired(deadline):
                raise EventTimeout(f"Timeout expired: {timeout} sec.")
            await asyncio.sleep(self.poll_interval)
            if self._expired(deadline):
                raise EventTimeout(f"Timeout expired: {timeout} sec.")
            long_poll = True if polling is None else polling
