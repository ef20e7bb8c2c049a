#!/usr/bin/env python3
"""
Event waiting tests: immediate first query, long-poll afterwards, timeout
and the long-poll fallback.
"""

import asyncio
import os
import sys
import time

import pytest

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from camremote.core.events import EventWaiter
from camremote.protocols.errors import APINotAvailable, EventTimeout, TransportFailure
from camremote.protocols.invoker import Response


# Scheduling allowance for timing assertions
SLACK = 0.25


class ScriptedQuery:
    """Query returning scripted results; the last one repeats."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def next_outcome(self):
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, Response):
            return outcome
        return Response(id=1, result=outcome)

    def __call__(self, long_poll, timeout):
        self.calls.append((long_poll, timeout))
        return self.next_outcome()


class StallingQuery:
    """Immediate queries report NotReady; long-polls stall until their read timeout."""

    def __init__(self):
        self.calls = []

    def __call__(self, long_poll, timeout):
        self.calls.append((long_poll, timeout))
        if long_poll:
            time.sleep(timeout)
            raise TransportFailure(f"read timed out after {timeout:.2f} sec")
        return Response(id=1, result=event('NotReady'))


def status_is(status):
    def predicate(result):
        return result[1]['cameraStatus'] == status
    return predicate


def event(status):
    return [{'names': []}, {'cameraStatus': status}]


def test_first_query_immediate_then_long_poll():
    query = ScriptedQuery(event('NotReady'), event('NotReady'), event('IDLE'))
    waiter = EventWaiter(query, poll_interval=0)

    result = waiter.wait(status_is('IDLE'), timeout=5)

    assert result[1]['cameraStatus'] == 'IDLE'
    assert [long_poll for long_poll, _ in query.calls] == [False, True, True]
    assert waiter.long_poll_count == 2


def test_satisfied_immediately_issues_one_query():
    query = ScriptedQuery(event('IDLE'))
    EventWaiter(query, poll_interval=0).wait(status_is('IDLE'))

    assert query.calls == [(False, None)]


def test_long_poll_timeout_is_bounded_by_remaining_time():
    query = ScriptedQuery(event('NotReady'), event('IDLE'))
    EventWaiter(query, poll_interval=0).wait(status_is('IDLE'), timeout=5)

    _, timeout = query.calls[1]
    assert 0 < timeout <= 5


def test_polling_false_never_long_polls():
    query = ScriptedQuery(event('NotReady'), event('NotReady'), event('IDLE'))
    EventWaiter(query, poll_interval=0).wait(status_is('IDLE'), polling=False)

    assert [long_poll for long_poll, _ in query.calls] == [False, False, False]


def test_polling_true_always_long_polls():
    query = ScriptedQuery(event('NotReady'), event('IDLE'))
    EventWaiter(query, poll_interval=0).wait(status_is('IDLE'), polling=True)

    assert [long_poll for long_poll, _ in query.calls] == [True, True]


def test_timeout_raises_event_timeout():
    query = ScriptedQuery(event('NotReady'))
    waiter = EventWaiter(query, poll_interval=0.05)

    start = time.monotonic()
    with pytest.raises(EventTimeout) as excinfo:
        waiter.wait(status_is('IDLE'), timeout=0.2)
    assert time.monotonic() - start <= 0.2 + 0.05 + SLACK
    assert 'Timeout expired' in str(excinfo.value)
    assert len(query.calls) >= 2


def test_predicate_errors_count_as_not_satisfied():
    query = ScriptedQuery([], [{'names': []}], event('IDLE'))

    result = EventWaiter(query, poll_interval=0).wait(status_is('IDLE'))

    assert result == event('IDLE')
    assert len(query.calls) == 3


def test_long_poll_failure_falls_back_to_immediate_query():
    query = ScriptedQuery(event('NotReady'), TransportFailure("read timed out"), event('IDLE'))
    waiter = EventWaiter(query, poll_interval=0)

    waiter.wait(status_is('IDLE'), timeout=5)

    assert [long_poll for long_poll, _ in query.calls] == [False, True, False]
    assert waiter.fallback_count == 1


def test_stalled_long_poll_times_out_within_deadline():
    query = StallingQuery()
    waiter = EventWaiter(query, poll_interval=0.05)

    start = time.monotonic()
    with pytest.raises(EventTimeout):
        waiter.wait(status_is('IDLE'), timeout=0.3)
    elapsed = time.monotonic() - start

    assert 0.3 <= elapsed <= 0.3 + 0.05 + SLACK
    assert waiter.fallback_count >= 1
    long_poll_timeouts = [timeout for long_poll, timeout in query.calls if long_poll]
    assert long_poll_timeouts and all(0 < timeout <= 0.3 for timeout in long_poll_timeouts)
    # every stalled long-poll is followed by an immediate query
    assert query.calls[-1][0] is False


def test_error_reply_is_raised():
    query = ScriptedQuery(Response(id=1, error=(1, 'Not Available Now')))

    with pytest.raises(APINotAvailable):
        EventWaiter(query, poll_interval=0).wait(status_is('IDLE'))


def test_wait_async():
    query = ScriptedQuery(event('NotReady'), TransportFailure("dropped"), event('IDLE'))
    waiter = EventWaiter(query, poll_interval=0)

    async def async_query(long_poll, timeout):
        return query(long_poll, timeout)

    result = asyncio.run(waiter.wait_async(async_query, status_is('IDLE'), timeout=5))

    assert result == event('IDLE')
    assert [long_poll for long_poll, _ in query.calls] == [False, True, False]
    assert waiter.fallback_count == 1


def test_wait_async_timeout():
    async def async_query(long_poll, timeout):
        return Response(id=1, result=event('NotReady'))

    waiter = EventWaiter(async_query, poll_interval=0.05)
    with pytest.raises(EventTimeout):
        asyncio.run(waiter.wait_async(async_query, status_is('IDLE'), timeout=0.2))


def test_wait_async_stalled_long_poll_times_out_within_deadline():
    async def async_query(long_poll, timeout):
        if long_poll:
            await asyncio.sleep(timeout)
            raise TransportFailure("read timed out")
        return Response(id=1, result=event('NotReady'))

    waiter = EventWaiter(async_query, poll_interval=0.05)
    start = time.monotonic()
    with pytest.raises(EventTimeout):
        asyncio.run(waiter.wait_async(async_query, status_is('IDLE'), timeout=0.3))

    assert time.monotonic() - start <= 0.3 + 0.05 + SLACK
    assert waiter.fallback_count >= 1
