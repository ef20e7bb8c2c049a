#!/usr/bin/env python3
"""
Reconnect-and-retry tests.
"""

import asyncio
import os
import sys
import threading

import pytest

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from camremote.protocols.errors import APINotAvailable, TransportFailure
from camremote.protocols.retrying import RetryEngine, RetryMode


class Flaky:
    """Callable failing with TransportFailure a given number of times."""

    def __init__(self, failures, result='ok'):
        self.failures = failures
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransportFailure(f"link down ({self.calls})")
        return self.result


def make_engine(**kwargs):
    log = []
    engine = RetryEngine(reconnect=lambda: log.append('reconnect'), retry_interval=0, **kwargs)
    return engine, log


def test_success_needs_no_recovery():
    engine, log = make_engine()
    assert engine.run(lambda: 42) == 42
    assert log == []
    assert engine.reconnect_count == 0


def test_unbounded_retries_until_success():
    engine, log = make_engine()
    work = Flaky(3)

    assert engine.run(work) == 'ok'
    assert work.calls == 4
    assert log == ['reconnect'] * 3
    assert engine.reconnect_count == 3


def test_give_up_after_one_recovers_once():
    engine, log = make_engine()
    work = Flaky(1)

    assert engine.run(work, mode=RetryMode.GIVE_UP_AFTER_ONE) == 'ok'
    assert log == ['reconnect']


def test_give_up_after_one_reraises_second_failure():
    engine, log = make_engine(mode=RetryMode.GIVE_UP_AFTER_ONE)
    work = Flaky(5)

    with pytest.raises(TransportFailure) as excinfo:
        engine.run(work)
    assert 'link down (2)' in str(excinfo.value)
    assert work.calls == 2
    assert log == ['reconnect']


def test_protocol_errors_are_not_retried():
    engine, log = make_engine()

    def work():
        raise APINotAvailable(1, 'Not Available Now')

    with pytest.raises(APINotAvailable):
        engine.run(work)
    assert log == []


def test_hooks_run_in_order_after_reconnect():
    engine, log = make_engine()
    engine.add_hook(lambda: log.append('remote mode')).add_hook(lambda: log.append('shoot mode'))

    engine.run(Flaky(1), hook=lambda: log.append('call hook'))

    assert log == ['reconnect', 'remote mode', 'shoot mode', 'call hook']


def test_failing_hook_gets_reconnect_only():
    engine, log = make_engine()
    hook = Flaky(1, result=None)

    def remote_mode():
        log.append('remote mode')
        hook()

    engine.add_hook(remote_mode)
    assert engine.run(Flaky(1)) == 'ok'

    # the hook's own failure reconnects without re-running the hook list
    assert log == ['reconnect', 'remote mode', 'reconnect', 'remote mode']
    assert engine.reconnect_count == 2


def test_hooks_may_call_through_the_engine():
    engine, log = make_engine()
    inner = Flaky(1)
    engine.add_hook(lambda: log.append(engine.run(inner)))

    engine.run(Flaky(1))

    assert log == ['reconnect', 'reconnect', 'ok']


def test_give_up_reports_work_failure_when_hook_gives_up():
    engine, log = make_engine(mode=RetryMode.GIVE_UP_AFTER_ONE)

    def remote_mode():
        log.append('remote mode')
        raise TransportFailure("hook down")

    engine.add_hook(remote_mode)
    work = Flaky(5)

    with pytest.raises(TransportFailure) as excinfo:
        engine.run(work)
    assert 'link down (1)' in str(excinfo.value)
    assert 'hook down' in str(excinfo.value.__cause__)
    assert work.calls == 1
    assert log == ['reconnect', 'remote mode', 'reconnect', 'remote mode']


def test_concurrent_recoveries_each_run_the_hooks():
    engine, _ = make_engine()
    hook_calls = []
    stream_in_hook = threading.Event()
    release = threading.Event()

    def remote_mode():
        name = threading.current_thread().name
        hook_calls.append(name)
        if name == 'stream':
            stream_in_hook.set()
            release.wait(5)

    engine.add_hook(remote_mode)
    results = {}

    def worker():
        results[threading.current_thread().name] = engine.run(Flaky(1))

    stream = threading.Thread(target=worker, name='stream')
    caller = threading.Thread(target=worker, name='caller')
    stream.start()
    assert stream_in_hook.wait(5)
    # the caller recovers while the stream thread is still inside the hook chain
    caller.start()
    caller.join(5)
    release.set()
    stream.join(5)

    assert results == {'stream': 'ok', 'caller': 'ok'}
    assert hook_calls.count('stream') == 1
    assert hook_calls.count('caller') == 1


def test_hook_nesting_state_is_not_cleared_by_other_threads():
    engine, log = make_engine()
    inner_failures = Flaky(1, result=None)
    other_done = threading.Event()

    def remote_mode():
        if threading.current_thread().name == 'other':
            return
        log.append('remote mode')
        if not other_done.is_set():
            other = threading.Thread(target=lambda: engine.run(Flaky(1)), name='other')
            other.start()
            other.join(5)
            other_done.set()
        inner_failures()

    engine.add_hook(remote_mode)

    assert engine.run(Flaky(1)) == 'ok'
    # the hook's own failure still gets reconnect only after the other thread recovered
    assert log.count('remote mode') == 2


def test_cancel_event_stops_unbounded_loop():
    engine, _ = make_engine()
    cancel = threading.Event()
    work = Flaky(100)
    engine.add_hook(cancel.set)

    with pytest.raises(TransportFailure):
        engine.run(work, cancel_event=cancel)
    assert work.calls == 2


def test_no_reconnect_action_still_runs_hooks():
    log = []
    engine = RetryEngine(retry_interval=0).add_hook(lambda: log.append('hook'))

    assert engine.run(Flaky(2)) == 'ok'
    assert log == ['hook', 'hook']
    assert engine.reconnect_count == 2


def test_iterate_restarts_stream_without_replay():
    engine, log = make_engine()
    attempts = []

    def make_stream():
        attempts.append(len(attempts))
        if len(attempts) == 1:
            yield 'a'
            yield 'b'
            raise TransportFailure("stream dropped")
        yield 'c'

    assert list(engine.iterate(make_stream)) == ['a', 'b', 'c']
    assert log == ['reconnect']


def test_iterate_creation_failure_recovers():
    engine, log = make_engine()
    opener = Flaky(2, result=['x', 'y'])

    assert list(engine.iterate(opener)) == ['x', 'y']
    assert log == ['reconnect', 'reconnect']


def test_run_async_retries():
    engine, log = make_engine()
    work = Flaky(2)

    async def attempt():
        return work()

    assert asyncio.run(engine.run_async(attempt)) == 'ok'
    assert log == ['reconnect', 'reconnect']


def test_run_async_give_up():
    engine, _ = make_engine()
    work = Flaky(5)

    async def attempt():
        return work()

    with pytest.raises(TransportFailure):
        asyncio.run(engine.run_async(attempt, mode=RetryMode.GIVE_UP_AFTER_ONE))
    assert work.calls == 2


def test_iterate_async_restarts():
    engine, log = make_engine()
    attempts = []

    async def make_stream():
        attempts.append(1)
        if len(attempts) == 1:
            yield 1
            raise TransportFailure("stream dropped")
        yield 2

    async def collect():
        return [item async for item in engine.iterate_async(make_stream)]

    assert asyncio.run(collect()) == [1, 2]
    assert log == ['reconnect']
