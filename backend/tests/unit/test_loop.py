"""
Unit tests for fallwatch.loop.DetectionLoop
"""
import asyncio
import threading

import pytest

from fallwatch.debounce import AlertDebouncer
from fallwatch.dispatch import DispatchOutcome, Dispatcher, DispatchStatus
from fallwatch.errors import FrameAcquisitionError
from fallwatch.fall import FallClassifier
from fallwatch.loop import DetectionLoop, LoopState

RECIPIENT = "+15551234567"


class CountingDispatcher(Dispatcher):
    def __init__(self, outcome=None):
        self.calls = []
        self.outcome = outcome or DispatchOutcome.dispatched()

    async def dispatch(self, recipient, severity="fall"):
        self.calls.append((recipient, severity))
        return self.outcome


class Ticker:
    """Frame pacer that yields to the event loop and signals after N cycles."""

    def __init__(self, after):
        self.after = after
        self.ticks = 0
        self.reached = asyncio.Event()

    async def __call__(self):
        self.ticks += 1
        if self.ticks >= self.after:
            self.reached.set()
        await asyncio.sleep(0)


def make_loop(snapshot, dispatcher, cooldown_ms=0, **kwargs):
    clock = iter(range(0, 10_000_000, 10))
    kwargs.setdefault("read_frame", lambda: "frame")
    kwargs.setdefault("infer_poses", lambda frame: [snapshot])
    return DetectionLoop(
        classifier=FallClassifier(),
        debouncer=AlertDebouncer(cooldown_ms),
        dispatcher=dispatcher,
        recipient=RECIPIENT,
        clock=lambda: next(clock),
        **kwargs,
    )


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_fall_dispatches_once_within_cooldown(self, lying):
        dispatcher = CountingDispatcher()
        loop = make_loop(lying, dispatcher, cooldown_ms=60_000)
        loop._state = LoopState.RUNNING
        for _ in range(5):
            verdict = await loop.run_cycle()
            assert verdict.is_fall
        await loop.drain()
        assert loop.dispatch_attempts == 1
        assert dispatcher.calls == [(RECIPIENT, "fall")]

    @pytest.mark.asyncio
    async def test_upright_never_dispatches(self, upright):
        dispatcher = CountingDispatcher()
        loop = make_loop(upright, dispatcher)
        loop._state = LoopState.RUNNING
        for _ in range(3):
            assert not (await loop.run_cycle()).is_fall
        await loop.drain()
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_no_recipient_no_dispatch(self, lying):
        dispatcher = CountingDispatcher()
        loop = make_loop(lying, dispatcher)
        loop.recipient = None
        loop._state = LoopState.RUNNING
        await loop.run_cycle()
        await loop.drain()
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_renders_every_cycle(self, lying):
        rendered = []
        loop = make_loop(lying, CountingDispatcher(), render=lambda f, s, v: rendered.append((f, v.is_fall)))
        await loop.run_cycle()
        assert rendered == [("frame", True)]

    @pytest.mark.asyncio
    async def test_outcome_is_reported(self, lying):
        outcomes = []
        dispatcher = CountingDispatcher(DispatchOutcome.rejected("Phone number is required"))
        loop = make_loop(lying, dispatcher, on_outcome=outcomes.append)
        loop._state = LoopState.RUNNING
        await loop.run_cycle()
        await loop.drain()
        assert outcomes[0].status is DispatchStatus.REJECTED
        assert loop.last_outcome.reason == "Phone number is required"

    @pytest.mark.asyncio
    async def test_dispatch_exception_becomes_unavailable(self, lying):
        class Exploding(Dispatcher):
            async def dispatch(self, recipient, severity="fall"):
                raise RuntimeError("boom")

        loop = make_loop(lying, Exploding())
        loop._state = LoopState.RUNNING
        await loop.run_cycle()
        await loop.drain()
        assert loop.last_outcome.status is DispatchStatus.UNAVAILABLE


class TestStartStop:
    @pytest.mark.asyncio
    async def test_stop_prevents_further_dispatch(self, lying):
        dispatcher = CountingDispatcher()
        ticker = Ticker(after=3)
        loop = make_loop(lying, dispatcher, wait_next=ticker)

        loop.start()
        assert loop.state is LoopState.RUNNING
        await asyncio.wait_for(ticker.reached.wait(), timeout=5)
        await loop.stop()

        assert loop.state is LoopState.STOPPED
        count = len(dispatcher.calls)
        assert count >= 3
        cycles = loop.cycles

        for _ in range(3):
            await loop.run_cycle()
        for _ in range(10):
            await asyncio.sleep(0)
        await loop.drain()
        assert len(dispatcher.calls) == count
        assert loop.cycles == cycles + 3

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, upright):
        ticker = Ticker(after=1)
        loop = make_loop(upright, CountingDispatcher(), wait_next=ticker)
        first = loop.start()
        assert loop.start() is first
        await asyncio.wait_for(ticker.reached.wait(), timeout=5)
        await loop.stop()

    @pytest.mark.asyncio
    async def test_stop_when_never_started(self, upright):
        loop = make_loop(upright, CountingDispatcher())
        await loop.stop()
        assert loop.state is LoopState.STOPPED

    @pytest.mark.asyncio
    async def test_cycle_failure_does_not_stop_loop(self, lying):
        calls = {"n": 0}

        def flaky_inference(frame):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("inference blew up")
            return [lying]

        ticker = Ticker(after=3)
        loop = make_loop(lying, CountingDispatcher(), infer_poses=flaky_inference, wait_next=ticker)
        loop.start()
        await asyncio.wait_for(ticker.reached.wait(), timeout=5)
        await loop.stop()
        assert loop.last_error is None
        assert loop.cycles >= 2
        assert loop.last_verdict.is_fall

    @pytest.mark.asyncio
    async def test_acquisition_failure_stops_loop(self, upright):
        frames = iter(["f1", "f2"])
        stopped = []

        def read_frame():
            try:
                return next(frames)
            except StopIteration:
                raise FrameAcquisitionError("camera unplugged")

        loop = make_loop(
            upright,
            CountingDispatcher(),
            read_frame=read_frame,
            wait_next=Ticker(after=100),
            on_stopped=stopped.append,
        )
        loop.start()
        await asyncio.wait_for(loop.wait(), timeout=5)

        assert loop.state is LoopState.STOPPED
        assert loop.cycles == 2
        assert isinstance(loop.last_error, FrameAcquisitionError)
        assert stopped == [loop.last_error]

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, upright):
        loop = make_loop(upright, CountingDispatcher(), wait_next=Ticker(after=1))
        loop.start()
        await asyncio.sleep(0)
        await loop.stop()
        ticker = Ticker(after=2)
        loop._wait_next = ticker
        loop.start()
        await asyncio.wait_for(ticker.reached.wait(), timeout=5)
        await loop.stop()
        assert loop.state is LoopState.STOPPED

    @pytest.mark.asyncio
    async def test_restart_while_stop_pending_runs_one_loop(self, upright):
        gate = threading.Event()
        started = threading.Event()
        lock = threading.Lock()
        in_flight = {"now": 0, "peak": 0}

        def slow_inference(frame):
            with lock:
                in_flight["now"] += 1
                in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            started.set()
            gate.wait(5)
            with lock:
                in_flight["now"] -= 1
            return [upright]

        ticker = Ticker(after=2)
        loop = make_loop(upright, CountingDispatcher(), infer_poses=slow_inference, wait_next=ticker)
        first = loop.start()
        assert await asyncio.to_thread(started.wait, 5)

        stopping = asyncio.create_task(loop.stop())
        await asyncio.sleep(0)
        second = loop.start()
        assert second is not first
        assert not first.done()

        gate.set()
        await asyncio.wait_for(stopping, timeout=5)
        assert first.done()
        assert loop.state is LoopState.RUNNING

        await asyncio.wait_for(ticker.reached.wait(), timeout=5)
        await loop.stop()
        assert in_flight["peak"] == 1
        assert loop.state is LoopState.STOPPED
