from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set

from .debounce import AlertDebouncer, epoch_ms
from .dispatch import DispatchOutcome, Dispatcher, DispatchStatus
from .errors import FrameAcquisitionError
from .fall import FallClassifier
from .keypoints import select_primary
from .schemas import FallVerdict, PoseSnapshot

logger = logging.getLogger(__name__)

FrameReader = Callable[[], Any]
PoseInference = Callable[[Any], Any]
Renderer = Callable[[Any, PoseSnapshot, FallVerdict], None]


class LoopState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def frame_pacer(interval_s: float) -> Callable[[], Awaitable[None]]:
    async def wait_next() -> None:
        await asyncio.sleep(interval_s)

    return wait_next


class DetectionLoop:
    """
    Per-frame driver: read frame, infer poses, classify, debounce, dispatch, render.

    One cycle runs at a time. Frame reads and pose inference are blocking and run
    in a worker thread. Dispatches run as background tasks so a slow call service
    never holds up the next frame; the debounce decision itself is made inline.

    The loop stops on `stop()` or when the frame source raises
    `FrameAcquisitionError`. Any other exception only fails the current cycle.
    """

    def __init__(
        self,
        read_frame: FrameReader,
        infer_poses: PoseInference,
        classifier: FallClassifier,
        debouncer: AlertDebouncer,
        dispatcher: Dispatcher,
        recipient: Optional[str] = None,
        render: Optional[Renderer] = None,
        clock: Callable[[], int] = epoch_ms,
        wait_next: Optional[Callable[[], Awaitable[None]]] = None,
        on_outcome: Optional[Callable[[DispatchOutcome], None]] = None,
        on_stopped: Optional[Callable[[Optional[BaseException]], None]] = None,
    ) -> None:
        self._read_frame = read_frame
        self._infer_poses = infer_poses
        self.classifier = classifier
        self.debouncer = debouncer
        self.dispatcher = dispatcher
        self.recipient = recipient
        self._render = render
        self._clock = clock
        self._wait_next = wait_next or frame_pacer(1 / 30)
        self._on_outcome = on_outcome
        self._on_stopped = on_stopped

        self._state = LoopState.STOPPED
        self._task: Optional[asyncio.Task] = None
        # Bumped on every start so a superseded run exits after its cycle
        self._generation = 0
        self._pending: Set[asyncio.Task] = set()
        self.last_verdict: Optional[FallVerdict] = None
        self.last_outcome: Optional[DispatchOutcome] = None
        self.last_error: Optional[BaseException] = None
        self.cycles = 0
        self.dispatch_attempts = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is LoopState.RUNNING

    def start(self) -> asyncio.Task:
        """
        Begin cycling on the running event loop. Idempotent while running.

        Called while a `stop()` is still waiting on the in-flight cycle, the new
        run starts only after that cycle has finished.
        """
        previous = self._task if self._task is not None and not self._task.done() else None
        if self._state is LoopState.RUNNING and previous is not None:
            return previous
        self._generation += 1
        self._state = LoopState.RUNNING
        self.last_error = None
        self._task = asyncio.create_task(self._run(self._generation, previous), name="fallwatch-detection-loop")
        logger.info("Monitoring started for recipient=%s", self.recipient or "<none>")
        return self._task

    async def stop(self) -> None:
        """Stop cycling and wait for the in-flight cycle and dispatches to finish."""
        if self._state is LoopState.RUNNING:
            logger.info("Monitoring stop requested")
        self._state = LoopState.STOPPED
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await task
        await self.drain()

    async def wait(self) -> None:
        """Wait until the loop exits on its own (acquisition failure) or is stopped."""
        if self._task is not None:
            await self._task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def run_cycle(self) -> FallVerdict:
        frame = await asyncio.to_thread(self._read_frame)
        poses = await asyncio.to_thread(self._infer_poses, frame)
        snapshot = select_primary(poses)
        verdict = self.classifier.classify(snapshot)
        self.last_verdict = verdict
        self.cycles += 1
        logger.debug("Cycle %d: is_fall=%s angle=%s", self.cycles, verdict.is_fall, verdict.angle_degrees)

        if verdict.is_fall and self._state is LoopState.RUNNING:
            self._maybe_dispatch()
        if self._render is not None:
            self._render(frame, snapshot, verdict)
        return verdict

    def _maybe_dispatch(self) -> None:
        if not self.recipient:
            logger.debug("Fall detected but no caregiver number is set")
            return
        if not self.debouncer.should_dispatch(self.recipient, self._clock()):
            return
        self.dispatch_attempts += 1
        task = asyncio.create_task(self._dispatch(self.recipient))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _dispatch(self, recipient: str) -> None:
        try:
            outcome = await self.dispatcher.dispatch(recipient, severity="fall")
        except Exception as e:
            logger.exception("Dispatch to %s raised: %s", recipient, e)
            outcome = DispatchOutcome.unavailable(str(e) or type(e).__name__)
        self.last_outcome = outcome
        if outcome.status is DispatchStatus.REJECTED:
            logger.error("Caregiver call rejected: %s", outcome.reason)
        elif outcome.status is DispatchStatus.UNAVAILABLE:
            logger.warning("Caregiver call unavailable: %s", outcome.reason)
        if self._on_outcome is not None:
            self._on_outcome(outcome)

    def _is_current(self, generation: int) -> bool:
        return self._state is LoopState.RUNNING and generation == self._generation

    async def _run(self, generation: int, previous: Optional[asyncio.Task] = None) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        error: Optional[BaseException] = None
        try:
            while self._is_current(generation):
                try:
                    await self.run_cycle()
                except FrameAcquisitionError as e:
                    logger.error("Frame acquisition failed, monitoring stopped: %s", e)
                    error = e
                    break
                except Exception as e:
                    logger.exception("Detection cycle failed: %s", e)
                if not self._is_current(generation):
                    break
                await self._wait_next()
        finally:
            if generation == self._generation:
                self._state = LoopState.STOPPED
                self.last_error = error
                logger.info("Monitoring stopped after %d cycle(s)", self.cycles)
                if self._on_stopped is not None:
                    self._on_stopped(error)
