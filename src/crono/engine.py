import asyncio
import functools
import logging
import random
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Set

from crono.config import Settings, get_settings
from crono.domain.invocation import Invocation, InvocationStatus
from crono.domain.job import Job, OverlapPolicy, Program
from crono.errors import PlanningError, ScheduleError
from crono.executor_factory import ExecutorFactory
from crono.runner import Runner
from crono.schedule import next_run

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now().astimezone()


class SlotState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class DispatchOutcome(str, Enum):
    STARTED = "started"
    SKIPPED = "skipped"
    QUEUED = "queued"
    REPLACED = "replaced"


@dataclass
class ScheduledItem:
    job: Job
    next_run: datetime


class JobSlot:
    """
    Ownership cell for one job.

    Holds the overlap state machine (IDLE -> RUNNING -> IDLE), the in-flight
    invocation task, occurrences waiting under the 'queue' policy, and a short
    history of finished invocations. All transitions happen synchronously on
    the event loop, so a check and the following update can never interleave
    with another dispatch.
    """

    def __init__(self, job: Job, max_pending: int, history_size: int):
        self.job: Job = job
        self.state: SlotState = SlotState.IDLE
        self.task: Optional[asyncio.Task] = None
        self.max_pending: int = max_pending
        self.pending: Deque[datetime] = deque()
        self.skipped: int = 0
        self.history: Deque[Invocation] = deque(maxlen=history_size)

    @property
    def busy(self) -> bool:
        return self.state == SlotState.RUNNING


class Engine:
    """
    Runs every job of a program at its computed occurrences.

    A single loop sleeps until the soonest-due job, dispatches it under its
    overlap policy, and re-plans it. Each dispatched invocation runs as its
    own task, at most one per job. Cancelling the loop cancels every
    in-flight invocation, which terminates the underlying processes.
    """

    def __init__(
        self,
        program: Program,
        executor_factory: Optional[ExecutorFactory] = None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _now,
    ):
        self.program: Program = program
        self.settings: Settings = settings or get_settings()
        self.executor_factory: ExecutorFactory = executor_factory or ExecutorFactory.default()
        self.runner: Runner = Runner(self.executor_factory, self.settings, rng)
        self.clock: Callable[[], datetime] = clock
        self.slots: Dict[str, JobSlot] = {
            job.name: JobSlot(job, self.settings.max_pending, self.settings.history_size)
            for job in program.jobs
        }
        self.items: List[ScheduledItem] = []
        self.scheduler_task: Optional[asyncio.Task] = None
        self.is_running: bool = False
        self._inflight: Set[asyncio.Task] = set()
        self._stopping: bool = False

    def plan(self) -> List[ScheduledItem]:
        """
        Compute the first occurrence of every job from the current time.

        Raises:
            PlanningError: If any job cannot be planned; nothing is scheduled then.
        """
        now = self.clock()
        supported = self.executor_factory.supported_modes
        items: List[ScheduledItem] = []
        for job in self.program.jobs:
            if job.run_mode not in supported:
                raise PlanningError(job.name, KeyError(f"no executor for run mode '{job.run_mode.value}'"))
            try:
                items.append(ScheduledItem(job=job, next_run=next_run(job.schedule, now)))
            except ScheduleError as e:
                raise PlanningError(job.name, e) from e
        self.items = items
        return items

    async def start(self):
        """
        Plan all jobs and start the scheduling loop in the background.
        """
        if not self.is_running:
            self.plan()
            self.is_running = True
            self.scheduler_task = asyncio.create_task(self._loop())
            logger.info(f"Engine started with {len(self.items)} job(s)")

    async def stop(self):
        """
        Stop the scheduling loop and cancel in-flight invocations.
        """
        if self.is_running:
            self.is_running = False
            if self.scheduler_task:
                self.scheduler_task.cancel()
                try:
                    await self.scheduler_task
                except asyncio.CancelledError:
                    pass
            logger.info("Engine stopped")

    async def run(self) -> None:
        """
        Plan all jobs and run the scheduling loop until cancelled.

        Raises:
            PlanningError: If a job cannot be planned at startup.
            asyncio.CancelledError: When the loop is cancelled.
        """
        self.plan()
        self.is_running = True
        logger.info(f"Engine running {len(self.items)} job(s)")
        try:
            await self._loop()
        finally:
            self.is_running = False

    def _select_next(self) -> ScheduledItem:
        soonest = self.items[0]
        for item in self.items[1:]:
            if item.next_run < soonest.next_run:
                soonest = item
        return soonest

    async def _loop(self) -> None:
        self._stopping = False
        try:
            if not self.items:
                await asyncio.get_running_loop().create_future()
            while True:
                item = self._select_next()
                delay = (item.next_run - self.clock()).total_seconds()
                if delay > 0:
                    await asyncio.sleep(delay)
                self.fire(item)
        except asyncio.CancelledError:
            await self._cancel_inflight()
            raise

    def fire(self, item: ScheduledItem) -> DispatchOutcome:
        """
        Dispatch a due item and move it to its next occurrence.
        """
        fired_at = item.next_run
        outcome = self.dispatch(item.job, fired_at)
        item.next_run = self._replan(item.job, fired_at)
        logger.debug(f"[{item.job.name}] Next run at {item.next_run.isoformat()}")
        return outcome

    def dispatch(self, job: Job, fired_at: datetime) -> DispatchOutcome:
        """
        Apply the job's overlap policy to an occurrence and start it if allowed.
        """
        slot = self.slots[job.name]
        if not slot.busy:
            self._start(slot)
            return DispatchOutcome.STARTED

        if job.overlap == OverlapPolicy.QUEUE:
            if len(slot.pending) < slot.max_pending:
                slot.pending.append(fired_at)
                logger.info(f"[{job.name}] Overlap: queued occurrence of {fired_at.isoformat()} ({len(slot.pending)} pending)")
                return DispatchOutcome.QUEUED
            slot.skipped += 1
            logger.warning(f"[{job.name}] Overlap: pending queue full, skipping occurrence of {fired_at.isoformat()}")
            return DispatchOutcome.SKIPPED

        if job.overlap == OverlapPolicy.CANCEL_PREV:
            previous = slot.task
            logger.warning(f"[{job.name}] Overlap: cancelling previous invocation")
            previous.cancel()
            self._start(slot, previous=previous)
            return DispatchOutcome.REPLACED

        slot.skipped += 1
        logger.warning(f"[{job.name}] Overlap: still running, skipping occurrence of {fired_at.isoformat()}")
        return DispatchOutcome.SKIPPED

    def _start(self, slot: JobSlot, previous: Optional[asyncio.Task] = None) -> None:
        slot.state = SlotState.RUNNING
        invocation = Invocation(job_name=slot.job.name)
        task = asyncio.create_task(self._invoke(slot.job, invocation, previous), name=f"crono:{slot.job.name}")
        slot.task = task
        self._inflight.add(task)
        task.add_done_callback(functools.partial(self._on_done, slot, invocation))

    async def _invoke(self, job: Job, invocation: Invocation, previous: Optional[asyncio.Task]) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        await self.runner.run(job, invocation)

    def _on_done(self, slot: JobSlot, invocation: Invocation, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            if not invocation.finished:
                invocation.set_status(InvocationStatus.CANCELLED)
        elif task.exception() is not None:
            invocation.set_error(task.exception())
            logger.error(f"[{slot.job.name}] Invocation crashed: {task.exception()!r}")
        slot.history.append(invocation)

        if slot.task is not task:
            # superseded under 'cancel-prev'; the newer invocation owns the slot
            return
        slot.task = None
        if slot.pending and not self._stopping:
            fired_at = slot.pending.popleft()
            logger.info(f"[{slot.job.name}] Starting queued occurrence of {fired_at.isoformat()}")
            self._start(slot)
        else:
            slot.state = SlotState.IDLE

    def _replan(self, job: Job, fired_at: datetime) -> datetime:
        try:
            return next_run(job.schedule, fired_at + self.settings.replan_tick)
        except ScheduleError as e:
            fallback = self.clock() + self.settings.replan_fallback
            logger.error(f"[{job.name}] Re-planning failed: {e}; retrying at {fallback.isoformat()}")
            return fallback

    async def _cancel_inflight(self) -> None:
        self._stopping = True
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelling {len(tasks)} in-flight invocation(s)")
            await asyncio.gather(*tasks, return_exceptions=True)
        for slot in self.slots.values():
            slot.pending.clear()

    def is_busy(self, name: str) -> bool:
        return self.slots[name].busy

    def skipped(self, name: str) -> int:
        return self.slots[name].skipped

    def next_fire_times(self) -> Dict[str, datetime]:
        return {item.job.name: item.next_run for item in self.items}

    def list_recent_invocations(self, name: str, limit: int = 10) -> List[Invocation]:
        """
        List finished invocations of a job, most recent first.
        """
        history = list(self.slots[name].history)
        history.reverse()
        return history[:limit]
