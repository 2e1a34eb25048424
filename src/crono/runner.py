"""
Drives a single job invocation: one or more command attempts, each bounded by
the job's timeout, separated by exponential backoff sleeps.
"""

import asyncio
import logging
import random
from datetime import timedelta
from typing import Optional, Tuple

from crono.config import Settings, get_settings
from crono.domain.invocation import Invocation, InvocationStatus
from crono.domain.job import Job
from crono.errors import CommandTimeout, ExecutionError
from crono.executor_factory import ExecutorFactory
from crono.executors.protocol import CommandExecutor, CommandResult

logger = logging.getLogger(__name__)

MAX_DOUBLINGS = 6


def compute_backoff(
    attempt: int,
    backoff_min: timedelta,
    backoff_max: timedelta,
    rng: random.Random,
    jitter: timedelta = timedelta(0),
) -> timedelta:
    """
    Compute the sleep before the next attempt.

    ``base = backoff_min * 2**min(attempt, 6)`` capped at ``backoff_max``; the
    sleep is drawn from ``[base/2, base/2 + base/4)``. A positive ``jitter``
    adds a further ``[0, jitter)``.

    Args:
        attempt (int): Number of failed attempts so far (1 after the first failure).
        backoff_min (timedelta): Lower backoff bound.
        backoff_max (timedelta): Upper backoff bound.
        rng (random.Random): Source of randomness.
        jitter (timedelta): Extra random spread configured on the job.
    """
    base = min(backoff_min * (2 ** min(attempt, MAX_DOUBLINGS)), backoff_max)
    delay = base / 2 + (base / 4) * rng.random()
    if jitter > timedelta(0):
        delay += jitter * rng.random()
    return delay


class Runner:
    """
    Executes jobs through the executor registered for their run mode,
    retrying failed attempts with bounded exponential backoff.
    """

    def __init__(
        self,
        executor_factory: ExecutorFactory,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.executor_factory: ExecutorFactory = executor_factory
        self.settings: Settings = settings or get_settings()
        self.rng: random.Random = rng or random.Random()

    def backoff_bounds(self, job: Job) -> Tuple[timedelta, timedelta]:
        if job.backoff_min == timedelta(0) and job.backoff_max == timedelta(0):
            return self.settings.default_backoff_min, self.settings.default_backoff_max
        return job.backoff_min, job.backoff_max

    async def _attempt(self, executor: CommandExecutor, job: Job) -> CommandResult:
        if not job.has_timeout:
            return await executor.run(job.command, job.env)
        seconds = job.timeout.total_seconds()
        try:
            return await asyncio.wait_for(executor.run(job.command, job.env), timeout=seconds)
        except asyncio.TimeoutError:
            raise CommandTimeout(seconds)

    async def run(self, job: Job, invocation: Optional[Invocation] = None) -> Invocation:
        """
        Run a job until it succeeds or its retries are exhausted.

        Failures are logged and recorded on the returned invocation, never
        raised. Cancellation stops the invocation at once and propagates.

        Args:
            job (Job): The job to run.
            invocation (Optional[Invocation]): Record to fill in; a new one is created if omitted.
        """
        if invocation is None:
            invocation = Invocation(job_name=job.name)
        prefix = f"[{job.name}:{invocation.id}]"
        executor = self.executor_factory.get_executor(job.run_mode)
        backoff_min, backoff_max = self.backoff_bounds(job)

        invocation.set_status(InvocationStatus.RUNNING)
        logger.info(f"{prefix} Starting: {job.command}")

        try:
            while True:
                try:
                    result = await self._attempt(executor, job)
                except ExecutionError as e:
                    invocation.attempts += 1
                    if invocation.attempts > job.retry_count:
                        invocation.set_error(e)
                        logger.error(
                            f"{prefix} Failed: {job.command!r}: {e} "
                            f"(giving up after {invocation.attempts} attempt(s), "
                            f"{invocation.elapsed.total_seconds():.2f}s)"
                        )
                        return invocation
                    delay = compute_backoff(invocation.attempts, backoff_min, backoff_max, self.rng, job.jitter)
                    logger.warning(
                        f"{prefix} Attempt {invocation.attempts} failed: {e}; "
                        f"retrying in {delay.total_seconds():.2f}s"
                    )
                    await asyncio.sleep(delay.total_seconds())
                    continue

                invocation.attempts += 1
                invocation.set_status(InvocationStatus.COMPLETED)
                if result.stdout:
                    logger.debug(f"{prefix} stdout: {result.stdout}")
                logger.info(f"{prefix} Completed in {invocation.elapsed.total_seconds():.2f}s")
                return invocation
        except asyncio.CancelledError:
            invocation.set_status(InvocationStatus.CANCELLED)
            logger.info(f"{prefix} Cancelled after {invocation.attempts} failed attempt(s)")
            raise
