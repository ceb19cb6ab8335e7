"""
In-process job runner with concurrency control.

Provides concurrent job execution with:
- Semaphore-based concurrency limiting, globally and per tag
- A status-update callback handed to every job
- Jobs that register further jobs while the runner is running
- Aggregated results instead of raised errors
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum, auto
from typing import Awaitable, Callable

import structlog

from tabwright.config import RunnerConfig, load_runner_config
from tabwright.options import JobOptions
from tabwright.status import StatusSink

logger = structlog.get_logger(__name__)

JobFunction = Callable[[StatusSink], Awaitable[None]]


class JobRunnerError(Exception):
    """Raised when the runner is used incorrectly."""


class JobState(StrEnum):
    """Lifecycle state of a job."""

    PENDING = auto()
    """Registered, not started yet."""

    RUNNING = auto()
    """Currently executing."""

    SUCCEEDED = auto()
    """Finished without raising."""

    FAILED = auto()
    """Raised an exception."""


@dataclass
class Job:
    """A registered unit of work and its outcome."""

    id: str
    """Unique identifier for this job."""

    options: JobOptions
    """Registration options."""

    fn: JobFunction
    """The execution function."""

    state: JobState = JobState.PENDING
    """Current state of the job."""

    status: str = ""
    """Latest status text published by the job."""

    error: str | None = None
    """Error text if the job failed."""

    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def title(self) -> str:
        return self.options.title

    @property
    def tags(self) -> tuple[str, ...]:
        return self.options.tags

    @property
    def duration_ms(self) -> int:
        """Execution time in milliseconds, zero if not finished."""
        if self.started_at is None or self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


@dataclass
class RunResult:
    """
    Result of a runner pass.

    Aggregates outcomes of every job executed during ``run()``.
    """

    started_at: datetime
    """When execution started."""

    finished_at: datetime | None = None
    """When execution completed."""

    duration_ms: int = 0
    """Total execution time in milliseconds."""

    jobs: list[Job] = field(default_factory=list)
    """Jobs executed in this pass, in registration order."""

    max_parallelism_reached: int = 0
    """Maximum concurrent jobs reached."""

    @property
    def total_jobs(self) -> int:
        return len(self.jobs)

    @property
    def succeeded(self) -> int:
        return sum(1 for job in self.jobs if job.state == JobState.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for job in self.jobs if job.state == JobState.FAILED)

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if not self.jobs:
            return 0.0
        return (self.succeeded / self.total_jobs) * 100

    @property
    def is_success(self) -> bool:
        """Check if all executed jobs succeeded."""
        return self.failed == 0


class JobRunner:
    """
    Runs registered jobs concurrently.

    Usage:
        runner = JobRunner(RunnerConfig(max_parallel_jobs=4))
        runner.add_job(JobOptions(title="fetch"), fetch)
        result = await runner.run()
    """

    def __init__(
        self,
        config: RunnerConfig | None = None,
        on_job_complete: Callable[[Job], None] | None = None,
    ) -> None:
        """
        Initialize job runner.

        Args:
            config: Runner configuration (loads from env if not provided)
            on_job_complete: Callback when each job finishes
        """
        self._config = config or load_runner_config()
        self._on_job_complete = on_job_complete

        self._semaphore = asyncio.Semaphore(self._config.max_parallel_jobs)
        self._tag_semaphores: dict[str, asyncio.Semaphore] = {
            tag: asyncio.Semaphore(limit)
            for tag, limit in self._config.tag_limits.items()
        }

        self._jobs: list[Job] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._run_jobs: list[Job] = []
        self._running = False
        self._closed = False

        self._concurrent = 0
        self._max_concurrent = 0

        self._log = logger.bind(component="job_runner")

    @property
    def jobs(self) -> list[Job]:
        return list(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._running

    def add_job(self, options: JobOptions, fn: JobFunction) -> Job:
        """
        Register a job.

        If the runner is already running, the job starts as soon as a slot is
        free; otherwise it starts on the next ``run()``.

        Returns:
            The job record, updated in place as the job progresses
        """
        if self._closed:
            raise JobRunnerError(f"Runner is closed; cannot add job {options.title!r}")

        job = Job(id=str(uuid.uuid4())[:8], options=options, fn=fn)
        self._jobs.append(job)
        self._log.debug("Job added", job=job.title, job_id=job.id, tags=list(job.tags))

        if self._running:
            self._spawn(job)
        return job

    async def run(self) -> RunResult:
        """
        Run every pending job, including ones added while running.

        Returns:
            Aggregated results; job failures are recorded, not raised
        """
        if self._running:
            raise JobRunnerError("Runner is already running")

        result = RunResult(started_at=datetime.now(UTC))
        self._running = True
        self._run_jobs = []
        self._max_concurrent = 0

        pending = [job for job in self._jobs if job.state == JobState.PENDING]
        self._log.info(
            "Starting job execution",
            job_count=len(pending),
            max_parallel=self._config.max_parallel_jobs,
        )
        for job in pending:
            self._spawn(job)

        try:
            while self._tasks:
                done, _ = await asyncio.wait(set(self._tasks))
                self._tasks.difference_update(done)

        except asyncio.CancelledError:
            self._log.warning("Job execution cancelled")
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
            raise

        finally:
            self._running = False

        result.jobs = list(self._run_jobs)
        result.max_parallelism_reached = self._max_concurrent
        result.finished_at = datetime.now(UTC)
        result.duration_ms = int(
            (result.finished_at - result.started_at).total_seconds() * 1000
        )

        self._log.info(
            "Job execution completed",
            total=result.total_jobs,
            succeeded=result.succeeded,
            failed=result.failed,
            duration_ms=result.duration_ms,
            max_concurrent=result.max_parallelism_reached,
        )

        return result

    def close(self) -> None:
        """Refuse further jobs."""
        self._closed = True

    def _spawn(self, job: Job) -> None:
        self._run_jobs.append(job)
        self._tasks.add(asyncio.create_task(self._execute(job), name=f"job-{job.id}"))

    async def _execute(self, job: Job) -> None:
        """Execute a single job once a slot is free."""
        async with contextlib.AsyncExitStack() as stack:
            await stack.enter_async_context(self._semaphore)
            # Sorted so two jobs never take the same tag slots in opposite order
            for tag in sorted(set(job.tags)):
                semaphore = self._tag_semaphores.get(tag)
                if semaphore is not None:
                    await stack.enter_async_context(semaphore)

            self._concurrent += 1
            self._max_concurrent = max(self._max_concurrent, self._concurrent)
            job.state = JobState.RUNNING
            job.started_at = datetime.now(UTC)
            self._log.debug("Job started", job=job.title, job_id=job.id)

            try:
                await job.fn(lambda msg: self._set_status(job, msg))
                job.state = JobState.SUCCEEDED

            except Exception as e:
                job.state = JobState.FAILED
                job.error = str(e) or e.__class__.__name__
                self._log.error("Job failed", job=job.title, job_id=job.id, error=job.error)

            except asyncio.CancelledError:
                job.state = JobState.FAILED
                job.error = "cancelled"
                self._log.warning("Job cancelled", job=job.title, job_id=job.id)
                raise

            finally:
                self._concurrent -= 1
                job.finished_at = datetime.now(UTC)

        if job.state == JobState.SUCCEEDED:
            self._log.debug("Job succeeded", job=job.title, duration_ms=job.duration_ms)

        if self._on_job_complete is not None:
            try:
                self._on_job_complete(job)
            except Exception as e:
                self._log.warning("Error in job complete callback", error=str(e))

    def _set_status(self, job: Job, msg: str) -> None:
        job.status = msg
        if self._config.show_status:
            self._log.info("Job status", job=job.title, status=msg)
        else:
            self._log.debug("Job status", job=job.title, status=msg)
