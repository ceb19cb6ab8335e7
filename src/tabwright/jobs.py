"""
Browser-bound jobs on top of the tab pool and the job runner.
"""

from __future__ import annotations

from typing import Awaitable, Callable

import structlog

from tabwright.config import BrowserConfig, RunnerConfig
from tabwright.options import JobOptions, PageJobOptions
from tabwright.pool import BrowserPool, Launcher
from tabwright.runner import Job, JobFunction, JobRunner, RunResult
from tabwright.session import JobInfo, PageSession
from tabwright.status import StatusSink

logger = structlog.get_logger(__name__)

PageJobFunction = Callable[[JobInfo], Awaitable[None]]


class BrowserJobs:
    """
    Runs many jobs that share one browser.

    Each page job gets its own tab when it starts, navigates to its URL in
    the background, then runs its body in the foreground. The tab goes back
    to the pool when the job ends, whether or not it succeeded.

    Usage:
        async with BrowserJobs(BrowserConfig(headless=False)) as jobs:
            jobs.add_page_job(PageJobOptions(title="home", url=url), visit)
            result = await jobs.run()
    """

    def __init__(
        self,
        browser_config: BrowserConfig | None = None,
        runner_config: RunnerConfig | None = None,
        launcher: Launcher | None = None,
        *,
        pool: BrowserPool | None = None,
        runner: JobRunner | None = None,
    ) -> None:
        """
        Initialize browser jobs.

        Args:
            browser_config: Browser configuration (loads from env if not provided)
            runner_config: Runner configuration (loads from env if not provided)
            launcher: Browser launcher, mainly for tests
            pool: Existing pool to use instead of creating one
            runner: Existing runner to use instead of creating one
        """
        self.pool = pool or BrowserPool(browser_config, launcher)
        self.runner = runner or JobRunner(runner_config)
        self._log = logger.bind(component="browser_jobs")

    def add_page_job(self, options: PageJobOptions, fn: PageJobFunction) -> Job:
        """
        Register a job that runs against a browser tab.

        The tab is taken from the pool only when the job starts.
        """

        async def execute(status: StatusSink) -> None:
            await self._run_page_job(options, fn, status)

        return self.runner.add_job(options, execute)

    def add_job(self, options: JobOptions, fn: JobFunction) -> Job:
        """Register a job that needs no tab."""
        return self.runner.add_job(options, fn)

    async def _run_page_job(
        self,
        options: PageJobOptions,
        fn: PageJobFunction,
        status: StatusSink,
    ) -> None:
        async with self.pool.acquire() as tab:
            session = PageSession(self.pool, tab, options, status, runner=self.runner)
            try:
                # Loads faster in the background than waiting for the foreground
                if options.url:
                    await session.goto(options.url, options.go_options)

                await session.run_in_foreground(fn)

            except Exception:
                self._log.exception("Page job failed", job=options.title, url=options.url)
                raise

    async def run(self) -> RunResult:
        """Run every registered job, including ones registered along the way."""
        return await self.runner.run()

    async def close(self) -> None:
        """Close the browser. Registered jobs stay registered."""
        await self.pool.shutdown()

    async def __aenter__(self) -> BrowserJobs:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()
